from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from plantsafe.api.deps import get_current_claims, require_perm
from plantsafe.domain.models import (
    ActiveIsolationPlanRead,
    IsolationPlanCreate,
    IsolationPlanDetailRead,
    IsolationPlanRead,
    IsolationPlanSummaryRead,
    IsolationPlanUpdate,
    IsolationPointCreate,
    IsolationPointRead,
    IsolationPointUpdate,
)
from plantsafe.domain.permissions import (
    PERM_ISOLATION_APPROVE,
    PERM_ISOLATION_DELETE,
    PERM_ISOLATION_READ,
    PERM_ISOLATION_WRITE,
)
from plantsafe.infra.audit import set_audit_context
from plantsafe.services.isolation_service import (
    ConflictError,
    IsolationPlanService,
    IsolationPointService,
    NotFoundError,
    StorageError,
    TransitionError,
    ValidationError,
)

router = APIRouter()

_ISOLATION_ERRORS = (NotFoundError, ConflictError, TransitionError, ValidationError, StorageError)


def get_plan_service() -> IsolationPlanService:
    return IsolationPlanService()


def get_point_service() -> IsolationPointService:
    return IsolationPointService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
PlanService = Annotated[IsolationPlanService, Depends(get_plan_service)]
PointService = Annotated[IsolationPointService, Depends(get_point_service)]


def _handle_isolation_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (ConflictError, TransitionError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, StorageError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


# Plans


@router.post(
    "/diagrams/{diagram_id}/isolation-plans",
    response_model=IsolationPlanRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def create_plan(
    diagram_id: str,
    payload: IsolationPlanCreate,
    claims: Claims,
    service: PlanService,
) -> IsolationPlanRead:
    try:
        return service.create_plan(diagram_id, payload, claims["sub"])
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.get(
    "/diagrams/{diagram_id}/isolation-plans",
    response_model=list[IsolationPlanSummaryRead],
    dependencies=[Depends(require_perm(PERM_ISOLATION_READ))],
)
def list_diagram_plans(diagram_id: str, service: PlanService) -> list[IsolationPlanSummaryRead]:
    try:
        return service.list_diagram_plans(diagram_id)
    except NotFoundError as exc:
        _handle_isolation_error(exc)
        raise


@router.get(
    "/isolation-plans",
    response_model=list[IsolationPlanSummaryRead],
    dependencies=[Depends(require_perm(PERM_ISOLATION_READ))],
)
def list_plans(service: PlanService) -> list[IsolationPlanSummaryRead]:
    return service.list_plans()


@router.get(
    "/isolation-plans/active",
    response_model=list[ActiveIsolationPlanRead],
    dependencies=[Depends(require_perm(PERM_ISOLATION_READ))],
)
def list_active_plans(service: PlanService) -> list[ActiveIsolationPlanRead]:
    return service.list_active_plans()


@router.get(
    "/isolation-plans/{plan_id}",
    response_model=IsolationPlanDetailRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_READ))],
)
def get_plan(plan_id: str, service: PlanService) -> IsolationPlanDetailRead:
    try:
        return service.get_plan(plan_id)
    except NotFoundError as exc:
        _handle_isolation_error(exc)
        raise


@router.patch(
    "/isolation-plans/{plan_id}",
    response_model=IsolationPlanRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def update_plan(plan_id: str, payload: IsolationPlanUpdate, service: PlanService) -> IsolationPlanRead:
    try:
        return service.update_plan(plan_id, payload)
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.post(
    "/isolation-plans/{plan_id}/approve",
    response_model=IsolationPlanRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_APPROVE))],
)
def approve_plan(plan_id: str, request: Request, claims: Claims, service: PlanService) -> IsolationPlanRead:
    set_audit_context(request, action="isolation.plan.approve", resource=f"isolation-plans/{plan_id}")
    try:
        return service.approve_plan(plan_id, claims["sub"])
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.delete(
    "/isolation-plans/{plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ISOLATION_DELETE))],
)
def delete_plan(plan_id: str, service: PlanService) -> Response:
    try:
        service.delete_plan(plan_id)
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Points


@router.post(
    "/isolation-plans/{plan_id}/points",
    response_model=IsolationPointRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def add_point(plan_id: str, payload: IsolationPointCreate, service: PointService) -> IsolationPointRead:
    try:
        return service.add_point(plan_id, payload)
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.patch(
    "/isolation-points/{point_id}",
    response_model=IsolationPointRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def update_point(point_id: str, payload: IsolationPointUpdate, service: PointService) -> IsolationPointRead:
    try:
        return service.update_point(point_id, payload)
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.post(
    "/isolation-points/{point_id}/isolate",
    response_model=IsolationPointRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def isolate_point(point_id: str, request: Request, claims: Claims, service: PointService) -> IsolationPointRead:
    set_audit_context(request, action="isolation.point.isolate", resource=f"isolation-points/{point_id}")
    try:
        return service.isolate(point_id, claims["sub"])
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.post(
    "/isolation-points/{point_id}/verify",
    response_model=IsolationPointRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def verify_point(point_id: str, request: Request, claims: Claims, service: PointService) -> IsolationPointRead:
    set_audit_context(request, action="isolation.point.verify", resource=f"isolation-points/{point_id}")
    try:
        return service.verify(point_id, claims["sub"])
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.post(
    "/isolation-points/{point_id}/restore",
    response_model=IsolationPointRead,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def restore_point(point_id: str, request: Request, claims: Claims, service: PointService) -> IsolationPointRead:
    set_audit_context(request, action="isolation.point.restore", resource=f"isolation-points/{point_id}")
    try:
        return service.restore(point_id, claims["sub"])
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise


@router.delete(
    "/isolation-points/{point_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ISOLATION_WRITE))],
)
def delete_point(point_id: str, service: PointService) -> Response:
    try:
        service.delete_point(point_id)
    except _ISOLATION_ERRORS as exc:
        _handle_isolation_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
