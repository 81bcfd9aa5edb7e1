from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from plantsafe.api.deps import require_perm
from plantsafe.domain.models import (
    AnnotationType,
    DashboardRollupRead,
    IsolationSummaryRead,
    TerminalRollupRead,
)
from plantsafe.domain.permissions import PERM_DASHBOARD_READ
from plantsafe.services.dashboard_service import DashboardService, NotFoundError

router = APIRouter()


def get_dashboard_service() -> DashboardService:
    return DashboardService()


Service = Annotated[DashboardService, Depends(get_dashboard_service)]
TypeFilter = Annotated[AnnotationType | None, Query(alias="type")]


@router.get(
    "/dashboard",
    response_model=DashboardRollupRead,
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def get_dashboard(service: Service, annotation_type: TypeFilter = None) -> DashboardRollupRead:
    return service.dashboard_rollup(annotation_type)


@router.get(
    "/terminals/{terminal_id}",
    response_model=TerminalRollupRead,
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def get_terminal_rollup(
    terminal_id: str,
    service: Service,
    annotation_type: TypeFilter = None,
) -> TerminalRollupRead:
    try:
        return service.terminal_rollup(terminal_id, annotation_type)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get(
    "/isolation",
    response_model=IsolationSummaryRead,
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def get_isolation_summary(service: Service) -> IsolationSummaryRead:
    return service.isolation_summary()
