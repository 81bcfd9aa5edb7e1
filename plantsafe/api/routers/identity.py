from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from plantsafe.api.deps import Sessions, get_current_claims, require_perm
from plantsafe.domain.models import (
    BootstrapAdminRequest,
    LoginRequest,
    TokenResponse,
    UserCreate,
    UserRead,
)
from plantsafe.domain.permissions import PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from plantsafe.infra.audit import set_audit_context
from plantsafe.infra.auth import create_access_token, new_session_id
from plantsafe.services.identity_service import (
    AuthError,
    ConflictError,
    IdentityService,
    NotFoundError,
    ValidationError,
)

router = APIRouter()
users_router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except (ConflictError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, service: Service, sessions: Sessions) -> TokenResponse:
    try:
        user, permissions = service.login(payload.username, payload.password)
    except AuthError as exc:
        set_audit_context(request, action="auth.login", detail={"what": {"username": payload.username}})
        _handle_identity_error(exc)
        raise
    session_id = new_session_id()
    sessions.open(session_id, user.id)
    token = create_access_token(
        user_id=user.id,
        role=user.role,
        session_id=session_id,
        permissions=permissions,
        expires_minutes=max(1, sessions.ttl_seconds // 60),
    )
    request.state.claims = {"sub": user.id}
    set_audit_context(request, action="auth.login", resource=f"users/{user.id}")
    return TokenResponse(access_token=token, permissions=permissions, expires_in=sessions.ttl_seconds)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(claims: Claims, sessions: Sessions) -> Response:
    sessions.revoke(claims["sid"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserRead)
def me(claims: Claims, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(claims["sub"]))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@users_router.get(
    "",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_users(service: Service) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users()]


@users_router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_user(payload: UserCreate, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.create_user(payload))
    except (ConflictError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise


@users_router.post(
    "/{user_id}/deactivate",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def deactivate_user(user_id: str, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.set_active(user_id, False))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
