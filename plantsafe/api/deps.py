from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session, select

from plantsafe.domain.models import User
from plantsafe.domain.permissions import has_permission
from plantsafe.infra.auth import decode_access_token
from plantsafe.infra.db import get_engine
from plantsafe.infra.request_context import set_request_context
from plantsafe.infra.sessions import SessionStore, get_session_store

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

Sessions = Annotated[SessionStore, Depends(get_session_store)]


def get_current_claims(
    request: Request,
    sessions: Sessions,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    session_id = claims.get("sid")
    if not isinstance(session_id, str) or not sessions.is_active(session_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or revoked",
        )
    with Session(get_engine()) as session:
        is_active = session.exec(select(User.is_active).where(User.id == claims.get("sub"))).first()
    if not is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is deactivated",
        )
    request.state.claims = claims
    set_request_context(claims.get("sub"), request.headers.get("X-Request-Id"))
    return claims


def require_perm(permission: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_permission(claims, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return claims

    return _checker
