from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from plantsafe.domain.models import AuditLog, now_utc
from plantsafe.infra.db import engine

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
HEALTH_PATHS = {"/healthz", "/readyz"}
# Downloads of stored diagrams, photos and reports are recorded as well.
DOWNLOAD_SUFFIXES = ("/pdf", "/file")
AUDIT_CONTEXT_STATE_KEY = "_audit_context"

logger = logging.getLogger(__name__)


def write_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> None:
    with Session(engine) as session:
        session.add(
            AuditLog(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=status_code,
                detail=detail or {},
            )
        )
        session.commit()


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        merged[key] = _merge(current, value) if isinstance(value, dict) and isinstance(current, dict) else value
    return merged


def outcome_for_status(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code == 409:
        return "conflict"
    if status_code >= 400:
        return "rejected"
    return "success"


def should_audit_request(method: str, path: str) -> bool:
    if path in HEALTH_PATHS:
        return False
    if method in MUTATING_METHODS:
        return True
    return method == "GET" and path.endswith(DOWNLOAD_SUFFIXES)


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Attach an explicit action, resource or detail to the request's audit row."""
    current = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    context: dict[str, Any] = dict(current) if isinstance(current, dict) else {}
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        previous = context.get("detail")
        context["detail"] = _merge(previous, detail) if isinstance(previous, dict) else detail
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


def _context_of(request: Request) -> dict[str, Any]:
    context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    return context if isinstance(context, dict) else {}


def _base_detail(
    request: Request,
    response: Response,
    claims: dict[str, Any],
    action: str,
    resource: str,
) -> dict[str, Any]:
    route = request.scope.get("route")
    return {
        "who": {
            "actor_id": claims.get("sub"),
            "role": claims.get("role"),
            "request_id": request.headers.get("X-Request-Id"),
        },
        "when": {"request_ts": now_utc().isoformat()},
        "where": {
            "path": request.url.path,
            "route": getattr(route, "path", request.url.path),
            "query": request.url.query,
            "client_ip": request.client.host if request.client is not None else None,
        },
        "what": {"action": action, "resource": resource, "method": request.method},
        "result": {
            "status_code": response.status_code,
            "outcome": outcome_for_status(response.status_code),
        },
    }


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        method = request.method
        path = request.url.path
        if path in HEALTH_PATHS:
            return response

        context = _context_of(request)
        explicit = any(key in context for key in ("action", "resource", "detail"))
        if not explicit and not should_audit_request(method, path):
            return response

        claims = getattr(request.state, "claims", None) or {}
        action = context.get("action") if isinstance(context.get("action"), str) else f"{method}:{path}"
        resource = context.get("resource") if isinstance(context.get("resource"), str) else path
        detail = _base_detail(request, response, claims, action, resource)
        if isinstance(context.get("detail"), dict):
            detail = _merge(detail, context["detail"])

        try:
            write_audit_log(
                actor_id=claims.get("sub"),
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except SQLAlchemyError:
            logger.warning("audit write failed for %s %s", method, path, exc_info=True)
        return response
