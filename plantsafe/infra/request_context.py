from __future__ import annotations

from contextvars import ContextVar

actor_id_ctx: ContextVar[str | None] = ContextVar("actor_id", default=None)
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_request_context(actor_id: str | None, correlation_id: str | None = None) -> None:
    actor_id_ctx.set(actor_id)
    if correlation_id is not None:
        correlation_id_ctx.set(correlation_id)


def get_actor_id() -> str | None:
    return actor_id_ctx.get()


def get_correlation_id() -> str | None:
    return correlation_id_ctx.get()
