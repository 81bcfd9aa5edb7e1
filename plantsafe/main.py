from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from plantsafe.api.routers import identity, inspection, isolation, registry, stats
from plantsafe.infra.audit import AuditMiddleware
from plantsafe.infra.db import check_db_ready, init_db
from plantsafe.infra.logging_config import configure_logging
from plantsafe.infra.sessions import SESSION_BACKEND, check_session_backend_ready

AUTO_CREATE_SCHEMA = os.getenv("AUTO_CREATE_SCHEMA", "1").strip().lower() in {"1", "true", "yes"}

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    if AUTO_CREATE_SCHEMA:
        init_db()
        logger.info("database schema ensured")
    logger.info("plantsafe started with %s session backend", SESSION_BACKEND)
    yield


app = FastAPI(
    title="plantsafe",
    description="Facility asset inspection tracking and lockout/tagout isolation planning.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/auth", tags=["auth"])
app.include_router(identity.users_router, prefix="/api/users", tags=["users"])
app.include_router(registry.router, prefix="/api", tags=["registry"])
app.include_router(inspection.router, prefix="/api", tags=["inspection"])
app.include_router(isolation.router, prefix="/api", tags=["isolation"])
app.include_router(stats.router, prefix="/api/stats", tags=["stats"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    sessions_ok = check_session_backend_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "sessions": "ok" if sessions_ok else "fail",
    }
    if not (db_ok and sessions_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
