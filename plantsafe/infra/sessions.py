from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from functools import lru_cache
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError

from plantsafe.infra.auth import JWT_EXPIRES_MIN

SESSION_BACKEND = os.getenv("SESSION_BACKEND", "memory").strip().lower()
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(JWT_EXPIRES_MIN * 60)))
SESSION_KEY_PREFIX = "plantsafe:session:"
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    ttl_seconds: int

    def open(self, session_id: str, user_id: str) -> None: ...

    def is_active(self, session_id: str) -> bool: ...

    def revoke(self, session_id: str) -> None: ...


class MemorySessionStore:
    """Process-local session registry with a fixed time-to-live.

    Expired entries are evicted lazily on lookup and in bulk by
    ``purge_expired``. A restart drops every session.
    """

    def __init__(self, ttl_seconds: int = SESSION_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, tuple[str, float]] = {}

    def open(self, session_id: str, user_id: str) -> None:
        with self._lock:
            self._sessions[session_id] = (user_id, self._clock() + self.ttl_seconds)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return False
            if entry[1] <= self._clock():
                del self._sessions[session_id]
                return False
            return True

    def revoke(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._sessions.items() if expires_at <= now]
            for key in expired:
                del self._sessions[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class RedisSessionStore:
    def __init__(self, client: Redis, ttl_seconds: int = SESSION_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._client = client

    def _key(self, session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    def open(self, session_id: str, user_id: str) -> None:
        self._client.setex(self._key(session_id), self.ttl_seconds, user_id)

    def is_active(self, session_id: str) -> bool:
        return bool(self._client.exists(self._key(session_id)))

    def revoke(self, session_id: str) -> None:
        self._client.delete(self._key(session_id))


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    if SESSION_BACKEND == "redis":
        logger.info("using redis session store")
        return RedisSessionStore(get_redis())
    if SESSION_BACKEND != "memory":
        raise ValueError(f"unsupported session backend: {SESSION_BACKEND}")
    return MemorySessionStore()


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_session_backend_ready() -> bool:
    if SESSION_BACKEND != "redis":
        return True
    try:
        return bool(get_redis().ping())
    except RedisError:
        return False
