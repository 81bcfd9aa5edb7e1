from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from plantsafe.domain.models import (
    BootstrapAdminRequest,
    User,
    UserCreate,
    UserRole,
    now_utc,
)
from plantsafe.domain.permissions import permissions_for_role
from plantsafe.infra.db import get_engine
from plantsafe.infra.events import event_bus

PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "120000"))

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class ValidationError(IdentityError):
    pass


def hash_password(raw_password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", raw_password.encode(), salt.encode(), PASSWORD_HASH_ITERATIONS)
    return f"pbkdf2_sha256${PASSWORD_HASH_ITERATIONS}${salt}${digest.hex()}"


def verify_password(raw_password: str, password_hash: str) -> bool:
    try:
        _, iterations, salt, expected = password_hash.split("$", 3)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", raw_password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _validate_credentials(self, username: str, password: str) -> None:
        if not username.strip():
            raise ValidationError("username is required")
        if len(password) < 6:
            raise ValidationError("password must be at least 6 characters")

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        self._validate_credentials(payload.username, payload.password)
        with self._session() as session:
            existing = session.exec(select(User.id).limit(1)).first()
            if existing is not None:
                raise ConflictError("system already initialized")
            admin_user = User(
                username=payload.username.strip(),
                password_hash=hash_password(payload.password),
                name=payload.name,
                role=UserRole.ADMIN,
            )
            session.add(admin_user)
            session.commit()
            session.refresh(admin_user)

        logger.info("bootstrap admin %s created", admin_user.username)
        event_bus.publish_dict("identity.admin_bootstrapped", {"user_id": admin_user.id}, actor_id=admin_user.id)
        return admin_user

    def create_user(self, payload: UserCreate) -> User:
        self._validate_credentials(payload.username, payload.password)
        with self._session() as session:
            user = User(
                username=payload.username.strip(),
                password_hash=hash_password(payload.password),
                name=payload.name,
                role=payload.role,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)

        event_bus.publish_dict("identity.user_created", {"user_id": user.id, "role": user.role})
        return user

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(User.username)).all())

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def set_active(self, user_id: str, is_active: bool) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            user.is_active = is_active
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
        return user

    def login(self, username: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username.strip())).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if not verify_password(password, user.password_hash):
                raise AuthError("invalid credentials")
        return user, permissions_for_role(user.role)
