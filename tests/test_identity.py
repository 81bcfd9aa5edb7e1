from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from plantsafe import main as app_main
from plantsafe.domain.models import AuditLog, UserRole
from plantsafe.infra import audit, db, events
from plantsafe.infra.sessions import MemorySessionStore, get_session_store
from plantsafe.services.identity_service import hash_password, verify_password


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    store = MemorySessionStore(ttl_seconds=600)
    app_main.app.dependency_overrides[get_session_store] = lambda: store
    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _bootstrap_admin(client: TestClient, username: str = "admin", password: str = "admin-pass") -> str:
    response = client.post(
        "/api/auth/bootstrap-admin",
        json={"username": username, "password": password, "name": "Plant Admin"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def test_password_hash_roundtrip_and_salt() -> None:
    first = hash_password("s3cret-pass")
    second = hash_password("s3cret-pass")
    assert first != second
    assert verify_password("s3cret-pass", first)
    assert not verify_password("wrong-pass", first)
    assert not verify_password("s3cret-pass", "not-a-hash")


def test_bootstrap_admin_only_once(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    second = identity_client.post(
        "/api/auth/bootstrap-admin",
        json={"username": "other", "password": "other-pass", "name": "Other"},
    )
    assert second.status_code == 409


def test_login_returns_role_permissions_and_me(identity_client: TestClient) -> None:
    admin_id = _bootstrap_admin(identity_client)
    response = identity_client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["permissions"] == ["*"]
    assert body["expires_in"] == 600

    me = identity_client.get("/api/auth/me", headers=_auth_header(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["id"] == admin_id
    assert me.json()["role"] == UserRole.ADMIN


def test_login_rejects_bad_password_and_audits(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    response = identity_client.post("/api/auth/login", json={"username": "admin", "password": "nope-nope"})
    assert response.status_code == 401

    with Session(db.get_engine()) as session:
        rows = session.exec(select(AuditLog).where(AuditLog.action == "auth.login")).all()
    assert [row.status_code for row in rows] == [401]
    assert rows[0].detail["result"]["outcome"] == "denied"


def test_logout_revokes_session(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    token = _login(identity_client, "admin", "admin-pass")
    assert identity_client.get("/api/auth/me", headers=_auth_header(token)).status_code == 200

    logout = identity_client.post("/api/auth/logout", headers=_auth_header(token))
    assert logout.status_code == 204

    after = identity_client.get("/api/auth/me", headers=_auth_header(token))
    assert after.status_code == 401
    assert after.json()["detail"] == "Session expired or revoked"


def test_user_role_cannot_manage_users_or_approve(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    admin_token = _login(identity_client, "admin", "admin-pass")

    created = identity_client.post(
        "/api/users",
        json={"username": "tech", "password": "tech-pass", "name": "Field Tech"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert created.json()["role"] == UserRole.USER

    duplicate = identity_client.post(
        "/api/users",
        json={"username": "tech", "password": "tech-pass", "name": "Field Tech"},
        headers=_auth_header(admin_token),
    )
    assert duplicate.status_code == 409

    tech_token = _login(identity_client, "tech", "tech-pass")
    forbidden = identity_client.post(
        "/api/users",
        json={"username": "intruder", "password": "intruder", "name": "X"},
        headers=_auth_header(tech_token),
    )
    assert forbidden.status_code == 403

    approve = identity_client.post("/api/isolation-plans/any-plan/approve", headers=_auth_header(tech_token))
    assert approve.status_code == 403
    assert approve.json()["detail"] == "Missing permission: isolation.approve"


def test_deactivated_user_cannot_login(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    admin_token = _login(identity_client, "admin", "admin-pass")
    created = identity_client.post(
        "/api/users",
        json={"username": "temp", "password": "temp-pass", "name": "Temp"},
        headers=_auth_header(admin_token),
    )
    user_id = created.json()["id"]

    deactivated = identity_client.post(f"/api/users/{user_id}/deactivate", headers=_auth_header(admin_token))
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    login = identity_client.post("/api/auth/login", json={"username": "temp", "password": "temp-pass"})
    assert login.status_code == 401


def test_short_password_rejected(identity_client: TestClient) -> None:
    response = identity_client.post(
        "/api/auth/bootstrap-admin",
        json={"username": "admin", "password": "123", "name": "Admin"},
    )
    assert response.status_code == 422


def test_missing_token_is_unauthorized(identity_client: TestClient) -> None:
    response = identity_client.get("/api/terminals")
    assert response.status_code == 401
