from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from plantsafe import main as app_main
from plantsafe.domain.models import InspectionChecklistItem, InspectionImage, ThicknessMeasurement
from plantsafe.infra import audit, db, events
from plantsafe.infra.sessions import MemorySessionStore, get_session_store
from plantsafe.services.file_storage_service import FileStorageError, LocalFileStorageAdapter

PDF_BYTES = b"%PDF-1.4\n%%EOF\n"


@pytest.fixture()
def inspection_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "inspection_test.db"
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
    monkeypatch.setenv("FILE_STORAGE_ROOT", str(tmp_path / "uploads"))
    store = MemorySessionStore(ttl_seconds=600)
    app_main.app.dependency_overrides[get_session_store] = lambda: store
    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_token(client: TestClient) -> str:
    client.post(
        "/api/auth/bootstrap-admin",
        json={"username": "admin", "password": "admin-pass", "name": "Plant Admin"},
    )
    login = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _create_annotation(client: TestClient, token: str) -> str:
    diagram = client.post(
        "/api/diagrams",
        params={"name": "P&ID 200"},
        content=PDF_BYTES,
        headers={**_auth_header(token), "X-Filename": "pid-200.pdf"},
    )
    assert diagram.status_code == 201
    annotation = client.post(
        f"/api/diagrams/{diagram.json()['id']}/annotations",
        json={"kks_number": "20LAC10BR001", "material": "P235GH", "diameter": "DN150"},
        headers=_auth_header(token),
    )
    assert annotation.status_code == 201
    return annotation.json()["id"]


def _create_inspection(client: TestClient, token: str, annotation_id: str, **fields: object) -> dict:
    payload = {"inspection_date": "2025-01-10", "inspector_name": "Inspector", **fields}
    response = client.post(
        f"/api/annotations/{annotation_id}/inspections",
        json=payload,
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()


def test_create_inspection_seeds_checklist_and_syncs_dates(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)

    detail = _create_inspection(
        inspection_client,
        token,
        annotation_id,
        next_inspection_date="2025-04-10",
        report_number="R-001",
    )
    assert detail["kks_number"] == "20LAC10BR001"
    assert detail["material"] == "P235GH"
    assert detail["diameter"] == "DN150"
    assert detail["inspection"]["overall_status"] == "pending"
    checklist = detail["checklist"]
    assert len(checklist) == 19
    assert [item["item_number"] for item in checklist] == list(range(1, 20))
    assert {item["status"] for item in checklist} == {"na"}
    assert checklist[0]["item_name"] == "Overfladebehandling udvendig"

    annotation = inspection_client.get(f"/api/annotations/{annotation_id}", headers=_auth_header(token)).json()
    assert annotation["last_inspection"] == "2025-01-10"
    assert annotation["next_inspection"] == "2025-04-10"


def test_inspection_for_missing_annotation_is_404(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    response = inspection_client.post(
        "/api/annotations/missing/inspections",
        json={"inspection_date": "2025-01-10", "inspector_name": "Inspector"},
        headers=_auth_header(token),
    )
    assert response.status_code == 404


def test_partial_update_keeps_omitted_and_clears_explicit_null(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    detail = _create_inspection(
        inspection_client,
        token,
        annotation_id,
        next_inspection_date="2025-04-10",
        conclusion="Minor corrosion",
        approver_name="Lead",
    )
    inspection_id = detail["inspection"]["id"]

    updated = inspection_client.patch(
        f"/api/inspections/{inspection_id}",
        json={"overall_status": "approved"},
        headers=_auth_header(token),
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["overall_status"] == "approved"
    assert body["conclusion"] == "Minor corrosion"
    assert body["approver_name"] == "Lead"

    cleared = inspection_client.patch(
        f"/api/inspections/{inspection_id}",
        json={"conclusion": None, "next_inspection_date": None},
        headers=_auth_header(token),
    )
    assert cleared.json()["conclusion"] is None
    assert cleared.json()["next_inspection_date"] is None
    assert cleared.json()["approver_name"] == "Lead"

    annotation = inspection_client.get(f"/api/annotations/{annotation_id}", headers=_auth_header(token)).json()
    assert annotation["last_inspection"] == "2025-01-10"
    assert annotation["next_inspection"] is None

    unknown = inspection_client.patch(
        f"/api/inspections/{inspection_id}",
        json={"annotation_id": "other"},
        headers=_auth_header(token),
    )
    assert unknown.status_code == 422


def test_checklist_single_and_bulk_updates(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    detail = _create_inspection(inspection_client, token, annotation_id)
    inspection_id = detail["inspection"]["id"]
    first, second, third = detail["checklist"][:3]

    single = inspection_client.patch(
        f"/api/checklist-items/{first['id']}",
        json={"status": "2", "comment": "Paint flaking"},
        headers=_auth_header(token),
    )
    assert single.status_code == 200
    assert single.json()["status"] == "2"
    assert single.json()["comment"] == "Paint flaking"

    bulk = inspection_client.put(
        f"/api/inspections/{inspection_id}/checklist",
        json={
            "items": [
                {"id": second["id"], "status": "ok"},
                {"id": third["id"], "status": "3", "reference": "Photo 1"},
                {"id": first["id"], "comment": None},
            ]
        },
        headers=_auth_header(token),
    )
    assert bulk.status_code == 200
    by_id = {item["id"]: item for item in bulk.json()}
    assert by_id[first["id"]]["status"] == "2"
    assert by_id[first["id"]]["comment"] is None
    assert by_id[second["id"]]["status"] == "ok"
    assert by_id[third["id"]]["reference"] == "Photo 1"

    suggested = inspection_client.get(f"/api/annotations/{annotation_id}", headers=_auth_header(token)).json()
    assert suggested["suggested_status"] == "critical"

    foreign = inspection_client.put(
        f"/api/inspections/{inspection_id}/checklist",
        json={"items": [{"id": "not-on-this-inspection", "status": "ok"}]},
        headers=_auth_header(token),
    )
    assert foreign.status_code == 404


def test_measurement_critical_flag(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    inspection_id = _create_inspection(inspection_client, token, annotation_id)["inspection"]["id"]

    thin = inspection_client.post(
        f"/api/inspections/{inspection_id}/measurements",
        json={"tml_number": 1, "t_nom": 7.1, "t_alert": 5.0, "t_measured": 4.2, "position": "12 o'clock"},
        headers=_auth_header(token),
    )
    assert thin.status_code == 201
    assert thin.json()["is_critical"] is True

    unmeasured = inspection_client.post(
        f"/api/inspections/{inspection_id}/measurements",
        json={"tml_number": 2, "t_alert": 5.0},
        headers=_auth_header(token),
    )
    assert unmeasured.json()["is_critical"] is False

    fixed = inspection_client.patch(
        f"/api/measurements/{thin.json()['id']}",
        json={"t_measured": 6.0},
        headers=_auth_header(token),
    )
    assert fixed.status_code == 200
    assert fixed.json()["is_critical"] is False
    assert fixed.json()["position"] == "12 o'clock"

    removed = inspection_client.delete(
        f"/api/measurements/{unmeasured.json()['id']}",
        headers=_auth_header(token),
    )
    assert removed.status_code == 204
    detail = inspection_client.get(f"/api/inspections/{inspection_id}", headers=_auth_header(token)).json()
    assert [row["tml_number"] for row in detail["measurements"]] == [1]


def test_image_and_document_uploads(inspection_client: TestClient, tmp_path: Path) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    inspection_id = _create_inspection(inspection_client, token, annotation_id)["inspection"]["id"]

    rejected = inspection_client.post(
        f"/api/inspections/{inspection_id}/images",
        content=b"MZ",
        headers={**_auth_header(token), "X-Filename": "payload.exe"},
    )
    assert rejected.status_code == 422

    first = inspection_client.post(
        f"/api/inspections/{inspection_id}/images",
        params={"comment": "Overview"},
        content=b"\xff\xd8\xff fake jpeg",
        headers={**_auth_header(token), "X-Filename": "overview.JPG"},
    )
    second = inspection_client.post(
        f"/api/inspections/{inspection_id}/images",
        content=b"\x89PNG fake",
        headers={**_auth_header(token), "X-Filename": "detail.png"},
    )
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["image_number"] == 1
    assert second.json()["image_number"] == 2
    assert first.json()["comment"] == "Overview"
    assert first.json()["filename"].endswith(".jpg")

    download = inspection_client.get(f"/api/images/{first.json()['id']}/file", headers=_auth_header(token))
    assert download.status_code == 200
    assert download.content == b"\xff\xd8\xff fake jpeg"

    document = inspection_client.post(
        f"/api/inspections/{inspection_id}/documents",
        params={"description": "UT report"},
        content=b"%PDF-1.4 report",
        headers={**_auth_header(token), "X-Filename": "ut-report.pdf"},
    )
    assert document.status_code == 201
    assert document.json()["document_type"] == "report"

    empty = inspection_client.post(
        f"/api/inspections/{inspection_id}/documents",
        content=b"",
        headers={**_auth_header(token), "X-Filename": "empty.pdf"},
    )
    assert empty.status_code == 422

    image_path = tmp_path / "uploads" / "images" / second.json()["filename"]
    assert image_path.exists()
    removed = inspection_client.delete(f"/api/images/{second.json()['id']}", headers=_auth_header(token))
    assert removed.status_code == 204
    assert not image_path.exists()


def test_unremovable_file_does_not_block_image_delete(
    inspection_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    inspection_id = _create_inspection(inspection_client, token, annotation_id)["inspection"]["id"]
    image = inspection_client.post(
        f"/api/inspections/{inspection_id}/images",
        content=b"\x89PNG fake",
        headers={**_auth_header(token), "X-Filename": "stuck.png"},
    ).json()

    def _refuse(self: LocalFileStorageAdapter, *, category: str, filename: str) -> bool:
        raise FileStorageError(f"failed to delete {category}/{filename}: permission denied")

    monkeypatch.setattr(LocalFileStorageAdapter, "delete", _refuse)
    removed = inspection_client.delete(f"/api/images/{image['id']}", headers=_auth_header(token))
    assert removed.status_code == 204
    assert (tmp_path / "uploads" / "images" / image["filename"]).exists()
    with Session(db.get_engine()) as session:
        assert session.exec(select(InspectionImage)).all() == []


def test_delete_inspection_removes_children_and_files(inspection_client: TestClient, tmp_path: Path) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    inspection_id = _create_inspection(inspection_client, token, annotation_id)["inspection"]["id"]
    inspection_client.post(
        f"/api/inspections/{inspection_id}/measurements",
        json={"tml_number": 1, "t_alert": 5.0, "t_measured": 5.5},
        headers=_auth_header(token),
    )
    image = inspection_client.post(
        f"/api/inspections/{inspection_id}/images",
        content=b"\x89PNG fake",
        headers={**_auth_header(token), "X-Filename": "detail.png"},
    ).json()

    deleted = inspection_client.delete(f"/api/inspections/{inspection_id}", headers=_auth_header(token))
    assert deleted.status_code == 204
    assert not (tmp_path / "uploads" / "images" / image["filename"]).exists()

    with Session(db.get_engine()) as session:
        assert session.exec(select(InspectionChecklistItem)).all() == []
        assert session.exec(select(ThicknessMeasurement)).all() == []
        assert session.exec(select(InspectionImage)).all() == []

    listed = inspection_client.get(f"/api/annotations/{annotation_id}/inspections", headers=_auth_header(token))
    assert listed.json() == []


def test_inspections_listed_newest_first(inspection_client: TestClient) -> None:
    token = _admin_token(inspection_client)
    annotation_id = _create_annotation(inspection_client, token)
    _create_inspection(inspection_client, token, annotation_id, inspection_date="2024-06-01")
    _create_inspection(inspection_client, token, annotation_id, inspection_date="2025-02-01")

    listed = inspection_client.get(f"/api/annotations/{annotation_id}/inspections", headers=_auth_header(token))
    assert [row["inspection_date"] for row in listed.json()] == ["2025-02-01", "2024-06-01"]
