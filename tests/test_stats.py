from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from plantsafe import main as app_main
from plantsafe.domain.models import (
    Annotation,
    AnnotationStatus,
    AnnotationType,
    Diagram,
    Inspection,
    InspectionOutcome,
    IsolationPlan,
    IsolationPoint,
    IsolationPointType,
    Location,
    Terminal,
    ThicknessMeasurement,
    User,
)
from plantsafe.domain.state_machine import IsolationPlanStatus, IsolationPointStatus
from plantsafe.infra import audit, db, events
from plantsafe.infra.sessions import MemorySessionStore, get_session_store
from plantsafe.services.dashboard_service import DashboardService, NotFoundError

TODAY = date(2025, 6, 15)


@dataclass
class Plant:
    terminal_a: str
    terminal_b: str
    due_soon: str
    overdue: str
    due_later: str
    unscheduled: str
    unassigned: str
    inspection_id: str


@pytest.fixture()
def stats_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "stats_test.db"
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
    return test_engine


@pytest.fixture()
def plant(stats_engine: Engine) -> Plant:
    with Session(stats_engine, expire_on_commit=False) as session:
        terminal_a = Terminal(name="Harbour", code="AAA")
        terminal_b = Terminal(name="Inland", code="BBB")
        session.add_all([terminal_a, terminal_b])
        session.flush()
        location = Location(terminal_id=terminal_a.id, name="Pump Station")
        session.add(location)
        session.flush()
        located = Diagram(name="P&ID 1", location_id=location.id, pdf_filename="a.pdf")
        loose = Diagram(name="P&ID 2", location_id=None, pdf_filename="b.pdf")
        session.add_all([located, loose])
        session.flush()

        due_soon = Annotation(
            diagram_id=located.id,
            annotation_type=AnnotationType.PIPE,
            kks_number="K-1",
            status=AnnotationStatus.OK,
            next_inspection=date(2025, 6, 20),
        )
        overdue = Annotation(
            diagram_id=located.id,
            annotation_type=AnnotationType.TANK,
            kks_number="K-2",
            status=AnnotationStatus.WARNING,
            next_inspection=date(2025, 6, 10),
        )
        due_later = Annotation(
            diagram_id=located.id,
            annotation_type=AnnotationType.COMPONENT,
            kks_number="K-3",
            status=AnnotationStatus.CRITICAL,
            next_inspection=date(2025, 8, 20),
        )
        unscheduled = Annotation(
            diagram_id=located.id,
            annotation_type=AnnotationType.PIPE,
            kks_number="K-4",
        )
        unassigned = Annotation(
            diagram_id=loose.id,
            annotation_type=AnnotationType.PIPE,
            kks_number="K-5",
            status=AnnotationStatus.OK,
            next_inspection=date(2025, 6, 16),
        )
        session.add_all([due_soon, overdue, due_later, unscheduled, unassigned])
        session.flush()

        recent = Inspection(
            annotation_id=due_soon.id,
            inspection_date=date(2025, 6, 14),
            inspector_name="Inspector",
            overall_status=InspectionOutcome.APPROVED,
            created_at=datetime(2025, 6, 14, 8, 0, tzinfo=UTC),
        )
        old = Inspection(
            annotation_id=overdue.id,
            inspection_date=date(2025, 6, 1),
            inspector_name="Inspector",
            overall_status=InspectionOutcome.REJECTED,
            created_at=datetime(2025, 6, 1, 8, 0, tzinfo=UTC),
        )
        session.add_all([recent, old])
        session.commit()
        return Plant(
            terminal_a=terminal_a.id,
            terminal_b=terminal_b.id,
            due_soon=due_soon.id,
            overdue=overdue.id,
            due_later=due_later.id,
            unscheduled=unscheduled.id,
            unassigned=unassigned.id,
            inspection_id=recent.id,
        )


def _add_measurement(engine: Engine, inspection_id: str, tml_number: int, measured: float, alert: float) -> None:
    with Session(engine) as session:
        session.add(
            ThicknessMeasurement(
                inspection_id=inspection_id,
                tml_number=tml_number,
                t_measured=measured,
                t_alert=alert,
            )
        )
        session.commit()


def test_dashboard_counts_and_histograms(plant: Plant) -> None:
    rollup = DashboardService().dashboard_rollup(today=TODAY)

    overview = rollup.overview
    assert (overview.terminals, overview.locations, overview.diagrams) == (2, 1, 2)
    assert overview.annotations == 5
    assert overview.inspections == 2
    assert sum(rollup.annotation_status.model_dump().values()) == overview.annotations
    assert rollup.annotation_status.ok == 2
    assert rollup.annotation_status.not_inspected == 1
    assert sum(rollup.inspection_status.model_dump().values()) == overview.inspections
    assert rollup.inspection_status.rejected == 1

    assert [terminal.code for terminal in rollup.terminals] == ["AAA", "BBB"]
    assert [terminal.annotations for terminal in rollup.terminals] == [4, 0]
    assert sum(rollup.terminals[0].status_counts.model_dump().values()) == 4


def test_dashboard_schedule_windows(plant: Plant) -> None:
    rollup = DashboardService().dashboard_rollup(today=TODAY)

    assert [item.annotation_id for item in rollup.upcoming] == [plant.unassigned, plant.due_soon]
    assert [item.days_until for item in rollup.upcoming] == [1, 5]
    assert rollup.upcoming[1].terminal_code == "AAA"
    assert rollup.upcoming[0].terminal_code is None
    assert rollup.overview.upcoming_inspections == 2

    assert [item.annotation_id for item in rollup.overdue] == [plant.overdue]
    assert rollup.overdue[0].days_overdue == 5
    assert rollup.overdue[0].days_until is None
    assert rollup.overview.overdue_inspections == 1


def test_recent_inspections_window(plant: Plant) -> None:
    rollup = DashboardService().dashboard_rollup(today=TODAY)
    assert [item.id for item in rollup.recent_inspections] == [plant.inspection_id]
    assert rollup.recent_inspections[0].kks_number == "K-1"
    assert rollup.recent_inspections[0].terminal_code == "AAA"


def test_critical_measurement_count(plant: Plant, stats_engine: Engine) -> None:
    service = DashboardService()
    assert service.dashboard_rollup(today=TODAY).overview.critical_measurements == 0

    _add_measurement(stats_engine, plant.inspection_id, 1, 4.2, 5.0)
    assert service.dashboard_rollup(today=TODAY).overview.critical_measurements == 1

    _add_measurement(stats_engine, plant.inspection_id, 2, 6.0, 5.0)
    assert service.dashboard_rollup(today=TODAY).overview.critical_measurements == 1
    assert service.terminal_rollup(plant.terminal_a, today=TODAY).overview.critical_measurements == 1
    assert service.terminal_rollup(plant.terminal_b, today=TODAY).overview.critical_measurements == 0


def test_type_filter_narrows_annotation_counts(plant: Plant) -> None:
    rollup = DashboardService().dashboard_rollup(AnnotationType.PIPE, today=TODAY)
    assert rollup.overview.annotations == 3
    assert rollup.overview.terminals == 2
    assert sum(rollup.annotation_status.model_dump().values()) == 3
    assert rollup.overview.inspections == 1
    assert rollup.overview.overdue_inspections == 0


def test_terminal_rollup_scope(plant: Plant) -> None:
    rollup = DashboardService().terminal_rollup(plant.terminal_a, today=TODAY)

    assert rollup.terminal.code == "AAA"
    assert rollup.overview.locations == 1
    assert rollup.overview.diagrams == 1
    assert rollup.overview.annotations == 4
    assert sum(rollup.annotation_status.model_dump().values()) == 4
    assert rollup.annotation_types is not None
    assert rollup.annotation_types.model_dump() == {"pipe": 2, "tank": 1, "component": 1}

    assert [item.annotation_id for item in rollup.upcoming] == [plant.due_soon, plant.due_later]
    assert [item.days_until for item in rollup.upcoming] == [5, 66]
    assert [item.annotation_id for item in rollup.overdue] == [plant.overdue]

    assert len(rollup.locations) == 1
    assert rollup.locations[0].diagrams == 1
    assert rollup.locations[0].annotations == 4

    assert len(rollup.timeline) == 12
    assert rollup.timeline[0].month == "2025-06"
    assert rollup.timeline[-1].month == "2026-05"
    by_month = {bucket.month: bucket.count for bucket in rollup.timeline}
    assert by_month["2025-06"] == 1
    assert by_month["2025-08"] == 1
    assert sum(by_month.values()) == 2


def test_terminal_rollup_with_type_filter_drops_type_breakdown(plant: Plant) -> None:
    rollup = DashboardService().terminal_rollup(plant.terminal_a, AnnotationType.PIPE, today=TODAY)
    assert rollup.annotation_types is None
    assert rollup.overview.annotations == 2


def test_terminal_rollup_unknown_terminal(stats_engine: Engine) -> None:
    with pytest.raises(NotFoundError):
        DashboardService().terminal_rollup("missing", today=TODAY)


def test_isolation_summary(stats_engine: Engine) -> None:
    with Session(stats_engine) as session:
        user = User(username="admin", password_hash="x", name="Admin")
        diagram = Diagram(name="P&ID", pdf_filename="c.pdf")
        session.add_all([user, diagram])
        session.flush()
        active = IsolationPlan(
            diagram_id=diagram.id,
            name="Active",
            created_by=user.id,
            status=IsolationPlanStatus.ACTIVE,
        )
        draft = IsolationPlan(diagram_id=diagram.id, name="Draft", created_by=user.id)
        session.add_all([active, draft])
        session.flush()
        for sequence, point_status in enumerate(
            (IsolationPointStatus.ISOLATED, IsolationPointStatus.RESTORED, IsolationPointStatus.PENDING),
            start=1,
        ):
            session.add(
                IsolationPoint(
                    plan_id=active.id,
                    point_type=IsolationPointType.VALVE,
                    tag_number=f"V-{sequence}",
                    sequence_number=sequence,
                    geometry={"x": 1.0, "y": 1.0},
                    status=point_status,
                )
            )
        session.add(
            IsolationPoint(
                plan_id=draft.id,
                point_type=IsolationPointType.DRAIN,
                tag_number="D-1",
                sequence_number=1,
                geometry={"x": 2.0, "y": 2.0},
            )
        )
        session.commit()

    summary = DashboardService().isolation_summary()
    assert summary.plans_by_status["active"] == 1
    assert summary.plans_by_status["draft"] == 1
    assert summary.plans_by_status["completed"] == 0
    assert summary.points_by_status == {"pending": 2, "isolated": 1, "verified": 0, "restored": 1}
    assert summary.active_plans == 1
    assert summary.unrestored_points_in_active_plans == 2


def test_stats_routes(plant: Plant) -> None:
    store = MemorySessionStore(ttl_seconds=600)
    app_main.app.dependency_overrides[get_session_store] = lambda: store
    client = TestClient(app_main.app)
    try:
        client.post(
            "/api/auth/bootstrap-admin",
            json={"username": "admin", "password": "admin-pass", "name": "Plant Admin"},
        )
        token = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"}).json()[
            "access_token"
        ]
        headers = {"Authorization": f"Bearer {token}"}

        dashboard = client.get("/api/stats/dashboard", params={"type": "tank"}, headers=headers)
        assert dashboard.status_code == 200
        assert dashboard.json()["overview"]["annotations"] == 1

        terminal = client.get(f"/api/stats/terminals/{plant.terminal_a}", headers=headers)
        assert terminal.status_code == 200
        assert terminal.json()["terminal"]["code"] == "AAA"

        missing = client.get("/api/stats/terminals/missing", headers=headers)
        assert missing.status_code == 404

        isolation = client.get("/api/stats/isolation", headers=headers)
        assert isolation.status_code == 200
        assert isolation.json()["active_plans"] == 0
    finally:
        client.close()
        app_main.app.dependency_overrides.clear()
