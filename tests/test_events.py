from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from plantsafe.domain.models import EventEnvelope, EventRecord
from plantsafe.infra import events
from plantsafe.infra.events import EventBus, topics_for
from plantsafe.infra.request_context import set_request_context


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="isolation.point.isolated",
        actor_id="user-1",
        payload={"point_id": "point-1"},
    )
    bus.subscribe("isolation.point.isolated", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].actor_id == "user-1"
    assert seen == [event.event_id]


def test_publish_dict_uses_request_actor_and_wildcard_handlers(monkeypatch, tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'events.db'}")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(events, "engine", engine)

    bus = EventBus()
    seen: list[str] = []
    bus.subscribe("*", lambda event: seen.append(event.event_type))
    set_request_context("actor-7")

    envelope = bus.publish_dict("isolation.plan.created", {"plan_id": "plan-1"})

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).one()

    assert envelope.actor_id == "actor-7"
    assert stored.payload == {"plan_id": "plan-1"}
    assert seen == ["isolation.plan.created"]
    set_request_context(None)


def test_unsubscribe_stops_delivery() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("inspection.created", handler)
    bus.unsubscribe("inspection.created", handler)
    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="inspection.created", payload={}), session=session)
        session.commit()

    assert seen == []


def test_prefix_subscriptions_receive_nested_event_types() -> None:
    assert topics_for("isolation.point.isolated") == [
        "isolation.point.isolated",
        "isolation.point.*",
        "isolation.*",
        "*",
    ]

    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[tuple[str, str]] = []
    bus.subscribe("isolation.*", lambda event: seen.append(("isolation", event.event_type)))
    bus.subscribe("isolation.point.*", lambda event: seen.append(("point", event.event_type)))

    with Session(engine) as session:
        for event_type in ("isolation.point.restored", "isolation.plan.approved", "inspection.created"):
            bus.publish(EventEnvelope(event_type=event_type, payload={}), session=session)
        session.commit()

    assert seen == [
        ("point", "isolation.point.restored"),
        ("isolation", "isolation.point.restored"),
        ("isolation", "isolation.plan.approved"),
    ]
