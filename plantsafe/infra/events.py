from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from plantsafe.domain.models import EventEnvelope, EventRecord
from plantsafe.infra.db import engine
from plantsafe.infra.request_context import get_actor_id, get_correlation_id

EventHandler = Callable[[EventEnvelope], None]

logger = logging.getLogger(__name__)


def topics_for(event_type: str) -> list[str]:
    """Subscription keys that receive ``event_type``.

    ``isolation.point.isolated`` is delivered to handlers registered for the
    exact type, for ``isolation.point.*``, for ``isolation.*`` and for ``*``.
    """
    parts = event_type.split(".")
    prefixes = [".".join(parts[:depth]) + ".*" for depth in range(len(parts) - 1, 0, -1)]
    return [event_type, *prefixes, "*"]


def _record_of(event: EventEnvelope) -> EventRecord:
    return EventRecord(
        event_id=event.event_id,
        event_type=event.event_type,
        ts=event.ts,
        actor_id=event.actor_id,
        correlation_id=event.correlation_id,
        payload=event.payload,
    )


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _handlers_for(self, event_type: str) -> list[EventHandler]:
        return [handler for topic in topics_for(event_type) for handler in self._subscribers.get(topic, [])]

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Persist ``event`` and fan it out to subscribers.

        With an explicit ``session`` the caller owns the commit.
        """
        if session is not None:
            session.add(_record_of(event))
        else:
            with Session(engine) as own_session:
                own_session.add(_record_of(event))
                own_session.commit()

        handlers = self._handlers_for(event.event_type)
        logger.debug("event %s published to %d handler(s)", event.event_type, len(handlers))
        for handler in handlers:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id or get_actor_id(),
            correlation_id=get_correlation_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
