from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import ClassVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, func, select

from plantsafe.domain.models import (
    ActiveIsolationPlanRead,
    Diagram,
    IsolationPlan,
    IsolationPlanCreate,
    IsolationPlanDetailRead,
    IsolationPlanRead,
    IsolationPlanSummaryRead,
    IsolationPlanUpdate,
    IsolationPoint,
    IsolationPointCreate,
    IsolationPointRead,
    IsolationPointUpdate,
    Location,
    Terminal,
    User,
    now_utc,
)
from plantsafe.domain.state_machine import (
    PLAN_APPROVAL_ONLY_TARGETS,
    IsolationPlanStatus,
    IsolationPointStatus,
    TransitionMode,
    can_plan_transition,
    can_point_transition,
    get_transition_mode,
)
from plantsafe.infra.db import get_engine
from plantsafe.infra.events import event_bus
from plantsafe.services.cascade import purge_plans

ISOLATING_STATUSES = {IsolationPointStatus.ISOLATED, IsolationPointStatus.VERIFIED}
ACTIVE_PLAN_STATUSES = {IsolationPlanStatus.APPROVED, IsolationPlanStatus.ACTIVE}

logger = logging.getLogger(__name__)


class IsolationError(Exception):
    pass


class NotFoundError(IsolationError):
    pass


class ConflictError(IsolationError):
    pass


class TransitionError(IsolationError):
    pass


class ValidationError(IsolationError):
    pass


class StorageError(IsolationError):
    pass


class _IsolationStore:
    def __init__(self, mode: TransitionMode | None = None) -> None:
        self.mode = mode or get_transition_mode()

    @property
    def strict(self) -> bool:
        return self.mode == TransitionMode.STRICT

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _commit(self, session: Session, conflict_message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(conflict_message) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("isolation write failed")
            raise StorageError("store failure") from exc

    def _get_plan(self, session: Session, plan_id: str) -> IsolationPlan:
        plan = session.get(IsolationPlan, plan_id)
        if plan is None:
            raise NotFoundError("isolation plan not found")
        return plan

    def _get_point(self, session: Session, point_id: str) -> IsolationPoint:
        point = session.get(IsolationPoint, point_id)
        if point is None:
            raise NotFoundError("isolation point not found")
        return point

    def _user_names(self, session: Session, user_ids: Sequence[str | None]) -> dict[str, str]:
        wanted = {item for item in user_ids if item}
        if not wanted:
            return {}
        rows = session.exec(select(User.id, User.name).where(User.id.in_(wanted))).all()
        return {user_id: name for user_id, name in rows}

    def _plan_read(self, session: Session, plan: IsolationPlan) -> IsolationPlanRead:
        names = self._user_names(session, [plan.created_by, plan.approved_by])
        return IsolationPlanRead.model_validate(
            {
                **plan.model_dump(),
                "created_by_name": names.get(plan.created_by),
                "approved_by_name": names.get(plan.approved_by) if plan.approved_by else None,
            }
        )

    def _point_reads(self, session: Session, points: Sequence[IsolationPoint]) -> list[IsolationPointRead]:
        actor_ids: list[str | None] = []
        for point in points:
            actor_ids.extend([point.isolated_by, point.verified_by, point.restored_by])
        names = self._user_names(session, actor_ids)
        reads: list[IsolationPointRead] = []
        for point in points:
            data = point.model_dump(exclude={"geometry"})
            data.update(
                x=point.geometry.get("x", 0.0),
                y=point.geometry.get("y", 0.0),
                isolated_by_name=names.get(point.isolated_by or ""),
                verified_by_name=names.get(point.verified_by or ""),
                restored_by_name=names.get(point.restored_by or ""),
            )
            reads.append(IsolationPointRead.model_validate(data))
        return reads


class IsolationPlanService(_IsolationStore):
    def _point_counts(self, session: Session, plan_ids: Sequence[str]) -> dict[str, Counter[str]]:
        counts: dict[str, Counter[str]] = {plan_id: Counter() for plan_id in plan_ids}
        if not plan_ids:
            return counts
        rows = session.exec(
            select(IsolationPoint.plan_id, IsolationPoint.status, func.count())
            .where(IsolationPoint.plan_id.in_(plan_ids))
            .group_by(IsolationPoint.plan_id, IsolationPoint.status)
        ).all()
        for plan_id, point_status, total in rows:
            counts[plan_id][point_status] += int(total)
        return counts

    def _diagram_context(
        self,
        session: Session,
        diagram_ids: Sequence[str],
    ) -> dict[str, tuple[str, str | None, str | None]]:
        if not diagram_ids:
            return {}
        rows = session.exec(
            select(Diagram.id, Diagram.name, Location.name, Terminal.code)
            .outerjoin(Location, Diagram.location_id == Location.id)
            .outerjoin(Terminal, Location.terminal_id == Terminal.id)
            .where(Diagram.id.in_(set(diagram_ids)))
        ).all()
        return {diagram_id: (name, location_name, code) for diagram_id, name, location_name, code in rows}

    def _summaries(self, session: Session, plans: Sequence[IsolationPlan]) -> list[IsolationPlanSummaryRead]:
        counts = self._point_counts(session, [plan.id for plan in plans])
        context = self._diagram_context(session, [plan.diagram_id for plan in plans])
        summaries: list[IsolationPlanSummaryRead] = []
        for plan in plans:
            by_status = counts[plan.id]
            diagram_name, location_name, terminal_code = context.get(plan.diagram_id, (None, None, None))
            summaries.append(
                IsolationPlanSummaryRead.model_validate(
                    {
                        **self._plan_read(session, plan).model_dump(),
                        "diagram_name": diagram_name,
                        "location_name": location_name,
                        "terminal_code": terminal_code,
                        "point_count": sum(by_status.values()),
                        "isolated_count": by_status[IsolationPointStatus.ISOLATED],
                        "verified_count": by_status[IsolationPointStatus.VERIFIED],
                    }
                )
            )
        return summaries

    def _check_status_change(self, plan: IsolationPlan, target: IsolationPlanStatus) -> None:
        if not self.strict or target == plan.status:
            return
        if target in PLAN_APPROVAL_ONLY_TARGETS:
            raise TransitionError("plans are approved through the approve operation")
        if not can_plan_transition(plan.status, target):
            raise TransitionError(f"illegal transition: {plan.status} -> {target}")

    def create_plan(self, diagram_id: str, payload: IsolationPlanCreate, creator_id: str) -> IsolationPlanRead:
        if not payload.name.strip():
            raise ValidationError("name is required")
        with self._session() as session:
            if session.get(Diagram, diagram_id) is None:
                raise NotFoundError("diagram not found")
            plan = IsolationPlan(
                diagram_id=diagram_id,
                created_by=creator_id,
                status=IsolationPlanStatus.DRAFT,
                **payload.model_dump(),
            )
            plan.name = plan.name.strip()
            session.add(plan)
            self._commit(session, "isolation plan could not be created")
            session.refresh(plan)
            result = self._plan_read(session, plan)

        event_bus.publish_dict(
            "isolation.plan.created",
            {"plan_id": plan.id, "diagram_id": diagram_id, "name": plan.name},
            actor_id=creator_id,
        )
        return result

    def get_plan(self, plan_id: str) -> IsolationPlanDetailRead:
        with self._session() as session:
            plan = self._get_plan(session, plan_id)
            points = session.exec(
                select(IsolationPoint)
                .where(IsolationPoint.plan_id == plan_id)
                .order_by(IsolationPoint.sequence_number)
            ).all()
            diagram_name, location_name, terminal_code = self._diagram_context(session, [plan.diagram_id]).get(
                plan.diagram_id, ("", None, None)
            )
            return IsolationPlanDetailRead(
                plan=self._plan_read(session, plan),
                diagram_name=diagram_name,
                location_name=location_name,
                terminal_code=terminal_code,
                points=self._point_reads(session, points),
            )

    def list_plans(self) -> list[IsolationPlanSummaryRead]:
        with self._session() as session:
            plans = session.exec(select(IsolationPlan).order_by(IsolationPlan.created_at.desc())).all()
            return self._summaries(session, plans)

    def list_diagram_plans(self, diagram_id: str) -> list[IsolationPlanSummaryRead]:
        with self._session() as session:
            if session.get(Diagram, diagram_id) is None:
                raise NotFoundError("diagram not found")
            plans = session.exec(
                select(IsolationPlan)
                .where(IsolationPlan.diagram_id == diagram_id)
                .order_by(IsolationPlan.created_at.desc())
            ).all()
            return self._summaries(session, plans)

    def list_active_plans(self) -> list[ActiveIsolationPlanRead]:
        with self._session() as session:
            plans = session.exec(
                select(IsolationPlan)
                .where(IsolationPlan.status.in_(ACTIVE_PLAN_STATUSES))
                .order_by(IsolationPlan.planned_start.is_(None), IsolationPlan.planned_start)
            ).all()
            counts = self._point_counts(session, [plan.id for plan in plans])
            context = self._diagram_context(session, [plan.diagram_id for plan in plans])
            result: list[ActiveIsolationPlanRead] = []
            for plan in plans:
                by_status = counts[plan.id]
                diagram_name, location_name, terminal_code = context.get(plan.diagram_id, (None, None, None))
                result.append(
                    ActiveIsolationPlanRead.model_validate(
                        {
                            **self._plan_read(session, plan).model_dump(),
                            "diagram_name": diagram_name,
                            "location_name": location_name,
                            "terminal_code": terminal_code,
                            "point_count": sum(by_status.values()),
                            "active_count": sum(by_status[item] for item in ISOLATING_STATUSES),
                        }
                    )
                )
            return result

    def update_plan(self, plan_id: str, payload: IsolationPlanUpdate) -> IsolationPlanRead:
        with self._session() as session:
            plan = self._get_plan(session, plan_id)
            changes = payload.changes()
            if "name" in changes:
                if not changes["name"].strip():
                    raise ValidationError("name is required")
                changes["name"] = changes["name"].strip()
            previous_status = plan.status
            target = changes.get("status")
            if target is not None:
                self._check_status_change(plan, target)
                if target == IsolationPlanStatus.ACTIVE and plan.actual_start is None and "actual_start" not in changes:
                    changes["actual_start"] = now_utc()
                if target == IsolationPlanStatus.COMPLETED and plan.actual_end is None and "actual_end" not in changes:
                    changes["actual_end"] = now_utc()
            for field_name, value in changes.items():
                setattr(plan, field_name, value)
            plan.updated_at = now_utc()
            session.add(plan)
            self._commit(session, "isolation plan could not be updated")
            session.refresh(plan)
            result = self._plan_read(session, plan)

        if plan.status != previous_status:
            logger.info("isolation plan %s moved %s -> %s", plan.id, previous_status, plan.status)
            event_bus.publish_dict(
                "isolation.plan.status_changed",
                {"plan_id": plan.id, "from": previous_status, "to": plan.status},
            )
        return result

    def approve_plan(self, plan_id: str, approver_id: str) -> IsolationPlanRead:
        with self._session() as session:
            plan = self._get_plan(session, plan_id)
            if self.strict and plan.status != IsolationPlanStatus.PENDING_APPROVAL:
                raise TransitionError(f"illegal transition: {plan.status} -> {IsolationPlanStatus.APPROVED}")
            now = now_utc()
            plan.status = IsolationPlanStatus.APPROVED
            plan.approved_by = approver_id
            plan.approved_at = now
            plan.updated_at = now
            session.add(plan)
            self._commit(session, "isolation plan could not be approved")
            session.refresh(plan)
            result = self._plan_read(session, plan)

        logger.info("isolation plan %s approved by %s", plan_id, approver_id)
        event_bus.publish_dict("isolation.plan.approved", {"plan_id": plan_id}, actor_id=approver_id)
        return result

    def delete_plan(self, plan_id: str) -> None:
        with self._session() as session:
            plan = self._get_plan(session, plan_id)
            if self.strict and plan.status == IsolationPlanStatus.ACTIVE:
                unrestored = session.exec(
                    select(func.count())
                    .select_from(IsolationPoint)
                    .where(IsolationPoint.plan_id == plan_id)
                    .where(IsolationPoint.status != IsolationPointStatus.RESTORED)
                ).one()
                if unrestored:
                    raise TransitionError(f"active plan has {unrestored} points not yet restored")
            purge_plans(session, [plan_id])
            self._commit(session, "isolation plan could not be deleted")

        event_bus.publish_dict("isolation.plan.deleted", {"plan_id": plan_id})


class IsolationPointService(_IsolationStore):
    _stamp_fields: ClassVar[dict[IsolationPointStatus, tuple[str, str]]] = {
        IsolationPointStatus.ISOLATED: ("isolated_by", "isolated_at"),
        IsolationPointStatus.VERIFIED: ("verified_by", "verified_at"),
        IsolationPointStatus.RESTORED: ("restored_by", "restored_at"),
    }

    def _next_sequence(self, session: Session, plan_id: str) -> int:
        current = session.exec(
            select(func.max(IsolationPoint.sequence_number)).where(IsolationPoint.plan_id == plan_id)
        ).one()
        return int(current or 0) + 1

    def _insert_point(self, plan_id: str, payload: IsolationPointCreate) -> tuple[IsolationPoint, IsolationPointRead]:
        with self._session() as session:
            self._get_plan(session, plan_id)
            data = payload.model_dump()
            if data["sequence_number"] is None:
                data["sequence_number"] = self._next_sequence(session, plan_id)
            data["tag_number"] = data["tag_number"].strip()
            point = IsolationPoint(plan_id=plan_id, status=IsolationPointStatus.PENDING, **data)
            session.add(point)
            self._commit(session, f"sequence number {data['sequence_number']} already used in plan")
            session.refresh(point)
            return point, self._point_reads(session, [point])[0]

    def add_point(self, plan_id: str, payload: IsolationPointCreate) -> IsolationPointRead:
        if not payload.tag_number.strip():
            raise ValidationError("tag_number is required")
        # An auto-assigned number can lose a race with a concurrent insert; take the next one once.
        attempts = 2 if payload.sequence_number is None else 1
        for attempt in range(1, attempts + 1):
            try:
                point, result = self._insert_point(plan_id, payload)
                break
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.info("sequence number taken concurrently in plan %s, retrying", plan_id)

        event_bus.publish_dict(
            "isolation.point.added",
            {"plan_id": plan_id, "point_id": point.id, "sequence_number": point.sequence_number},
        )
        return result

    def update_point(self, point_id: str, payload: IsolationPointUpdate) -> IsolationPointRead:
        with self._session() as session:
            point = self._get_point(session, point_id)
            changes = payload.changes()
            if "tag_number" in changes:
                if not changes["tag_number"].strip():
                    raise ValidationError("tag_number is required")
                changes["tag_number"] = changes["tag_number"].strip()
            for field_name, value in changes.items():
                setattr(point, field_name, value)
            point.updated_at = now_utc()
            session.add(point)
            self._commit(session, f"sequence number {point.sequence_number} already used in plan")
            session.refresh(point)
            return self._point_reads(session, [point])[0]

    def _transition(self, point_id: str, target: IsolationPointStatus, actor_id: str) -> IsolationPointRead:
        with self._session() as session:
            point = self._get_point(session, point_id)
            previous = point.status
            if self.strict and not can_point_transition(previous, target):
                raise TransitionError(f"illegal transition: {previous} -> {target}")
            now = now_utc()
            by_field, at_field = self._stamp_fields[target]
            point.status = target
            setattr(point, by_field, actor_id)
            setattr(point, at_field, now)
            point.updated_at = now
            session.add(point)
            self._commit(session, "isolation point could not be updated")
            session.refresh(point)
            result = self._point_reads(session, [point])[0]

        logger.info("isolation point %s %s -> %s by %s", point_id, previous, target, actor_id)
        event_bus.publish_dict(
            f"isolation.point.{target}",
            {"point_id": point_id, "plan_id": point.plan_id, "from": previous},
            actor_id=actor_id,
        )
        return result

    def isolate(self, point_id: str, actor_id: str) -> IsolationPointRead:
        return self._transition(point_id, IsolationPointStatus.ISOLATED, actor_id)

    def verify(self, point_id: str, actor_id: str) -> IsolationPointRead:
        return self._transition(point_id, IsolationPointStatus.VERIFIED, actor_id)

    def restore(self, point_id: str, actor_id: str) -> IsolationPointRead:
        return self._transition(point_id, IsolationPointStatus.RESTORED, actor_id)

    def delete_point(self, point_id: str) -> None:
        with self._session() as session:
            point = self._get_point(session, point_id)
            session.delete(point)
            self._commit(session, "isolation point could not be deleted")

        event_bus.publish_dict("isolation.point.deleted", {"point_id": point_id, "plan_id": point.plan_id})
