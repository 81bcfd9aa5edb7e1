from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

from sqlmodel import Session, func, select

from plantsafe.domain.models import (
    Annotation,
    AnnotationStatusCounts,
    AnnotationType,
    AnnotationTypeCounts,
    DashboardRollupRead,
    Diagram,
    Inspection,
    InspectionOutcomeCounts,
    IsolationPlan,
    IsolationPoint,
    IsolationSummaryRead,
    Location,
    LocationBreakdownRead,
    RecentInspectionRead,
    RollupOverview,
    ScheduledInspectionRead,
    Terminal,
    TerminalBreakdownRead,
    TerminalRead,
    TerminalRollupRead,
    ThicknessMeasurement,
    TimelineBucketRead,
)
from plantsafe.domain.state_machine import IsolationPlanStatus, IsolationPointStatus
from plantsafe.infra.db import get_engine

DASHBOARD_UPCOMING_DAYS = 30
TERMINAL_UPCOMING_DAYS = 90
RECENT_DAYS = 7
DASHBOARD_RECENT_LIMIT = 5
TERMINAL_RECENT_LIMIT = 10
SCHEDULE_LIST_LIMIT = 20
TIMELINE_MONTHS = 12


class DashboardError(Exception):
    pass


class NotFoundError(DashboardError):
    pass


@dataclass(frozen=True)
class _ScopedAnnotation:
    annotation: Annotation
    diagram_name: str
    location_id: str | None
    terminal_id: str | None
    terminal_code: str | None


def _today() -> date:
    return datetime.now(UTC).date()


def _status_counts(rows: list[_ScopedAnnotation]) -> AnnotationStatusCounts:
    counter = Counter(str(row.annotation.status) for row in rows)
    return AnnotationStatusCounts(**{name: counter[name] for name in AnnotationStatusCounts.model_fields})


def _month_keys(start: date, months: int) -> list[str]:
    keys: list[str] = []
    year, month = start.year, start.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


class DashboardService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _scoped_annotations(
        self,
        session: Session,
        *,
        terminal_id: str | None = None,
        annotation_type: AnnotationType | None = None,
    ) -> list[_ScopedAnnotation]:
        statement = (
            select(Annotation, Diagram.name, Location.id, Terminal.id, Terminal.code)
            .join(Diagram, Annotation.diagram_id == Diagram.id)
            .outerjoin(Location, Diagram.location_id == Location.id)
            .outerjoin(Terminal, Location.terminal_id == Terminal.id)
        )
        if terminal_id is not None:
            statement = statement.where(Terminal.id == terminal_id)
        if annotation_type is not None:
            statement = statement.where(Annotation.annotation_type == annotation_type)
        return [
            _ScopedAnnotation(
                annotation=annotation,
                diagram_name=diagram_name,
                location_id=location_id,
                terminal_id=row_terminal_id,
                terminal_code=terminal_code,
            )
            for annotation, diagram_name, location_id, row_terminal_id, terminal_code in session.exec(statement).all()
        ]

    def _inspections(self, session: Session, annotation_ids: list[str]) -> list[Inspection]:
        if not annotation_ids:
            return []
        return list(session.exec(select(Inspection).where(Inspection.annotation_id.in_(annotation_ids))).all())

    def _critical_measurement_count(self, session: Session, annotation_ids: list[str]) -> int:
        if not annotation_ids:
            return 0
        total = session.exec(
            select(func.count())
            .select_from(ThicknessMeasurement)
            .join(Inspection, ThicknessMeasurement.inspection_id == Inspection.id)
            .where(Inspection.annotation_id.in_(annotation_ids))
            .where(ThicknessMeasurement.t_measured.is_not(None))
            .where(ThicknessMeasurement.t_alert.is_not(None))
            .where(ThicknessMeasurement.t_measured < ThicknessMeasurement.t_alert)
        ).one()
        return int(total or 0)

    def _outcome_counts(self, inspections: list[Inspection]) -> InspectionOutcomeCounts:
        counter = Counter(str(row.overall_status) for row in inspections)
        return InspectionOutcomeCounts(**{name: counter[name] for name in InspectionOutcomeCounts.model_fields})

    def _schedule(
        self,
        rows: list[_ScopedAnnotation],
        today: date,
        window_days: int,
    ) -> tuple[list[ScheduledInspectionRead], list[ScheduledInspectionRead], int, int]:
        horizon = today + timedelta(days=window_days)
        upcoming: list[ScheduledInspectionRead] = []
        overdue: list[ScheduledInspectionRead] = []
        for row in rows:
            due = row.annotation.next_inspection
            if due is None:
                continue
            base = {
                "annotation_id": row.annotation.id,
                "kks_number": row.annotation.kks_number,
                "annotation_type": row.annotation.annotation_type,
                "status": row.annotation.status,
                "next_inspection": due,
                "diagram_id": row.annotation.diagram_id,
                "diagram_name": row.diagram_name,
                "terminal_code": row.terminal_code,
            }
            if due < today:
                overdue.append(ScheduledInspectionRead(**base, days_overdue=(today - due).days))
            elif due <= horizon:
                upcoming.append(ScheduledInspectionRead(**base, days_until=(due - today).days))
        upcoming.sort(key=lambda item: item.next_inspection)
        overdue.sort(key=lambda item: item.next_inspection)
        return upcoming[:SCHEDULE_LIST_LIMIT], overdue[:SCHEDULE_LIST_LIMIT], len(upcoming), len(overdue)

    def _recent(
        self,
        rows: list[_ScopedAnnotation],
        inspections: list[Inspection],
        today: date,
        limit: int,
    ) -> list[RecentInspectionRead]:
        by_annotation = {row.annotation.id: row for row in rows}
        cutoff = today - timedelta(days=RECENT_DAYS)
        recent = [row for row in inspections if row.created_at.date() >= cutoff]
        recent.sort(key=lambda row: row.created_at, reverse=True)
        result: list[RecentInspectionRead] = []
        for inspection in recent[:limit]:
            scoped = by_annotation[inspection.annotation_id]
            result.append(
                RecentInspectionRead(
                    id=inspection.id,
                    annotation_id=inspection.annotation_id,
                    kks_number=scoped.annotation.kks_number,
                    inspection_date=inspection.inspection_date,
                    overall_status=inspection.overall_status,
                    inspector_name=inspection.inspector_name,
                    terminal_code=scoped.terminal_code,
                    created_at=inspection.created_at,
                )
            )
        return result

    def _timeline(self, rows: list[_ScopedAnnotation], today: date) -> list[TimelineBucketRead]:
        keys = _month_keys(today, TIMELINE_MONTHS)
        counter = Counter(
            row.annotation.next_inspection.strftime("%Y-%m")
            for row in rows
            if row.annotation.next_inspection is not None and row.annotation.next_inspection >= today
        )
        return [TimelineBucketRead(month=key, count=counter[key]) for key in keys]

    def dashboard_rollup(
        self,
        annotation_type: AnnotationType | None = None,
        today: date | None = None,
    ) -> DashboardRollupRead:
        current_day = today or _today()
        with self._session() as session:
            rows = self._scoped_annotations(session, annotation_type=annotation_type)
            annotation_ids = [row.annotation.id for row in rows]
            inspections = self._inspections(session, annotation_ids)
            upcoming, overdue, upcoming_total, overdue_total = self._schedule(
                rows, current_day, DASHBOARD_UPCOMING_DAYS
            )
            terminals = session.exec(select(Terminal).order_by(Terminal.code)).all()
            by_terminal: dict[str, list[_ScopedAnnotation]] = {terminal.id: [] for terminal in terminals}
            for row in rows:
                if row.terminal_id is not None:
                    by_terminal[row.terminal_id].append(row)

            overview = RollupOverview(
                terminals=len(terminals),
                locations=int(session.exec(select(func.count()).select_from(Location)).one()),
                diagrams=int(session.exec(select(func.count()).select_from(Diagram)).one()),
                annotations=len(rows),
                inspections=len(inspections),
                upcoming_inspections=upcoming_total,
                overdue_inspections=overdue_total,
                critical_measurements=self._critical_measurement_count(session, annotation_ids),
            )
            return DashboardRollupRead(
                overview=overview,
                annotation_status=_status_counts(rows),
                inspection_status=self._outcome_counts(inspections),
                upcoming=upcoming,
                overdue=overdue,
                recent_inspections=self._recent(rows, inspections, current_day, DASHBOARD_RECENT_LIMIT),
                terminals=[
                    TerminalBreakdownRead(
                        terminal_id=terminal.id,
                        name=terminal.name,
                        code=terminal.code,
                        annotations=len(by_terminal[terminal.id]),
                        status_counts=_status_counts(by_terminal[terminal.id]),
                    )
                    for terminal in terminals
                ],
                timeline=self._timeline(rows, current_day),
            )

    def terminal_rollup(
        self,
        terminal_id: str,
        annotation_type: AnnotationType | None = None,
        today: date | None = None,
    ) -> TerminalRollupRead:
        current_day = today or _today()
        with self._session() as session:
            terminal = session.get(Terminal, terminal_id)
            if terminal is None:
                raise NotFoundError("terminal not found")
            rows = self._scoped_annotations(session, terminal_id=terminal_id, annotation_type=annotation_type)
            annotation_ids = [row.annotation.id for row in rows]
            inspections = self._inspections(session, annotation_ids)
            upcoming, overdue, upcoming_total, overdue_total = self._schedule(
                rows, current_day, TERMINAL_UPCOMING_DAYS
            )

            locations = session.exec(
                select(Location).where(Location.terminal_id == terminal_id).order_by(Location.name)
            ).all()
            location_ids = [location.id for location in locations]
            diagram_counts: Counter[str] = Counter()
            if location_ids:
                for location_id, total in session.exec(
                    select(Diagram.location_id, func.count())
                    .where(Diagram.location_id.in_(location_ids))
                    .group_by(Diagram.location_id)
                ).all():
                    diagram_counts[location_id] = int(total)
            by_location: dict[str, list[_ScopedAnnotation]] = {location_id: [] for location_id in location_ids}
            for row in rows:
                if row.location_id is not None:
                    by_location[row.location_id].append(row)

            annotation_types = None
            if annotation_type is None:
                type_counter = Counter(str(row.annotation.annotation_type) for row in rows)
                annotation_types = AnnotationTypeCounts(
                    **{name: type_counter[name] for name in AnnotationTypeCounts.model_fields}
                )

            overview = RollupOverview(
                terminals=1,
                locations=len(locations),
                diagrams=sum(diagram_counts.values()),
                annotations=len(rows),
                inspections=len(inspections),
                upcoming_inspections=upcoming_total,
                overdue_inspections=overdue_total,
                critical_measurements=self._critical_measurement_count(session, annotation_ids),
            )
            return TerminalRollupRead(
                terminal=TerminalRead.model_validate(terminal),
                overview=overview,
                annotation_status=_status_counts(rows),
                inspection_status=self._outcome_counts(inspections),
                annotation_types=annotation_types,
                upcoming=upcoming,
                overdue=overdue,
                recent_inspections=self._recent(rows, inspections, current_day, TERMINAL_RECENT_LIMIT),
                locations=[
                    LocationBreakdownRead(
                        location_id=location.id,
                        name=location.name,
                        diagrams=diagram_counts[location.id],
                        annotations=len(by_location[location.id]),
                        status_counts=_status_counts(by_location[location.id]),
                    )
                    for location in locations
                ],
                timeline=self._timeline(rows, current_day),
            )

    def isolation_summary(self) -> IsolationSummaryRead:
        with self._session() as session:
            plan_rows = session.exec(
                select(IsolationPlan.status, func.count()).group_by(IsolationPlan.status)
            ).all()
            point_rows = session.exec(
                select(IsolationPoint.status, func.count()).group_by(IsolationPoint.status)
            ).all()
            unrestored = session.exec(
                select(func.count())
                .select_from(IsolationPoint)
                .join(IsolationPlan, IsolationPoint.plan_id == IsolationPlan.id)
                .where(IsolationPlan.status == IsolationPlanStatus.ACTIVE)
                .where(IsolationPoint.status != IsolationPointStatus.RESTORED)
            ).one()

        plans_by_status = {str(item): 0 for item in IsolationPlanStatus}
        plans_by_status.update({str(plan_status): int(total) for plan_status, total in plan_rows})
        points_by_status = {str(item): 0 for item in IsolationPointStatus}
        points_by_status.update({str(point_status): int(total) for point_status, total in point_rows})
        return IsolationSummaryRead(
            plans_by_status=plans_by_status,
            points_by_status=points_by_status,
            active_plans=plans_by_status[IsolationPlanStatus.ACTIVE],
            unrestored_points_in_active_plans=int(unrestored or 0),
        )
