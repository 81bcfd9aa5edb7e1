from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from plantsafe.domain.state_machine import IsolationPlanStatus, IsolationPointStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Read values without an offset as UTC."""
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class UserRole(StrEnum):
    ADMIN = "admin"
    USER = "user"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    name: str
    role: UserRole = Field(default=UserRole.USER, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Terminal(SQLModel, table=True):
    __tablename__ = "terminals"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    code: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Location(SQLModel, table=True):
    __tablename__ = "locations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    terminal_id: str = Field(foreign_key="terminals.id", ondelete="CASCADE", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Diagram(SQLModel, table=True):
    __tablename__ = "diagrams"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    location_id: str | None = Field(
        default=None,
        foreign_key="locations.id",
        ondelete="SET NULL",
        index=True,
    )
    name: str = Field(index=True)
    pdf_filename: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class AnnotationType(StrEnum):
    PIPE = "pipe"
    TANK = "tank"
    COMPONENT = "component"


class AnnotationStatus(StrEnum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    NOT_INSPECTED = "not_inspected"


class Annotation(SQLModel, table=True):
    __tablename__ = "annotations"
    __table_args__ = (
        Index("ix_annotations_diagram_type", "diagram_id", "annotation_type"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    diagram_id: str = Field(foreign_key="diagrams.id", ondelete="CASCADE", index=True)
    annotation_type: AnnotationType = Field(default=AnnotationType.PIPE, index=True)
    kks_number: str = Field(index=True)
    points: list[dict[str, float]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    color: str = Field(default="#3b82f6")
    stroke_width: int = Field(default=4)
    description: str | None = None
    material: str | None = None
    diameter: str | None = None
    last_inspection: date | None = Field(default=None, index=True)
    next_inspection: date | None = Field(default=None, index=True)
    status: AnnotationStatus = Field(default=AnnotationStatus.NOT_INSPECTED, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class InspectionOutcome(StrEnum):
    APPROVED = "approved"
    CONDITIONAL = "conditional"
    REJECTED = "rejected"
    PENDING = "pending"


class ChecklistStatus(StrEnum):
    OK = "ok"
    GRADE_1 = "1"
    GRADE_2 = "2"
    GRADE_3 = "3"
    NA = "na"


class Inspection(SQLModel, table=True):
    __tablename__ = "inspections"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    annotation_id: str = Field(foreign_key="annotations.id", ondelete="CASCADE", index=True)
    report_number: str | None = None
    inspection_date: date = Field(index=True)
    next_inspection_date: date | None = None
    inspector_name: str
    inspector_cert: str | None = None
    approver_name: str | None = None
    approver_cert: str | None = None
    overall_status: InspectionOutcome = Field(default=InspectionOutcome.PENDING, index=True)
    conclusion: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class InspectionChecklistItem(SQLModel, table=True):
    __tablename__ = "inspection_checklist"
    __table_args__ = (
        UniqueConstraint("inspection_id", "item_number", name="uq_inspection_checklist_item_number"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    inspection_id: str = Field(foreign_key="inspections.id", ondelete="CASCADE", index=True)
    item_number: int
    item_name: str
    status: ChecklistStatus = Field(default=ChecklistStatus.NA)
    comment: str | None = None
    reference: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class ThicknessMeasurement(SQLModel, table=True):
    __tablename__ = "inspection_tml"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    inspection_id: str = Field(foreign_key="inspections.id", ondelete="CASCADE", index=True)
    tml_number: int
    object_type: str | None = None
    activity: str | None = None
    dimension: str | None = None
    t_nom: float | None = None
    t_ret: float | None = None
    t_alert: float | None = None
    t_measured: float | None = None
    position: str | None = None
    comment: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_critical(self) -> bool:
        return self.t_measured is not None and self.t_alert is not None and self.t_measured < self.t_alert


class InspectionImage(SQLModel, table=True):
    __tablename__ = "inspection_images"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    inspection_id: str = Field(foreign_key="inspections.id", ondelete="CASCADE", index=True)
    filename: str
    original_name: str
    comment: str | None = None
    image_number: int
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class InspectionDocument(SQLModel, table=True):
    __tablename__ = "inspection_documents"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    inspection_id: str = Field(foreign_key="inspections.id", ondelete="CASCADE", index=True)
    filename: str
    original_name: str
    document_type: str = Field(default="report")
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class IsolationPointType(StrEnum):
    WORK_POINT = "work_point"
    VALVE = "valve"
    BLINDFLANGE = "blindflange"
    ELECTRICAL = "electrical"
    DRAIN = "drain"
    VENT = "vent"
    LOCK = "lock"
    INSTRUMENT = "instrument"
    OTHER = "other"


class IsolationPlan(SQLModel, table=True):
    __tablename__ = "isolation_plans"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    diagram_id: str = Field(foreign_key="diagrams.id", ondelete="CASCADE", index=True)
    name: str = Field(index=True)
    description: str | None = None
    equipment_tag: str | None = None
    work_order: str | None = None
    status: IsolationPlanStatus = Field(default=IsolationPlanStatus.DRAFT, index=True)
    planned_start: datetime | None = Field(default=None, index=True)
    planned_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    point_size: int = Field(default=22)
    created_by: str = Field(foreign_key="users.id", index=True)
    approved_by: str | None = Field(default=None, foreign_key="users.id")
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class IsolationPoint(SQLModel, table=True):
    __tablename__ = "isolation_points"
    __table_args__ = (
        UniqueConstraint("plan_id", "sequence_number", name="uq_isolation_points_plan_sequence"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    plan_id: str = Field(foreign_key="isolation_plans.id", ondelete="CASCADE", index=True)
    point_type: IsolationPointType
    tag_number: str = Field(index=True)
    description: str | None = None
    sequence_number: int
    normal_position: str | None = None
    isolated_position: str | None = None
    geometry: dict[str, float] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    color: str = Field(default="#ef4444")
    status: IsolationPointStatus = Field(default=IsolationPointStatus.PENDING, index=True)
    isolated_by: str | None = Field(default=None, foreign_key="users.id")
    isolated_at: datetime | None = None
    verified_by: str | None = Field(default=None, foreign_key="users.id")
    verified_at: datetime | None = None
    restored_by: str | None = Field(default=None, foreign_key="users.id")
    restored_at: datetime | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UpdateModel(BaseModel):
    """Partial update payload.

    Fields the caller did not send are left untouched. An explicit ``null``
    clears a field only when it is listed in ``nullable_fields``; for any
    other field it is ignored. Unknown fields are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    def changes(self, exclude: set[str] | None = None) -> dict[str, Any]:
        sent = self.model_dump(include=self.model_fields_set, exclude=exclude)
        return {
            name: value
            for name, value in sent.items()
            if value is not None or name in self.nullable_fields
        }


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str
    name: str


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]
    expires_in: int


class UserCreate(BaseModel):
    username: str
    password: str
    name: str
    role: UserRole = UserRole.USER


class UserRead(ORMReadModel):
    id: str
    username: str
    name: str
    role: UserRole
    is_active: bool
    created_at: datetime


class TerminalCreate(BaseModel):
    name: str
    code: str
    description: str | None = None


class TerminalUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description"})

    name: str | None = None
    code: str | None = None
    description: str | None = None


class TerminalRead(ORMReadModel):
    id: str
    name: str
    code: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class LocationCreate(BaseModel):
    name: str
    description: str | None = None


class LocationUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description"})

    name: str | None = None
    description: str | None = None


class LocationRead(ORMReadModel):
    id: str
    terminal_id: str
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class DiagramUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"location_id"})

    name: str | None = None
    location_id: str | None = None


class DiagramRead(ORMReadModel):
    id: str
    location_id: str | None = None
    name: str
    pdf_filename: str
    created_at: datetime
    updated_at: datetime


class CanvasPoint(BaseModel):
    x: float
    y: float


class AnnotationCreate(BaseModel):
    annotation_type: AnnotationType = AnnotationType.PIPE
    kks_number: str
    points: list[CanvasPoint] = PydanticField(default_factory=list)
    color: str = "#3b82f6"
    stroke_width: int = 4
    description: str | None = None
    material: str | None = None
    diameter: str | None = None
    status: AnnotationStatus = AnnotationStatus.NOT_INSPECTED


class AnnotationUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "material", "diameter"})

    annotation_type: AnnotationType | None = None
    kks_number: str | None = None
    points: list[CanvasPoint] | None = None
    color: str | None = None
    stroke_width: int | None = None
    description: str | None = None
    material: str | None = None
    diameter: str | None = None
    status: AnnotationStatus | None = None


class AnnotationRead(ORMReadModel):
    id: str
    diagram_id: str
    annotation_type: AnnotationType
    kks_number: str
    points: list[CanvasPoint]
    color: str
    stroke_width: int
    description: str | None = None
    material: str | None = None
    diameter: str | None = None
    last_inspection: date | None = None
    next_inspection: date | None = None
    status: AnnotationStatus
    suggested_status: AnnotationStatus
    created_at: datetime
    updated_at: datetime


class InspectionCreate(BaseModel):
    report_number: str | None = None
    inspection_date: date
    next_inspection_date: date | None = None
    inspector_name: str
    inspector_cert: str | None = None
    approver_name: str | None = None
    approver_cert: str | None = None
    overall_status: InspectionOutcome = InspectionOutcome.PENDING
    conclusion: str | None = None


class InspectionUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset(
        {"next_inspection_date", "conclusion", "inspector_cert", "approver_name", "approver_cert"}
    )

    report_number: str | None = None
    inspection_date: date | None = None
    next_inspection_date: date | None = None
    inspector_name: str | None = None
    inspector_cert: str | None = None
    approver_name: str | None = None
    approver_cert: str | None = None
    overall_status: InspectionOutcome | None = None
    conclusion: str | None = None


class InspectionRead(ORMReadModel):
    id: str
    annotation_id: str
    report_number: str | None = None
    inspection_date: date
    next_inspection_date: date | None = None
    inspector_name: str
    inspector_cert: str | None = None
    approver_name: str | None = None
    approver_cert: str | None = None
    overall_status: InspectionOutcome
    conclusion: str | None = None
    created_at: datetime
    updated_at: datetime


class ChecklistItemUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"comment", "reference"})

    status: ChecklistStatus | None = None
    comment: str | None = None
    reference: str | None = None


class ChecklistBulkItem(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"comment", "reference"})

    id: str
    status: ChecklistStatus | None = None
    comment: str | None = None
    reference: str | None = None


class ChecklistBulkUpdateRequest(BaseModel):
    items: list[ChecklistBulkItem]


class ChecklistItemRead(ORMReadModel):
    id: str
    inspection_id: str
    item_number: int
    item_name: str
    status: ChecklistStatus
    comment: str | None = None
    reference: str | None = None


class MeasurementCreate(BaseModel):
    tml_number: int
    object_type: str | None = None
    activity: str | None = None
    dimension: str | None = None
    t_nom: float | None = None
    t_ret: float | None = None
    t_alert: float | None = None
    t_measured: float | None = None
    position: str | None = None
    comment: str | None = None


class MeasurementUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset(
        {"object_type", "activity", "dimension", "t_nom", "t_ret", "t_alert", "t_measured", "position", "comment"}
    )

    tml_number: int | None = None
    object_type: str | None = None
    activity: str | None = None
    dimension: str | None = None
    t_nom: float | None = None
    t_ret: float | None = None
    t_alert: float | None = None
    t_measured: float | None = None
    position: str | None = None
    comment: str | None = None


class MeasurementRead(ORMReadModel):
    id: str
    inspection_id: str
    tml_number: int
    object_type: str | None = None
    activity: str | None = None
    dimension: str | None = None
    t_nom: float | None = None
    t_ret: float | None = None
    t_alert: float | None = None
    t_measured: float | None = None
    position: str | None = None
    comment: str | None = None
    is_critical: bool


class InspectionImageUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"comment"})

    comment: str | None = None


class InspectionImageRead(ORMReadModel):
    id: str
    inspection_id: str
    filename: str
    original_name: str
    comment: str | None = None
    image_number: int
    created_at: datetime


class InspectionDocumentUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description"})

    document_type: str | None = None
    description: str | None = None


class InspectionDocumentRead(ORMReadModel):
    id: str
    inspection_id: str
    filename: str
    original_name: str
    document_type: str
    description: str | None = None
    created_at: datetime


class InspectionDetailRead(BaseModel):
    inspection: InspectionRead
    kks_number: str
    material: str | None = None
    diameter: str | None = None
    checklist: list[ChecklistItemRead]
    measurements: list[MeasurementRead]
    images: list[InspectionImageRead]
    documents: list[InspectionDocumentRead]


class IsolationPlanCreate(BaseModel):
    name: str
    description: str | None = None
    equipment_tag: str | None = None
    work_order: str | None = None
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    point_size: int = 22

    times_as_utc = field_validator("planned_start", "planned_end")(as_utc)


class IsolationPlanUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset(
        {
            "description",
            "equipment_tag",
            "work_order",
            "planned_start",
            "planned_end",
            "actual_start",
            "actual_end",
        }
    )

    name: str | None = None
    description: str | None = None
    equipment_tag: str | None = None
    work_order: str | None = None
    status: IsolationPlanStatus | None = None
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    point_size: int | None = None

    times_as_utc = field_validator("planned_start", "planned_end", "actual_start", "actual_end")(as_utc)


class IsolationPlanRead(ORMReadModel):
    id: str
    diagram_id: str
    name: str
    description: str | None = None
    equipment_tag: str | None = None
    work_order: str | None = None
    status: IsolationPlanStatus
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    point_size: int
    created_by: str
    created_by_name: str | None = None
    approved_by: str | None = None
    approved_by_name: str | None = None
    approved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class IsolationPlanSummaryRead(IsolationPlanRead):
    diagram_name: str | None = None
    location_name: str | None = None
    terminal_code: str | None = None
    point_count: int = 0
    isolated_count: int = 0
    verified_count: int = 0


class ActiveIsolationPlanRead(IsolationPlanRead):
    diagram_name: str | None = None
    location_name: str | None = None
    terminal_code: str | None = None
    point_count: int = 0
    active_count: int = 0


class IsolationPointCreate(BaseModel):
    point_type: IsolationPointType
    tag_number: str
    description: str | None = None
    sequence_number: int | None = PydanticField(default=None, ge=1)
    normal_position: str | None = None
    isolated_position: str | None = None
    geometry: CanvasPoint
    color: str = "#ef4444"
    notes: str | None = None


class IsolationPointUpdate(UpdateModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset(
        {"description", "normal_position", "isolated_position", "notes"}
    )

    point_type: IsolationPointType | None = None
    tag_number: str | None = None
    description: str | None = None
    sequence_number: int | None = PydanticField(default=None, ge=1)
    normal_position: str | None = None
    isolated_position: str | None = None
    geometry: CanvasPoint | None = None
    color: str | None = None
    notes: str | None = None


class IsolationPointRead(ORMReadModel):
    id: str
    plan_id: str
    point_type: IsolationPointType
    tag_number: str
    description: str | None = None
    sequence_number: int
    normal_position: str | None = None
    isolated_position: str | None = None
    x: float
    y: float
    color: str
    status: IsolationPointStatus
    isolated_by: str | None = None
    isolated_by_name: str | None = None
    isolated_at: datetime | None = None
    verified_by: str | None = None
    verified_by_name: str | None = None
    verified_at: datetime | None = None
    restored_by: str | None = None
    restored_by_name: str | None = None
    restored_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class IsolationPlanDetailRead(BaseModel):
    plan: IsolationPlanRead
    diagram_name: str
    location_name: str | None = None
    terminal_code: str | None = None
    points: list[IsolationPointRead]


class AnnotationStatusCounts(BaseModel):
    ok: int = 0
    warning: int = 0
    critical: int = 0
    not_inspected: int = 0


class InspectionOutcomeCounts(BaseModel):
    approved: int = 0
    conditional: int = 0
    rejected: int = 0
    pending: int = 0


class AnnotationTypeCounts(BaseModel):
    pipe: int = 0
    tank: int = 0
    component: int = 0


class RollupOverview(BaseModel):
    terminals: int = 0
    locations: int = 0
    diagrams: int = 0
    annotations: int = 0
    inspections: int = 0
    upcoming_inspections: int = 0
    overdue_inspections: int = 0
    critical_measurements: int = 0


class ScheduledInspectionRead(BaseModel):
    annotation_id: str
    kks_number: str
    annotation_type: AnnotationType
    status: AnnotationStatus
    next_inspection: date
    diagram_id: str
    diagram_name: str
    terminal_code: str | None = None
    days_until: int | None = None
    days_overdue: int | None = None


class RecentInspectionRead(BaseModel):
    id: str
    annotation_id: str
    kks_number: str
    inspection_date: date
    overall_status: InspectionOutcome
    inspector_name: str
    terminal_code: str | None = None
    created_at: datetime


class TerminalBreakdownRead(BaseModel):
    terminal_id: str
    name: str
    code: str
    annotations: int = 0
    status_counts: AnnotationStatusCounts


class LocationBreakdownRead(BaseModel):
    location_id: str
    name: str
    diagrams: int = 0
    annotations: int = 0
    status_counts: AnnotationStatusCounts


class TimelineBucketRead(BaseModel):
    month: str
    count: int = 0


class DashboardRollupRead(BaseModel):
    overview: RollupOverview
    annotation_status: AnnotationStatusCounts
    inspection_status: InspectionOutcomeCounts
    upcoming: list[ScheduledInspectionRead]
    overdue: list[ScheduledInspectionRead]
    recent_inspections: list[RecentInspectionRead]
    terminals: list[TerminalBreakdownRead]
    timeline: list[TimelineBucketRead]


class TerminalRollupRead(BaseModel):
    terminal: TerminalRead
    overview: RollupOverview
    annotation_status: AnnotationStatusCounts
    inspection_status: InspectionOutcomeCounts
    annotation_types: AnnotationTypeCounts | None = None
    upcoming: list[ScheduledInspectionRead]
    overdue: list[ScheduledInspectionRead]
    recent_inspections: list[RecentInspectionRead]
    locations: list[LocationBreakdownRead]
    timeline: list[TimelineBucketRead]


class IsolationSummaryRead(BaseModel):
    plans_by_status: dict[str, int]
    points_by_status: dict[str, int]
    active_plans: int = 0
    unrestored_points_in_active_plans: int = 0
