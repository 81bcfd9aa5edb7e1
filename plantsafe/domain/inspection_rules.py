from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from plantsafe.domain.models import (
    AnnotationStatus,
    ChecklistStatus,
    Inspection,
    InspectionChecklistItem,
    InspectionOutcome,
    ThicknessMeasurement,
)

# API RP 2611 based piping checklist, seeded in this order on every inspection.
DEFAULT_CHECKLIST_ITEMS: tuple[str, ...] = (
    "Overfladebehandling udvendig",
    "Overfladebehandling indvendig",
    "Isolering",
    "Mærkning",
    "Ophæng/understøtning",
    "Gevindsamlinger",
    "Flanger",
    "Ventiler",
    "Ekspansionselementer",
    "Dræn",
    "Trykaflastning",
    "Instrumentering",
    "Svejsninger",
    "Korrosion udvendig",
    "Erosion",
    "Revner",
    "Deformation",
    "Lækage",
    "Diverse",
)


def build_checklist(inspection_id: str) -> list[InspectionChecklistItem]:
    return [
        InspectionChecklistItem(
            inspection_id=inspection_id,
            item_number=index,
            item_name=name,
            status=ChecklistStatus.NA,
        )
        for index, name in enumerate(DEFAULT_CHECKLIST_ITEMS, start=1)
    ]


def is_critical_measurement(t_measured: float | None, t_alert: float | None) -> bool:
    return t_measured is not None and t_alert is not None and t_measured < t_alert


def suggest_annotation_status(
    latest: Inspection | None,
    checklist: Iterable[InspectionChecklistItem] = (),
    measurements: Iterable[ThicknessMeasurement] = (),
    *,
    next_inspection: date | None = None,
    today: date | None = None,
) -> AnnotationStatus:
    """Derive a status suggestion from the latest inspection.

    The stored annotation status stays manual. This value is shown next to it
    and the two may disagree.
    """
    if latest is None:
        return AnnotationStatus.NOT_INSPECTED

    grades = {item.status for item in checklist}
    has_critical_tml = any(is_critical_measurement(row.t_measured, row.t_alert) for row in measurements)
    if (
        latest.overall_status == InspectionOutcome.REJECTED
        or has_critical_tml
        or ChecklistStatus.GRADE_3 in grades
    ):
        return AnnotationStatus.CRITICAL

    current_day = today or date.today()
    overdue = next_inspection is not None and next_inspection < current_day
    if latest.overall_status == InspectionOutcome.CONDITIONAL or ChecklistStatus.GRADE_2 in grades or overdue:
        return AnnotationStatus.WARNING
    if latest.overall_status == InspectionOutcome.APPROVED:
        return AnnotationStatus.OK
    return AnnotationStatus.NOT_INSPECTED
