from __future__ import annotations

from datetime import date

from plantsafe.domain.inspection_rules import (
    DEFAULT_CHECKLIST_ITEMS,
    build_checklist,
    is_critical_measurement,
    suggest_annotation_status,
)
from plantsafe.domain.models import (
    AnnotationStatus,
    ChecklistStatus,
    Inspection,
    InspectionChecklistItem,
    InspectionOutcome,
    ThicknessMeasurement,
)


def _inspection(outcome: InspectionOutcome) -> Inspection:
    return Inspection(
        annotation_id="annotation-1",
        inspection_date=date(2025, 1, 10),
        inspector_name="Inspector",
        overall_status=outcome,
    )


def _item(grade: ChecklistStatus) -> InspectionChecklistItem:
    return InspectionChecklistItem(inspection_id="i", item_number=1, item_name="Flanger", status=grade)


def test_build_checklist_seeds_nineteen_items_in_order() -> None:
    items = build_checklist("inspection-1")
    assert len(items) == 19
    assert [item.item_number for item in items] == list(range(1, 20))
    assert [item.item_name for item in items] == list(DEFAULT_CHECKLIST_ITEMS)
    assert items[0].item_name == "Overfladebehandling udvendig"
    assert items[-1].item_name == "Diverse"
    assert {item.status for item in items} == {ChecklistStatus.NA}


def test_critical_measurement_requires_both_values() -> None:
    assert is_critical_measurement(4.2, 5.0)
    assert not is_critical_measurement(5.0, 5.0)
    assert not is_critical_measurement(6.0, 5.0)
    assert not is_critical_measurement(None, 5.0)
    assert not is_critical_measurement(4.2, None)


def test_suggestion_without_inspection() -> None:
    assert suggest_annotation_status(None) == AnnotationStatus.NOT_INSPECTED


def test_suggestion_critical_signals() -> None:
    today = date(2025, 2, 1)
    assert (
        suggest_annotation_status(_inspection(InspectionOutcome.REJECTED), today=today)
        == AnnotationStatus.CRITICAL
    )
    thin = ThicknessMeasurement(inspection_id="i", tml_number=1, t_measured=4.2, t_alert=5.0)
    assert (
        suggest_annotation_status(_inspection(InspectionOutcome.APPROVED), [], [thin], today=today)
        == AnnotationStatus.CRITICAL
    )
    assert (
        suggest_annotation_status(
            _inspection(InspectionOutcome.APPROVED), [_item(ChecklistStatus.GRADE_3)], today=today
        )
        == AnnotationStatus.CRITICAL
    )


def test_suggestion_warning_signals() -> None:
    today = date(2025, 2, 1)
    assert (
        suggest_annotation_status(_inspection(InspectionOutcome.CONDITIONAL), today=today)
        == AnnotationStatus.WARNING
    )
    assert (
        suggest_annotation_status(
            _inspection(InspectionOutcome.APPROVED), [_item(ChecklistStatus.GRADE_2)], today=today
        )
        == AnnotationStatus.WARNING
    )
    assert (
        suggest_annotation_status(
            _inspection(InspectionOutcome.APPROVED),
            next_inspection=date(2025, 1, 31),
            today=today,
        )
        == AnnotationStatus.WARNING
    )


def test_suggestion_ok_and_pending() -> None:
    today = date(2025, 2, 1)
    assert (
        suggest_annotation_status(
            _inspection(InspectionOutcome.APPROVED),
            [_item(ChecklistStatus.OK), _item(ChecklistStatus.GRADE_1)],
            next_inspection=date(2025, 8, 1),
            today=today,
        )
        == AnnotationStatus.OK
    )
    assert (
        suggest_annotation_status(_inspection(InspectionOutcome.PENDING), today=today)
        == AnnotationStatus.NOT_INSPECTED
    )
