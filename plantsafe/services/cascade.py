from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from sqlmodel import Session, select

from plantsafe.domain.models import (
    Annotation,
    Inspection,
    InspectionChecklistItem,
    InspectionDocument,
    InspectionImage,
    IsolationPlan,
    IsolationPoint,
    ThicknessMeasurement,
)
from plantsafe.services.file_storage_service import DOCUMENT_CATEGORY, IMAGE_CATEGORY

StoredRef = tuple[str, str]


def inspection_ids_for_annotations(session: Session, annotation_ids: Sequence[str]) -> list[str]:
    if not annotation_ids:
        return []
    return list(session.exec(select(Inspection.id).where(Inspection.annotation_id.in_(annotation_ids))).all())


def inspection_files(session: Session, inspection_ids: Sequence[str]) -> list[StoredRef]:
    if not inspection_ids:
        return []
    images = session.exec(
        select(InspectionImage.filename).where(InspectionImage.inspection_id.in_(inspection_ids))
    ).all()
    documents = session.exec(
        select(InspectionDocument.filename).where(InspectionDocument.inspection_id.in_(inspection_ids))
    ).all()
    return [(IMAGE_CATEGORY, name) for name in images] + [(DOCUMENT_CATEGORY, name) for name in documents]


def purge_inspections(session: Session, inspection_ids: Sequence[str]) -> int:
    if not inspection_ids:
        return 0
    for model in (InspectionChecklistItem, ThicknessMeasurement, InspectionImage, InspectionDocument):
        session.execute(sa.delete(model).where(model.inspection_id.in_(inspection_ids)))
    result = session.execute(sa.delete(Inspection).where(Inspection.id.in_(inspection_ids)))
    return int(getattr(result, "rowcount", 0) or 0)


def purge_annotations(session: Session, annotation_ids: Sequence[str]) -> int:
    if not annotation_ids:
        return 0
    purge_inspections(session, inspection_ids_for_annotations(session, annotation_ids))
    result = session.execute(sa.delete(Annotation).where(Annotation.id.in_(annotation_ids)))
    return int(getattr(result, "rowcount", 0) or 0)


def purge_plans(session: Session, plan_ids: Sequence[str]) -> int:
    if not plan_ids:
        return 0
    session.execute(sa.delete(IsolationPoint).where(IsolationPoint.plan_id.in_(plan_ids)))
    result = session.execute(sa.delete(IsolationPlan).where(IsolationPlan.id.in_(plan_ids)))
    return int(getattr(result, "rowcount", 0) or 0)
