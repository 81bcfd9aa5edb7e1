from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, func, select

from plantsafe.domain.inspection_rules import build_checklist
from plantsafe.domain.models import (
    Annotation,
    ChecklistBulkItem,
    ChecklistItemRead,
    ChecklistItemUpdate,
    Inspection,
    InspectionChecklistItem,
    InspectionCreate,
    InspectionDetailRead,
    InspectionDocument,
    InspectionDocumentRead,
    InspectionDocumentUpdate,
    InspectionImage,
    InspectionImageRead,
    InspectionImageUpdate,
    InspectionRead,
    InspectionUpdate,
    MeasurementCreate,
    MeasurementRead,
    MeasurementUpdate,
    ThicknessMeasurement,
    now_utc,
)
from plantsafe.infra.db import get_engine
from plantsafe.infra.events import event_bus
from plantsafe.services.cascade import inspection_files, purge_inspections
from plantsafe.services.file_storage_service import (
    DOCUMENT_CATEGORY,
    IMAGE_CATEGORY,
    FileNotStoredError,
    FileStorageError,
    FileStorageService,
)

ALLOWED_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

logger = logging.getLogger(__name__)


class InspectionError(Exception):
    pass


class NotFoundError(InspectionError):
    pass


class ConflictError(InspectionError):
    pass


class ValidationError(InspectionError):
    pass


class StorageError(InspectionError):
    pass


class InspectionService:
    def __init__(self, storage: FileStorageService | None = None) -> None:
        self._storage = storage or FileStorageService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _commit(self, session: Session, conflict_message: str = "conflicting inspection data") -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(conflict_message) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("inspection write failed")
            raise StorageError("store failure") from exc

    def _get_annotation(self, session: Session, annotation_id: str) -> Annotation:
        annotation = session.get(Annotation, annotation_id)
        if annotation is None:
            raise NotFoundError("annotation not found")
        return annotation

    def _get_inspection(self, session: Session, inspection_id: str) -> Inspection:
        inspection = session.get(Inspection, inspection_id)
        if inspection is None:
            raise NotFoundError("inspection not found")
        return inspection

    def _get_checklist_item(self, session: Session, item_id: str) -> InspectionChecklistItem:
        item = session.get(InspectionChecklistItem, item_id)
        if item is None:
            raise NotFoundError("checklist item not found")
        return item

    def _get_measurement(self, session: Session, measurement_id: str) -> ThicknessMeasurement:
        measurement = session.get(ThicknessMeasurement, measurement_id)
        if measurement is None:
            raise NotFoundError("measurement not found")
        return measurement

    def _get_image(self, session: Session, image_id: str) -> InspectionImage:
        image = session.get(InspectionImage, image_id)
        if image is None:
            raise NotFoundError("image not found")
        return image

    def _get_document(self, session: Session, document_id: str) -> InspectionDocument:
        document = session.get(InspectionDocument, document_id)
        if document is None:
            raise NotFoundError("document not found")
        return document

    def _sync_annotation_dates(self, session: Session, inspection: Inspection) -> None:
        annotation = self._get_annotation(session, inspection.annotation_id)
        annotation.last_inspection = inspection.inspection_date
        annotation.next_inspection = inspection.next_inspection_date
        annotation.updated_at = now_utc()
        session.add(annotation)

    def _load_checklist(self, session: Session, inspection_id: str) -> list[InspectionChecklistItem]:
        return list(
            session.exec(
                select(InspectionChecklistItem)
                .where(InspectionChecklistItem.inspection_id == inspection_id)
                .order_by(InspectionChecklistItem.item_number)
            ).all()
        )

    def _build_detail(self, session: Session, inspection: Inspection) -> InspectionDetailRead:
        annotation = self._get_annotation(session, inspection.annotation_id)
        measurements = session.exec(
            select(ThicknessMeasurement)
            .where(ThicknessMeasurement.inspection_id == inspection.id)
            .order_by(ThicknessMeasurement.tml_number)
        ).all()
        images = session.exec(
            select(InspectionImage)
            .where(InspectionImage.inspection_id == inspection.id)
            .order_by(InspectionImage.image_number)
        ).all()
        documents = session.exec(
            select(InspectionDocument)
            .where(InspectionDocument.inspection_id == inspection.id)
            .order_by(InspectionDocument.created_at.desc())
        ).all()
        return InspectionDetailRead(
            inspection=InspectionRead.model_validate(inspection),
            kks_number=annotation.kks_number,
            material=annotation.material,
            diameter=annotation.diameter,
            checklist=[ChecklistItemRead.model_validate(item) for item in self._load_checklist(session, inspection.id)],
            measurements=[MeasurementRead.model_validate(item) for item in measurements],
            images=[InspectionImageRead.model_validate(item) for item in images],
            documents=[InspectionDocumentRead.model_validate(item) for item in documents],
        )

    def _apply_checklist_changes(
        self,
        item: InspectionChecklistItem,
        payload: ChecklistItemUpdate | ChecklistBulkItem,
    ) -> None:
        for field_name, value in payload.changes(exclude={"id"}).items():
            setattr(item, field_name, value)
        item.updated_at = now_utc()

    # Inspections

    def create_inspection(self, annotation_id: str, payload: InspectionCreate) -> InspectionDetailRead:
        if not payload.inspector_name.strip():
            raise ValidationError("inspector_name is required")
        with self._session() as session:
            self._get_annotation(session, annotation_id)
            inspection = Inspection(annotation_id=annotation_id, **payload.model_dump())
            session.add(inspection)
            session.flush()
            session.add_all(build_checklist(inspection.id))
            self._sync_annotation_dates(session, inspection)
            self._commit(session)
            session.refresh(inspection)
            detail = self._build_detail(session, inspection)

        logger.info("inspection %s created for annotation %s", inspection.id, annotation_id)
        event_bus.publish_dict(
            "inspection.created",
            {
                "inspection_id": inspection.id,
                "annotation_id": annotation_id,
                "overall_status": inspection.overall_status,
            },
        )
        return detail

    def list_inspections(self, annotation_id: str) -> list[Inspection]:
        with self._session() as session:
            self._get_annotation(session, annotation_id)
            return list(
                session.exec(
                    select(Inspection)
                    .where(Inspection.annotation_id == annotation_id)
                    .order_by(Inspection.inspection_date.desc(), Inspection.created_at.desc())
                ).all()
            )

    def get_inspection(self, inspection_id: str) -> InspectionDetailRead:
        with self._session() as session:
            return self._build_detail(session, self._get_inspection(session, inspection_id))

    def update_inspection(self, inspection_id: str, payload: InspectionUpdate) -> Inspection:
        with self._session() as session:
            inspection = self._get_inspection(session, inspection_id)
            changes = payload.changes()
            if "inspector_name" in changes and not changes["inspector_name"].strip():
                raise ValidationError("inspector_name is required")
            for field_name, value in changes.items():
                setattr(inspection, field_name, value)
            inspection.updated_at = now_utc()
            session.add(inspection)
            if payload.model_fields_set & {"inspection_date", "next_inspection_date"}:
                self._sync_annotation_dates(session, inspection)
            self._commit(session)
            session.refresh(inspection)

        event_bus.publish_dict(
            "inspection.updated",
            {"inspection_id": inspection.id, "fields": sorted(changes)},
        )
        return inspection

    def delete_inspection(self, inspection_id: str) -> None:
        with self._session() as session:
            inspection = self._get_inspection(session, inspection_id)
            # Files go first so a failed row delete never leaves orphaned artifacts behind.
            for category, filename in inspection_files(session, [inspection.id]):
                self._storage.delete_quietly(category=category, filename=filename)
            purge_inspections(session, [inspection.id])
            self._commit(session)

        logger.info("inspection %s deleted", inspection_id)
        event_bus.publish_dict(
            "inspection.deleted",
            {"inspection_id": inspection_id, "annotation_id": inspection.annotation_id},
        )

    # Checklist

    def update_checklist_item(self, item_id: str, payload: ChecklistItemUpdate) -> InspectionChecklistItem:
        with self._session() as session:
            item = self._get_checklist_item(session, item_id)
            self._apply_checklist_changes(item, payload)
            session.add(item)
            self._commit(session)
            session.refresh(item)
        return item

    def bulk_update_checklist(
        self,
        inspection_id: str,
        items: list[ChecklistBulkItem],
    ) -> list[InspectionChecklistItem]:
        with self._session() as session:
            self._get_inspection(session, inspection_id)
            by_id = {item.id: item for item in self._load_checklist(session, inspection_id)}
            for entry in items:
                item = by_id.get(entry.id)
                if item is None:
                    raise NotFoundError(f"checklist item {entry.id} not found on inspection")
                self._apply_checklist_changes(item, entry)
                session.add(item)
            self._commit(session)
            checklist = self._load_checklist(session, inspection_id)

        event_bus.publish_dict(
            "inspection.checklist_updated",
            {"inspection_id": inspection_id, "item_count": len(items)},
        )
        return checklist

    # Thickness measurements

    def add_measurement(self, inspection_id: str, payload: MeasurementCreate) -> ThicknessMeasurement:
        with self._session() as session:
            self._get_inspection(session, inspection_id)
            measurement = ThicknessMeasurement(inspection_id=inspection_id, **payload.model_dump())
            session.add(measurement)
            self._commit(session)
            session.refresh(measurement)

        if measurement.is_critical:
            logger.info("critical thickness recorded on inspection %s tml %s", inspection_id, measurement.tml_number)
        event_bus.publish_dict(
            "inspection.measurement_added",
            {
                "inspection_id": inspection_id,
                "measurement_id": measurement.id,
                "is_critical": measurement.is_critical,
            },
        )
        return measurement

    def update_measurement(self, measurement_id: str, payload: MeasurementUpdate) -> ThicknessMeasurement:
        with self._session() as session:
            measurement = self._get_measurement(session, measurement_id)
            for field_name, value in payload.changes().items():
                setattr(measurement, field_name, value)
            measurement.updated_at = now_utc()
            session.add(measurement)
            self._commit(session)
            session.refresh(measurement)
        return measurement

    def delete_measurement(self, measurement_id: str) -> None:
        with self._session() as session:
            measurement = self._get_measurement(session, measurement_id)
            session.delete(measurement)
            self._commit(session)

    # Images and documents

    def add_image(
        self,
        inspection_id: str,
        *,
        original_name: str,
        content: bytes,
        comment: str | None = None,
    ) -> InspectionImage:
        if PurePosixPath(original_name.replace("\\", "/")).suffix.lower() not in ALLOWED_IMAGE_SUFFIXES:
            raise ValidationError("only image files are allowed")
        with self._session() as session:
            self._get_inspection(session, inspection_id)
            stored = self._save_file(IMAGE_CATEGORY, original_name, content)
            next_number = session.exec(
                select(func.coalesce(func.max(InspectionImage.image_number), 0)).where(
                    InspectionImage.inspection_id == inspection_id
                )
            ).one()
            image = InspectionImage(
                inspection_id=inspection_id,
                filename=stored,
                original_name=original_name,
                comment=comment,
                image_number=int(next_number) + 1,
            )
            session.add(image)
            self._commit_or_discard(session, IMAGE_CATEGORY, stored)
            session.refresh(image)
        return image

    def update_image(self, image_id: str, payload: InspectionImageUpdate) -> InspectionImage:
        with self._session() as session:
            image = self._get_image(session, image_id)
            for field_name, value in payload.changes().items():
                setattr(image, field_name, value)
            image.updated_at = now_utc()
            session.add(image)
            self._commit(session)
            session.refresh(image)
        return image

    def delete_image(self, image_id: str) -> None:
        with self._session() as session:
            image = self._get_image(session, image_id)
            self._storage.delete_quietly(category=IMAGE_CATEGORY, filename=image.filename)
            session.execute(sa.delete(InspectionImage).where(InspectionImage.id == image_id))
            self._commit(session)

    def add_document(
        self,
        inspection_id: str,
        *,
        original_name: str,
        content: bytes,
        document_type: str | None = None,
        description: str | None = None,
    ) -> InspectionDocument:
        with self._session() as session:
            self._get_inspection(session, inspection_id)
            stored = self._save_file(DOCUMENT_CATEGORY, original_name, content)
            document = InspectionDocument(
                inspection_id=inspection_id,
                filename=stored,
                original_name=original_name,
                document_type=document_type or "report",
                description=description,
            )
            session.add(document)
            self._commit_or_discard(session, DOCUMENT_CATEGORY, stored)
            session.refresh(document)
        return document

    def update_document(self, document_id: str, payload: InspectionDocumentUpdate) -> InspectionDocument:
        with self._session() as session:
            document = self._get_document(session, document_id)
            for field_name, value in payload.changes().items():
                setattr(document, field_name, value)
            document.updated_at = now_utc()
            session.add(document)
            self._commit(session)
            session.refresh(document)
        return document

    def delete_document(self, document_id: str) -> None:
        with self._session() as session:
            document = self._get_document(session, document_id)
            self._storage.delete_quietly(category=DOCUMENT_CATEGORY, filename=document.filename)
            session.execute(sa.delete(InspectionDocument).where(InspectionDocument.id == document_id))
            self._commit(session)

    def _save_file(self, category: str, original_name: str, content: bytes) -> str:
        if not content:
            raise ValidationError("file content is required")
        try:
            return self._storage.save(category=category, original_name=original_name, content=content).filename
        except FileStorageError as exc:
            raise StorageError(str(exc)) from exc

    def _commit_or_discard(self, session: Session, category: str, filename: str) -> None:
        try:
            self._commit(session)
        except InspectionError:
            self._storage.delete_quietly(category=category, filename=filename)
            raise

    def _stored_path(self, category: str, filename: str) -> Path:
        try:
            return self._storage.get_path(category=category, filename=filename)
        except FileNotStoredError as exc:
            raise NotFoundError("stored file not found") from exc

    def image_file(self, image_id: str) -> tuple[Path, str]:
        with self._session() as session:
            image = self._get_image(session, image_id)
        return self._stored_path(IMAGE_CATEGORY, image.filename), image.original_name

    def document_file(self, document_id: str) -> tuple[Path, str]:
        with self._session() as session:
            document = self._get_document(session, document_id)
        return self._stored_path(DOCUMENT_CATEGORY, document.filename), document.original_name
