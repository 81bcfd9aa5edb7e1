from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from plantsafe.domain.inspection_rules import suggest_annotation_status
from plantsafe.domain.models import (
    Annotation,
    AnnotationCreate,
    AnnotationRead,
    AnnotationType,
    AnnotationUpdate,
    Diagram,
    DiagramUpdate,
    Inspection,
    InspectionChecklistItem,
    IsolationPlan,
    Location,
    LocationCreate,
    LocationUpdate,
    Terminal,
    TerminalCreate,
    TerminalUpdate,
    ThicknessMeasurement,
    now_utc,
)
from plantsafe.infra.db import get_engine
from plantsafe.infra.events import event_bus
from plantsafe.services.cascade import (
    inspection_files,
    inspection_ids_for_annotations,
    purge_annotations,
    purge_plans,
)
from plantsafe.services.file_storage_service import (
    DIAGRAM_CATEGORY,
    FileNotStoredError,
    FileStorageError,
    FileStorageService,
)

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    pass


class NotFoundError(RegistryError):
    pass


class ConflictError(RegistryError):
    pass


class ValidationError(RegistryError):
    pass


class StorageError(RegistryError):
    pass


class RegistryService:
    def __init__(self, storage: FileStorageService | None = None) -> None:
        self._storage = storage or FileStorageService()

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
            logger.exception("registry write failed")
            raise StorageError("store failure") from exc

    def _get_terminal(self, session: Session, terminal_id: str) -> Terminal:
        terminal = session.get(Terminal, terminal_id)
        if terminal is None:
            raise NotFoundError("terminal not found")
        return terminal

    def _get_location(self, session: Session, location_id: str) -> Location:
        location = session.get(Location, location_id)
        if location is None:
            raise NotFoundError("location not found")
        return location

    def _get_diagram(self, session: Session, diagram_id: str) -> Diagram:
        diagram = session.get(Diagram, diagram_id)
        if diagram is None:
            raise NotFoundError("diagram not found")
        return diagram

    def _get_annotation(self, session: Session, annotation_id: str) -> Annotation:
        annotation = session.get(Annotation, annotation_id)
        if annotation is None:
            raise NotFoundError("annotation not found")
        return annotation

    def _require_text(self, value: str | None, field_name: str) -> str:
        if value is None or not value.strip():
            raise ValidationError(f"{field_name} is required")
        return value.strip()

    def _to_read(self, session: Session, annotation: Annotation, today: date | None = None) -> AnnotationRead:
        latest = session.exec(
            select(Inspection)
            .where(Inspection.annotation_id == annotation.id)
            .order_by(Inspection.inspection_date.desc(), Inspection.created_at.desc())
        ).first()
        checklist: list[InspectionChecklistItem] = []
        measurements: list[ThicknessMeasurement] = []
        if latest is not None:
            checklist = list(
                session.exec(
                    select(InspectionChecklistItem).where(InspectionChecklistItem.inspection_id == latest.id)
                ).all()
            )
            measurements = list(
                session.exec(
                    select(ThicknessMeasurement).where(ThicknessMeasurement.inspection_id == latest.id)
                ).all()
            )
        suggested = suggest_annotation_status(
            latest,
            checklist,
            measurements,
            next_inspection=annotation.next_inspection,
            today=today,
        )
        return AnnotationRead.model_validate({**annotation.model_dump(), "suggested_status": suggested})

    def _remove_files(self, refs: list[tuple[str, str]]) -> None:
        for category, filename in refs:
            self._storage.delete_quietly(category=category, filename=filename)

    # Terminals

    def create_terminal(self, payload: TerminalCreate) -> Terminal:
        with self._session() as session:
            terminal = Terminal(
                name=self._require_text(payload.name, "name"),
                code=self._require_text(payload.code, "code").upper(),
                description=payload.description,
            )
            session.add(terminal)
            self._commit(session, "terminal code already exists")
            session.refresh(terminal)

        event_bus.publish_dict("registry.terminal.created", {"terminal_id": terminal.id, "code": terminal.code})
        return terminal

    def list_terminals(self) -> list[Terminal]:
        with self._session() as session:
            return list(session.exec(select(Terminal).order_by(Terminal.name)).all())

    def get_terminal(self, terminal_id: str) -> Terminal:
        with self._session() as session:
            return self._get_terminal(session, terminal_id)

    def update_terminal(self, terminal_id: str, payload: TerminalUpdate) -> Terminal:
        with self._session() as session:
            terminal = self._get_terminal(session, terminal_id)
            changes = payload.changes()
            if "name" in changes:
                changes["name"] = self._require_text(changes["name"], "name")
            if "code" in changes:
                changes["code"] = self._require_text(changes["code"], "code").upper()
            for field_name, value in changes.items():
                setattr(terminal, field_name, value)
            terminal.updated_at = now_utc()
            session.add(terminal)
            self._commit(session, "terminal code already exists")
            session.refresh(terminal)

        event_bus.publish_dict("registry.terminal.updated", {"terminal_id": terminal.id, "code": terminal.code})
        return terminal

    def delete_terminal(self, terminal_id: str) -> None:
        with self._session() as session:
            terminal = self._get_terminal(session, terminal_id)
            session.delete(terminal)
            self._commit(session, "terminal is still referenced")

        event_bus.publish_dict("registry.terminal.deleted", {"terminal_id": terminal_id})

    # Locations

    def create_location(self, terminal_id: str, payload: LocationCreate) -> Location:
        with self._session() as session:
            self._get_terminal(session, terminal_id)
            location = Location(
                terminal_id=terminal_id,
                name=self._require_text(payload.name, "name"),
                description=payload.description,
            )
            session.add(location)
            self._commit(session, "location could not be created")
            session.refresh(location)

        event_bus.publish_dict(
            "registry.location.created",
            {"location_id": location.id, "terminal_id": terminal_id},
        )
        return location

    def list_locations(self, terminal_id: str) -> list[Location]:
        with self._session() as session:
            self._get_terminal(session, terminal_id)
            return list(
                session.exec(
                    select(Location).where(Location.terminal_id == terminal_id).order_by(Location.name)
                ).all()
            )

    def get_location(self, location_id: str) -> Location:
        with self._session() as session:
            return self._get_location(session, location_id)

    def update_location(self, location_id: str, payload: LocationUpdate) -> Location:
        with self._session() as session:
            location = self._get_location(session, location_id)
            changes = payload.changes()
            if "name" in changes:
                changes["name"] = self._require_text(changes["name"], "name")
            for field_name, value in changes.items():
                setattr(location, field_name, value)
            location.updated_at = now_utc()
            session.add(location)
            self._commit(session, "location could not be updated")
            session.refresh(location)
        return location

    def delete_location(self, location_id: str) -> None:
        with self._session() as session:
            location = self._get_location(session, location_id)
            session.delete(location)
            self._commit(session, "location is still referenced")

        event_bus.publish_dict("registry.location.deleted", {"location_id": location_id})

    # Diagrams

    def create_diagram(
        self,
        *,
        name: str,
        location_id: str | None,
        original_name: str,
        content: bytes,
    ) -> Diagram:
        diagram_name = self._require_text(name, "name")
        if not content:
            raise ValidationError("pdf content is required")
        if not content.startswith(b"%PDF"):
            raise ValidationError("only PDF files are allowed")
        with self._session() as session:
            if location_id is not None:
                self._get_location(session, location_id)
            try:
                stored = self._storage.save(category=DIAGRAM_CATEGORY, original_name=original_name, content=content)
            except FileStorageError as exc:
                raise StorageError(str(exc)) from exc
            diagram = Diagram(name=diagram_name, location_id=location_id, pdf_filename=stored.filename)
            session.add(diagram)
            try:
                self._commit(session, "diagram could not be created")
            except RegistryError:
                self._storage.delete_quietly(category=DIAGRAM_CATEGORY, filename=stored.filename)
                raise
            session.refresh(diagram)

        event_bus.publish_dict("registry.diagram.created", {"diagram_id": diagram.id, "location_id": location_id})
        return diagram

    def list_diagrams(self, location_id: str | None = None) -> list[Diagram]:
        with self._session() as session:
            statement = select(Diagram)
            if location_id is not None:
                statement = statement.where(Diagram.location_id == location_id)
            return list(session.exec(statement.order_by(Diagram.created_at.desc())).all())

    def get_diagram(self, diagram_id: str) -> Diagram:
        with self._session() as session:
            return self._get_diagram(session, diagram_id)

    def diagram_pdf_path(self, diagram_id: str) -> Path:
        diagram = self.get_diagram(diagram_id)
        try:
            return self._storage.get_path(category=DIAGRAM_CATEGORY, filename=diagram.pdf_filename)
        except FileNotStoredError as exc:
            raise NotFoundError("diagram pdf not found") from exc

    def update_diagram(self, diagram_id: str, payload: DiagramUpdate) -> Diagram:
        with self._session() as session:
            diagram = self._get_diagram(session, diagram_id)
            changes = payload.changes()
            if "name" in changes:
                changes["name"] = self._require_text(changes["name"], "name")
            if changes.get("location_id") is not None:
                self._get_location(session, changes["location_id"])
            for field_name, value in changes.items():
                setattr(diagram, field_name, value)
            diagram.updated_at = now_utc()
            session.add(diagram)
            self._commit(session, "diagram could not be updated")
            session.refresh(diagram)
        return diagram

    def replace_diagram_pdf(self, diagram_id: str, *, original_name: str, content: bytes) -> Diagram:
        if not content.startswith(b"%PDF"):
            raise ValidationError("only PDF files are allowed")
        with self._session() as session:
            diagram = self._get_diagram(session, diagram_id)
            previous = diagram.pdf_filename
            try:
                stored = self._storage.save(category=DIAGRAM_CATEGORY, original_name=original_name, content=content)
            except FileStorageError as exc:
                raise StorageError(str(exc)) from exc
            diagram.pdf_filename = stored.filename
            diagram.updated_at = now_utc()
            session.add(diagram)
            try:
                self._commit(session, "diagram could not be updated")
            except RegistryError:
                self._storage.delete_quietly(category=DIAGRAM_CATEGORY, filename=stored.filename)
                raise
            session.refresh(diagram)

        self._storage.delete_quietly(category=DIAGRAM_CATEGORY, filename=previous)
        event_bus.publish_dict("registry.diagram.pdf_replaced", {"diagram_id": diagram_id})
        return diagram

    def delete_diagram(self, diagram_id: str) -> dict[str, int]:
        with self._session() as session:
            diagram = self._get_diagram(session, diagram_id)
            annotation_ids = list(session.exec(select(Annotation.id).where(Annotation.diagram_id == diagram_id)).all())
            inspection_ids = inspection_ids_for_annotations(session, annotation_ids)
            plan_ids = list(session.exec(select(IsolationPlan.id).where(IsolationPlan.diagram_id == diagram_id)).all())

            # Files go first so a failed row delete never leaves orphaned artifacts behind.
            self._remove_files([(DIAGRAM_CATEGORY, diagram.pdf_filename), *inspection_files(session, inspection_ids)])

            purge_plans(session, plan_ids)
            purge_annotations(session, annotation_ids)
            session.delete(diagram)
            self._commit(session, "diagram could not be deleted")

        removed = {
            "annotations": len(annotation_ids),
            "inspections": len(inspection_ids),
            "isolation_plans": len(plan_ids),
        }
        logger.info("diagram %s deleted with %s", diagram_id, removed)
        event_bus.publish_dict("registry.diagram.deleted", {"diagram_id": diagram_id, **removed})
        return removed

    # Annotations

    def create_annotation(self, diagram_id: str, payload: AnnotationCreate) -> AnnotationRead:
        with self._session() as session:
            self._get_diagram(session, diagram_id)
            annotation = Annotation(
                diagram_id=diagram_id,
                kks_number=self._require_text(payload.kks_number, "kks_number"),
                **payload.model_dump(exclude={"kks_number"}),
            )
            session.add(annotation)
            self._commit(session, "annotation could not be created")
            session.refresh(annotation)
            result = self._to_read(session, annotation)

        event_bus.publish_dict(
            "registry.annotation.created",
            {"annotation_id": annotation.id, "diagram_id": diagram_id, "kks_number": annotation.kks_number},
        )
        return result

    def list_annotations(
        self,
        diagram_id: str,
        annotation_type: AnnotationType | None = None,
        today: date | None = None,
    ) -> list[AnnotationRead]:
        with self._session() as session:
            self._get_diagram(session, diagram_id)
            statement = select(Annotation).where(Annotation.diagram_id == diagram_id)
            if annotation_type is not None:
                statement = statement.where(Annotation.annotation_type == annotation_type)
            rows = session.exec(statement.order_by(Annotation.created_at)).all()
            return [self._to_read(session, row, today) for row in rows]

    def get_annotation(self, annotation_id: str, today: date | None = None) -> AnnotationRead:
        with self._session() as session:
            return self._to_read(session, self._get_annotation(session, annotation_id), today)

    def update_annotation(self, annotation_id: str, payload: AnnotationUpdate) -> AnnotationRead:
        with self._session() as session:
            annotation = self._get_annotation(session, annotation_id)
            changes = payload.changes()
            if "kks_number" in changes:
                changes["kks_number"] = self._require_text(changes["kks_number"], "kks_number")
            for field_name, value in changes.items():
                setattr(annotation, field_name, value)
            annotation.updated_at = now_utc()
            session.add(annotation)
            self._commit(session, "annotation could not be updated")
            session.refresh(annotation)
            result = self._to_read(session, annotation)

        event_bus.publish_dict(
            "registry.annotation.updated",
            {"annotation_id": annotation.id, "fields": sorted(payload.model_fields_set)},
        )
        return result

    def delete_annotation(self, annotation_id: str) -> None:
        with self._session() as session:
            self._get_annotation(session, annotation_id)
            inspection_ids = inspection_ids_for_annotations(session, [annotation_id])
            self._remove_files(inspection_files(session, inspection_ids))
            purge_annotations(session, [annotation_id])
            self._commit(session, "annotation could not be deleted")

        event_bus.publish_dict("registry.annotation.deleted", {"annotation_id": annotation_id})
