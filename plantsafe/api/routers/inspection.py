from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import FileResponse

from plantsafe.api.deps import require_perm
from plantsafe.domain.models import (
    ChecklistBulkUpdateRequest,
    ChecklistItemRead,
    ChecklistItemUpdate,
    InspectionCreate,
    InspectionDetailRead,
    InspectionDocumentRead,
    InspectionDocumentUpdate,
    InspectionImageRead,
    InspectionImageUpdate,
    InspectionRead,
    InspectionUpdate,
    MeasurementCreate,
    MeasurementRead,
    MeasurementUpdate,
)
from plantsafe.domain.permissions import PERM_INSPECTION_READ, PERM_INSPECTION_WRITE
from plantsafe.infra.audit import set_audit_context
from plantsafe.services.inspection_service import (
    ConflictError,
    InspectionService,
    NotFoundError,
    StorageError,
    ValidationError,
)

router = APIRouter()

_INSPECTION_ERRORS = (NotFoundError, ConflictError, ValidationError, StorageError)


def get_inspection_service() -> InspectionService:
    return InspectionService()


Service = Annotated[InspectionService, Depends(get_inspection_service)]


def _handle_inspection_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, StorageError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


@router.post(
    "/annotations/{annotation_id}/inspections",
    response_model=InspectionDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def create_inspection(annotation_id: str, payload: InspectionCreate, service: Service) -> InspectionDetailRead:
    try:
        return service.create_inspection(annotation_id, payload)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.get(
    "/annotations/{annotation_id}/inspections",
    response_model=list[InspectionRead],
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def list_inspections(annotation_id: str, service: Service) -> list[InspectionRead]:
    try:
        return [InspectionRead.model_validate(item) for item in service.list_inspections(annotation_id)]
    except NotFoundError as exc:
        _handle_inspection_error(exc)
        raise


@router.get(
    "/inspections/{inspection_id}",
    response_model=InspectionDetailRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def get_inspection(inspection_id: str, service: Service) -> InspectionDetailRead:
    try:
        return service.get_inspection(inspection_id)
    except NotFoundError as exc:
        _handle_inspection_error(exc)
        raise


@router.patch(
    "/inspections/{inspection_id}",
    response_model=InspectionRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def update_inspection(inspection_id: str, payload: InspectionUpdate, service: Service) -> InspectionRead:
    try:
        return InspectionRead.model_validate(service.update_inspection(inspection_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.delete(
    "/inspections/{inspection_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def delete_inspection(inspection_id: str, request: Request, service: Service) -> Response:
    try:
        service.delete_inspection(inspection_id)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    set_audit_context(request, action="inspection.delete", resource=f"inspections/{inspection_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Checklist


@router.patch(
    "/checklist-items/{item_id}",
    response_model=ChecklistItemRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def update_checklist_item(item_id: str, payload: ChecklistItemUpdate, service: Service) -> ChecklistItemRead:
    try:
        return ChecklistItemRead.model_validate(service.update_checklist_item(item_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.put(
    "/inspections/{inspection_id}/checklist",
    response_model=list[ChecklistItemRead],
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def bulk_update_checklist(
    inspection_id: str,
    payload: ChecklistBulkUpdateRequest,
    service: Service,
) -> list[ChecklistItemRead]:
    try:
        items = service.bulk_update_checklist(inspection_id, payload.items)
        return [ChecklistItemRead.model_validate(item) for item in items]
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


# Thickness measurements


@router.post(
    "/inspections/{inspection_id}/measurements",
    response_model=MeasurementRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def add_measurement(inspection_id: str, payload: MeasurementCreate, service: Service) -> MeasurementRead:
    try:
        return MeasurementRead.model_validate(service.add_measurement(inspection_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.patch(
    "/measurements/{measurement_id}",
    response_model=MeasurementRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def update_measurement(measurement_id: str, payload: MeasurementUpdate, service: Service) -> MeasurementRead:
    try:
        return MeasurementRead.model_validate(service.update_measurement(measurement_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.delete(
    "/measurements/{measurement_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def delete_measurement(measurement_id: str, service: Service) -> Response:
    try:
        service.delete_measurement(measurement_id)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Images


@router.post(
    "/inspections/{inspection_id}/images",
    response_model=InspectionImageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
async def add_image(
    inspection_id: str,
    request: Request,
    service: Service,
    x_filename: Annotated[str, Header(alias="X-Filename")],
    comment: str | None = None,
) -> InspectionImageRead:
    content = await request.body()
    try:
        image = service.add_image(inspection_id, original_name=x_filename, content=content, comment=comment)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    set_audit_context(
        request,
        action="inspection.image.upload",
        resource=f"inspections/{inspection_id}/images/{image.id}",
        detail={"what": {"original_name": x_filename, "size_bytes": len(content)}},
    )
    return InspectionImageRead.model_validate(image)


@router.get(
    "/images/{image_id}/file",
    response_class=FileResponse,
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def download_image(image_id: str, service: Service) -> FileResponse:
    try:
        path, original_name = service.image_file(image_id)
    except NotFoundError as exc:
        _handle_inspection_error(exc)
        raise
    return FileResponse(path, filename=original_name)


@router.patch(
    "/images/{image_id}",
    response_model=InspectionImageRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def update_image(image_id: str, payload: InspectionImageUpdate, service: Service) -> InspectionImageRead:
    try:
        return InspectionImageRead.model_validate(service.update_image(image_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.delete(
    "/images/{image_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def delete_image(image_id: str, service: Service) -> Response:
    try:
        service.delete_image(image_id)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Documents


@router.post(
    "/inspections/{inspection_id}/documents",
    response_model=InspectionDocumentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
async def add_document(
    inspection_id: str,
    request: Request,
    service: Service,
    x_filename: Annotated[str, Header(alias="X-Filename")],
    document_type: str | None = None,
    description: str | None = None,
) -> InspectionDocumentRead:
    content = await request.body()
    try:
        document = service.add_document(
            inspection_id,
            original_name=x_filename,
            content=content,
            document_type=document_type,
            description=description,
        )
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    set_audit_context(
        request,
        action="inspection.document.upload",
        resource=f"inspections/{inspection_id}/documents/{document.id}",
        detail={"what": {"original_name": x_filename, "size_bytes": len(content)}},
    )
    return InspectionDocumentRead.model_validate(document)


@router.get(
    "/documents/{document_id}/file",
    response_class=FileResponse,
    dependencies=[Depends(require_perm(PERM_INSPECTION_READ))],
)
def download_document(document_id: str, service: Service) -> FileResponse:
    try:
        path, original_name = service.document_file(document_id)
    except NotFoundError as exc:
        _handle_inspection_error(exc)
        raise
    return FileResponse(path, filename=original_name)


@router.patch(
    "/documents/{document_id}",
    response_model=InspectionDocumentRead,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def update_document(
    document_id: str,
    payload: InspectionDocumentUpdate,
    service: Service,
) -> InspectionDocumentRead:
    try:
        return InspectionDocumentRead.model_validate(service.update_document(document_id, payload))
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_INSPECTION_WRITE))],
)
def delete_document(document_id: str, service: Service) -> Response:
    try:
        service.delete_document(document_id)
    except _INSPECTION_ERRORS as exc:
        _handle_inspection_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
