from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import FileResponse

from plantsafe.api.deps import require_perm
from plantsafe.domain.models import (
    AnnotationCreate,
    AnnotationRead,
    AnnotationType,
    AnnotationUpdate,
    DiagramRead,
    DiagramUpdate,
    LocationCreate,
    LocationRead,
    LocationUpdate,
    TerminalCreate,
    TerminalRead,
    TerminalUpdate,
)
from plantsafe.domain.permissions import PERM_REGISTRY_READ, PERM_REGISTRY_WRITE
from plantsafe.infra.audit import set_audit_context
from plantsafe.services.registry_service import (
    ConflictError,
    NotFoundError,
    RegistryService,
    StorageError,
    ValidationError,
)

router = APIRouter()

_REGISTRY_ERRORS = (NotFoundError, ConflictError, ValidationError, StorageError)


def get_registry_service() -> RegistryService:
    return RegistryService()


Service = Annotated[RegistryService, Depends(get_registry_service)]


def _handle_registry_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, StorageError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


# Terminals


@router.post(
    "/terminals",
    response_model=TerminalRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_terminal(payload: TerminalCreate, service: Service) -> TerminalRead:
    try:
        return TerminalRead.model_validate(service.create_terminal(payload))
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/terminals",
    response_model=list[TerminalRead],
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def list_terminals(service: Service) -> list[TerminalRead]:
    return [TerminalRead.model_validate(item) for item in service.list_terminals()]


@router.get(
    "/terminals/{terminal_id}",
    response_model=TerminalRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_terminal(terminal_id: str, service: Service) -> TerminalRead:
    try:
        return TerminalRead.model_validate(service.get_terminal(terminal_id))
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.patch(
    "/terminals/{terminal_id}",
    response_model=TerminalRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def update_terminal(terminal_id: str, payload: TerminalUpdate, service: Service) -> TerminalRead:
    try:
        return TerminalRead.model_validate(service.update_terminal(terminal_id, payload))
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.delete(
    "/terminals/{terminal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_terminal(terminal_id: str, service: Service) -> Response:
    try:
        service.delete_terminal(terminal_id)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Locations


@router.post(
    "/terminals/{terminal_id}/locations",
    response_model=LocationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_location(terminal_id: str, payload: LocationCreate, service: Service) -> LocationRead:
    try:
        return LocationRead.model_validate(service.create_location(terminal_id, payload))
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/terminals/{terminal_id}/locations",
    response_model=list[LocationRead],
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def list_locations(terminal_id: str, service: Service) -> list[LocationRead]:
    try:
        return [LocationRead.model_validate(item) for item in service.list_locations(terminal_id)]
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/locations/{location_id}",
    response_model=LocationRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_location(location_id: str, service: Service) -> LocationRead:
    try:
        return LocationRead.model_validate(service.get_location(location_id))
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.patch(
    "/locations/{location_id}",
    response_model=LocationRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def update_location(location_id: str, payload: LocationUpdate, service: Service) -> LocationRead:
    try:
        return LocationRead.model_validate(service.update_location(location_id, payload))
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.delete(
    "/locations/{location_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_location(location_id: str, service: Service) -> Response:
    try:
        service.delete_location(location_id)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Diagrams


@router.post(
    "/diagrams",
    response_model=DiagramRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
async def create_diagram(
    request: Request,
    service: Service,
    name: Annotated[str, Query(min_length=1)],
    location_id: str | None = None,
    x_filename: Annotated[str, Header(alias="X-Filename")] = "diagram.pdf",
) -> DiagramRead:
    content = await request.body()
    try:
        diagram = service.create_diagram(
            name=name,
            location_id=location_id,
            original_name=x_filename,
            content=content,
        )
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(
        request,
        action="registry.diagram.create",
        resource=f"diagrams/{diagram.id}",
        detail={"what": {"original_name": x_filename, "size_bytes": len(content)}},
    )
    return DiagramRead.model_validate(diagram)


@router.get(
    "/diagrams",
    response_model=list[DiagramRead],
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def list_diagrams(service: Service, location_id: str | None = None) -> list[DiagramRead]:
    return [DiagramRead.model_validate(item) for item in service.list_diagrams(location_id)]


@router.get(
    "/diagrams/{diagram_id}",
    response_model=DiagramRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_diagram(diagram_id: str, service: Service) -> DiagramRead:
    try:
        return DiagramRead.model_validate(service.get_diagram(diagram_id))
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/diagrams/{diagram_id}/pdf",
    response_class=FileResponse,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def download_diagram_pdf(diagram_id: str, service: Service) -> FileResponse:
    try:
        path = service.diagram_pdf_path(diagram_id)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise
    return FileResponse(path, media_type="application/pdf")


@router.put(
    "/diagrams/{diagram_id}/pdf",
    response_model=DiagramRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
async def replace_diagram_pdf(
    diagram_id: str,
    request: Request,
    service: Service,
    x_filename: Annotated[str, Header(alias="X-Filename")] = "diagram.pdf",
) -> DiagramRead:
    content = await request.body()
    try:
        diagram = service.replace_diagram_pdf(diagram_id, original_name=x_filename, content=content)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    return DiagramRead.model_validate(diagram)


@router.patch(
    "/diagrams/{diagram_id}",
    response_model=DiagramRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def update_diagram(diagram_id: str, payload: DiagramUpdate, service: Service) -> DiagramRead:
    try:
        return DiagramRead.model_validate(service.update_diagram(diagram_id, payload))
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.delete(
    "/diagrams/{diagram_id}",
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_diagram(diagram_id: str, request: Request, service: Service) -> dict[str, int]:
    try:
        removed = service.delete_diagram(diagram_id)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    set_audit_context(request, action="registry.diagram.delete", detail={"what": {"removed": removed}})
    return removed


# Annotations


@router.post(
    "/diagrams/{diagram_id}/annotations",
    response_model=AnnotationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def create_annotation(diagram_id: str, payload: AnnotationCreate, service: Service) -> AnnotationRead:
    try:
        return service.create_annotation(diagram_id, payload)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/diagrams/{diagram_id}/annotations",
    response_model=list[AnnotationRead],
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def list_annotations(
    diagram_id: str,
    service: Service,
    annotation_type: Annotated[AnnotationType | None, Query(alias="type")] = None,
) -> list[AnnotationRead]:
    try:
        return service.list_annotations(diagram_id, annotation_type)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.get(
    "/annotations/{annotation_id}",
    response_model=AnnotationRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_READ))],
)
def get_annotation(annotation_id: str, service: Service) -> AnnotationRead:
    try:
        return service.get_annotation(annotation_id)
    except NotFoundError as exc:
        _handle_registry_error(exc)
        raise


@router.patch(
    "/annotations/{annotation_id}",
    response_model=AnnotationRead,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def update_annotation(annotation_id: str, payload: AnnotationUpdate, service: Service) -> AnnotationRead:
    try:
        return service.update_annotation(annotation_id, payload)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise


@router.delete(
    "/annotations/{annotation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_REGISTRY_WRITE))],
)
def delete_annotation(annotation_id: str, service: Service) -> Response:
    try:
        service.delete_annotation(annotation_id)
    except _REGISTRY_ERRORS as exc:
        _handle_registry_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
