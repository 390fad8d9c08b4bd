from typing import Annotated, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from contractsign.api.deps import get_document_service
from contractsign.core.errors import (
    ContractSignError,
    ConversionError,
    NotFoundError,
    RenderError,
    SigningError,
)
from contractsign.core.logging_setup import logger
from contractsign.models.document import GeneratedDocument
from contractsign.schemas.document import (
    GenerateDocumentRequest,
    GeneratedDocumentRead,
    PadesSignRequest,
    RegenerateWithSignatureRequest,
    VerificationResult,
)
from contractsign.services.document import DocumentService

router = APIRouter(prefix="/documents", tags=["documents"])

ServiceDep = Annotated[DocumentService, Depends(get_document_service)]

_STATUS_BY_ERROR: tuple[tuple[type[ContractSignError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (RenderError, status.HTTP_400_BAD_REQUEST),
    (SigningError, status.HTTP_400_BAD_REQUEST),
    (ConversionError, status.HTTP_502_BAD_GATEWAY),
)


def _raise_http(exc: ContractSignError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error("Document pipeline failed: %s", exc)
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc


def _read(document: GeneratedDocument) -> GeneratedDocumentRead:
    payload = GeneratedDocumentRead.model_validate(document, from_attributes=True)
    return payload.model_copy(update={"status": DocumentService.status_of(document)})


@router.post("/generate", response_model=GeneratedDocumentRead, status_code=status.HTTP_201_CREATED)
def generate_document(payload: GenerateDocumentRequest, service: ServiceDep) -> GeneratedDocumentRead:
    try:
        document = service.generate(payload.template_id, payload.project)
    except ContractSignError as exc:
        _raise_http(exc)
    return _read(document)


@router.post("/regenerate-with-signature", response_model=GeneratedDocumentRead)
def regenerate_with_signature(payload: RegenerateWithSignatureRequest, service: ServiceDep) -> GeneratedDocumentRead:
    try:
        document = service.regenerate_with_signature(payload.document_id, payload.signature_data)
    except ContractSignError as exc:
        _raise_http(exc)
    return _read(document)


@router.post("/sign-pades", response_model=GeneratedDocumentRead)
def sign_pades(payload: PadesSignRequest, service: ServiceDep) -> GeneratedDocumentRead:
    try:
        document = service.sign(
            payload.document_id,
            payload.signer_role,
            payload.identity(),
            payload.visual_signature,
        )
    except ContractSignError as exc:
        _raise_http(exc)
    return _read(document)


@router.get("/{document_id}/verify-signatures", response_model=VerificationResult)
def verify_signatures(document_id: UUID, service: ServiceDep) -> VerificationResult:
    try:
        return service.verify(document_id)
    except ContractSignError as exc:
        _raise_http(exc)


@router.get("/{document_id}", response_model=GeneratedDocumentRead)
def get_document_detail(document_id: UUID, service: ServiceDep) -> GeneratedDocumentRead:
    try:
        document = service.get_document(document_id)
    except ContractSignError as exc:
        _raise_http(exc)
    return _read(document)


@router.get("/{document_id}/file")
def download_document(document_id: UUID, service: ServiceDep) -> Response:
    try:
        document, pdf_bytes = service.load_file(document_id)
    except ContractSignError as exc:
        _raise_http(exc)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{document.file_name}"'},
    )
