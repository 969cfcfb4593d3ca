# sealdesk/workflow/router.py

"""
FastAPI router for envelopes and the signing ceremony.

Routes only translate HTTP into service calls; domain errors are turned
into responses by the application-wide exception handler.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response

from sealdesk.fields.schemas import ResolvedField
from sealdesk.sealing.schemas import SealVerification
from sealdesk.utils.logger import get_logger
from sealdesk.workflow.exceptions import EnvelopeNotFoundException
from sealdesk.workflow.models import EnvelopeStatus
from sealdesk.workflow.schemas import (
    ConsentRequest, DeclineRequest, DelegateRequest, EnvelopeCreate, EnvelopeFilters,
    EnvelopeListResponse, EnvelopeResponse, ResolveFieldsRequest, SignerResponse,
    SigningSessionResponse, SignRequest, SignResult, VoidRequest,
)
from sealdesk.workflow.services import EnvelopeService, get_envelope_service

logger = get_logger(__name__)
router = APIRouter(tags=["Envelopes"], prefix="/envelopes")
signing_router = APIRouter(tags=["Signing"], prefix="/sign")


def _client_ip(request: Request, supplied: Optional[str]) -> Optional[str]:
    if supplied:
        return supplied
    return request.client.host if request.client else None


# ===================== Envelope Operations =====================

@router.post("", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
def create_envelope(data: EnvelopeCreate, service: EnvelopeService = Depends(get_envelope_service)):
    """
    Create a draft envelope with documents, signers and fields.
    """
    return service.create_envelope(data)


@router.get("", response_model=EnvelopeListResponse)
def list_envelopes(
    status_filter: Optional[EnvelopeStatus] = Query(None, alias="status"),
    created_by: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Subject contains"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: EnvelopeService = Depends(get_envelope_service),
):
    filters = EnvelopeFilters(
        status=status_filter, created_by=created_by, search=search, limit=limit, offset=offset,
    )
    return service.list_envelopes(filters)


@router.get("/{envelope_id}", response_model=EnvelopeResponse)
def get_envelope(envelope_id: str, service: EnvelopeService = Depends(get_envelope_service)):
    envelope = service.get_envelope(envelope_id)
    if envelope is None:
        raise EnvelopeNotFoundException(envelope_id)
    return envelope


@router.post("/{envelope_id}/send", response_model=EnvelopeResponse)
def send_envelope(envelope_id: str, service: EnvelopeService = Depends(get_envelope_service)):
    logger.info("Send requested", envelope_id=envelope_id)
    return service.send_envelope(envelope_id)


@router.post("/{envelope_id}/void", response_model=EnvelopeResponse)
def void_envelope(
    envelope_id: str,
    request: Optional[VoidRequest] = None,
    service: EnvelopeService = Depends(get_envelope_service),
):
    logger.info("Void requested", envelope_id=envelope_id)
    return service.void_envelope(envelope_id, request.reason if request else None)


@router.post("/{envelope_id}/complete", response_model=EnvelopeResponse)
def complete_envelope(envelope_id: str, service: EnvelopeService = Depends(get_envelope_service)):
    return service.complete_envelope(envelope_id)


@router.post("/{envelope_id}/fields/resolve", response_model=List[ResolvedField])
def resolve_fields(
    envelope_id: str,
    request: ResolveFieldsRequest,
    service: EnvelopeService = Depends(get_envelope_service),
):
    """
    Preview visibility, required flags and calculated values for the given input.
    """
    return service.resolve_fields(envelope_id, request.values)


@router.get("/{envelope_id}/documents/{document_id}/sealed")
def download_sealed_document(
    envelope_id: str, document_id: str, service: EnvelopeService = Depends(get_envelope_service),
):
    content = service.download_sealed_document(envelope_id, document_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=sealed_{document_id}.pdf"},
    )


@router.get("/{envelope_id}/documents/{document_id}/verify", response_model=SealVerification)
def verify_sealed_document(
    envelope_id: str, document_id: str, service: EnvelopeService = Depends(get_envelope_service),
):
    return service.verify_sealed_document(envelope_id, document_id)


# ===================== Signing Ceremony =====================

@signing_router.get("/{token}", response_model=SigningSessionResponse)
def open_signing_session(
    token: str, request: Request, service: EnvelopeService = Depends(get_envelope_service),
):
    return service.open_signing_session(
        token, _client_ip(request, None), request.headers.get("user-agent"),
    )


@signing_router.post("/{token}/consent", response_model=SignerResponse)
def record_consent(
    token: str,
    body: ConsentRequest,
    request: Request,
    service: EnvelopeService = Depends(get_envelope_service),
):
    return service.record_consent(
        token, _client_ip(request, body.ip_address), body.user_agent or request.headers.get("user-agent"),
    )


@signing_router.post("/{token}", response_model=SignResult)
def sign(
    token: str,
    body: SignRequest,
    request: Request,
    service: EnvelopeService = Depends(get_envelope_service),
):
    """
    Submit field values and sign.
    """
    return service.sign(
        token,
        body.field_values,
        ip_address=_client_ip(request, body.ip_address),
        user_agent=body.user_agent or request.headers.get("user-agent"),
        geolocation=body.geolocation,
    )


@signing_router.post("/{token}/decline", response_model=SignResult)
def decline(
    token: str,
    body: DeclineRequest,
    request: Request,
    service: EnvelopeService = Depends(get_envelope_service),
):
    return service.decline(
        token,
        body.reason,
        ip_address=_client_ip(request, body.ip_address),
        user_agent=body.user_agent or request.headers.get("user-agent"),
    )


@signing_router.post("/{token}/delegate", response_model=SignerResponse, status_code=status.HTTP_201_CREATED)
def delegate(token: str, body: DelegateRequest, service: EnvelopeService = Depends(get_envelope_service)):
    return service.delegate(token, body.name, body.email, body.reason)
