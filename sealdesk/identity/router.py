# sealdesk/identity/router.py

"""
FastAPI router for the identity ceremony.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from sealdesk.identity.schemas import (
    AESVerificationResult, IdentityVerificationResponse, QESAvailability, QESEvidence,
    QESSession, QESSignRequest, TwoFactorChallenge, TwoFactorCompleteRequest,
    VerificationMethod,
)
from sealdesk.identity.services import IdentityCeremony, get_identity_ceremony
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Identity"], prefix="/identity")


# === AES ===

@router.post("/signers/{signer_id}/aes", response_model=AESVerificationResult)
def verify_identity_aes(
    signer_id: str,
    method: VerificationMethod = Query(VerificationMethod.TWO_FACTOR),
    ceremony: IdentityCeremony = Depends(get_identity_ceremony),
):
    """Start AES verification with the requested method"""
    logger.info("AES verification requested", signer_id=signer_id, method=method.value)
    return ceremony.verify_identity_aes(signer_id, method)


@router.post("/signers/{signer_id}/two-factor", response_model=TwoFactorChallenge)
def start_two_factor(signer_id: str, ceremony: IdentityCeremony = Depends(get_identity_ceremony)):
    return ceremony.start_two_factor(signer_id)


@router.post("/signers/{signer_id}/two-factor/complete", response_model=AESVerificationResult)
def complete_two_factor(
    signer_id: str,
    request: TwoFactorCompleteRequest,
    ceremony: IdentityCeremony = Depends(get_identity_ceremony),
):
    return ceremony.complete_two_factor(signer_id, request.email_code, request.sms_code)


@router.post("/signers/{signer_id}/government-id", response_model=AESVerificationResult)
def start_government_id(signer_id: str, ceremony: IdentityCeremony = Depends(get_identity_ceremony)):
    return ceremony.start_government_id(signer_id)


@router.get("/signers/{signer_id}/government-id/{session_id}", response_model=AESVerificationResult)
def check_government_id(
    signer_id: str, session_id: str, ceremony: IdentityCeremony = Depends(get_identity_ceremony),
):
    return ceremony.check_government_id(signer_id, session_id)


@router.get("/signers/{signer_id}/verifications", response_model=List[IdentityVerificationResponse])
def list_verifications(signer_id: str, ceremony: IdentityCeremony = Depends(get_identity_ceremony)):
    return ceremony.list_verifications(signer_id)


# === QES ===

@router.get("/qes/availability", response_model=QESAvailability)
def qes_availability(ceremony: IdentityCeremony = Depends(get_identity_ceremony)):
    return ceremony.qes_availability()


@router.post("/signers/{signer_id}/qes", response_model=QESSession)
def initiate_qes(
    signer_id: str,
    date_of_birth: Optional[str] = Query(None),
    nationality: Optional[str] = Query(None),
    ceremony: IdentityCeremony = Depends(get_identity_ceremony),
):
    return ceremony.initiate_qes(signer_id, date_of_birth=date_of_birth, nationality=nationality)


@router.get("/qes/{session_id}")
def qes_status(session_id: str, ceremony: IdentityCeremony = Depends(get_identity_ceremony)):
    return {"session_id": session_id, "status": ceremony.qes_status(session_id).value}


@router.post("/signers/{signer_id}/qes/sign", response_model=QESEvidence)
def qes_sign(
    signer_id: str,
    request: QESSignRequest,
    ceremony: IdentityCeremony = Depends(get_identity_ceremony),
):
    logger.info("QES signing requested", signer_id=signer_id, session_id=request.session_id)
    return ceremony.qes_sign(signer_id, request.session_id, request.document_hash)
