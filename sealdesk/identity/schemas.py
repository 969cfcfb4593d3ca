# sealdesk/identity/schemas.py

"""
Pydantic schemas for the identity ceremony and qualified signatures.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# === Enums ===

class VerificationMethod(str, Enum):
    """AES identity verification methods"""
    TWO_FACTOR = "email_sms"
    GOVERNMENT_ID = "government_id"
    BANK_ID = "bank_id"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class QESStatus(str, Enum):
    """QES session lifecycle; ``signed``, ``failed`` and ``expired`` are absorbing"""
    INITIATED = "initiated"
    IDENTITY_PENDING = "identity_pending"
    IDENTITY_VERIFIED = "identity_verified"
    CERTIFICATE_ISSUED = "certificate_issued"
    SIGNING_READY = "signing_ready"
    SIGNED = "signed"
    FAILED = "failed"
    EXPIRED = "expired"


QES_PROGRESSION = [
    QESStatus.INITIATED,
    QESStatus.IDENTITY_PENDING,
    QESStatus.IDENTITY_VERIFIED,
    QESStatus.CERTIFICATE_ISSUED,
    QESStatus.SIGNING_READY,
    QESStatus.SIGNED,
]
QES_ABSORBING = (QESStatus.SIGNED, QESStatus.FAILED, QESStatus.EXPIRED)


# === AES ===

class AESVerificationResult(BaseModel):
    verified: bool
    method: VerificationMethod
    provider: str = "internal"
    evidence_ref: str = ""
    verified_at: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class TwoFactorChallenge(BaseModel):
    signer_id: str
    email_sent: bool
    sms_sent: bool
    expires_at: datetime


class TwoFactorCompleteRequest(BaseModel):
    email_code: str = Field(..., min_length=1, max_length=12)
    sms_code: str = Field(..., min_length=1, max_length=12)


class GovernmentIdSession(BaseModel):
    session_id: str
    redirect_url: str
    provider: str


class GovernmentIdResult(BaseModel):
    verified: bool
    document_type: Optional[str] = None
    document_country: Optional[str] = None
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    expiry_date: Optional[str] = None
    verification_id: str
    provider: str


class VerificationEvidence(BaseModel):
    """Evidence summary carried into the audit trail and the certificate"""
    method: VerificationMethod
    provider: str
    verified_at: Optional[datetime] = None
    evidence_ref: Optional[str] = None
    email_verified: Optional[bool] = None
    sms_verified: Optional[bool] = None
    government_id_result: Optional[GovernmentIdResult] = None
    fallback_from: Optional[VerificationMethod] = None
    fallback_reason: Optional[str] = None


class IdentityVerificationResponse(BaseModel):
    id: str
    signer_id: str
    method: str
    provider: Optional[str] = None
    status: str
    evidence: Dict[str, Any] = Field(default_factory=dict)
    verified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# === QES ===

class SignerInfo(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    nationality: Optional[str] = None


class QESSession(BaseModel):
    session_id: str
    provider: str
    status: QESStatus
    identity_verification_url: Optional[str] = None
    expires_at: datetime


class QESSignatureResult(BaseModel):
    signature: bytes
    certificate: bytes
    timestamp: datetime
    tsp_name: str
    certificate_serial: str
    qscd_reference: str


class QESSignRequest(BaseModel):
    session_id: str
    document_hash: str = Field(..., min_length=64, max_length=64)


class QESEvidence(BaseModel):
    tsp_name: str
    provider: str
    session_id: str
    certificate_serial: str
    qscd_reference: str
    timestamp: datetime
    document_hash: str


class QESAvailability(BaseModel):
    available: bool
    provider: Optional[str] = None
    supported: List[str] = Field(default_factory=list)
