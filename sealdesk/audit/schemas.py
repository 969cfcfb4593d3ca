# sealdesk/audit/schemas.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    """Fixed enumeration of ledger event types"""
    CREATED = "created"
    SENT = "sent"
    OPENED = "opened"
    VIEWED = "viewed"
    CONSENTED = "consented"
    FIELD_FILLED = "field_filled"
    SIGNED = "signed"
    DECLINED = "declined"
    DELEGATED = "delegated"
    DELAYED = "delayed"
    DELAY_COMPLETED = "delay_completed"
    ROUTED = "routed"
    VOIDED = "voided"
    EXPIRED = "expired"
    REMINDED = "reminded"
    SEALED = "sealed"
    SEAL_FAILED = "seal_failed"
    CERTIFICATE_GENERATED = "certificate_generated"
    CERTIFICATE_FAILED = "certificate_failed"
    COMPLETED = "completed"
    DOWNLOADED = "downloaded"
    ACCESSED = "accessed"
    CORRECTED = "corrected"
    IDENTITY_INITIATED = "identity_initiated"
    IDENTITY_VERIFIED = "identity_verified"
    IDENTITY_FAILED = "identity_failed"
    QES_INITIATED = "qes_initiated"
    QES_SIGNED = "qes_signed"


EVENT_DESCRIPTIONS: Dict[AuditEventType, str] = {
    AuditEventType.CREATED: "Envelope was created",
    AuditEventType.SENT: "Envelope was sent to signers",
    AuditEventType.OPENED: "Signer opened the signing link",
    AuditEventType.VIEWED: "Signer viewed the document",
    AuditEventType.CONSENTED: "Signer consented to sign electronically",
    AuditEventType.FIELD_FILLED: "Signer filled a field",
    AuditEventType.SIGNED: "Signer completed signing",
    AuditEventType.DECLINED: "Signer declined to sign",
    AuditEventType.DELEGATED: "Signer delegated signing to another person",
    AuditEventType.DELAYED: "Signer was held back by a waiting period",
    AuditEventType.DELAY_COMPLETED: "Waiting period ended and signer was notified",
    AuditEventType.ROUTED: "Routing rule changed the signing flow",
    AuditEventType.VOIDED: "Envelope was voided by sender",
    AuditEventType.EXPIRED: "Envelope expired without completion",
    AuditEventType.REMINDED: "Reminder sent to signer",
    AuditEventType.SEALED: "Document was cryptographically sealed",
    AuditEventType.SEAL_FAILED: "Document sealing failed",
    AuditEventType.CERTIFICATE_GENERATED: "Completion certificate was generated",
    AuditEventType.CERTIFICATE_FAILED: "Completion certificate generation failed",
    AuditEventType.COMPLETED: "All signers finished and the envelope was completed",
    AuditEventType.DOWNLOADED: "Sealed document was downloaded",
    AuditEventType.ACCESSED: "Document was accessed",
    AuditEventType.CORRECTED: "Envelope was corrected after sending",
    AuditEventType.IDENTITY_INITIATED: "Identity verification was started",
    AuditEventType.IDENTITY_VERIFIED: "Signer identity was verified",
    AuditEventType.IDENTITY_FAILED: "Identity verification failed",
    AuditEventType.QES_INITIATED: "Qualified signature session was started",
    AuditEventType.QES_SIGNED: "Document hash was signed with a qualified certificate",
}


def is_valid_event_type(value: str) -> bool:
    return value in AuditEventType._value2member_map_


def format_event_type(event_type) -> str:
    """'field_filled' -> 'Field Filled'"""
    value = event_type.value if isinstance(event_type, AuditEventType) else str(event_type)
    return " ".join(word[:1].upper() + word[1:] for word in value.split("_"))


def describe_event_type(event_type) -> str:
    try:
        return EVENT_DESCRIPTIONS[AuditEventType(event_type)]
    except ValueError:
        return format_event_type(event_type)


class AuditEventCreate(BaseModel):
    envelope_id: str
    signer_id: Optional[str] = None
    event_type: AuditEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[str] = None


class StoredEvent(BaseModel):
    """An appended event, or a fallback record when the append failed"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    envelope_id: str
    signer_id: Optional[str] = None
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[str] = None
    sequence: Optional[int] = None
    timestamp: str
    event_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    anonymized_at: Optional[datetime] = None
    is_fallback: bool = False


class ChainVerification(BaseModel):
    """Result of replaying an envelope's hash chain"""
    envelope_id: str
    total_events: int
    chain_intact: bool
    broken_at_event_id: Optional[str] = None
    first_event_id: Optional[str] = None
    last_event_id: Optional[str] = None
    # Events whose stored hash no longer matches their content
    tampered_event_ids: List[str] = Field(default_factory=list)
