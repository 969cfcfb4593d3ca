# sealdesk/sealing/schemas.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EidasLevel(str, Enum):
    SIMPLE = "simple"
    ADVANCED = "advanced"
    QUALIFIED = "qualified"


class FieldStamp(BaseModel):
    """A filled field to be burned into the document"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(validation_alias=AliasChoices("field_key", "id"))
    type: str
    page: int
    x: float
    y: float
    width: float
    height: float
    value: Optional[str] = None
    signer_id: Optional[str] = None


class SealResult(BaseModel):
    document_id: str
    sealed_key: str
    sealed_hash: str
    merge_hash: str
    sealed_at: datetime
    eidas_level: EidasLevel
    fields_rendered: int


class SealVerification(BaseModel):
    valid: bool
    document_hash: str = ""
    sealed_at: Optional[str] = None
    eidas_level: Optional[str] = None
    identity_verifications: List[Dict[str, Any]] = Field(default_factory=list)


class CertificateSigner(BaseModel):
    name: str
    email: str
    status: str
    signed_at: Optional[datetime] = None
    consented_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    delegation_chain: List[str] = Field(default_factory=list)


class CertificateData(BaseModel):
    """Everything printed on a completion certificate"""
    envelope_id: str
    subject: str
    completed_at: datetime
    document_hashes: Dict[str, str] = Field(default_factory=dict)
    signers: List[CertificateSigner] = Field(default_factory=list)
    identity_evidence: List[Dict[str, Any]] = Field(default_factory=list)
    qes_evidence: List[Dict[str, Any]] = Field(default_factory=list)
    audit_trail: List[Dict[str, Any]] = Field(default_factory=list)
