# sealdesk/workflow/models.py

"""
Envelope workflow models - SQLAlchemy 2.x

- Envelope: unit of work, owns documents and signers, carries routing rules.
- Document: stored PDF plus content hash; gains a sealed variant on completion.
- Signer: party that must act, with order/group, token and consent evidence.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sealdesk.core.db import Base
from sealdesk.core.mixins import AuditMixin, new_id


# === Enums ===

class EnvelopeStatus(str, PyEnum):
    """Lifecycle of an envelope"""
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VOIDED = "voided"
    EXPIRED = "expired"


TERMINAL_ENVELOPE_STATUSES = (
    EnvelopeStatus.COMPLETED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED,
)
ACTIVE_ENVELOPE_STATUSES = (EnvelopeStatus.SENT, EnvelopeStatus.IN_PROGRESS)


class SigningMode(str, PyEnum):
    REMOTE = "remote"
    IN_PERSON = "in_person"


class SigningOrder(str, PyEnum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class VerificationLevel(str, PyEnum):
    """eIDAS assurance level requested for the envelope"""
    SIMPLE = "simple"
    ADVANCED = "advanced"
    QUALIFIED = "qualified"


class SignerStatus(str, PyEnum):
    """
    Signer progression. ``delayed`` is non-terminal but not yet allowed to
    act; ``completed`` is accepted as a legacy spelling of ``signed``.
    """
    PENDING = "pending"
    SENT = "sent"
    NOTIFIED = "notified"
    DELAYED = "delayed"
    SIGNED = "signed"
    COMPLETED = "completed"
    DECLINED = "declined"


TERMINAL_SIGNER_STATUSES = (SignerStatus.SIGNED, SignerStatus.COMPLETED, SignerStatus.DECLINED)
NON_TERMINAL_SIGNER_STATUSES = (
    SignerStatus.PENDING, SignerStatus.SENT, SignerStatus.NOTIFIED, SignerStatus.DELAYED,
)


# === Envelope Model ===

class Envelope(Base, AuditMixin):
    """
    Envelope routed to one or more signers.

    Mutated only by the envelope service; every mutation is recorded in the
    audit ledger.
    """
    __tablename__ = "envelopes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    subject: Mapped[str] = mapped_column(String(255))
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=EnvelopeStatus.DRAFT.value, index=True)
    signing_mode: Mapped[str] = mapped_column(String(32), default=SigningMode.REMOTE.value)
    signing_order: Mapped[str] = mapped_column(String(32), default=SigningOrder.SEQUENTIAL.value)
    verification_level: Mapped[str] = mapped_column(String(32), default=VerificationLevel.SIMPLE.value)
    routing_rules: Mapped[Optional[List[dict]]] = mapped_column(JSON, nullable=True)
    meta_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)

    created_by: Mapped[str] = mapped_column(String(255), default="system", index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    completion_cert_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Relationships
    documents: Mapped[List["Document"]] = relationship(
        back_populates="envelope", cascade="all, delete-orphan", order_by="Document.order"
    )
    signers: Mapped[List["Signer"]] = relationship(
        back_populates="envelope", cascade="all, delete-orphan", order_by="Signer.order"
    )

    def __repr__(self):
        return f"<Envelope(id={self.id}, status={self.status})>"


# === Document Model ===

class Document(Base, AuditMixin):
    """Stored document; the original is immutable, sealing adds a new key"""
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    envelope_id: Mapped[str] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"), index=True
    )
    filename: Mapped[str] = mapped_column(String(255))
    content_type: Mapped[str] = mapped_column(String(128), default="application/pdf")
    storage_key: Mapped[str] = mapped_column(String(512))
    document_hash: Mapped[str] = mapped_column(String(64))
    order: Mapped[int] = mapped_column(Integer, default=0)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    visibility: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    sealed_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    sealed_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sealed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    envelope: Mapped["Envelope"] = relationship(back_populates="documents")
    fields: Mapped[List["Field"]] = relationship(
        back_populates="document", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Document(id={self.id}, filename={self.filename})>"


# === Signer Model ===

class Signer(Base, AuditMixin):
    """Party required to act on an envelope"""
    __tablename__ = "signers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    envelope_id: Mapped[str] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(64), default="signer")
    order: Mapped[int] = mapped_column(Integer, default=1)
    signing_group: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=SignerStatus.PENDING.value, index=True)

    signing_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delayed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    consented_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    geolocation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    delegated_from: Mapped[Optional[str]] = mapped_column(
        ForeignKey("signers.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    envelope: Mapped["Envelope"] = relationship(back_populates="signers")
    fields: Mapped[List["Field"]] = relationship(back_populates="signer")
    delegator: Mapped[Optional["Signer"]] = relationship(
        remote_side="Signer.id", foreign_keys=[delegated_from]
    )

    __table_args__ = (
        Index("idx_signer_envelope_order", "envelope_id", "order"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_SIGNER_STATUSES}

    def __repr__(self):
        return f"<Signer(id={self.id}, email={self.email}, status={self.status})>"
