## sealdesk/audit/models.py

# Standard library imports
from datetime import datetime
from typing import Optional

# Third party imports
from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

# Local imports
from sealdesk.core.db import Base
from sealdesk.core.mixins import AuditMixin, new_id


class AuditEvent(Base, AuditMixin):
    """
    Append-only, hash-chained ledger entry.

    ``sequence`` is the per-envelope insertion order and is the only order
    the chain is replayed in. Rows are never updated except by
    anonymization, which nulls personal data and leaves both hashes alone.
    """
    __tablename__ = "audit_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    # No foreign keys: the ledger outlives envelope deletion
    envelope_id: Mapped[str] = mapped_column(String(64))
    signer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sequence: Mapped[int] = mapped_column(Integer)
    event_type: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON, default=dict)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    geolocation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Exact ISO timestamp that went into the hash
    timestamp: Mapped[str] = mapped_column(String(40))
    event_hash: Mapped[str] = mapped_column(String(64))
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    anonymized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("envelope_id", "sequence", name="uq_audit_envelope_sequence"),
        Index("idx_audit_envelope_sequence", "envelope_id", "sequence"),
        Index("idx_audit_signer", "signer_id", "sequence"),
    )

    def __repr__(self):
        return f"<AuditEvent(id={self.id}, envelope_id={self.envelope_id}, type={self.event_type}, seq={self.sequence})>"
