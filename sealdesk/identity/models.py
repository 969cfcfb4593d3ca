# sealdesk/identity/models.py

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from sealdesk.core.db import Base
from sealdesk.core.mixins import AuditMixin, new_id


class IdentityVerification(Base, AuditMixin):
    """
    Outcome of one identity or qualified-signature ceremony for a signer.
    """
    __tablename__ = "identity_verifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    signer_id: Mapped[str] = mapped_column(ForeignKey("signers.id", ondelete="CASCADE"), index=True)
    envelope_id: Mapped[str] = mapped_column(String(64), index=True)

    # email_sms | government_id | bank_id | qes
    method: Mapped[str] = mapped_column(String(32))
    provider: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32))
    evidence_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    evidence: Mapped[dict] = mapped_column(JSON, default=dict)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<IdentityVerification(id={self.id}, signer_id={self.signer_id}, method={self.method}, status={self.status})>"
