# sealdesk/fields/models.py

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sealdesk.core.db import Base
from sealdesk.core.mixins import AuditMixin, new_id


class Field(Base, AuditMixin):
    """
    A field placed on a document.

    Geometry is in percentages of the page (x/y measured from the top-left
    corner). ``field_key`` is the caller-chosen id that formulas, rules and
    submitted values refer to; it is unique within the envelope. Visibility
    and the effective required flag are derived at resolution time and
    never stored.
    """
    __tablename__ = "fields"
    __table_args__ = (UniqueConstraint("document_id", "field_key", name="uq_fields_document_key"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    field_key: Mapped[str] = mapped_column(String(64), index=True)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), index=True
    )
    signer_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("signers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    type: Mapped[str] = mapped_column(String(32))
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    page: Mapped[int] = mapped_column(Integer, default=1)
    x: Mapped[float] = mapped_column(Float)
    y: Mapped[float] = mapped_column(Float)
    width: Mapped[float] = mapped_column(Float)
    height: Mapped[float] = mapped_column(Float)

    required: Mapped[bool] = mapped_column(Boolean, default=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    filled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    formula: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    options: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    conditional_rules: Mapped[List[dict]] = mapped_column(JSON, default=list)
    validation_rules: Mapped[List[dict]] = mapped_column(JSON, default=list)
    linked_group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Relationships
    document: Mapped["Document"] = relationship(back_populates="fields")
    signer: Mapped[Optional["Signer"]] = relationship(back_populates="fields")

    def __repr__(self):
        return f"<Field(id={self.id}, key={self.field_key}, type={self.type}, signer_id={self.signer_id})>"
