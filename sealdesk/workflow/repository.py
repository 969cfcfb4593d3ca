# sealdesk/workflow/repository.py

"""
Repository layer for the envelope workflow.
Handles all database operations for envelopes, documents, signers and fields.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from sealdesk.fields.models import Field
from sealdesk.utils.logger import get_logger
from sealdesk.workflow.models import (
    ACTIVE_ENVELOPE_STATUSES, Document, Envelope, Signer, SignerStatus,
)
from sealdesk.workflow.schemas import EnvelopeFilters

logger = get_logger(__name__)


class EnvelopeRepository:
    """
    Repository for envelope database operations.
    """

    def __init__(self, db: Session):
        self.db = db

    # === Envelope Operations ===

    def add(self, envelope: Envelope) -> Envelope:
        self.db.add(envelope)
        self.db.flush()
        logger.debug(f"Added envelope: {envelope.id}")
        return envelope

    def get(self, envelope_id: str) -> Optional[Envelope]:
        stmt = (
            select(Envelope)
            .where(Envelope.id == envelope_id)
            .options(selectinload(Envelope.signers), selectinload(Envelope.documents))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(self, envelope_id: str) -> Optional[Envelope]:
        """Load the envelope with a row lock; SQLite ignores FOR UPDATE"""
        stmt = select(Envelope).where(Envelope.id == envelope_id).with_for_update()
        envelope = self.db.execute(stmt).scalar_one_or_none()
        if envelope is not None:
            # Pick up writes committed by other sessions since our last read
            self.db.refresh(envelope)
            for signer in envelope.signers:
                self.db.refresh(signer)
        return envelope

    def list(self, filters: EnvelopeFilters) -> Tuple[List[Envelope], int]:
        """Get envelopes with filters and pagination"""
        conditions = []
        if filters.status:
            conditions.append(Envelope.status == filters.status.value)
        if filters.created_by:
            conditions.append(Envelope.created_by == filters.created_by)
        if filters.search:
            conditions.append(Envelope.subject.ilike(f"%{filters.search}%"))

        stmt = select(Envelope)
        count_stmt = select(func.count()).select_from(Envelope)
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        total = self.db.execute(count_stmt).scalar() or 0
        stmt = (
            stmt.order_by(Envelope.created_on.desc(), Envelope.id)
            .offset(filters.offset)
            .limit(filters.limit)
            .options(selectinload(Envelope.signers), selectinload(Envelope.documents))
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def list_expirable(self, now: datetime) -> List[Envelope]:
        stmt = select(Envelope).where(
            Envelope.status.in_([s.value for s in ACTIVE_ENVELOPE_STATUSES]),
            Envelope.expires_at.is_not(None),
            Envelope.expires_at <= now,
        )
        return list(self.db.execute(stmt).scalars().all())

    # === Signer Operations ===

    def get_signer(self, signer_id: str) -> Optional[Signer]:
        return self.db.get(Signer, signer_id)

    def get_signer_by_token(self, token: str) -> Optional[Signer]:
        stmt = select(Signer).where(Signer.signing_token == token)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_due_delayed_signers(self, now: datetime) -> List[Signer]:
        stmt = select(Signer).where(
            Signer.status == SignerStatus.DELAYED.value,
            or_(Signer.delayed_until.is_(None), Signer.delayed_until <= now),
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_awaiting_signers(self) -> List[Signer]:
        """Signers who were notified and have not acted, on active envelopes"""
        stmt = (
            select(Signer)
            .join(Envelope, Envelope.id == Signer.envelope_id)
            .where(
                Envelope.status.in_([s.value for s in ACTIVE_ENVELOPE_STATUSES]),
                Signer.status.in_([SignerStatus.SENT.value, SignerStatus.NOTIFIED.value]),
            )
        )
        return list(self.db.execute(stmt).scalars().all())

    def add_signer(self, signer: Signer) -> Signer:
        self.db.add(signer)
        self.db.flush()
        return signer

    # === Document and Field Operations ===

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.db.get(Document, document_id)

    def list_fields(self, envelope_id: str) -> List[Field]:
        stmt = (
            select(Field)
            .join(Document, Document.id == Field.document_id)
            .where(Document.envelope_id == envelope_id)
            .order_by(Document.order, Field.page, Field.field_key)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_document_fields(self, document_id: str) -> List[Field]:
        stmt = select(Field).where(Field.document_id == document_id).order_by(Field.page, Field.field_key)
        return list(self.db.execute(stmt).scalars().all())
