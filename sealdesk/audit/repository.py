# sealdesk/audit/repository.py

"""
Repository layer for the audit ledger.
Reads are always ordered by the per-envelope sequence, never by timestamp.
"""

from typing import Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from sealdesk.audit.models import AuditEvent


class AuditEventRepository:
    """Repository for audit event database operations"""

    def __init__(self, db: Session):
        self.db = db

    def last_for_envelope(self, envelope_id: str) -> Optional[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.envelope_id == envelope_id)
            .order_by(desc(AuditEvent.sequence))
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, event: AuditEvent) -> AuditEvent:
        self.db.add(event)
        self.db.flush()
        return event

    def list_for_envelope(self, envelope_id: str) -> List[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.envelope_id == envelope_id)
            .order_by(AuditEvent.sequence)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_signer(self, signer_id: str) -> List[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.signer_id == signer_id)
            .order_by(AuditEvent.envelope_id, AuditEvent.sequence)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_recent(self, limit: int = 50) -> List[AuditEvent]:
        stmt = select(AuditEvent).order_by(desc(AuditEvent.timestamp)).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def counts_by_type(self, envelope_id: str) -> Dict[str, int]:
        stmt = (
            select(AuditEvent.event_type, func.count())
            .where(AuditEvent.envelope_id == envelope_id)
            .group_by(AuditEvent.event_type)
        )
        return {event_type: count for event_type, count in self.db.execute(stmt).all()}

    def latest_of_type(self, envelope_id: str, signer_id: str, event_type: str) -> Optional[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(
                AuditEvent.envelope_id == envelope_id,
                AuditEvent.signer_id == signer_id,
                AuditEvent.event_type == event_type,
            )
            .order_by(desc(AuditEvent.sequence))
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()
