# sealdesk/identity/repository.py

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from sealdesk.identity.models import IdentityVerification


class IdentityVerificationRepository:
    """
    Repository for identity verification records.
    """

    def __init__(self, db: Session):
        self.db = db

    def add(self, record: IdentityVerification) -> IdentityVerification:
        self.db.add(record)
        self.db.flush()
        return record

    def get_by_reference(self, signer_id: str, evidence_ref: str) -> Optional[IdentityVerification]:
        stmt = (
            select(IdentityVerification)
            .where(
                IdentityVerification.signer_id == signer_id,
                IdentityVerification.evidence_ref == evidence_ref,
            )
            .order_by(IdentityVerification.created_on.desc())
        )
        return self.db.execute(stmt).scalars().first()

    def list_for_signer(self, signer_id: str) -> List[IdentityVerification]:
        stmt = (
            select(IdentityVerification)
            .where(IdentityVerification.signer_id == signer_id)
            .order_by(IdentityVerification.created_on, IdentityVerification.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_envelope(self, envelope_id: str) -> List[IdentityVerification]:
        stmt = (
            select(IdentityVerification)
            .where(IdentityVerification.envelope_id == envelope_id)
            .order_by(IdentityVerification.created_on, IdentityVerification.id)
        )
        return list(self.db.execute(stmt).scalars().all())
