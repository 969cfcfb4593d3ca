# sealdesk/audit/services.py

"""
Audit ledger.

Every state change of an envelope is appended here as a hash-chained
event. Appending is best-effort: a storage failure is logged and a
fallback record (id ``failed-<timestamp>``, ``is_fallback=True``) is
returned so the signing ceremony is never blocked by the ledger. Gaps
are found after the fact with ``verify_chain``.
"""

# Standard library imports
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Third party imports
from fastapi import Depends
from sqlalchemy.orm import Session

# Local imports
from sealdesk.audit.models import AuditEvent
from sealdesk.audit.repository import AuditEventRepository
from sealdesk.audit.schemas import AuditEventType, ChainVerification, StoredEvent
from sealdesk.core.db import get_db
from sealdesk.core.locks import envelope_lock
from sealdesk.utils.hashing import canonical_json, hash_payload
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)

PII_PAYLOAD_KEYS = ("email", "name", "phone", "ip")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_event_hash(
    envelope_id: str,
    signer_id: Optional[str],
    event_type: str,
    payload: Dict[str, Any],
    timestamp: str,
    previous_hash: Optional[str],
) -> str:
    """SHA-256 over the canonical JSON of the event content"""
    return hash_payload(
        {
            "envelope_id": envelope_id,
            "signer_id": signer_id,
            "event_type": event_type,
            "payload": payload or {},
            "timestamp": timestamp,
            "previous_hash": previous_hash,
        }
    )


def get_audit_ledger(db: Session = Depends(get_db)) -> "AuditLedger":
    """Get audit ledger"""
    return AuditLedger(db)


class AuditLedger:
    """Service for hash-chained audit events"""

    def __init__(self, db, clock=_utcnow):
        self.db = db
        self.repository = AuditEventRepository(db)
        self.clock = clock

    def append(
        self,
        envelope_id: str,
        event_type: AuditEventType,
        signer_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        geolocation: Optional[str] = None,
    ) -> StoredEvent:
        """
        Append an event to the envelope's chain. Never raises.

        Returns:
            The stored event, or a fallback record when persisting failed
        """
        event_type = AuditEventType(event_type).value
        # Round-trip so the stored payload is exactly what was hashed
        payload = json.loads(canonical_json(payload or {}))
        timestamp = self.clock().isoformat()
        try:
            with envelope_lock(envelope_id):
                last = self.repository.last_for_envelope(envelope_id)
                previous_hash = last.event_hash if last else None
                event = AuditEvent(
                    envelope_id=envelope_id,
                    signer_id=signer_id,
                    sequence=(last.sequence + 1) if last else 1,
                    event_type=event_type,
                    payload=payload,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    geolocation=geolocation,
                    timestamp=timestamp,
                    previous_hash=previous_hash,
                    event_hash=compute_event_hash(
                        envelope_id, signer_id, event_type, payload, timestamp, previous_hash
                    ),
                )
                with self.db.begin_nested():
                    self.repository.add(event)
        except Exception as e:  # pylint: disable=broad-except
            logger.error(
                "Failed to append audit event",
                envelope_id=envelope_id, signer_id=signer_id,
                event_type=event_type, error=str(e), exc_info=True,
            )
            return StoredEvent(
                id=f"failed-{int(self.clock().timestamp() * 1000)}",
                envelope_id=envelope_id,
                signer_id=signer_id,
                event_type=event_type,
                payload=payload,
                ip_address=ip_address,
                user_agent=user_agent,
                geolocation=geolocation,
                timestamp=timestamp,
                is_fallback=True,
            )

        logger.debug("Audit event appended", envelope_id=envelope_id, event_type=event_type, sequence=event.sequence)
        return StoredEvent.model_validate(event)

    def list_for_envelope(self, envelope_id: str) -> List[StoredEvent]:
        return [StoredEvent.model_validate(e) for e in self.repository.list_for_envelope(envelope_id)]

    def list_for_signer(self, signer_id: str) -> List[StoredEvent]:
        return [StoredEvent.model_validate(e) for e in self.repository.list_for_signer(signer_id)]

    def recent(self, limit: int = 50) -> List[StoredEvent]:
        return [StoredEvent.model_validate(e) for e in self.repository.list_recent(limit)]

    def counts_by_type(self, envelope_id: str) -> Dict[str, int]:
        return self.repository.counts_by_type(envelope_id)

    def last_event_of_type(self, envelope_id: str, signer_id: str, event_type: AuditEventType) -> Optional[StoredEvent]:
        event = self.repository.latest_of_type(envelope_id, signer_id, AuditEventType(event_type).value)
        return StoredEvent.model_validate(event) if event else None

    def verify_chain(self, envelope_id: str) -> ChainVerification:
        """
        Replay the envelope's events in insertion order.

        The chain is intact iff the first event has no previous hash and
        every later event's previous hash equals its predecessor's hash.
        Events that were never anonymized also have their own hash
        recomputed; mismatches are reported, never repaired.
        """
        events = self.repository.list_for_envelope(envelope_id)
        result = ChainVerification(
            envelope_id=envelope_id,
            total_events=len(events),
            chain_intact=True,
            first_event_id=events[0].id if events else None,
            last_event_id=events[-1].id if events else None,
        )

        expected_previous = None
        for event in events:
            if event.previous_hash != expected_previous and result.chain_intact:
                result.chain_intact = False
                result.broken_at_event_id = event.id
            if event.anonymized_at is None:
                recomputed = compute_event_hash(
                    event.envelope_id, event.signer_id, event.event_type,
                    event.payload, event.timestamp, event.previous_hash,
                )
                if recomputed != event.event_hash:
                    result.tampered_event_ids.append(event.id)
            expected_previous = event.event_hash

        if not result.chain_intact or result.tampered_event_ids:
            logger.warning(
                "Audit chain integrity problem",
                envelope_id=envelope_id,
                broken_at=result.broken_at_event_id,
                tampered=result.tampered_event_ids,
            )
        return result

    def anonymize_signer(self, signer_id: str) -> int:
        """
        Null personal data on every event of a signer.

        Hashes are left exactly as computed so the chain keeps its shape.
        Returns the number of events touched.
        """
        events = self.repository.list_for_signer(signer_id)
        now = self.clock()
        for event in events:
            event.ip_address = None
            event.user_agent = None
            event.geolocation = None
            payload = dict(event.payload or {})
            for key in PII_PAYLOAD_KEYS:
                if key in payload:
                    payload[key] = None
            event.payload = payload
            event.anonymized_at = now
        self.db.flush()
        logger.info("Anonymized audit events", signer_id=signer_id, count=len(events))
        return len(events)
