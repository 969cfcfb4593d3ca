## sealdesk/audit/router.py

# Standard library imports
from typing import Dict, List

# Third party imports
from fastapi import APIRouter, Depends, Query

# Local application imports
from sealdesk.audit.schemas import (
    AuditEventType, ChainVerification, StoredEvent, describe_event_type, format_event_type,
)
from sealdesk.audit.services import AuditLedger, get_audit_ledger
from sealdesk.utils.logger import get_logger

router = APIRouter(prefix="/audit", tags=["Audit Trail"])
logger = get_logger(__name__)


@router.get("/event-types")
def list_event_types():
    """
    Every ledger event type with its display label and description.
    """
    return [
        {"value": t.value, "label": format_event_type(t), "description": describe_event_type(t)}
        for t in AuditEventType
    ]


@router.get("/recent", response_model=List[StoredEvent])
def recent_events(
    limit: int = Query(50, ge=1, le=500),
    ledger: AuditLedger = Depends(get_audit_ledger),
):
    return ledger.recent(limit)


@router.get("/envelopes/{envelope_id}/events", response_model=List[StoredEvent])
def envelope_events(envelope_id: str, ledger: AuditLedger = Depends(get_audit_ledger)):
    """
    Events of an envelope in insertion order.
    """
    return ledger.list_for_envelope(envelope_id)


@router.get("/envelopes/{envelope_id}/counts", response_model=Dict[str, int])
def envelope_event_counts(envelope_id: str, ledger: AuditLedger = Depends(get_audit_ledger)):
    return ledger.counts_by_type(envelope_id)


@router.get("/envelopes/{envelope_id}/integrity", response_model=ChainVerification)
def verify_envelope_chain(envelope_id: str, ledger: AuditLedger = Depends(get_audit_ledger)):
    """
    Replay the hash chain. Breaks are reported, never repaired.
    """
    result = ledger.verify_chain(envelope_id)
    logger.info(
        "Audit integrity checked",
        envelope_id=envelope_id, chain_intact=result.chain_intact, total_events=result.total_events,
    )
    return result


@router.get("/signers/{signer_id}/events", response_model=List[StoredEvent])
def signer_events(signer_id: str, ledger: AuditLedger = Depends(get_audit_ledger)):
    return ledger.list_for_signer(signer_id)


@router.post("/signers/{signer_id}/anonymize")
def anonymize_signer(signer_id: str, ledger: AuditLedger = Depends(get_audit_ledger)):
    """
    Erase personal data from a signer's events; stored hashes stay as they are.
    """
    count = ledger.anonymize_signer(signer_id)
    return {"signer_id": signer_id, "anonymized_events": count}
