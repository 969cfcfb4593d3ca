from sqlalchemy import update

from sealdesk.audit.models import AuditEvent
from sealdesk.audit.schemas import AuditEventType, describe_event_type, format_event_type
from sealdesk.audit.services import AuditLedger, compute_event_hash

ENVELOPE_ID = "env-audit-1"


def _ledger(db_session, clock):
    return AuditLedger(db_session, clock=clock)


def test_events_are_chained_in_insertion_order(db_session, clock):
    ledger = _ledger(db_session, clock)
    first = ledger.append(ENVELOPE_ID, AuditEventType.CREATED, payload={"signer_count": 2})
    clock.advance(minutes=1)
    second = ledger.append(ENVELOPE_ID, AuditEventType.SENT, payload={"first_wave": ["s1"]})
    clock.advance(minutes=1)
    third = ledger.append(ENVELOPE_ID, AuditEventType.OPENED, signer_id="s1", ip_address="10.0.0.1")
    db_session.commit()

    assert first.previous_hash is None
    assert second.previous_hash == first.event_hash
    assert third.previous_hash == second.event_hash
    assert [e.sequence for e in (first, second, third)] == [1, 2, 3]

    events = ledger.list_for_envelope(ENVELOPE_ID)
    assert [e.event_type for e in events] == ["created", "sent", "opened"]

    result = ledger.verify_chain(ENVELOPE_ID)
    assert result.chain_intact is True
    assert result.total_events == 3
    assert result.tampered_event_ids == []


def test_chains_are_independent_per_envelope(db_session, clock):
    ledger = _ledger(db_session, clock)
    ledger.append(ENVELOPE_ID, AuditEventType.CREATED)
    other = ledger.append("env-audit-2", AuditEventType.CREATED)
    db_session.commit()

    assert other.previous_hash is None
    assert other.sequence == 1


def test_hash_excludes_ip_address(db_session, clock):
    ledger = _ledger(db_session, clock)
    event = ledger.append(ENVELOPE_ID, AuditEventType.SIGNED, signer_id="s1", ip_address="10.0.0.9")
    expected = compute_event_hash(ENVELOPE_ID, "s1", "signed", {}, event.timestamp, None)
    assert event.event_hash == expected


def test_tampered_payload_is_detected(db_session, clock):
    ledger = _ledger(db_session, clock)
    ledger.append(ENVELOPE_ID, AuditEventType.CREATED, payload={"signer_count": 1})
    target = ledger.append(ENVELOPE_ID, AuditEventType.VOIDED, payload={"reason": "typo"})
    db_session.commit()

    db_session.execute(
        update(AuditEvent).where(AuditEvent.id == target.id).values(payload={"reason": "fraud"})
    )
    db_session.commit()

    result = ledger.verify_chain(ENVELOPE_ID)
    assert result.chain_intact is True
    assert result.tampered_event_ids == [target.id]


def test_broken_link_is_reported(db_session, clock):
    ledger = _ledger(db_session, clock)
    ledger.append(ENVELOPE_ID, AuditEventType.CREATED)
    second = ledger.append(ENVELOPE_ID, AuditEventType.SENT)
    ledger.append(ENVELOPE_ID, AuditEventType.OPENED)
    db_session.commit()

    db_session.execute(
        update(AuditEvent).where(AuditEvent.id == second.id).values(previous_hash="0" * 64)
    )
    db_session.commit()

    result = ledger.verify_chain(ENVELOPE_ID)
    assert result.chain_intact is False
    assert result.broken_at_event_id == second.id


def test_append_failure_returns_fallback_record(db_session, clock, monkeypatch):
    ledger = _ledger(db_session, clock)

    def broken_add(event):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ledger.repository, "add", broken_add)
    event = ledger.append(ENVELOPE_ID, AuditEventType.SIGNED, signer_id="s1")

    assert event.is_fallback is True
    assert event.id.startswith("failed-")
    assert event.event_type == "signed"


def test_anonymize_keeps_hashes_and_chain(db_session, clock):
    ledger = _ledger(db_session, clock)
    ledger.append(ENVELOPE_ID, AuditEventType.CREATED)
    consented = ledger.append(
        ENVELOPE_ID, AuditEventType.CONSENTED, signer_id="s1",
        payload={"ip": "10.0.0.5", "email": "alice@example.com"}, ip_address="10.0.0.5", user_agent="pytest",
    )
    db_session.commit()

    assert ledger.anonymize_signer("s1") == 1
    db_session.commit()

    stored = ledger.list_for_signer("s1")[0]
    assert stored.ip_address is None
    assert stored.user_agent is None
    assert stored.payload == {"ip": None, "email": None}
    assert stored.event_hash == consented.event_hash
    assert stored.anonymized_at is not None

    result = ledger.verify_chain(ENVELOPE_ID)
    assert result.chain_intact is True
    assert result.tampered_event_ids == []


def test_counts_and_last_event(db_session, clock):
    ledger = _ledger(db_session, clock)
    ledger.append(ENVELOPE_ID, AuditEventType.REMINDED, signer_id="s1")
    clock.advance(hours=1)
    latest = ledger.append(ENVELOPE_ID, AuditEventType.REMINDED, signer_id="s1")
    db_session.commit()

    assert ledger.counts_by_type(ENVELOPE_ID) == {"reminded": 2}
    assert ledger.last_event_of_type(ENVELOPE_ID, "s1", AuditEventType.REMINDED).id == latest.id
    assert ledger.last_event_of_type(ENVELOPE_ID, "s2", AuditEventType.REMINDED) is None


def test_event_type_labels():
    assert format_event_type(AuditEventType.FIELD_FILLED) == "Field Filled"
    assert describe_event_type("qes_signed") == "Document hash was signed with a qualified certificate"
    assert describe_event_type("custom_thing") == "Custom Thing"
