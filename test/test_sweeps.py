from datetime import timedelta

from test.config import SIGNER_A, SIGNER_B
from test.utils import build_envelope, signature_data_url, signer_by_email


def _sent(service, signers, **kwargs):
    envelope = service.create_envelope(build_envelope(signers, **kwargs))
    return service.send_envelope(envelope.id)


def test_expire_envelopes(service, clock, recorder):
    envelope = _sent(service, [SIGNER_A], expires_at=clock() + timedelta(days=1))
    service.create_envelope(build_envelope([SIGNER_A], expires_at=clock() + timedelta(hours=1)))

    assert service.expire_envelopes() == 0

    clock.advance(days=2)
    assert service.expire_envelopes() == 1
    assert service.expire_envelopes() == 0

    envelope = service.get_envelope(envelope.id)
    assert envelope.status == "expired"
    assert all(s.signing_token is None for s in envelope.signers)
    events = service.audit.list_for_envelope(envelope.id)
    assert events[-1].event_type == "expired"
    assert service.audit.verify_chain(envelope.id).chain_intact is True


def test_delayed_signer_is_promoted_when_due(service, clock, notifier):
    rules = [{"condition": "after_signer_completes", "action": "delay", "signerOrder": 1, "delayHours": 24}]
    envelope = _sent(service, [SIGNER_A, SIGNER_B], routing_rules=rules)
    alice = signer_by_email(envelope, SIGNER_A["email"])
    bob = signer_by_email(envelope, SIGNER_B["email"])

    result = service.sign(alice.signing_token, {"sig-0": signature_data_url()})
    assert result.delayed_signer_ids == [bob.id]
    assert result.next_signer_ids == []
    assert bob.status == "delayed"
    assert SIGNER_B["email"] not in notifier.notified_emails()

    clock.advance(hours=23)
    assert service.process_delayed_signers() == 0

    clock.advance(hours=2)
    assert service.process_delayed_signers() == 1
    assert bob.status == "notified"
    assert bob.delayed_until is None
    assert notifier.notified_emails()[-1] == SIGNER_B["email"]
    assert service.process_delayed_signers() == 0

    types = [e.event_type for e in service.audit.list_for_envelope(envelope.id)]
    assert "delayed" in types
    assert types[-1] == "delay_completed"

    assert service.sign(bob.signing_token, {"sig-1": signature_data_url()}).is_complete is True


def test_reminders_follow_interval(service, clock, notifier):
    _sent(service, [SIGNER_A, SIGNER_B])

    clock.advance(hours=47)
    assert service.send_reminders() == 0

    clock.advance(hours=2)
    assert service.send_reminders() == 1
    assert notifier.reminders == [SIGNER_A["email"]]
    assert service.send_reminders() == 0

    clock.advance(hours=47)
    assert service.send_reminders() == 0
    clock.advance(hours=1)
    assert service.send_reminders() == 1
    assert notifier.reminders == [SIGNER_A["email"], SIGNER_A["email"]]


def test_reminders_skip_finished_envelopes(service, clock, notifier):
    envelope = _sent(service, [SIGNER_A])
    service.void_envelope(envelope.id, "Cancelled")

    clock.advance(days=5)
    assert service.send_reminders() == 0
    assert notifier.reminders == []
