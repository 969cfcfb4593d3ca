from datetime import datetime, timedelta, timezone

import pytest

from sealdesk.workflow.exceptions import InvalidRoutingRuleException
from sealdesk.workflow.schemas import EnvelopeState, SignerState, parse_routing_rules
from sealdesk.workflow.signing_order import (
    can_signer_sign, evaluate_routing_rules, next_eligible_signers, on_signer_completed,
)

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _envelope(signers, signing_order="sequential", routing_rules=None, status="sent"):
    return EnvelopeState(
        id="env-1",
        status=status,
        signing_order=signing_order,
        routing_rules=routing_rules,
        signers=[SignerState(**s) for s in signers],
    )


def _ids(signers):
    return [s.id for s in signers]


def test_sequential_wave_is_lowest_order_with_ties():
    envelope = _envelope([
        {"id": "a", "order": 1},
        {"id": "b", "order": 1},
        {"id": "c", "order": 2},
        {"id": "d", "order": 3},
    ])
    assert _ids(next_eligible_signers(envelope)) == ["a", "b"]

    envelope.signers[0].status = "signed"
    assert _ids(next_eligible_signers(envelope)) == ["b"]

    envelope.signers[1].status = "signed"
    assert _ids(next_eligible_signers(envelope)) == ["c"]


def test_parallel_wave_is_every_actionable_signer():
    envelope = _envelope(
        [{"id": "a", "order": 1}, {"id": "b", "order": 2}, {"id": "c", "order": 3, "status": "signed"}],
        signing_order="parallel",
    )
    assert _ids(next_eligible_signers(envelope)) == ["a", "b"]


def test_groups_are_batched_by_lowest_group():
    envelope = _envelope([
        {"id": "a", "order": 1, "signing_group": 1},
        {"id": "b", "order": 2, "signing_group": 1},
        {"id": "c", "order": 3, "signing_group": 2},
    ])
    assert _ids(next_eligible_signers(envelope)) == ["a", "b"]

    envelope.signers[0].status = "signed"
    envelope.signers[1].status = "signed"
    assert _ids(next_eligible_signers(envelope)) == ["c"]


def test_delayed_signer_holds_back_its_order():
    envelope = _envelope([
        {"id": "a", "order": 1, "status": "signed"},
        {"id": "b", "order": 2, "status": "delayed"},
        {"id": "c", "order": 3},
    ])
    assert next_eligible_signers(envelope) == []


def test_all_terminal_means_empty_wave():
    envelope = _envelope([{"id": "a", "status": "signed"}, {"id": "b", "status": "declined"}])
    assert next_eligible_signers(envelope) == []


def test_can_signer_sign():
    envelope = _envelope([{"id": "a", "order": 1}, {"id": "b", "order": 2}])
    a, b = envelope.signers

    assert can_signer_sign(a, envelope) is True
    assert can_signer_sign(b, envelope) is False

    draft = _envelope([{"id": "a", "order": 1}], status="draft")
    assert can_signer_sign(draft.signers[0], draft) is False


def test_on_signer_completed_two_sequential_signers():
    envelope = _envelope([{"id": "a", "order": 1, "status": "notified"}, {"id": "b", "order": 2}])

    first = on_signer_completed(envelope, "a", now=lambda: NOW)
    assert first.is_complete is False
    assert _ids(first.next_wave) == ["b"]
    # The caller's snapshot is not touched
    assert envelope.signers[0].status == "notified"

    envelope.signers[0].status = "signed"
    second = on_signer_completed(envelope, "b", now=lambda: NOW)
    assert second.is_complete is True
    assert second.next_wave == []


def test_delay_rule_holds_next_order():
    envelope = _envelope(
        [{"id": "a", "order": 1, "status": "notified"}, {"id": "b", "order": 2}, {"id": "c", "order": 2}],
        routing_rules=[{"condition": "after_signer_completes", "action": "delay", "signerOrder": 1, "delayHours": 24}],
    )
    result = on_signer_completed(envelope, "a", now=lambda: NOW)

    assert result.is_complete is False
    assert result.next_wave == []
    assert [d.signer_id for d in result.delayed_signers] == ["b", "c"]
    assert result.delayed_signers[0].delayed_until == NOW + timedelta(hours=24)


def test_field_value_rule_first_match_wins():
    envelope = _envelope(
        [{"id": "a", "order": 1, "status": "signed"}, {"id": "b", "order": 2}],
        routing_rules=[
            {"condition": "field_value", "fieldId": "amount", "operator": "gt", "value": "10000",
             "action": "add_signer", "signerEmail": "cfo@example.com", "signerName": "CFO"},
            {"condition": "field_value", "fieldId": "amount", "operator": "gt", "value": "100",
             "action": "complete"},
        ],
    )
    signer = envelope.signers[0]

    big = evaluate_routing_rules(envelope, signer, {"amount": "25000"})
    assert big.action == "add_signer"
    assert big.signer_email == "cfo@example.com"

    medium = evaluate_routing_rules(envelope, signer, {"amount": "500"})
    assert medium.action == "complete"

    assert evaluate_routing_rules(envelope, signer, {"amount": "50"}).action == "continue"
    assert evaluate_routing_rules(envelope, signer, {}).action == "continue"


def test_signer_declined_rule_only_matches_declines():
    envelope = _envelope(
        [{"id": "a", "order": 1, "status": "declined"}, {"id": "b", "order": 2}],
        routing_rules=[{"condition": "signer_declined", "action": "skip_to", "targetSignerOrder": 2}],
    )
    decision = evaluate_routing_rules(envelope, envelope.signers[0], {})
    assert decision.action == "skip_to"
    assert decision.target_signer_order == 2

    envelope.signers[0].status = "signed"
    assert evaluate_routing_rules(envelope, envelope.signers[0], {}).action == "continue"


@pytest.mark.parametrize("rule", [
    {"condition": "field_value", "fieldId": "x", "operator": "eq", "value": "1", "action": "skip_to"},
    {"condition": "signer_declined", "action": "route_to"},
    {"condition": "after_signer_completes", "action": "delay", "signerOrder": 1, "delayHours": 0},
    {"condition": "whenever", "action": "complete"},
])
def test_malformed_routing_rules_are_rejected(rule):
    with pytest.raises(InvalidRoutingRuleException):
        parse_routing_rules([rule])
