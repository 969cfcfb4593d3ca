# sealdesk/workflow/signing_order.py

"""
Signing order resolver.

Pure functions over an envelope snapshot (``EnvelopeState``). They decide
who may act now, what happens after a signer finishes and which routing
rule, if any, redirects the flow. Persistence and locking belong to the
envelope service.

Wave selection:
- parallel: every actionable signer
- sequential: actionable signers tied at the lowest order among all
  non-terminal signers
- grouped: when any non-terminal signer has a signing group, grouped
  signers are batched by the lowest group number

A ``delayed`` signer is non-terminal, so it holds its order back, but it
is never actionable until the delay sweep promotes it.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional, Union

from sealdesk.fields.resolution import stringify
from sealdesk.utils.logger import get_logger
from sealdesk.workflow.models import (
    ACTIVE_ENVELOPE_STATUSES, NON_TERMINAL_SIGNER_STATUSES, SignerStatus,
    SigningOrder, TERMINAL_SIGNER_STATUSES,
)
from sealdesk.workflow.schemas import (
    DelayedSigner, DelayRule, EnvelopeState, FieldValueRule, RoutingDecision,
    SignerCompletionResult, SignerDeclinedRule, SignerState, parse_routing_rules,
)

logger = get_logger(__name__)

ACTIONABLE = {SignerStatus.PENDING.value, SignerStatus.SENT.value, SignerStatus.NOTIFIED.value}
NON_TERMINAL = {s.value for s in NON_TERMINAL_SIGNER_STATUSES}
TERMINAL = {s.value for s in TERMINAL_SIGNER_STATUSES}
ACTIVE = {s.value for s in ACTIVE_ENVELOPE_STATUSES}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_state(envelope: Union[EnvelopeState, Any]) -> EnvelopeState:
    """Accept either a snapshot or an ORM envelope"""
    if isinstance(envelope, EnvelopeState):
        return envelope
    return EnvelopeState.model_validate(envelope)


def next_eligible_signers(envelope: Union[EnvelopeState, Any]) -> List[SignerState]:
    """Signers in the current wave, in order"""
    state = to_state(envelope)
    pending = [s for s in state.signers if s.status in NON_TERMINAL]
    if not pending:
        return []

    actionable = [s for s in pending if s.status in ACTIONABLE]
    if state.signing_order == SigningOrder.PARALLEL.value:
        return actionable

    grouped = [s.signing_group for s in pending if s.signing_group is not None]
    min_group = min(grouped) if grouped else None
    min_order = min(s.order for s in pending)

    wave = []
    for signer in actionable:
        if signer.signing_group is not None:
            if signer.signing_group == min_group:
                wave.append(signer)
        elif signer.order == min_order:
            wave.append(signer)
    return sorted(wave, key=lambda s: (s.order, s.signing_group or 0))


def can_signer_sign(signer: Union[SignerState, Any], envelope: Union[EnvelopeState, Any]) -> bool:
    """True iff the envelope is active, the signer is actionable and in the current wave"""
    state = to_state(envelope)
    if state.status not in ACTIVE:
        return False
    if signer.status not in ACTIONABLE:
        return False
    return any(s.id == signer.id for s in next_eligible_signers(state))


def on_signer_completed(
    envelope: Union[EnvelopeState, Any],
    signer_id: str,
    now: Optional[Callable[[], datetime]] = None,
) -> SignerCompletionResult:
    """
    Decide what follows a signer finishing.

    The signer is treated as signed in a copy of the snapshot. When every
    signer is terminal the envelope is complete. Otherwise delay rules
    triggered by the signer's order hold back the next order's pending
    signers until ``delayed_until``; the remaining wave is recomputed.
    """
    state = to_state(envelope).model_copy(deep=True)
    completed = next((s for s in state.signers if s.id == signer_id), None)
    for signer in state.signers:
        if signer.id == signer_id and signer.status not in TERMINAL:
            signer.status = SignerStatus.SIGNED.value

    if all(s.status in TERMINAL for s in state.signers):
        return SignerCompletionResult(is_complete=True)

    delayed: List[DelayedSigner] = []
    if completed is not None:
        current_time = (now or _utcnow)()
        rules = parse_routing_rules(state.routing_rules)
        for rule in rules:
            if not isinstance(rule, DelayRule) or rule.signer_order != completed.order:
                continue
            next_order = completed.order + 1
            for signer in state.signers:
                if signer.order == next_order and signer.status in (
                    SignerStatus.PENDING.value, SignerStatus.SENT.value,
                ):
                    signer.status = SignerStatus.DELAYED.value
                    delayed.append(
                        DelayedSigner(
                            signer_id=signer.id,
                            delayed_until=current_time + timedelta(hours=rule.delay_hours),
                            delay_hours=rule.delay_hours,
                        )
                    )

    if delayed:
        logger.info(
            "Signers delayed by routing rule",
            envelope_id=state.id, signer_ids=[d.signer_id for d in delayed],
        )
    return SignerCompletionResult(
        is_complete=False,
        next_wave=next_eligible_signers(state),
        delayed_signers=delayed,
    )


def _compare(actual: str, operator: str, expected: str) -> bool:
    if operator == "eq":
        return actual == expected
    if operator == "neq":
        return actual != expected
    if operator == "contains":
        return expected in actual
    try:
        left, right = float(actual), float(expected)
    except ValueError:
        return False
    if operator == "gt":
        return left > right
    if operator == "lt":
        return left < right
    return False


def evaluate_routing_rules(
    envelope: Union[EnvelopeState, Any],
    completed_signer: Union[SignerState, Any],
    field_values: Mapping[str, Any],
) -> RoutingDecision:
    """
    Scan routing rules in order; the first match wins.

    ``signer_declined`` matches when the signer has declined; ``field_value``
    compares one field's current value. No match means continue.
    """
    state = to_state(envelope)
    for rule in parse_routing_rules(state.routing_rules):
        if isinstance(rule, SignerDeclinedRule):
            if completed_signer.status == SignerStatus.DECLINED.value:
                return RoutingDecision(
                    action=rule.action,
                    target_signer_order=rule.target_signer_order,
                    signer_email=rule.signer_email,
                    signer_name=rule.signer_name,
                    reason="Signer declined",
                )
        elif isinstance(rule, FieldValueRule):
            actual = stringify(field_values.get(rule.field_id))
            if actual is None:
                continue
            if _compare(actual, rule.operator, rule.value):
                return RoutingDecision(
                    action=rule.action,
                    target_signer_order=rule.target_signer_order,
                    signer_email=rule.signer_email,
                    signer_name=rule.signer_name,
                    reason=f"Field {rule.field_id} {rule.operator} {rule.value}",
                )
    return RoutingDecision(action="continue")
