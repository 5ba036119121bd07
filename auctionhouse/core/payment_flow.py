from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class PaymentFlowState(StrEnum):
    IDLE = "idle"
    NEEDS_APPROVAL = "needs_approval"
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_CONFIRMED = "approval_confirmed"
    ACTION_SUBMITTED = "action_submitted"
    ACTION_CONFIRMED = "action_confirmed"
    FAILED = "failed"
    STALLED = "stalled"


class PaymentFlowSignal(StrEnum):
    ALLOWANCE_SHORT = "allowance_short"
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_CONFIRMED = "approval_confirmed"
    ACTION_SUBMITTED = "action_submitted"
    ACTION_CONFIRMED = "action_confirmed"
    FAILED = "failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"


TERMINAL_STATES = frozenset(
    {PaymentFlowState.ACTION_CONFIRMED, PaymentFlowState.FAILED, PaymentFlowState.STALLED}
)


@dataclass(frozen=True, slots=True)
class FlowTransition:
    old_state: PaymentFlowState
    new_state: PaymentFlowState
    signal: PaymentFlowSignal
    action: str
    reason: str

    @property
    def is_noop(self) -> bool:
        return self.action == "noop"


def apply_flow_signal(
    state: PaymentFlowState,
    signal: PaymentFlowSignal,
) -> FlowTransition:
    if signal == PaymentFlowSignal.ALLOWANCE_SHORT and state == PaymentFlowState.IDLE:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.NEEDS_APPROVAL,
            signal=signal,
            action="park_intent_and_request_approval",
            reason="allowance_below_required_amount",
        )
    if signal == PaymentFlowSignal.APPROVAL_SUBMITTED and state == PaymentFlowState.NEEDS_APPROVAL:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.APPROVAL_SUBMITTED,
            signal=signal,
            action="await_approval_confirmation",
            reason="approval_broadcast",
        )
    if signal == PaymentFlowSignal.APPROVAL_CONFIRMED and state == PaymentFlowState.APPROVAL_SUBMITTED:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.APPROVAL_CONFIRMED,
            signal=signal,
            action="requery_allowance_and_resume_intent",
            reason="approval_confirmed_on_ledger",
        )
    if signal == PaymentFlowSignal.ACTION_SUBMITTED and state in {
        PaymentFlowState.IDLE,
        PaymentFlowState.APPROVAL_CONFIRMED,
    }:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.ACTION_SUBMITTED,
            signal=signal,
            action="await_action_confirmation",
            reason="action_broadcast",
        )
    if signal == PaymentFlowSignal.ACTION_CONFIRMED and state == PaymentFlowState.ACTION_SUBMITTED:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.ACTION_CONFIRMED,
            signal=signal,
            action="dispatch_notifications_and_refresh",
            reason="action_confirmed_on_ledger",
        )
    if signal == PaymentFlowSignal.CONFIRMATION_TIMEOUT and state in {
        PaymentFlowState.APPROVAL_SUBMITTED,
        PaymentFlowState.ACTION_SUBMITTED,
    }:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.STALLED,
            signal=signal,
            action="report_stalled_without_assuming_failure",
            reason="confirmation_timeout",
        )
    if signal == PaymentFlowSignal.FAILED and state not in TERMINAL_STATES:
        return FlowTransition(
            old_state=state,
            new_state=PaymentFlowState.FAILED,
            signal=signal,
            action="discard_parked_intent",
            reason="step_failed",
        )

    return FlowTransition(
        old_state=state,
        new_state=state,
        signal=signal,
        action="noop",
        reason="signal_ignored_for_state",
    )
