from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from auctionhouse.core.errors import (
    ConfirmationStalledError,
    InsufficientAllowanceError,
    IntentInFlightError,
    RevertError,
    SubmissionError,
)
from auctionhouse.core.payment_flow import (
    TERMINAL_STATES,
    FlowTransition,
    PaymentFlowSignal,
    PaymentFlowState,
    apply_flow_signal,
)
from auctionhouse.core.types import CurrencyDescriptor, TransactionIntent, TransactionReceipt

logger = logging.getLogger("auctionhouse.orchestrator")

DEFAULT_SETTLE_DELAY_SECONDS = 1.0
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 600.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_INTERVAL_SECONDS = 20.0

SubmitAction = Callable[[TransactionIntent, int], Awaitable[str]]
TransitionCallback = Callable[[FlowTransition], None]


class InFlightRegistry:
    """At most one in-flight intent per (listing, action kind).

    A key whose transaction stalled stays held against that transaction hash
    until a later receipt read settles it.
    """

    def __init__(self) -> None:
        self._keys: set[tuple[int, str]] = set()
        self._stalled: dict[tuple[int, str], str] = {}

    def acquire(self, intent: TransactionIntent) -> None:
        if intent.key in self._keys:
            raise IntentInFlightError(intent.listing_id, str(intent.kind))
        self._keys.add(intent.key)

    def release(self, intent: TransactionIntent) -> None:
        self._keys.discard(intent.key)
        self._stalled.pop(intent.key, None)

    def hold_stalled(self, intent: TransactionIntent, tx_hash: str) -> None:
        self._keys.add(intent.key)
        self._stalled[intent.key] = tx_hash

    def stalled_tx_hash(self, intent: TransactionIntent) -> str | None:
        return self._stalled.get(intent.key)

    def is_in_flight(self, intent: TransactionIntent) -> bool:
        return intent.key in self._keys


async def wait_for_confirmation(
    ledger: Any,
    tx_hash: str,
    *,
    timeout_seconds: float,
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    monotonic_fn: Callable[[], float] = time.monotonic,
) -> TransactionReceipt:
    """Poll the ledger until ``tx_hash`` confirms or reverts.

    ``timeout_seconds <= 0`` waits indefinitely. On timeout the transaction may
    still land, so ``ConfirmationStalledError`` is raised instead of a failure.
    """
    start = monotonic_fn()
    sleep_seconds = max(0.0, float(poll_interval_seconds))
    while True:
        receipt = await ledger.get_receipt(tx_hash)
        if receipt is not None:
            if receipt.confirmed:
                return receipt
            if receipt.status == "reverted":
                raise RevertError(tx_hash, receipt.reason)
        waited = monotonic_fn() - start
        if timeout_seconds > 0 and waited >= timeout_seconds:
            raise ConfirmationStalledError(tx_hash, waited)
        await sleep_fn(sleep_seconds)
        sleep_seconds = min(MAX_POLL_INTERVAL_SECONDS, max(sleep_seconds, 0.1) * 1.5)


class PaymentOrchestrator:
    """Drive one intent through the approve-then-act flow.

    Constructed fresh per intent. The intent is parked as plain data while an
    approval is in flight and is discarded on failure, never replayed.
    """

    def __init__(
        self,
        *,
        intent: TransactionIntent,
        ledger: Any,
        resolver: Any,
        submit_action: SubmitAction,
        currency: CurrencyDescriptor | None,
        required_amount: int,
        owner: str,
        spender: str,
        settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS,
        confirmation_timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_transition: TransitionCallback | None = None,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._intent = intent
        self._ledger = ledger
        self._resolver = resolver
        self._submit_action = submit_action
        self._currency = currency
        self._required_amount = int(required_amount)
        self._owner = owner
        self._spender = spender
        self._settle_delay_seconds = max(0.0, float(settle_delay_seconds))
        self._confirmation_timeout_seconds = float(confirmation_timeout_seconds)
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._on_transition = on_transition
        self._sleep_fn = sleep_fn
        self._state = PaymentFlowState.IDLE
        self._history: list[PaymentFlowState] = [PaymentFlowState.IDLE]
        self._parked_intent: dict[str, Any] | None = None
        self.approval_tx_hash: str | None = None
        self.action_tx_hash: str | None = None
        self.failure: BaseException | None = None

    @property
    def state(self) -> PaymentFlowState:
        return self._state

    @property
    def history(self) -> list[PaymentFlowState]:
        return list(self._history)

    @property
    def parked_intent(self) -> dict[str, Any] | None:
        return None if self._parked_intent is None else dict(self._parked_intent)

    @property
    def needs_allowance(self) -> bool:
        return (
            self._currency is not None
            and not self._currency.is_native
            and self._required_amount > 0
        )

    def _signal(self, signal: PaymentFlowSignal) -> FlowTransition:
        transition = apply_flow_signal(self._state, signal)
        if transition.is_noop:
            logger.debug(
                "flow signal ignored listing=%s kind=%s state=%s signal=%s",
                self._intent.listing_id,
                self._intent.kind,
                self._state,
                signal,
            )
            return transition
        self._state = transition.new_state
        self._history.append(transition.new_state)
        logger.info(
            "flow transition listing=%s kind=%s %s -> %s action=%s",
            self._intent.listing_id,
            self._intent.kind,
            transition.old_state,
            transition.new_state,
            transition.action,
        )
        if self._on_transition is not None:
            self._on_transition(transition)
        return transition

    async def _confirm(self, tx_hash: str) -> TransactionReceipt:
        return await wait_for_confirmation(
            self._ledger,
            tx_hash,
            timeout_seconds=self._confirmation_timeout_seconds,
            poll_interval_seconds=self._poll_interval_seconds,
            sleep_fn=self._sleep_fn,
        )

    async def _read_allowance(self) -> int:
        assert self._currency is not None
        return await self._resolver.allowance(self._currency, owner=self._owner, spender=self._spender)

    async def _approve_and_resume(self) -> TransactionIntent:
        assert self._currency is not None
        self._parked_intent = self._intent.to_dict()
        self._signal(PaymentFlowSignal.ALLOWANCE_SHORT)
        self.approval_tx_hash = await self._submit(
            self._ledger.approve(self._currency.address, spender=self._spender, amount=self._required_amount)
        )
        self._signal(PaymentFlowSignal.APPROVAL_SUBMITTED)
        await self._confirm(self.approval_tx_hash)
        self._signal(PaymentFlowSignal.APPROVAL_CONFIRMED)
        if self._settle_delay_seconds > 0:
            await self._sleep_fn(self._settle_delay_seconds)
        allowance = await self._read_allowance()
        if allowance < self._required_amount:
            raise InsufficientAllowanceError(allowance, self._required_amount)
        return TransactionIntent.from_dict(self._parked_intent)

    async def _submit(self, call: Awaitable[str]) -> str:
        tx_hash = str(await call or "").strip()
        if not tx_hash:
            raise SubmissionError("ledger returned no transaction hash")
        return tx_hash

    def _action_value(self) -> int:
        if self._currency is not None and self._currency.is_native:
            return self._required_amount
        return 0

    async def run(self) -> TransactionReceipt:
        if self._state != PaymentFlowState.IDLE:
            raise RuntimeError(f"payment flow already used: state={self._state}")
        intent = self._intent
        try:
            if self.needs_allowance:
                allowance = await self._read_allowance()
                if allowance < self._required_amount:
                    intent = await self._approve_and_resume()
            self.action_tx_hash = await self._submit(self._submit_action(intent, self._action_value()))
            self._signal(PaymentFlowSignal.ACTION_SUBMITTED)
            receipt = await self._confirm(self.action_tx_hash)
            self._signal(PaymentFlowSignal.ACTION_CONFIRMED)
            self._parked_intent = None
            return receipt
        except ConfirmationStalledError as exc:
            self.failure = exc
            self._signal(PaymentFlowSignal.CONFIRMATION_TIMEOUT)
            self._parked_intent = None
            raise
        except BaseException as exc:
            self.failure = exc
            if self._state not in TERMINAL_STATES:
                self._signal(PaymentFlowSignal.FAILED)
            self._parked_intent = None
            raise
