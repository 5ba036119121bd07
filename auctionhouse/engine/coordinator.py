"""Map user-facing listing actions onto validate -> pay -> notify -> refresh."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any

from auctionhouse.config.models import PaymentSettings
from auctionhouse.core.amounts import format_amount
from auctionhouse.core.eligibility import find_active_offer
from auctionhouse.core.errors import (
    AuctionhouseError,
    ConfirmationStalledError,
    ListingNotEligibleError,
    RevertError,
)
from auctionhouse.core.intents import plan_intent
from auctionhouse.core.notifications import build_notification_records
from auctionhouse.core.payment_flow import FlowTransition, PaymentFlowState
from auctionhouse.core.pricing import purchase_quote
from auctionhouse.core.types import (
    ActionResult,
    CurrencyDescriptor,
    IntentKind,
    Listing,
    TransactionIntent,
)
from auctionhouse.engine.currency import CurrencyResolver
from auctionhouse.engine.dispatcher import NotificationDispatcher
from auctionhouse.engine.orchestrator import InFlightRegistry, PaymentOrchestrator

logger = logging.getLogger("auctionhouse.coordinator")

RefreshCallback = Callable[[Listing], None]


class TransactionCoordinator:
    def __init__(
        self,
        *,
        reader: Any,
        ledger: Any,
        dispatcher: NotificationDispatcher,
        account: str,
        spender: str,
        settings: PaymentSettings | None = None,
        resolver: CurrencyResolver | None = None,
        store: Any | None = None,
        on_refresh: RefreshCallback | None = None,
        registry: InFlightRegistry | None = None,
        now_fn: Callable[[], float] = time.time,
        sleep_fn: Callable[[float], Any] | None = None,
    ) -> None:
        self._reader = reader
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._account = account
        self._spender = spender
        self._settings = settings or PaymentSettings()
        self._resolver = resolver or CurrencyResolver(ledger)
        self._store = store
        self._on_refresh = on_refresh
        self._registry = registry or InFlightRegistry()
        self._now_fn = now_fn
        self._sleep_fn = sleep_fn

    @property
    def account(self) -> str:
        return self._account

    @property
    def reader(self) -> Any:
        return self._reader

    async def place_bid(self, listing_id: int, amount: int) -> ActionResult:
        return await self.submit(TransactionIntent(kind=IntentKind.BID, listing_id=listing_id, amount=amount))

    async def purchase(self, listing_id: int, quantity: int) -> ActionResult:
        listing = await self._reader.get_listing(listing_id)
        quote = purchase_quote(listing, quantity)
        intent = TransactionIntent(
            kind=IntentKind.PURCHASE,
            listing_id=listing_id,
            amount=quote.total_cost,
            quantity=quantity,
        )
        return await self.submit(intent, listing=listing)

    async def make_offer(self, listing_id: int, amount: int) -> ActionResult:
        return await self.submit(TransactionIntent(kind=IntentKind.OFFER, listing_id=listing_id, amount=amount))

    async def accept_offer(self, listing_id: int, offerer: str) -> ActionResult:
        listing = await self._reader.get_listing(listing_id)
        offer = find_active_offer(listing, offerer)
        if offer is None:
            raise ListingNotEligibleError(f"no active offer from {offerer} on listing {listing_id}")
        intent = TransactionIntent(
            kind=IntentKind.ACCEPT,
            listing_id=listing_id,
            amount=offer.amount,
            counterparty=offer.offerer,
        )
        return await self.submit(intent, listing=listing)

    async def cancel(self, listing_id: int) -> ActionResult:
        return await self.submit(TransactionIntent(kind=IntentKind.CANCEL, listing_id=listing_id))

    async def finalize(self, listing_id: int) -> ActionResult:
        return await self.submit(TransactionIntent(kind=IntentKind.FINALIZE, listing_id=listing_id))

    async def modify(
        self,
        listing_id: int,
        *,
        start_time: int,
        end_time: int,
        initial_amount: int | None = None,
    ) -> ActionResult:
        listing = await self._reader.get_listing(listing_id)
        intent = TransactionIntent(
            kind=IntentKind.MODIFY,
            listing_id=listing_id,
            amount=listing.initial_amount if initial_amount is None else initial_amount,
            start_time=start_time,
            end_time=end_time,
        )
        return await self.submit(intent, listing=listing)

    async def submit(self, intent: TransactionIntent, *, listing: Listing | None = None) -> ActionResult:
        await self._settle_stalled(intent)
        self._registry.acquire(intent)
        try:
            result = await self._run(intent, listing)
        except ConfirmationStalledError as exc:
            self._registry.hold_stalled(intent, exc.tx_hash)
            raise
        except BaseException:
            self._registry.release(intent)
            raise
        self._registry.release(intent)
        return result

    async def _settle_stalled(self, intent: TransactionIntent) -> None:
        tx_hash = self._registry.stalled_tx_hash(intent)
        if tx_hash is None:
            return
        receipt = await self._ledger.get_receipt(tx_hash)
        if receipt is None or not (receipt.confirmed or receipt.status == "reverted"):
            logger.info(
                "stalled transaction still pending listing=%s kind=%s tx=%s",
                intent.listing_id,
                intent.kind,
                tx_hash,
            )
            return
        state = "confirmed" if receipt.confirmed else str(PaymentFlowState.FAILED)
        logger.info(
            "stalled transaction settled listing=%s kind=%s tx=%s state=%s",
            intent.listing_id,
            intent.kind,
            tx_hash,
            state,
        )
        self._write_transaction_state(intent, tx_hash=tx_hash, role="action", state=state, reason=receipt.reason)
        self._registry.release(intent)

    async def _run(self, intent: TransactionIntent, listing: Listing | None) -> ActionResult:
        if listing is None:
            listing = await self._reader.get_listing(intent.listing_id)
        plan = plan_intent(
            intent,
            listing,
            actor=self._account,
            now=int(self._now_fn()),
            increment_bps=self._settings.bid_increment_bps,
        )
        if plan.needs_payment:
            currency = await self._resolver.resolve_for_payment(listing.payment_currency)
            display_currency = currency
        else:
            currency = None
            display_currency = await self._resolver.resolve_for_display(listing.payment_currency)

        result = ActionResult(intent=intent)
        self._dispatcher.observe(intent.key, PaymentFlowState.IDLE, tx_hash=None, records=())

        def _on_transition(transition: FlowTransition) -> None:
            self._record_transition(intent, transition, orchestrator)
            records = ()
            if transition.new_state == PaymentFlowState.ACTION_CONFIRMED:
                records = build_notification_records(
                    intent,
                    listing,
                    actor=self._account,
                    amount_text=self._amount_text(intent, listing, display_currency),
                )
            result.notifications_emitted += self._dispatcher.observe(
                intent.key,
                transition.new_state,
                tx_hash=orchestrator.action_tx_hash,
                records=records,
            )

        orchestrator_kwargs: dict[str, Any] = {}
        if self._sleep_fn is not None:
            orchestrator_kwargs["sleep_fn"] = self._sleep_fn
        orchestrator = PaymentOrchestrator(
            intent=intent,
            ledger=self._ledger,
            resolver=self._resolver,
            submit_action=self._action_submitter(listing),
            currency=currency,
            required_amount=plan.required_payment,
            owner=self._account,
            spender=self._spender,
            settle_delay_seconds=self._settings.approval_settle_delay_seconds,
            confirmation_timeout_seconds=self._settings.confirmation_timeout_seconds,
            poll_interval_seconds=self._settings.confirmation_poll_interval_seconds,
            on_transition=_on_transition,
            **orchestrator_kwargs,
        )
        self._audit("intent_started", intent, {"required_payment": str(plan.required_payment)})
        try:
            await orchestrator.run()
        except AuctionhouseError as exc:
            self._audit(
                "intent_failed",
                intent,
                {"error": exc.code, "message": exc.message, "states": [str(s) for s in orchestrator.history]},
            )
            raise
        finally:
            self._dispatcher.forget(intent.key)
            result.states = [str(s) for s in orchestrator.history]
            result.approval_tx_hash = orchestrator.approval_tx_hash
            result.action_tx_hash = orchestrator.action_tx_hash

        self._audit("intent_confirmed", intent, result.to_dict())
        await self._refresh(intent.listing_id)
        return result

    def _action_submitter(self, listing: Listing):
        settings = self._settings
        ledger = self._ledger

        async def _submit(intent: TransactionIntent, value: int) -> str:
            kind = intent.kind
            if kind == IntentKind.BID:
                return await ledger.bid(intent.listing_id, increase_only=False, value=value)
            if kind == IntentKind.PURCHASE:
                return await ledger.purchase(intent.listing_id, intent.quantity, value=value)
            if kind == IntentKind.OFFER:
                return await ledger.offer(intent.listing_id, increase_only=False, value=value)
            if kind == IntentKind.ACCEPT:
                return await ledger.accept(
                    intent.listing_id,
                    offerers=[intent.counterparty or ""],
                    amounts=[intent.amount],
                    max_amount=intent.amount,
                )
            if kind == IntentKind.CANCEL:
                return await ledger.cancel(intent.listing_id, holdback_bps=settings.cancel_holdback_bps)
            if kind == IntentKind.FINALIZE:
                return await ledger.finalize(intent.listing_id)
            if kind == IntentKind.MODIFY:
                return await ledger.modify_listing(
                    intent.listing_id,
                    initial_amount=intent.amount,
                    start_time=intent.start_time or 0,
                    end_time=intent.end_time or 0,
                )
            raise ValueError(f"unsupported intent kind for listing {listing.listing_id}: {kind}")

        return _submit

    def _amount_text(self, intent: TransactionIntent, listing: Listing, currency: CurrencyDescriptor) -> str:
        amount = intent.amount
        if intent.kind == IntentKind.FINALIZE and listing.highest_bid is not None:
            amount = listing.highest_bid.amount
        formatted = format_amount(
            amount,
            currency.decimals,
            max_fraction_digits=self._settings.display_fraction_digits,
        )
        return f"{formatted} {currency.symbol}"

    def _record_transition(
        self,
        intent: TransactionIntent,
        transition: FlowTransition,
        orchestrator: PaymentOrchestrator,
    ) -> None:
        if self._store is None:
            return
        self._audit(
            "flow_transition",
            intent,
            {
                "old_state": str(transition.old_state),
                "new_state": str(transition.new_state),
                "action": transition.action,
                "reason": transition.reason,
            },
        )
        tx_state = {
            PaymentFlowState.APPROVAL_SUBMITTED: ("approval", orchestrator.approval_tx_hash, "submitted"),
            PaymentFlowState.APPROVAL_CONFIRMED: ("approval", orchestrator.approval_tx_hash, "confirmed"),
            PaymentFlowState.ACTION_SUBMITTED: ("action", orchestrator.action_tx_hash, "submitted"),
            PaymentFlowState.ACTION_CONFIRMED: ("action", orchestrator.action_tx_hash, "confirmed"),
        }.get(transition.new_state)
        reason = None
        if transition.new_state in {PaymentFlowState.STALLED, PaymentFlowState.FAILED}:
            tx_hash = orchestrator.action_tx_hash or orchestrator.approval_tx_hash
            role = "action" if orchestrator.action_tx_hash else "approval"
            tx_state = (role, tx_hash, str(transition.new_state))
            if transition.new_state == PaymentFlowState.FAILED:
                reason = _failure_reason(orchestrator.failure)
        if tx_state is None:
            return
        role, tx_hash, state = tx_state
        if not tx_hash:
            return
        self._write_transaction_state(intent, tx_hash=tx_hash, role=role, state=state, reason=reason)

    def _write_transaction_state(
        self,
        intent: TransactionIntent,
        *,
        tx_hash: str,
        role: str,
        state: str,
        reason: str | None = None,
    ) -> None:
        if self._store is None:
            return
        try:
            self._store.upsert_transaction_state(
                tx_hash=tx_hash,
                listing_id=intent.listing_id,
                intent_kind=str(intent.kind),
                role=role,
                state=state,
                reason=reason,
            )
        except sqlite3.Error as exc:
            logger.warning("transaction state write failed tx=%s state=%s error=%s", tx_hash, state, exc)

    def _audit(self, event_type: str, intent: TransactionIntent, payload: dict[str, Any]) -> None:
        if self._store is None:
            return
        try:
            self._store.add_audit_event(
                event_type,
                {"kind": str(intent.kind), **payload},
                listing_id=intent.listing_id,
            )
        except sqlite3.Error as exc:
            logger.warning("audit write failed event=%s listing=%s error=%s", event_type, intent.listing_id, exc)

    async def _refresh(self, listing_id: int) -> None:
        try:
            refreshed = await self._reader.get_listing(listing_id)
        except AuctionhouseError as exc:
            logger.warning("listing refresh failed listing=%s error=%s", listing_id, exc)
            return
        if self._on_refresh is not None:
            self._on_refresh(refreshed)


def describe_failure(exc: AuctionhouseError) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": exc.code, "message": exc.message}
    if isinstance(exc, RevertError):
        payload["tx_hash"] = exc.tx_hash
        payload["reason"] = exc.reason
    elif isinstance(exc, ConfirmationStalledError):
        payload["tx_hash"] = exc.tx_hash
        payload["waited_seconds"] = round(exc.waited_seconds, 1)
    return payload


def _failure_reason(exc: BaseException | None) -> str | None:
    if isinstance(exc, RevertError):
        return exc.reason or "unknown_reason"
    if isinstance(exc, AuctionhouseError):
        return exc.code
    return None
