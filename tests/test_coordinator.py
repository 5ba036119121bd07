from __future__ import annotations

import asyncio
import logging
import sqlite3

import pytest

from auctionhouse.config.models import PaymentSettings
from auctionhouse.core.errors import (
    BidTooLowError,
    ConfirmationStalledError,
    IntentInFlightError,
    ListingNotEligibleError,
    RevertError,
)
from auctionhouse.core.notifications import NotificationType
from auctionhouse.core.types import IntentKind, ListingType, Offer, TokenSpec, TransactionIntent
from auctionhouse.engine.coordinator import TransactionCoordinator, describe_failure
from auctionhouse.engine.dispatcher import NotificationDispatcher
from auctionhouse.storage.sqlite import SqliteStore
from tests.ledger_fakes import (
    BIDDER,
    MARKETPLACE,
    NOW,
    OFFERER,
    ONE,
    PREVIOUS_BIDDER,
    SELLER,
    TOKEN,
    FakeLedger,
    FakeReader,
    FakeSink,
    make_listing,
    no_sleep,
    with_bid,
)


def _coordinator(listing, *, account=BIDDER, ledger=None, store=None, settings=None, sink=None):
    ledger = ledger or FakeLedger()
    reader = FakeReader(listing)
    sink = sink or FakeSink()
    refreshed = []
    coordinator = TransactionCoordinator(
        reader=reader,
        ledger=ledger,
        dispatcher=NotificationDispatcher(sink),
        account=account,
        spender=MARKETPLACE,
        settings=settings or PaymentSettings(approval_settle_delay_seconds=0.0),
        store=store,
        on_refresh=refreshed.append,
        now_fn=lambda: NOW,
        sleep_fn=no_sleep,
    )
    return coordinator, ledger, reader, sink, refreshed


async def _run_and_drain(coordinator, call):
    try:
        return await call
    finally:
        await coordinator._dispatcher.drain()


def test_token_bid_approves_then_bids_then_notifies_and_refreshes() -> None:
    listing = with_bid(make_listing(payment_currency=TOKEN, initial_amount=1_000_000), amount=1_000_000)
    coordinator, ledger, reader, sink, refreshed = _coordinator(listing, ledger=FakeLedger(allowance=0))

    result = asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, 2_000_000)))

    assert ledger.call_names() == ["approve", "bid"]
    assert ledger.calls[0][1] == {"token": TOKEN, "spender": MARKETPLACE, "amount": 2_000_000}
    assert ledger.calls[1][1]["value"] == 0
    assert result.states == [
        "idle",
        "needs_approval",
        "approval_submitted",
        "approval_confirmed",
        "action_submitted",
        "action_confirmed",
    ]
    assert result.notifications_emitted == 3
    assert [(r.user_address, r.type) for r in sink.sent] == [
        (BIDDER, NotificationType.BID_PLACED),
        (SELLER, NotificationType.NEW_BID),
        (PREVIOUS_BIDDER, NotificationType.OUTBID),
    ]
    assert sink.sent[1].metadata["amount"] == "2 USDC"
    assert reader.reads == 2
    assert len(refreshed) == 1


def test_native_bid_sends_value_and_skips_allowance() -> None:
    coordinator, ledger, _, _, _ = _coordinator(make_listing())
    result = asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))
    assert ledger.calls == [("bid", {"listing_id": 7, "increase_only": False, "value": ONE})]
    assert ledger.allowance_reads == 0
    assert result.approval_tx_hash is None
    assert result.action_tx_hash is not None


def test_low_bid_is_rejected_before_any_ledger_call() -> None:
    coordinator, ledger, _, sink, refreshed = _coordinator(with_bid(make_listing(), amount=ONE))
    with pytest.raises(BidTooLowError):
        asyncio.run(coordinator.place_bid(7, ONE))
    assert ledger.calls == []
    assert ledger.allowance_reads == 0
    assert sink.sent == []
    assert refreshed == []


def test_duplicate_intent_is_rejected_while_in_flight() -> None:
    coordinator, ledger, _, _, _ = _coordinator(make_listing())
    coordinator._registry.acquire(TransactionIntent(kind=IntentKind.BID, listing_id=7))
    with pytest.raises(IntentInFlightError):
        asyncio.run(coordinator.place_bid(7, ONE))
    assert ledger.calls == []


def test_purchase_quotes_total_for_multi_edition_listing() -> None:
    listing = make_listing(
        listing_type=ListingType.FIXED_PRICE,
        token_spec=TokenSpec.ERC1155,
        initial_amount=ONE // 2,
        total_available=40,
        total_per_sale=4,
    )
    coordinator, ledger, _, sink, _ = _coordinator(listing)

    result = asyncio.run(_run_and_drain(coordinator, coordinator.purchase(7, 3)))

    assert ledger.calls == [("purchase", {"listing_id": 7, "quantity": 3, "value": 3 * (ONE // 2)})]
    assert result.intent.amount == 3 * (ONE // 2)
    assert sink.sent[0].type == NotificationType.ERC1155_PURCHASE


def test_accept_offer_uses_offer_amount_as_ceiling() -> None:
    listing = make_listing(
        listing_type=ListingType.OFFERS_ONLY, offers=(Offer(offerer=OFFERER, amount=3 * ONE),)
    )
    coordinator, ledger, _, sink, _ = _coordinator(listing, account=SELLER)

    asyncio.run(_run_and_drain(coordinator, coordinator.accept_offer(7, OFFERER)))

    assert ledger.calls == [
        ("accept", {"listing_id": 7, "offerers": [OFFERER], "amounts": [3 * ONE], "max_amount": 3 * ONE})
    ]
    assert sink.sent[0].user_address == OFFERER


def test_accept_offer_without_active_offer_is_rejected() -> None:
    listing = make_listing(
        listing_type=ListingType.OFFERS_ONLY, offers=(Offer(offerer=OFFERER, amount=ONE, active=False),)
    )
    coordinator, ledger, _, _, _ = _coordinator(listing, account=SELLER)
    with pytest.raises(ListingNotEligibleError, match="no active offer"):
        asyncio.run(coordinator.accept_offer(7, OFFERER))
    assert ledger.calls == []


def test_cancel_passes_configured_holdback() -> None:
    coordinator, ledger, _, _, _ = _coordinator(
        make_listing(),
        account=SELLER,
        settings=PaymentSettings(approval_settle_delay_seconds=0.0, cancel_holdback_bps=250),
    )
    asyncio.run(_run_and_drain(coordinator, coordinator.cancel(7)))
    assert ledger.calls == [("cancel", {"listing_id": 7, "holdback_bps": 250})]


def test_finalize_reports_winning_amount() -> None:
    listing = with_bid(make_listing(end_time=NOW - 1), amount=2 * ONE)
    coordinator, ledger, _, sink, _ = _coordinator(listing, account=SELLER)

    asyncio.run(_run_and_drain(coordinator, coordinator.finalize(7)))

    assert ledger.call_names() == ["finalize"]
    assert sink.sent[0].type == NotificationType.AUCTION_WON
    assert sink.sent[0].metadata["amount"] == "2 ETH"


def test_modify_keeps_current_reserve_by_default() -> None:
    coordinator, ledger, _, _, _ = _coordinator(make_listing(), account=SELLER)
    asyncio.run(_run_and_drain(coordinator, coordinator.modify(7, start_time=0, end_time=NOW + 500)))
    assert ledger.calls == [
        ("modify_listing", {"listing_id": 7, "initial_amount": ONE, "start_time": 0, "end_time": NOW + 500})
    ]


def test_revert_is_audited_and_sends_no_notifications(tmp_path) -> None:
    store = SqliteStore(tmp_path / "state.sqlite")
    ledger = FakeLedger()
    ledger.revert_functions.add("bid")
    coordinator, _, _, sink, refreshed = _coordinator(make_listing(), ledger=ledger, store=store)

    with pytest.raises(RevertError) as excinfo:
        asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))

    assert sink.sent == []
    assert refreshed == []
    failed = store.list_recent_audit_events(event_types=["intent_failed"], listing_id=7)
    assert failed[0]["payload"]["error"] == "revert_error"
    states = store.list_transaction_states(listing_id=7)
    assert [(s["role"], s["state"], s["reason"]) for s in states] == [("action", "failed", "bid_too_low")]
    assert describe_failure(excinfo.value)["reason"] == "bid_too_low"
    store.close()


def test_confirmed_flow_is_recorded_in_store(tmp_path) -> None:
    store = SqliteStore(tmp_path / "state.sqlite")
    listing = make_listing(payment_currency=TOKEN, initial_amount=1_000_000)
    coordinator, _, _, _, _ = _coordinator(listing, ledger=FakeLedger(allowance=0), store=store)

    asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, 1_000_000)))

    roles = {(s["role"], s["state"]) for s in store.list_transaction_states(listing_id=7)}
    assert roles == {("approval", "confirmed"), ("action", "confirmed")}
    event_types = [e["event_type"] for e in store.list_recent_audit_events(listing_id=7, limit=100)]
    assert event_types[0] == "intent_confirmed"
    assert event_types[-1] == "intent_started"
    store.close()


def test_stalled_action_keeps_hash_for_later_lookup() -> None:
    ledger = FakeLedger()
    ledger.pending_functions.add("bid")
    coordinator, _, _, sink, _ = _coordinator(
        make_listing(),
        ledger=ledger,
        settings=PaymentSettings(approval_settle_delay_seconds=0.0, confirmation_timeout_seconds=0.0001),
    )
    with pytest.raises(ConfirmationStalledError) as excinfo:
        asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))
    assert excinfo.value.tx_hash.startswith("0x")
    assert sink.sent == []


def test_stalled_purchase_holds_the_key_until_its_receipt_settles(tmp_path) -> None:
    store = SqliteStore(tmp_path / "state.sqlite")
    listing = make_listing(
        listing_type=ListingType.FIXED_PRICE,
        token_spec=TokenSpec.ERC1155,
        total_available=10,
        total_per_sale=1,
    )
    ledger = FakeLedger()
    ledger.pending_functions.add("purchase")
    coordinator, _, _, _, _ = _coordinator(
        listing,
        ledger=ledger,
        store=store,
        settings=PaymentSettings(approval_settle_delay_seconds=0.0, confirmation_timeout_seconds=0.0001),
    )

    with pytest.raises(ConfirmationStalledError) as excinfo:
        asyncio.run(_run_and_drain(coordinator, coordinator.purchase(7, 1)))
    stalled_hash = excinfo.value.tx_hash

    with pytest.raises(IntentInFlightError):
        asyncio.run(coordinator.purchase(7, 1))
    assert ledger.call_names() == ["purchase"]

    ledger.settle(stalled_hash, "confirmed")
    ledger.pending_functions.clear()
    asyncio.run(_run_and_drain(coordinator, coordinator.purchase(7, 1)))

    assert ledger.call_names() == ["purchase", "purchase"]
    states = {s["tx_hash"]: s["state"] for s in store.list_transaction_states(listing_id=7)}
    assert states[stalled_hash] == "confirmed"
    assert coordinator._registry.is_in_flight(TransactionIntent(kind=IntentKind.PURCHASE, listing_id=7)) is False
    store.close()


def test_reverted_stalled_bid_is_recorded_and_released(tmp_path) -> None:
    store = SqliteStore(tmp_path / "state.sqlite")
    ledger = FakeLedger()
    ledger.pending_functions.add("bid")
    coordinator, _, _, _, _ = _coordinator(
        make_listing(),
        ledger=ledger,
        store=store,
        settings=PaymentSettings(approval_settle_delay_seconds=0.0, confirmation_timeout_seconds=0.0001),
    )
    with pytest.raises(ConfirmationStalledError) as excinfo:
        asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))

    ledger.settle(excinfo.value.tx_hash, "reverted")
    ledger.pending_functions.clear()
    asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))

    states = {s["tx_hash"]: (s["state"], s["reason"]) for s in store.list_transaction_states(listing_id=7)}
    assert states[excinfo.value.tx_hash] == ("failed", "bid_too_low")
    assert ledger.call_names() == ["bid", "bid"]
    store.close()


class _LockedStore:
    def add_audit_event(self, *args, **kwargs) -> None:
        raise sqlite3.OperationalError("database is locked")

    def upsert_transaction_state(self, **kwargs) -> None:
        raise sqlite3.OperationalError("database is locked")


def test_store_failures_never_break_a_confirmed_bid(caplog) -> None:
    coordinator, ledger, _, sink, refreshed = _coordinator(make_listing(), store=_LockedStore())

    with caplog.at_level(logging.WARNING, logger="auctionhouse.coordinator"):
        result = asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))

    assert ledger.call_names() == ["bid"]
    assert result.states[-1] == "action_confirmed"
    assert result.notifications_emitted == 2
    assert len(sink.sent) == 2
    assert len(refreshed) == 1
    assert "database is locked" in caplog.text


def test_reverted_bid_keeps_confirmed_approval_for_retry() -> None:
    listing = make_listing(payment_currency=TOKEN, initial_amount=1_000_000)
    ledger = FakeLedger(allowance=0)
    ledger.revert_functions.add("bid")
    coordinator, _, _, sink, _ = _coordinator(listing, ledger=ledger)

    with pytest.raises(RevertError):
        asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, 1_000_000)))
    assert ledger.call_names() == ["approve", "bid"]
    assert sink.sent == []

    ledger.revert_functions.clear()
    ledger.calls.clear()
    result = asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, 1_000_000)))

    assert ledger.call_names() == ["bid"]
    assert result.approval_tx_hash is None
    assert result.states == ["idle", "action_submitted", "action_confirmed"]


def test_finished_flows_are_forgotten_by_the_dispatcher() -> None:
    coordinator, _, _, _, _ = _coordinator(make_listing())
    asyncio.run(_run_and_drain(coordinator, coordinator.place_bid(7, ONE)))
    assert coordinator._dispatcher._last_state == {}
