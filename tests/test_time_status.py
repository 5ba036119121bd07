from __future__ import annotations

from auctionhouse.core.time_status import (
    MAX_UINT48,
    YEAR_2000_TIMESTAMP,
    ListingPhase,
    format_time_remaining,
    resolve_time_status,
)
from auctionhouse.core.types import ListingStatus, ListingType
from tests.ledger_fakes import NOW, make_listing, with_bid

WEEK = 604_800


def test_start_on_first_bid_auction_without_bids_is_not_started() -> None:
    listing = make_listing(start_time=0, end_time=WEEK)
    status = resolve_time_status(listing, NOW)
    assert status.phase == ListingPhase.NOT_STARTED
    assert status.actual_end_time is None
    assert status.time_remaining is None


def test_first_bid_turns_duration_into_absolute_end() -> None:
    bid_at = NOW - 100
    listing = with_bid(make_listing(start_time=0, end_time=WEEK), timestamp=bid_at)

    status = resolve_time_status(listing, NOW)
    assert status.phase == ListingPhase.ACTIVE
    assert status.actual_end_time == bid_at + WEEK

    ended = resolve_time_status(listing, bid_at + WEEK)
    assert ended.phase == ListingPhase.ENDED
    assert ended.time_remaining == "Ended"


def test_reencoded_absolute_end_is_used_directly() -> None:
    listing = with_bid(make_listing(start_time=0, end_time=NOW + 7200), timestamp=NOW - 10)
    status = resolve_time_status(listing, NOW)
    assert status.actual_end_time == NOW + 7200
    assert status.phase == ListingPhase.ACTIVE


def test_expired_absolute_end_is_not_reinterpreted_as_duration() -> None:
    listing = with_bid(make_listing(start_time=0, end_time=NOW - 5), timestamp=NOW - 500)
    status = resolve_time_status(listing, NOW)
    assert status.actual_end_time == NOW - 5
    assert status.phase == ListingPhase.ENDED


def test_bid_without_timestamp_leaves_end_unknown_and_never_ended() -> None:
    listing = with_bid(make_listing(start_time=0, end_time=WEEK), timestamp=0)
    status = resolve_time_status(listing, NOW + 10 * WEEK)
    assert status.actual_end_time is None
    assert status.phase == ListingPhase.ACTIVE


def test_scheduled_auction_phases() -> None:
    listing = make_listing(start_time=NOW + 60, end_time=NOW + 3600)
    assert resolve_time_status(listing, NOW).phase == ListingPhase.NOT_STARTED
    assert resolve_time_status(listing, NOW + 60).phase == ListingPhase.ACTIVE
    assert resolve_time_status(listing, NOW + 3600).phase == ListingPhase.ENDED


def test_fixed_price_with_zero_start_is_active_immediately() -> None:
    listing = make_listing(listing_type=ListingType.FIXED_PRICE, start_time=0, end_time=WEEK)
    status = resolve_time_status(listing, NOW)
    assert status.phase == ListingPhase.ACTIVE
    assert status.actual_end_time is None


def test_fixed_price_ends_only_after_sane_absolute_timestamp() -> None:
    listing = make_listing(
        listing_type=ListingType.FIXED_PRICE, start_time=0, end_time=YEAR_2000_TIMESTAMP + 1
    )
    assert resolve_time_status(listing, NOW).phase == ListingPhase.ENDED


def test_confirmed_status_overrides_time_phase() -> None:
    cancelled = make_listing(status=ListingStatus.CANCELLED, start_time=NOW + 60)
    finalized = make_listing(status=ListingStatus.FINALIZED, end_time=NOW + 3600)
    assert resolve_time_status(cancelled, NOW).phase == ListingPhase.CANCELLED
    assert resolve_time_status(finalized, NOW).phase == ListingPhase.FINALIZED


def test_never_expiring_listing_has_no_end() -> None:
    listing = make_listing(listing_type=ListingType.FIXED_PRICE, start_time=NOW - 10, end_time=MAX_UINT48)
    status = resolve_time_status(listing, NOW)
    assert status.never_expires is True
    assert status.actual_end_time is None
    assert status.phase == ListingPhase.ACTIVE


def test_sold_out_flag_for_sale_listings() -> None:
    listing = make_listing(
        listing_type=ListingType.FIXED_PRICE, total_available=2, total_sold=2, end_time=MAX_UINT48
    )
    assert resolve_time_status(listing, NOW).sold_out is True


def test_format_time_remaining() -> None:
    assert format_time_remaining(NOW + 2 * 86_400 + 3 * 3600, NOW) == "2 days 3 hrs remaining"
    assert format_time_remaining(NOW + 86_400 + 3600, NOW) == "1 day 1 hr remaining"
    assert format_time_remaining(NOW + 1800, NOW) == "0 hrs remaining"
    assert format_time_remaining(NOW, NOW) == "Ended"
