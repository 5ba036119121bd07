from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum

from auctionhouse.core.pricing import is_sold_out
from auctionhouse.core.types import Listing, ListingStatus, ListingType

# endTime values above this are read as absolute timestamps when the raw
# fields alone cannot say whether endTime is a duration.
YEAR_2000_TIMESTAMP = 946_684_800
MAX_UINT48 = 2**48 - 1


class ListingPhase(StrEnum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"
    FINALIZED = "finalized"


@dataclass(frozen=True, slots=True)
class TimeStatus:
    phase: ListingPhase
    has_started: bool
    actual_end_time: int | None
    time_remaining: str | None = None
    never_expires: bool = False
    sold_out: bool = False

    @property
    def is_live(self) -> bool:
        return self.phase == ListingPhase.ACTIVE


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else int(now)


def is_never_expiring(end_time: int) -> bool:
    return end_time >= MAX_UINT48


def format_time_remaining(end_time: int, now: int | None = None) -> str:
    current = _now(now)
    remaining = end_time - current if end_time > current else 0
    if remaining <= 0:
        return "Ended"
    days = remaining // 86400
    hours = (remaining % 86400) // 3600
    hours_text = f"{hours} hr{'' if hours == 1 else 's'}"
    if days > 0:
        return f"{days} day{'' if days == 1 else 's'} {hours_text} remaining"
    return f"{hours_text} remaining"


def _resolve_auction_window(listing: Listing, now: int) -> tuple[bool, int | None]:
    if listing.start_time != 0:
        return now >= listing.start_time, listing.end_time

    # startTime == 0: the auction opens on the first bid and endTime is a
    # duration until the ledger re-encodes it as an absolute timestamp.
    if not listing.has_bid:
        return False, None
    end_time = listing.end_time
    if end_time > now or end_time > YEAR_2000_TIMESTAMP:
        return True, end_time
    if listing.highest_bid is not None and listing.highest_bid.timestamp > 0:
        return True, listing.highest_bid.timestamp + end_time
    return True, None


def _resolve_sale_window(listing: Listing, now: int) -> tuple[bool, int | None]:
    if listing.start_time != 0:
        return now >= listing.start_time, listing.end_time
    if listing.end_time > YEAR_2000_TIMESTAMP:
        return True, listing.end_time
    return True, None


def resolve_time_status(listing: Listing, now: int | None = None) -> TimeStatus:
    """Derive the display/gating phase of a listing from its raw timing fields.

    A ledger-confirmed CANCELLED or FINALIZED status always wins over the
    time-derived phase. An unknown end time never produces ENDED.
    """
    current = _now(now)
    sold_out = listing.listing_type != ListingType.INDIVIDUAL_AUCTION and is_sold_out(listing)

    if listing.status == ListingStatus.CANCELLED:
        return TimeStatus(
            phase=ListingPhase.CANCELLED, has_started=True, actual_end_time=None, sold_out=sold_out
        )
    if listing.status == ListingStatus.FINALIZED:
        return TimeStatus(
            phase=ListingPhase.FINALIZED, has_started=True, actual_end_time=None, sold_out=sold_out
        )

    if listing.listing_type == ListingType.INDIVIDUAL_AUCTION:
        has_started, actual_end = _resolve_auction_window(listing, current)
    else:
        has_started, actual_end = _resolve_sale_window(listing, current)

    never_expires = actual_end is not None and is_never_expiring(actual_end)
    if never_expires or (actual_end is not None and actual_end <= 0):
        actual_end = None

    if not has_started:
        phase = ListingPhase.NOT_STARTED
    elif actual_end is not None and actual_end <= current:
        phase = ListingPhase.ENDED
    else:
        phase = ListingPhase.ACTIVE

    time_remaining = None
    if actual_end is not None:
        time_remaining = format_time_remaining(actual_end, current)

    return TimeStatus(
        phase=phase,
        has_started=has_started,
        actual_end_time=actual_end,
        time_remaining=time_remaining,
        never_expires=never_expires,
        sold_out=sold_out,
    )
