from __future__ import annotations

from auctionhouse.core.time_status import ListingPhase, TimeStatus
from auctionhouse.core.types import Listing, ListingType, Offer

_LIVE_PHASES = frozenset({ListingPhase.NOT_STARTED, ListingPhase.ACTIVE})


def same_address(left: str | None, right: str | None) -> bool:
    a = str(left or "").strip().lower()
    b = str(right or "").strip().lower()
    return bool(a and b and a == b)


def has_started_selling(listing: Listing) -> bool:
    if listing.listing_type == ListingType.INDIVIDUAL_AUCTION:
        return listing.has_bid
    return listing.total_sold > 0


def can_cancel(listing: Listing, actor: str, status: TimeStatus) -> bool:
    return (
        same_address(actor, listing.seller)
        and not listing.has_bid
        and status.phase in _LIVE_PHASES
    )


def can_modify(listing: Listing, actor: str, status: TimeStatus) -> bool:
    return (
        same_address(actor, listing.seller)
        and not has_started_selling(listing)
        and status.phase in _LIVE_PHASES
    )


def can_finalize(status: TimeStatus) -> bool:
    if status.phase in {ListingPhase.CANCELLED, ListingPhase.FINALIZED}:
        return False
    return status.phase == ListingPhase.ENDED or status.sold_out


def find_active_offer(listing: Listing, offerer: str) -> Offer | None:
    for offer in listing.offers:
        if offer.active and same_address(offer.offerer, offerer):
            return offer
    return None
