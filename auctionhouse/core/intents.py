from __future__ import annotations

from dataclasses import dataclass

from auctionhouse.core.eligibility import (
    can_cancel,
    can_finalize,
    can_modify,
    find_active_offer,
    same_address,
)
from auctionhouse.core.errors import ListingNotEligibleError, ValidationError
from auctionhouse.core.pricing import (
    DEFAULT_BID_INCREMENT_BPS,
    purchase_quote,
    validate_bid_amount,
)
from auctionhouse.core.time_status import ListingPhase, TimeStatus, resolve_time_status
from auctionhouse.core.types import IntentKind, Listing, ListingType, TransactionIntent

_PAYING_KINDS = frozenset({IntentKind.BID, IntentKind.PURCHASE, IntentKind.OFFER})
_SALE_TYPES = frozenset({ListingType.FIXED_PRICE, ListingType.DYNAMIC_PRICE})


@dataclass(frozen=True, slots=True)
class IntentPlan:
    intent: TransactionIntent
    required_payment: int
    time_status: TimeStatus

    @property
    def needs_payment(self) -> bool:
        return self.required_payment > 0


def _reject(intent: TransactionIntent, reason: str) -> ListingNotEligibleError:
    return ListingNotEligibleError(f"{intent.kind} not allowed on listing {intent.listing_id}: {reason}")


def _check_bid(intent: TransactionIntent, listing: Listing, status: TimeStatus, increment_bps: int) -> int:
    if listing.listing_type != ListingType.INDIVIDUAL_AUCTION:
        raise _reject(intent, "not_an_auction")
    if status.phase == ListingPhase.NOT_STARTED and listing.start_time != 0:
        raise _reject(intent, "auction_not_started")
    if status.phase not in {ListingPhase.NOT_STARTED, ListingPhase.ACTIVE}:
        raise _reject(intent, f"auction_{status.phase}")
    validate_bid_amount(listing, intent.amount, increment_bps=increment_bps)
    return intent.amount


def _check_purchase(intent: TransactionIntent, listing: Listing, status: TimeStatus) -> int:
    if listing.listing_type not in _SALE_TYPES:
        raise _reject(intent, "not_for_sale")
    if status.phase != ListingPhase.ACTIVE:
        raise _reject(intent, f"sale_{status.phase}")
    if status.sold_out:
        raise _reject(intent, "sold_out")
    quote = purchase_quote(listing, intent.quantity)
    if intent.amount != quote.total_cost:
        raise ValidationError(
            f"quoted total {intent.amount} does not match current total {quote.total_cost}"
        )
    return quote.total_cost


def _check_offer(intent: TransactionIntent, listing: Listing, status: TimeStatus) -> int:
    if listing.listing_type != ListingType.OFFERS_ONLY:
        raise _reject(intent, "offers_not_accepted")
    if status.phase != ListingPhase.ACTIVE:
        raise _reject(intent, f"listing_{status.phase}")
    if intent.amount <= 0:
        raise ValidationError(f"offer amount must be positive, got {intent.amount}")
    return intent.amount


def _check_accept(intent: TransactionIntent, listing: Listing, actor: str, status: TimeStatus) -> int:
    if not same_address(actor, listing.seller):
        raise _reject(intent, "only_seller_can_accept")
    if status.phase in {ListingPhase.CANCELLED, ListingPhase.FINALIZED}:
        raise _reject(intent, f"listing_{status.phase}")
    offer = find_active_offer(listing, intent.counterparty or "")
    if offer is None:
        raise _reject(intent, "no_active_offer_from_counterparty")
    if offer.amount != intent.amount:
        raise ValidationError(f"offer amount changed: expected {intent.amount}, ledger has {offer.amount}")
    return 0


def _check_modify(intent: TransactionIntent, listing: Listing, actor: str, status: TimeStatus) -> int:
    if not can_modify(listing, actor, status):
        raise _reject(intent, "only_unsold_live_listings_by_seller")
    start_time = intent.start_time or 0
    end_time = intent.end_time or 0
    if start_time < 0 or end_time < 0:
        raise ValidationError("start_time and end_time must be non-negative")
    if start_time and end_time and end_time <= start_time:
        raise ValidationError("end_time must be after start_time")
    if intent.amount <= 0:
        raise ValidationError("initial amount must be positive")
    return 0


def plan_intent(
    intent: TransactionIntent,
    listing: Listing,
    *,
    actor: str,
    now: int | None = None,
    increment_bps: int = DEFAULT_BID_INCREMENT_BPS,
) -> IntentPlan:
    """Validate ``intent`` against the current listing projection.

    Raises a ``ValidationError`` subclass before any ledger call; returns the
    amount the actor must pay (zero for seller-side and housekeeping actions).
    """
    if intent.listing_id != listing.listing_id:
        raise ValidationError(
            f"intent targets listing {intent.listing_id}, projection is {listing.listing_id}"
        )
    status = resolve_time_status(listing, now)
    kind = intent.kind
    if kind == IntentKind.BID:
        required = _check_bid(intent, listing, status, increment_bps)
    elif kind == IntentKind.PURCHASE:
        required = _check_purchase(intent, listing, status)
    elif kind == IntentKind.OFFER:
        required = _check_offer(intent, listing, status)
    elif kind == IntentKind.ACCEPT:
        required = _check_accept(intent, listing, actor, status)
    elif kind == IntentKind.CANCEL:
        if not can_cancel(listing, actor, status):
            raise _reject(intent, "only_live_listings_without_bids_by_seller")
        required = 0
    elif kind == IntentKind.FINALIZE:
        if not can_finalize(status):
            raise _reject(intent, f"listing_{status.phase}")
        required = 0
    elif kind == IntentKind.MODIFY:
        required = _check_modify(intent, listing, actor, status)
    else:
        raise ValidationError(f"unsupported intent kind: {kind}")
    if kind in _PAYING_KINDS and required <= 0:
        raise ValidationError(f"{kind} requires a positive payment")
    return IntentPlan(intent=intent, required_payment=required, time_status=status)
