from __future__ import annotations

from dataclasses import dataclass

from auctionhouse.core.errors import BidTooLowError, QuantityOutOfRangeError
from auctionhouse.core.types import Listing

DEFAULT_BID_INCREMENT_BPS = 500
BPS_DENOMINATOR = 10_000


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    quantity: int
    unit_price: int
    total_cost: int
    copies_received: int


def minimum_bid(listing: Listing, *, increment_bps: int = DEFAULT_BID_INCREMENT_BPS) -> int:
    """Smallest bid the client will submit.

    Advisory only: another bid may land first, and the ledger has the final say.
    """
    if listing.highest_bid is None:
        return listing.initial_amount
    current = listing.highest_bid.amount
    return current + (current * increment_bps) // BPS_DENOMINATOR


def validate_bid_amount(
    listing: Listing, amount: int, *, increment_bps: int = DEFAULT_BID_INCREMENT_BPS
) -> int:
    minimum = minimum_bid(listing, increment_bps=increment_bps)
    if amount < minimum:
        raise BidTooLowError(amount, minimum)
    return minimum


def unit_price(listing: Listing) -> int:
    if listing.current_price is not None:
        return listing.current_price
    return listing.initial_amount


def copies_remaining(listing: Listing) -> int:
    return max(0, listing.total_available - listing.total_sold)


def max_purchasable_quantity(listing: Listing) -> int:
    per_sale = max(1, listing.total_per_sale)
    return copies_remaining(listing) // per_sale


def is_sold_out(listing: Listing) -> bool:
    return listing.total_available > 0 and max_purchasable_quantity(listing) == 0


def validate_quantity(listing: Listing, quantity: object) -> int:
    """Payment-path check: never clamps, rejects anything but a positive in-range int."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise QuantityOutOfRangeError(f"quantity must be a whole number, got {quantity!r}")
    if quantity <= 0:
        raise QuantityOutOfRangeError(f"quantity must be positive, got {quantity}")
    maximum = max_purchasable_quantity(listing)
    if quantity > maximum:
        raise QuantityOutOfRangeError(f"quantity {quantity} exceeds the {maximum} purchases available")
    return quantity


def purchase_quote(listing: Listing, quantity: int) -> PurchaseQuote:
    """Cost of ``quantity`` purchase units, each conveying ``total_per_sale`` copies."""
    validate_quantity(listing, quantity)
    price = unit_price(listing)
    return PurchaseQuote(
        quantity=quantity,
        unit_price=price,
        total_cost=price * quantity,
        copies_received=quantity * max(1, listing.total_per_sale),
    )


def clamp_display_quantity(listing: Listing, raw: object) -> int:
    """Display-only coercion of a quantity input into [1, max purchasable]."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        value = 1
    maximum = max(1, max_purchasable_quantity(listing))
    return min(max(1, value), maximum)
