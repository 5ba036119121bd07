"""Error taxonomy for the listing transaction engine.

Validation errors are raised before any ledger call. Submission and revert
errors discard the parked intent and are never retried automatically.
"""

from __future__ import annotations


class AuctionhouseError(Exception):
    """Base error; ``code`` is a stable snake_case identifier for logs and CLI output."""

    code = "auctionhouse_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# --- validation (pre-ledger) ---


class ValidationError(AuctionhouseError, ValueError):
    code = "validation_error"


class MalformedAmountError(ValidationError):
    code = "malformed_amount"


class MalformedAddressError(ValidationError):
    code = "malformed_address"


class BidTooLowError(ValidationError):
    code = "bid_too_low"

    def __init__(self, amount: int, minimum: int) -> None:
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"bid {amount} is below minimum {minimum}")


class QuantityOutOfRangeError(ValidationError):
    code = "quantity_out_of_range"


class ListingNotEligibleError(ValidationError):
    code = "listing_not_eligible"


class IntentInFlightError(ValidationError):
    code = "intent_in_flight"

    def __init__(self, listing_id: int, kind: str) -> None:
        self.listing_id = listing_id
        self.kind = kind
        super().__init__(f"a {kind} for listing {listing_id} is already in flight")


# --- payment path ---


class AllowanceResolutionError(AuctionhouseError):
    code = "allowance_resolution_error"


class InsufficientAllowanceError(AllowanceResolutionError):
    code = "insufficient_allowance"

    def __init__(self, allowance: int, required: int) -> None:
        self.allowance = allowance
        self.required = required
        super().__init__(f"allowance {allowance} is below required {required} after approval")


# --- ledger transactions ---


class SubmissionError(AuctionhouseError):
    code = "submission_error"


class RevertError(AuctionhouseError):
    code = "revert_error"

    def __init__(self, tx_hash: str, reason: str | None) -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"transaction {tx_hash} reverted: {reason or 'unknown_reason'}")


class ConfirmationStalledError(AuctionhouseError):
    code = "confirmation_stalled"

    def __init__(self, tx_hash: str, waited_seconds: float) -> None:
        self.tx_hash = tx_hash
        self.waited_seconds = waited_seconds
        super().__init__(
            f"transaction {tx_hash} not confirmed after {waited_seconds:.0f}s; it may still land"
        )


# --- collaborators ---


class NotificationDeliveryError(AuctionhouseError):
    code = "notification_delivery_error"


class ListingNotFoundError(AuctionhouseError):
    code = "listing_not_found"

    def __init__(self, listing_id: int) -> None:
        self.listing_id = listing_id
        super().__init__(f"listing not found: {listing_id}")


class IndexerError(AuctionhouseError):
    code = "indexer_error"
