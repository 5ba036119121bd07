from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ListingType(StrEnum):
    INDIVIDUAL_AUCTION = "INDIVIDUAL_AUCTION"
    FIXED_PRICE = "FIXED_PRICE"
    OFFERS_ONLY = "OFFERS_ONLY"
    DYNAMIC_PRICE = "DYNAMIC_PRICE"


class TokenSpec(StrEnum):
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"


class ListingStatus(StrEnum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    FINALIZED = "FINALIZED"


class IntentKind(StrEnum):
    BID = "bid"
    PURCHASE = "purchase"
    OFFER = "offer"
    ACCEPT = "accept"
    CANCEL = "cancel"
    FINALIZE = "finalize"
    MODIFY = "modify"


@dataclass(frozen=True, slots=True)
class Bid:
    bidder: str
    amount: int
    timestamp: int


@dataclass(frozen=True, slots=True)
class Offer:
    offerer: str
    amount: int
    active: bool = True
    timestamp: int = 0


@dataclass(frozen=True, slots=True)
class Listing:
    """Read-only projection of a ledger listing, refreshed after each confirmation."""

    listing_id: int
    status: ListingStatus
    listing_type: ListingType
    token_spec: TokenSpec
    seller: str
    payment_currency: str | None
    initial_amount: int
    start_time: int
    end_time: int
    total_available: int = 1
    total_per_sale: int = 1
    total_sold: int = 0
    highest_bid: Bid | None = None
    bid_count: int = 0
    current_price: int | None = None
    token_address: str = ""
    token_id: str | None = None
    title: str | None = None
    bids: tuple[Bid, ...] = ()
    offers: tuple[Offer, ...] = ()

    @property
    def has_bid(self) -> bool:
        return self.bid_count > 0 or self.highest_bid is not None

    @property
    def artwork_name(self) -> str:
        if self.title:
            return self.title
        if self.token_id:
            return f"Token #{self.token_id}"
        return "artwork"


@dataclass(frozen=True, slots=True)
class TransactionIntent:
    """What the user asked to do, captured before any ledger interaction.

    Plain data only so the intent can be parked across an approval
    transaction and rebuilt from ``to_dict`` output.
    """

    kind: IntentKind
    listing_id: int
    amount: int = 0
    quantity: int = 1
    counterparty: str | None = None
    start_time: int | None = None
    end_time: int | None = None

    @property
    def key(self) -> tuple[int, str]:
        return (self.listing_id, str(self.kind))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "listing_id": self.listing_id,
            "amount": str(self.amount),
            "quantity": self.quantity,
            "counterparty": self.counterparty,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TransactionIntent:
        start_time = raw.get("start_time")
        end_time = raw.get("end_time")
        return cls(
            kind=IntentKind(str(raw["kind"])),
            listing_id=int(raw["listing_id"]),
            amount=int(str(raw.get("amount", "0"))),
            quantity=int(raw.get("quantity", 1)),
            counterparty=raw.get("counterparty"),
            start_time=int(start_time) if start_time is not None else None,
            end_time=int(end_time) if end_time is not None else None,
        )


@dataclass(frozen=True, slots=True)
class CurrencyDescriptor:
    address: str
    is_native: bool
    symbol: str
    decimals: int
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class TransactionReceipt:
    tx_hash: str
    status: str
    reason: str | None = None
    block_number: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == "confirmed"


@dataclass(slots=True)
class ActionResult:
    intent: TransactionIntent
    states: list[str] = field(default_factory=list)
    approval_tx_hash: str | None = None
    action_tx_hash: str | None = None
    notifications_emitted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.to_dict(),
            "states": list(self.states),
            "approval_tx_hash": self.approval_tx_hash,
            "action_tx_hash": self.action_tx_hash,
            "notifications_emitted": self.notifications_emitted,
        }
