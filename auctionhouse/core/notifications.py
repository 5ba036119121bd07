from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from auctionhouse.core.eligibility import same_address
from auctionhouse.core.pricing import unit_price
from auctionhouse.core.types import IntentKind, Listing, ListingType, TokenSpec, TransactionIntent


class NotificationType(StrEnum):
    BID_PLACED = "BID_PLACED"
    NEW_BID = "NEW_BID"
    OUTBID = "OUTBID"
    NEW_OFFER = "NEW_OFFER"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    BUY_NOW_SALE = "BUY_NOW_SALE"
    ERC721_PURCHASE = "ERC721_PURCHASE"
    ERC1155_PURCHASE = "ERC1155_PURCHASE"
    AUCTION_WON = "AUCTION_WON"
    AUCTION_ENDED_NO_BIDS = "AUCTION_ENDED_NO_BIDS"
    LISTING_CANCELLED = "LISTING_CANCELLED"
    LISTING_MODIFIED = "LISTING_MODIFIED"


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    user_address: str
    type: NotificationType
    title: str
    message: str
    listing_id: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "userAddress": self.user_address,
            "type": str(self.type),
            "title": self.title,
            "message": self.message,
            "listingId": str(self.listing_id),
            "metadata": dict(self.metadata),
        }


def short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def _bid_records(
    intent: TransactionIntent, listing: Listing, actor: str, amount_text: str
) -> list[NotificationRecord]:
    name = listing.artwork_name
    records = [
        NotificationRecord(
            user_address=actor,
            type=NotificationType.BID_PLACED,
            title="Bid Placed",
            message=f"You've placed a bid on {name}",
            listing_id=intent.listing_id,
            metadata={"amount": amount_text, "artworkName": name},
        ),
        NotificationRecord(
            user_address=listing.seller,
            type=NotificationType.NEW_BID,
            title="New Bid",
            message=f"New bid on {name} from {short_address(actor)} for {amount_text}",
            listing_id=intent.listing_id,
            metadata={"bidder": actor, "amount": amount_text, "artworkName": name},
        ),
    ]
    previous = listing.highest_bid.bidder if listing.highest_bid is not None else None
    if previous and not same_address(previous, actor):
        records.append(
            NotificationRecord(
                user_address=previous,
                type=NotificationType.OUTBID,
                title="You've Been Outbid",
                message=f"You've been outbid on {name}",
                listing_id=intent.listing_id,
                metadata={"newBidAmount": amount_text, "artworkName": name},
            )
        )
    return records


def _purchase_records(intent: TransactionIntent, listing: Listing, actor: str) -> list[NotificationRecord]:
    name = listing.artwork_name
    is_multi = listing.token_spec == TokenSpec.ERC1155
    metadata = {
        "artworkName": name,
        "quantity": intent.quantity,
        "price": str(unit_price(listing)),
    }
    return [
        NotificationRecord(
            user_address=actor,
            type=NotificationType.ERC1155_PURCHASE if is_multi else NotificationType.ERC721_PURCHASE,
            title="Purchase Completed",
            message=f"You bought {intent.quantity} {name}" if is_multi else f"You purchased {name}",
            listing_id=intent.listing_id,
            metadata=metadata,
        ),
        NotificationRecord(
            user_address=listing.seller,
            type=NotificationType.BUY_NOW_SALE,
            title="Sale Completed",
            message=f"New sale on {name} to {short_address(actor)}",
            listing_id=intent.listing_id,
            metadata={"buyer": actor, **metadata},
        ),
    ]


def _accept_records(intent: TransactionIntent, listing: Listing, amount_text: str) -> list[NotificationRecord]:
    name = listing.artwork_name
    offerer = intent.counterparty or ""
    return [
        NotificationRecord(
            user_address=offerer,
            type=NotificationType.OFFER_ACCEPTED,
            title="Offer Accepted",
            message=f"Your offer on {name} was accepted",
            listing_id=intent.listing_id,
            metadata={"artworkName": name, "amount": amount_text},
        ),
        NotificationRecord(
            user_address=listing.seller,
            type=NotificationType.BUY_NOW_SALE,
            title="Sale Completed",
            message=f"New sale on {name} to {short_address(offerer)}",
            listing_id=intent.listing_id,
            metadata={"buyer": offerer, "artworkName": name, "amount": amount_text},
        ),
    ]


def _finalize_records(intent: TransactionIntent, listing: Listing, amount_text: str) -> list[NotificationRecord]:
    if listing.listing_type != ListingType.INDIVIDUAL_AUCTION:
        return []
    name = listing.artwork_name
    if listing.highest_bid is None:
        return [
            NotificationRecord(
                user_address=listing.seller,
                type=NotificationType.AUCTION_ENDED_NO_BIDS,
                title="Auction Ended",
                message=f"Your auction for {name} ended with no bids",
                listing_id=intent.listing_id,
                metadata={"artworkName": name},
            )
        ]
    winner = listing.highest_bid.bidder
    return [
        NotificationRecord(
            user_address=winner,
            type=NotificationType.AUCTION_WON,
            title="Auction Won",
            message=f"You won the auction for {name}",
            listing_id=intent.listing_id,
            metadata={"artworkName": name, "amount": amount_text},
        ),
        NotificationRecord(
            user_address=listing.seller,
            type=NotificationType.BUY_NOW_SALE,
            title="Auction Sold",
            message=f"Your auction for {name} sold to {short_address(winner)}",
            listing_id=intent.listing_id,
            metadata={"buyer": winner, "artworkName": name, "amount": amount_text},
        ),
    ]


def build_notification_records(
    intent: TransactionIntent,
    listing: Listing,
    *,
    actor: str,
    amount_text: str,
) -> list[NotificationRecord]:
    """Records owed to every interested party once ``intent`` is confirmed.

    ``listing`` is the projection observed before the action, so the previous
    highest bidder is still visible for outbid notices.
    """
    name = listing.artwork_name
    kind = intent.kind
    if kind == IntentKind.BID:
        return _bid_records(intent, listing, actor, amount_text)
    if kind == IntentKind.PURCHASE:
        return _purchase_records(intent, listing, actor)
    if kind == IntentKind.OFFER:
        return [
            NotificationRecord(
                user_address=listing.seller,
                type=NotificationType.NEW_OFFER,
                title="New Offer",
                message=f"New offer on {name} for {amount_text} from {short_address(actor)}",
                listing_id=intent.listing_id,
                metadata={"offerer": actor, "amount": amount_text, "artworkName": name},
            )
        ]
    if kind == IntentKind.ACCEPT:
        return _accept_records(intent, listing, amount_text)
    if kind == IntentKind.FINALIZE:
        return _finalize_records(intent, listing, amount_text)
    if kind == IntentKind.CANCEL:
        return [
            NotificationRecord(
                user_address=listing.seller,
                type=NotificationType.LISTING_CANCELLED,
                title="Listing Cancelled",
                message=f"Your listing for {name} was cancelled",
                listing_id=intent.listing_id,
                metadata={"artworkName": name},
            )
        ]
    if kind == IntentKind.MODIFY:
        return [
            NotificationRecord(
                user_address=listing.seller,
                type=NotificationType.LISTING_MODIFIED,
                title="Listing Updated",
                message=f"Your listing for {name} was updated",
                listing_id=intent.listing_id,
                metadata={
                    "artworkName": name,
                    "startTime": intent.start_time or 0,
                    "endTime": intent.end_time or 0,
                },
            )
        ]
    return []
