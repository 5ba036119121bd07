from __future__ import annotations

from dataclasses import replace
from typing import Any

from auctionhouse.core.errors import ListingNotFoundError, NotificationDeliveryError, SubmissionError
from auctionhouse.core.types import (
    Bid,
    Listing,
    ListingStatus,
    ListingType,
    TokenSpec,
    TransactionReceipt,
)

SELLER = "0x" + "a" * 40
BIDDER = "0x" + "b" * 40
PREVIOUS_BIDDER = "0x" + "c" * 40
TOKEN = "0x" + "d" * 40
MARKETPLACE = "0x" + "e" * 40
OFFERER = "0x" + "f" * 40

ONE = 10**18
NOW = 1_700_000_000


def make_listing(**overrides: Any) -> Listing:
    base = Listing(
        listing_id=7,
        status=ListingStatus.ACTIVE,
        listing_type=ListingType.INDIVIDUAL_AUCTION,
        token_spec=TokenSpec.ERC721,
        seller=SELLER,
        payment_currency=None,
        initial_amount=ONE,
        start_time=NOW - 3600,
        end_time=NOW + 86_400,
        token_address="0x" + "9" * 40,
        token_id="42",
        title="Sunset",
    )
    return replace(base, **overrides)


def with_bid(listing: Listing, *, bidder: str = PREVIOUS_BIDDER, amount: int = ONE, timestamp: int = NOW - 60) -> Listing:
    bid = Bid(bidder=bidder, amount=amount, timestamp=timestamp)
    return replace(listing, highest_bid=bid, bid_count=listing.bid_count + 1, bids=(*listing.bids, bid))


class FakeLedger:
    """In-memory ledger: every transaction confirms unless told otherwise."""

    def __init__(
        self,
        *,
        allowance: int = 0,
        symbol: str | None = "USDC",
        decimals: int | None = 6,
        grant_on_approve: bool = True,
    ) -> None:
        self.allowance_value = allowance
        self.symbol = symbol
        self.decimals = decimals
        self.grant_on_approve = grant_on_approve
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.allowance_reads = 0
        self.receipt_reads = 0
        self.revert_functions: set[str] = set()
        self.pending_functions: set[str] = set()
        self.reject_functions: set[str] = set()
        self.allowance_error: Exception | None = None
        self._statuses: dict[str, str] = {}
        self._counter = 0

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _tx(self, name: str, **kwargs: Any) -> str:
        if name in self.reject_functions:
            raise SubmissionError(f"{name} rejected before broadcast: user denied")
        self._counter += 1
        tx_hash = f"0x{self._counter:064x}"
        self.calls.append((name, kwargs))
        if name in self.revert_functions:
            self._statuses[tx_hash] = "reverted"
        elif name in self.pending_functions:
            self._statuses[tx_hash] = "pending"
        else:
            self._statuses[tx_hash] = "confirmed"
        return tx_hash

    async def bid(self, listing_id: int, *, increase_only: bool = False, value: int = 0) -> str:
        return self._tx("bid", listing_id=listing_id, increase_only=increase_only, value=value)

    async def purchase(self, listing_id: int, quantity: int, *, value: int = 0) -> str:
        return self._tx("purchase", listing_id=listing_id, quantity=quantity, value=value)

    async def offer(self, listing_id: int, *, increase_only: bool = False, value: int = 0) -> str:
        return self._tx("offer", listing_id=listing_id, increase_only=increase_only, value=value)

    async def accept(self, listing_id: int, *, offerers: list[str], amounts: list[int], max_amount: int) -> str:
        return self._tx("accept", listing_id=listing_id, offerers=offerers, amounts=amounts, max_amount=max_amount)

    async def cancel(self, listing_id: int, *, holdback_bps: int = 0) -> str:
        return self._tx("cancel", listing_id=listing_id, holdback_bps=holdback_bps)

    async def finalize(self, listing_id: int) -> str:
        return self._tx("finalize", listing_id=listing_id)

    async def modify_listing(self, listing_id: int, *, initial_amount: int, start_time: int, end_time: int) -> str:
        return self._tx(
            "modify_listing",
            listing_id=listing_id,
            initial_amount=initial_amount,
            start_time=start_time,
            end_time=end_time,
        )

    async def approve(self, token: str, *, spender: str, amount: int) -> str:
        tx_hash = self._tx("approve", token=token, spender=spender, amount=amount)
        if self.grant_on_approve:
            self.allowance_value = amount
        return tx_hash

    async def allowance(self, token: str, *, owner: str, spender: str) -> int:
        self.allowance_reads += 1
        if self.allowance_error is not None:
            raise self.allowance_error
        return self.allowance_value

    async def token_symbol(self, token: str) -> str:
        if self.symbol is None:
            raise RuntimeError("execution reverted: symbol()")
        return self.symbol

    async def token_decimals(self, token: str) -> int:
        if self.decimals is None:
            raise RuntimeError("execution reverted: decimals()")
        return self.decimals

    def settle(self, tx_hash: str, status: str) -> None:
        self._statuses[tx_hash] = status

    async def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        self.receipt_reads += 1
        status = self._statuses.get(tx_hash)
        if status is None or status == "pending":
            return None
        reason = "bid_too_low" if status == "reverted" else None
        return TransactionReceipt(tx_hash=tx_hash, status=status, reason=reason, block_number=100)


class FakeReader:
    def __init__(self, *listings: Listing) -> None:
        self.listings = {listing.listing_id: listing for listing in listings}
        self.reads = 0

    async def get_listing(self, listing_id: int) -> Listing:
        self.reads += 1
        listing = self.listings.get(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing


class FakeSink:
    def __init__(self, *, fail_for: set[str] | None = None) -> None:
        self.sent: list[Any] = []
        self.fail_for = fail_for or set()

    async def send(self, record: Any) -> None:
        if record.user_address in self.fail_for:
            raise NotificationDeliveryError(f"notification_http_error:500:{record.user_address}")
        self.sent.append(record)


async def no_sleep(_seconds: float) -> None:
    return None
