from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any

import aiohttp

from auctionhouse.core.errors import IndexerError, ListingNotFoundError
from auctionhouse.core.types import Bid, Listing, ListingStatus, ListingType, Offer, TokenSpec

logger = logging.getLogger("auctionhouse.subgraph")

LISTING_BY_ID_QUERY = """
query ListingById($id: ID!) {
  listing(id: $id) {
    id
    listingId
    seller
    tokenAddress
    tokenId
    tokenSpec
    listingType
    initialAmount
    totalAvailable
    totalPerSale
    startTime
    endTime
    status
    totalSold
    currentPrice
    hasBid
    finalized
    erc20
    bids(orderBy: amount, orderDirection: desc, first: 1000) {
      id
      bidder
      amount
      timestamp
    }
    offers(first: 1000) {
      id
      offerer
      amount
      status
      timestamp
    }
  }
}
"""

# Numeric encodings used by the marketplace contract events.
_LISTING_TYPE_CODES = {
    "1": ListingType.INDIVIDUAL_AUCTION,
    "2": ListingType.FIXED_PRICE,
    "3": ListingType.DYNAMIC_PRICE,
    "4": ListingType.OFFERS_ONLY,
}
_TOKEN_SPEC_CODES = {"1": TokenSpec.ERC721, "2": TokenSpec.ERC1155}
_INACTIVE_OFFER_STATUSES = {"ACCEPTED", "RESCINDED", "CANCELLED", "CANCELED"}
_MAX_ATTEMPTS = 3


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(str(value))


def _parse_listing_type(raw: Any) -> ListingType:
    text = str(raw or "").strip().upper()
    if text in _LISTING_TYPE_CODES:
        return _LISTING_TYPE_CODES[text]
    try:
        return ListingType(text)
    except ValueError as exc:
        raise IndexerError(f"unknown listing type: {raw!r}") from exc


def _parse_token_spec(raw: Any) -> TokenSpec:
    text = str(raw or "").strip().upper()
    if text in _TOKEN_SPEC_CODES:
        return _TOKEN_SPEC_CODES[text]
    try:
        return TokenSpec(text)
    except ValueError as exc:
        raise IndexerError(f"unknown token spec: {raw!r}") from exc


def _parse_status(raw: Any, finalized: bool) -> ListingStatus:
    if finalized:
        return ListingStatus.FINALIZED
    text = str(raw or "").strip().upper()
    if text in {"CANCELLED", "CANCELED"}:
        return ListingStatus.CANCELLED
    if text in {"FINALIZED", "COMPLETED"}:
        return ListingStatus.FINALIZED
    return ListingStatus.ACTIVE


def parse_listing(node: dict[str, Any]) -> Listing:
    """Build a Listing projection from a subgraph ``listing`` node."""
    try:
        bids = tuple(
            Bid(
                bidder=str(b.get("bidder", "")),
                amount=_int(b.get("amount")),
                timestamp=_int(b.get("timestamp")),
            )
            for b in node.get("bids") or []
            if isinstance(b, dict)
        )
        offers = tuple(
            Offer(
                offerer=str(o.get("offerer", "")),
                amount=_int(o.get("amount")),
                active=str(o.get("status", "")).strip().upper() not in _INACTIVE_OFFER_STATUSES,
                timestamp=_int(o.get("timestamp")),
            )
            for o in node.get("offers") or []
            if isinstance(o, dict)
        )
        highest_bid = max(bids, key=lambda b: (b.amount, b.timestamp)) if bids else None
        bid_count = len(bids)
        if bid_count == 0 and bool(node.get("hasBid", False)):
            bid_count = 1
        current_price_raw = node.get("currentPrice")
        erc20 = str(node.get("erc20") or "").strip() or None
        token_id = node.get("tokenId")
        return Listing(
            listing_id=_int(node.get("listingId", node.get("id"))),
            status=_parse_status(node.get("status"), bool(node.get("finalized", False))),
            listing_type=_parse_listing_type(node.get("listingType")),
            token_spec=_parse_token_spec(node.get("tokenSpec")),
            seller=str(node.get("seller", "")),
            payment_currency=erc20,
            initial_amount=_int(node.get("initialAmount")),
            start_time=_int(node.get("startTime")),
            end_time=_int(node.get("endTime")),
            total_available=_int(node.get("totalAvailable"), 1),
            total_per_sale=_int(node.get("totalPerSale"), 1),
            total_sold=_int(node.get("totalSold")),
            highest_bid=highest_bid,
            bid_count=bid_count,
            current_price=_int(current_price_raw) if current_price_raw not in (None, "") else None,
            token_address=str(node.get("tokenAddress", "")),
            token_id=str(token_id) if token_id not in (None, "") else None,
            bids=bids,
            offers=offers,
        )
    except (TypeError, ValueError) as exc:
        raise IndexerError(f"malformed listing node: {exc}") from exc


class SubgraphAdapter:
    """Listing read projection from the marketplace subgraph."""

    def __init__(
        self,
        *,
        subgraph_url: str,
        api_key_env: str | None = None,
        timeout_seconds: float = 15.0,
        session_factory: Callable[[], Any] | None = None,
        sleep_fn: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.subgraph_url = subgraph_url
        self._api_key_env = api_key_env
        self._timeout_seconds = float(timeout_seconds)
        self._session_factory = session_factory
        self._sleep_fn = sleep_fn

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key_env:
            api_key = os.getenv(self._api_key_env, "").strip()
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _session(self) -> Any:
        if self._session_factory is not None:
            return self._session_factory()
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds, connect=10)
        return aiohttp.ClientSession(timeout=timeout)

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        body = {"query": query, "variables": variables}
        for attempt in range(_MAX_ATTEMPTS):
            try:
                async with self._session() as session:
                    async with session.post(self.subgraph_url, json=body, headers=self._headers()) as response:
                        status = response.status
                        payload = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                raise IndexerError(f"subgraph_request_failed:{exc}") from exc
            if status == 429 and attempt < _MAX_ATTEMPTS - 1:
                delay = min(8.0, 0.5 * (2**attempt))
                logger.warning("subgraph rate limited, retrying in %.1fs", delay)
                await self._sleep_fn(delay)
                continue
            if status >= 400:
                raise IndexerError(f"subgraph_http_error:{status}")
            if not isinstance(payload, dict):
                raise IndexerError("subgraph_invalid_response_shape")
            errors = payload.get("errors")
            if errors:
                raise IndexerError(f"subgraph_graphql_error:{errors}")
            data = payload.get("data")
            if not isinstance(data, dict):
                raise IndexerError("subgraph_response_missing_data")
            return data
        raise IndexerError("subgraph_rate_limited")

    async def get_listing(self, listing_id: int) -> Listing:
        data = await self._graphql(LISTING_BY_ID_QUERY, {"id": str(int(listing_id))})
        node = data.get("listing")
        if not isinstance(node, dict):
            raise ListingNotFoundError(int(listing_id))
        return parse_listing(node)
