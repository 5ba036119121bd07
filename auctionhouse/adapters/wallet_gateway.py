from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from auctionhouse.core.addresses import require_address
from auctionhouse.core.errors import SubmissionError
from auctionhouse.core.types import TransactionReceipt

logger = logging.getLogger("auctionhouse.wallet_gateway")

_RECEIPT_STATUSES = {"pending", "confirmed", "reverted"}


@dataclass(frozen=True, slots=True)
class WalletGatewayConfig:
    base_url: str
    account_address: str
    marketplace_address: str
    chain_id: int
    timeout_seconds: float = 30.0


def _encode_arg(value: Any) -> Any:
    # Ledger integers exceed JSON-safe range, so they travel as decimal strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_encode_arg(item) for item in value]
    return value


class WalletGatewayAdapter:
    """Marketplace and fungible-token calls through a signing wallet gateway.

    Writes go to ``POST /v1/transactions`` and return a transaction hash;
    receipts are read from ``GET /v1/transactions/{hash}``; view calls go to
    ``POST /v1/calls``.
    """

    def __init__(
        self,
        config: WalletGatewayConfig,
        *,
        session_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._account = require_address(config.account_address, field="account_address")
        self._marketplace = require_address(config.marketplace_address, field="marketplace_address")
        self._chain_id = int(config.chain_id)
        self._timeout_seconds = float(config.timeout_seconds)
        self._session_factory = session_factory

    @property
    def account_address(self) -> str:
        return self._account

    @property
    def marketplace_address(self) -> str:
        return self._marketplace

    def _session(self) -> Any:
        if self._session_factory is not None:
            return self._session_factory()
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds, connect=15)
        return aiohttp.ClientSession(timeout=timeout)

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        async with self._session() as session:
            if method == "GET":
                response_cm = session.get(url)
            else:
                response_cm = session.post(url, json=payload)
            async with response_cm as response:
                body = await response.text()
                if response.status >= 400:
                    raise RuntimeError(f"wallet_gateway_http_error:{response.status}:{body[:300]}")
        try:
            decoded = json.loads(body) if body else {}
        except ValueError as exc:
            raise RuntimeError(f"wallet_gateway_invalid_json:{body[:300]}") from exc
        if not isinstance(decoded, dict):
            raise RuntimeError("wallet_gateway_invalid_response_shape")
        error = decoded.get("error")
        if error:
            raise RuntimeError(f"wallet_gateway_error:{error}")
        return decoded

    async def _send_transaction(
        self,
        *,
        to: str,
        function: str,
        args: list[Any],
        value: int = 0,
    ) -> str:
        payload = {
            "chainId": self._chain_id,
            "from": self._account,
            "to": to,
            "function": function,
            "args": _encode_arg(args),
            "value": str(int(value)),
        }
        try:
            response = await self._request("POST", "/v1/transactions", payload)
        except (RuntimeError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SubmissionError(f"{function} rejected before broadcast: {exc}") from exc
        tx_hash = str(response.get("hash") or "").strip()
        if not tx_hash:
            raise SubmissionError(f"{function} submission returned no transaction hash")
        logger.info("submitted %s to=%s tx=%s value=%s", function, to, tx_hash, value)
        return tx_hash

    async def _call(self, *, to: str, function: str, args: list[Any]) -> Any:
        response = await self._request(
            "POST",
            "/v1/calls",
            {"chainId": self._chain_id, "to": to, "function": function, "args": _encode_arg(args)},
        )
        if "result" not in response:
            raise RuntimeError(f"wallet_gateway_call_missing_result:{function}")
        return response["result"]

    # --- marketplace writes ---

    async def bid(self, listing_id: int, *, increase_only: bool = False, value: int = 0) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="bid(uint40,bool)",
            args=[int(listing_id), bool(increase_only)],
            value=value,
        )

    async def purchase(self, listing_id: int, quantity: int, *, value: int = 0) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="purchase(uint40,uint24)",
            args=[int(listing_id), int(quantity)],
            value=value,
        )

    async def offer(self, listing_id: int, *, increase_only: bool = False, value: int = 0) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="offer(uint40,bool)",
            args=[int(listing_id), bool(increase_only)],
            value=value,
        )

    async def accept(
        self,
        listing_id: int,
        *,
        offerers: list[str],
        amounts: list[int],
        max_amount: int,
    ) -> str:
        if len(offerers) != len(amounts):
            raise ValueError("offerers and amounts must have the same length")
        checked = [require_address(o, field="offerer") for o in offerers]
        return await self._send_transaction(
            to=self._marketplace,
            function="accept(uint40,address[],uint256[],uint256)",
            args=[int(listing_id), checked, [int(a) for a in amounts], int(max_amount)],
        )

    async def cancel(self, listing_id: int, *, holdback_bps: int = 0) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="cancel(uint40,uint16)",
            args=[int(listing_id), int(holdback_bps)],
        )

    async def finalize(self, listing_id: int) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="finalize(uint40)",
            args=[int(listing_id)],
        )

    async def modify_listing(
        self,
        listing_id: int,
        *,
        initial_amount: int,
        start_time: int,
        end_time: int,
    ) -> str:
        return await self._send_transaction(
            to=self._marketplace,
            function="modifyListing(uint40,uint256,uint48,uint48)",
            args=[int(listing_id), int(initial_amount), int(start_time), int(end_time)],
        )

    # --- fungible token ---

    async def approve(self, token: str, *, spender: str, amount: int) -> str:
        return await self._send_transaction(
            to=require_address(token, field="token"),
            function="approve(address,uint256)",
            args=[require_address(spender, field="spender"), int(amount)],
        )

    async def allowance(self, token: str, *, owner: str, spender: str) -> int:
        result = await self._call(
            to=require_address(token, field="token"),
            function="allowance(address,address)",
            args=[require_address(owner, field="owner"), require_address(spender, field="spender")],
        )
        return int(str(result))

    async def token_symbol(self, token: str) -> str:
        return str(await self._call(to=require_address(token, field="token"), function="symbol()", args=[]))

    async def token_decimals(self, token: str) -> int:
        result = await self._call(to=require_address(token, field="token"), function="decimals()", args=[])
        return int(str(result))

    # --- receipts ---

    async def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        """Receipt for ``tx_hash``; ``None`` while unknown, pending, or unreadable."""
        try:
            response = await self._request("GET", f"/v1/transactions/{tx_hash}")
        except (RuntimeError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("receipt read failed tx=%s error=%s", tx_hash, exc)
            return None
        status = str(response.get("status", "")).strip().lower()
        if status not in _RECEIPT_STATUSES or status == "pending":
            return None
        block_raw = response.get("blockNumber")
        reason = response.get("reason")
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            reason=str(reason) if reason else None,
            block_number=int(block_raw) if block_raw is not None else None,
        )
