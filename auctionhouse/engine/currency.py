from __future__ import annotations

import logging
from typing import Any

from auctionhouse.core.addresses import is_address, is_native_currency, require_address
from auctionhouse.core.amounts import MAX_DECIMALS
from auctionhouse.core.errors import AllowanceResolutionError, ValidationError
from auctionhouse.core.types import ZERO_ADDRESS, CurrencyDescriptor

logger = logging.getLogger("auctionhouse.currency")

NATIVE_SYMBOL = "ETH"
NATIVE_DECIMALS = 18
DEGRADED_SYMBOL = "$TOKEN"
DEGRADED_DECIMALS = 18


def native_descriptor() -> CurrencyDescriptor:
    return CurrencyDescriptor(
        address=ZERO_ADDRESS,
        is_native=True,
        symbol=NATIVE_SYMBOL,
        decimals=NATIVE_DECIMALS,
    )


def degraded_descriptor(address: str) -> CurrencyDescriptor:
    return CurrencyDescriptor(
        address=address,
        is_native=False,
        symbol=DEGRADED_SYMBOL,
        decimals=DEGRADED_DECIMALS,
        degraded=True,
    )


def _coerce_decimals(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"token decimals is not an integer: {raw!r}")
    decimals = int(raw)
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise ValueError(f"token decimals out of range: {decimals}")
    return decimals


class CurrencyResolver:
    """Describe a listing's payment currency and read spender allowances.

    Token symbol/decimals are immutable on the ledger and are cached per
    address. Allowances are never cached.
    """

    def __init__(self, ledger: Any) -> None:
        self._ledger = ledger
        self._descriptors: dict[str, CurrencyDescriptor] = {}

    async def _read_descriptor(self, address: str) -> CurrencyDescriptor:
        key = address.lower()
        cached = self._descriptors.get(key)
        if cached is not None:
            return cached
        symbol = str(await self._ledger.token_symbol(address)).strip()
        decimals = _coerce_decimals(await self._ledger.token_decimals(address))
        if not symbol:
            raise ValueError("token symbol is empty")
        descriptor = CurrencyDescriptor(
            address=address, is_native=False, symbol=symbol, decimals=decimals
        )
        self._descriptors[key] = descriptor
        return descriptor

    async def resolve_for_display(self, address: str | None) -> CurrencyDescriptor:
        if is_native_currency(address):
            return native_descriptor()
        raw = str(address).strip()
        if not is_address(raw):
            logger.warning("currency address malformed, showing degraded descriptor: %r", raw)
            return degraded_descriptor(raw)
        try:
            return await self._read_descriptor(raw)
        except Exception as exc:
            logger.warning("token descriptor unreadable for %s: %s", raw, exc)
            return degraded_descriptor(raw)

    async def resolve_for_payment(self, address: str | None) -> CurrencyDescriptor:
        if is_native_currency(address):
            return native_descriptor()
        token = require_address(address, field="payment_currency")
        try:
            return await self._read_descriptor(token)
        except Exception as exc:
            raise AllowanceResolutionError(
                f"token descriptor unreadable for {token}: {exc}"
            ) from exc

    async def allowance(self, currency: CurrencyDescriptor, *, owner: str, spender: str) -> int:
        """Current allowance of ``spender`` over ``owner``'s tokens, read from the ledger."""
        if currency.is_native:
            raise ValidationError("native currency has no allowance")
        try:
            raw = await self._ledger.allowance(currency.address, owner=owner, spender=spender)
            value = int(raw)
        except AllowanceResolutionError:
            raise
        except Exception as exc:
            raise AllowanceResolutionError(
                f"allowance unreadable for {currency.address}: {exc}"
            ) from exc
        if value < 0:
            raise AllowanceResolutionError(f"ledger returned negative allowance: {value}")
        return value
