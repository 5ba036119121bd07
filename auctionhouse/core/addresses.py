from __future__ import annotations

import re

from auctionhouse.core.errors import MalformedAddressError
from auctionhouse.core.types import ZERO_ADDRESS

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def require_address(value: object, *, field: str = "address") -> str:
    if not is_address(value):
        raise MalformedAddressError(f"{field} is not a 0x-prefixed 20-byte address: {value!r}")
    return str(value).strip()


def is_native_currency(address: str | None) -> bool:
    normalized = str(address or "").strip().lower()
    return normalized in {"", ZERO_ADDRESS}
