from __future__ import annotations

import re

from auctionhouse.core.errors import MalformedAmountError

DEFAULT_DISPLAY_FRACTION_DIGITS = 6
MAX_DECIMALS = 77

_DISPLAY_AMOUNT_RE = re.compile(r"^([0-9]*)(?:\.([0-9]*))?$")


def _coerce_base_units(amount: object) -> int:
    if isinstance(amount, bool):
        return 0
    if isinstance(amount, int):
        return amount if amount >= 0 else 0
    if isinstance(amount, str):
        text = amount.strip()
        if text.isascii() and text.isdigit():
            try:
                return int(text)
            except ValueError:
                # past the interpreter int/str digit limit
                return 0
    return 0


def _valid_decimals(decimals: object) -> bool:
    return isinstance(decimals, int) and not isinstance(decimals, bool) and 0 <= decimals <= MAX_DECIMALS


def format_amount(
    amount: object,
    decimals: int,
    *,
    max_fraction_digits: int = DEFAULT_DISPLAY_FRACTION_DIGITS,
) -> str:
    """Render base units as a decimal string.

    Trailing fractional zeros are dropped and the fraction is truncated (never
    rounded) to ``max_fraction_digits``. Malformed input renders as ``"0"``.
    """
    if not _valid_decimals(decimals):
        return "0"
    value = _coerce_base_units(amount)
    try:
        return _render(value, decimals, max_fraction_digits)
    except ValueError:
        return "0"


def _render(value: int, decimals: int, max_fraction_digits: int) -> str:
    whole, fraction = divmod(value, 10**decimals)
    if fraction == 0 or max_fraction_digits <= 0:
        return str(whole)
    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0")
    fraction_text = fraction_text[:max_fraction_digits].rstrip("0")
    if not fraction_text:
        return str(whole)
    return f"{whole}.{fraction_text}"


def parse_amount(display: str, decimals: int) -> int:
    """Parse a human decimal string into base units using integer arithmetic only.

    Fraction digits beyond ``decimals`` are truncated.
    """
    if not _valid_decimals(decimals):
        raise MalformedAmountError(f"invalid decimals: {decimals!r}")
    if not isinstance(display, str):
        raise MalformedAmountError(f"amount must be a string, got {type(display).__name__}")
    text = display.strip()
    match = _DISPLAY_AMOUNT_RE.match(text)
    if not text or text == "." or match is None:
        raise MalformedAmountError(f"malformed amount: {display!r}")
    whole_text, fraction_text = match.group(1), match.group(2) or ""
    try:
        whole = int(whole_text or "0")
        fraction = int(fraction_text[:decimals].ljust(decimals, "0") or "0")
    except ValueError as exc:
        raise MalformedAmountError(f"malformed amount: {display!r}") from exc
    return whole * 10**decimals + fraction


def truncate_to_display_precision(
    amount: int,
    decimals: int,
    *,
    max_fraction_digits: int = DEFAULT_DISPLAY_FRACTION_DIGITS,
) -> int:
    """Base-unit value that survives a ``format_amount`` / ``parse_amount`` round trip."""
    dropped = decimals - max(0, max_fraction_digits)
    if dropped <= 0:
        return amount
    step = 10**dropped
    return amount - amount % step
