from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from auctionhouse.core.addresses import is_address

_ALLOWED_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


@dataclass(frozen=True, slots=True)
class PaymentSettings:
    bid_increment_bps: int = 500
    approval_settle_delay_seconds: float = 1.0
    confirmation_timeout_seconds: float = 600.0
    confirmation_poll_interval_seconds: float = 2.0
    display_fraction_digits: int = 6
    cancel_holdback_bps: int = 0


@dataclass(slots=True)
class ProgramConfig:
    app_network: str
    home_dir: str
    ledger_gateway_url: str
    ledger_account_address: str
    ledger_marketplace_address: str
    ledger_chain_id: int
    indexer_subgraph_url: str
    indexer_api_key_env: str | None
    notifications_enabled: bool
    notifications_api_base: str
    notifications_timeout_seconds: float
    payments: PaymentSettings = field(default_factory=PaymentSettings)
    app_log_level: str = "INFO"
    app_log_level_was_missing: bool = False


def _req(mapping: dict[str, Any], key: str) -> Any:
    if key not in mapping:
        raise ValueError(f"Missing required field: {key}")
    return mapping[key]


def _address(mapping: dict[str, Any], key: str, section: str) -> str:
    value = str(_req(mapping, key)).strip()
    if not is_address(value):
        raise ValueError(f"{section}.{key} must be a 0x-prefixed 40-hex-character address")
    return value


def _bps(mapping: dict[str, Any], key: str, default: int) -> int:
    raw = mapping.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"payments.{key} must be an integer") from exc
    if value < 0 or value > 10_000:
        raise ValueError(f"payments.{key} must be between 0 and 10000")
    return value


def _non_negative_seconds(mapping: dict[str, Any], key: str, default: float, section: str) -> float:
    raw = mapping.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{section}.{key} must be numeric") from exc
    if value < 0:
        raise ValueError(f"{section}.{key} must be >= 0")
    return value


def _parse_payments(raw: dict[str, Any]) -> PaymentSettings:
    if not isinstance(raw, dict):
        raise ValueError("payments must be a mapping")
    digits_raw = raw.get("display_fraction_digits", 6)
    try:
        digits = int(digits_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("payments.display_fraction_digits must be an integer") from exc
    if digits < 0 or digits > 18:
        raise ValueError("payments.display_fraction_digits must be between 0 and 18")
    return PaymentSettings(
        bid_increment_bps=_bps(raw, "bid_increment_bps", 500),
        approval_settle_delay_seconds=_non_negative_seconds(
            raw, "approval_settle_delay_seconds", 1.0, "payments"
        ),
        confirmation_timeout_seconds=_non_negative_seconds(
            raw, "confirmation_timeout_seconds", 600.0, "payments"
        ),
        confirmation_poll_interval_seconds=_non_negative_seconds(
            raw, "confirmation_poll_interval_seconds", 2.0, "payments"
        ),
        display_fraction_digits=digits,
        cancel_holdback_bps=_bps(raw, "cancel_holdback_bps", 0),
    )


def parse_program_config(raw: dict[str, Any]) -> ProgramConfig:
    app = _req(raw, "app")
    ledger = _req(raw, "ledger")
    indexer = _req(raw, "indexer")
    payments = _parse_payments(raw.get("payments") or {})
    notifications = raw.get("notifications") or {}

    # unknown levels are healed to INFO like a missing one
    log_level = str(app.get("log_level") or "").strip().upper()
    log_level_was_missing = log_level not in _ALLOWED_LOG_LEVELS
    if log_level_was_missing:
        log_level = "INFO"

    try:
        chain_id = int(_req(ledger, "chain_id"))
    except (TypeError, ValueError) as exc:
        raise ValueError("ledger.chain_id must be an integer") from exc
    if chain_id <= 0:
        raise ValueError("ledger.chain_id must be positive")

    notifications_enabled = bool(notifications.get("enabled", False))
    api_base = str(notifications.get("api_base", "")).strip().rstrip("/")
    if notifications_enabled and not api_base:
        raise ValueError("notifications.api_base is required when notifications are enabled")

    api_key_env = str(indexer.get("api_key_env", "")).strip() or None

    return ProgramConfig(
        app_network=str(_req(app, "network")),
        home_dir=str(_req(app, "home_dir")),
        ledger_gateway_url=str(_req(ledger, "gateway_url")).strip().rstrip("/"),
        ledger_account_address=_address(ledger, "account_address", "ledger"),
        ledger_marketplace_address=_address(ledger, "marketplace_address", "ledger"),
        ledger_chain_id=chain_id,
        indexer_subgraph_url=str(_req(indexer, "subgraph_url")).strip(),
        indexer_api_key_env=api_key_env,
        notifications_enabled=notifications_enabled,
        notifications_api_base=api_base,
        notifications_timeout_seconds=_non_negative_seconds(
            notifications, "timeout_seconds", 10.0, "notifications"
        ),
        payments=payments,
        app_log_level=log_level,
        app_log_level_was_missing=log_level_was_missing,
    )
