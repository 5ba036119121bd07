from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from auctionhouse.adapters.subgraph import SubgraphAdapter
from auctionhouse.adapters.wallet_gateway import WalletGatewayAdapter, WalletGatewayConfig
from auctionhouse.config.io import load_program_config
from auctionhouse.config.models import ProgramConfig
from auctionhouse.core.amounts import format_amount, parse_amount
from auctionhouse.core.eligibility import can_cancel, can_finalize, can_modify
from auctionhouse.core.errors import AuctionhouseError
from auctionhouse.core.pricing import max_purchasable_quantity, minimum_bid, unit_price
from auctionhouse.core.time_status import resolve_time_status
from auctionhouse.core.types import ActionResult, Listing
from auctionhouse.engine.coordinator import TransactionCoordinator, describe_failure
from auctionhouse.engine.currency import CurrencyResolver
from auctionhouse.engine.dispatcher import NotificationDispatcher
from auctionhouse.logging_setup import configure_service_logging
from auctionhouse.notify.notification_api import NotificationApiSink
from auctionhouse.storage.sqlite import SqliteStore

_SERVICE_NAME = "manager"
_manager_logger = logging.getLogger("auctionhouse.manager")


def _default_program_config_path() -> str:
    home_default = Path("~/.auctionhouse/config/program.yaml").expanduser()
    if home_default.exists():
        return str(home_default)
    return "config/program.yaml"


def _resolve_db_path(program: ProgramConfig, state_db: str | None) -> Path:
    if state_db:
        return Path(state_db).expanduser().resolve()
    return (Path(program.home_dir).expanduser() / "db" / "auctionhouse.sqlite").resolve()


def _load_program(program_path: Path) -> ProgramConfig:
    program = load_program_config(program_path)
    configure_service_logging(
        service_name=_SERVICE_NAME, home_dir=program.home_dir, log_level=program.app_log_level
    )
    if program.app_log_level_was_missing:
        _manager_logger.warning(
            "program config missing app.log_level; wrote default INFO to %s", program_path
        )
    return program


def _new_wallet_gateway(program: ProgramConfig) -> WalletGatewayAdapter:
    return WalletGatewayAdapter(
        WalletGatewayConfig(
            base_url=program.ledger_gateway_url,
            account_address=program.ledger_account_address,
            marketplace_address=program.ledger_marketplace_address,
            chain_id=program.ledger_chain_id,
        )
    )


def _new_subgraph(program: ProgramConfig) -> SubgraphAdapter:
    return SubgraphAdapter(
        subgraph_url=program.indexer_subgraph_url,
        api_key_env=program.indexer_api_key_env,
    )


def _new_notification_sink(program: ProgramConfig) -> NotificationApiSink:
    return NotificationApiSink(
        api_base=program.notifications_api_base,
        timeout_seconds=program.notifications_timeout_seconds,
    )


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, sort_keys=True))


def _validate(program_path: Path) -> int:
    program = load_program_config(program_path)
    _print_json(
        {
            "status": "ok",
            "network": program.app_network,
            "chain_id": program.ledger_chain_id,
            "marketplace": program.ledger_marketplace_address,
            "notifications_enabled": program.notifications_enabled,
        }
    )
    return 0


def _listing_status_payload(
    listing: Listing, *, actor: str, symbol: str, decimals: int, digits: int, increment_bps: int
) -> dict[str, Any]:
    status = resolve_time_status(listing)

    def _fmt(amount: int) -> str:
        return format_amount(amount, decimals, max_fraction_digits=digits)

    return {
        "listing_id": listing.listing_id,
        "listing_type": str(listing.listing_type),
        "token_spec": str(listing.token_spec),
        "status": str(listing.status),
        "phase": str(status.phase),
        "time_remaining": status.time_remaining,
        "never_expires": status.never_expires,
        "sold_out": status.sold_out,
        "currency": symbol,
        "price": _fmt(unit_price(listing)),
        "minimum_bid": _fmt(minimum_bid(listing, increment_bps=increment_bps)),
        "highest_bid": _fmt(listing.highest_bid.amount) if listing.highest_bid else None,
        "max_purchasable_quantity": max_purchasable_quantity(listing),
        "can_cancel": can_cancel(listing, actor, status),
        "can_modify": can_modify(listing, actor, status),
        "can_finalize": can_finalize(status),
    }


async def _listing_status_async(program: ProgramConfig, listing_id: int) -> dict[str, Any]:
    reader = _new_subgraph(program)
    resolver = CurrencyResolver(_new_wallet_gateway(program))
    listing = await reader.get_listing(listing_id)
    currency = await resolver.resolve_for_display(listing.payment_currency)
    return _listing_status_payload(
        listing,
        actor=program.ledger_account_address,
        symbol=currency.symbol,
        decimals=currency.decimals,
        digits=program.payments.display_fraction_digits,
        increment_bps=program.payments.bid_increment_bps,
    )


def _listing_status(*, program_path: Path, listing_id: int) -> int:
    program = _load_program(program_path)
    try:
        payload = asyncio.run(_listing_status_async(program, listing_id))
    except AuctionhouseError as exc:
        _print_json(describe_failure(exc))
        return 1
    _print_json(payload)
    return 0


ActionFn = Callable[[TransactionCoordinator, CurrencyResolver], Awaitable[ActionResult]]


async def _run_action_async(program: ProgramConfig, store: SqliteStore, action: ActionFn) -> ActionResult:
    ledger = _new_wallet_gateway(program)
    resolver = CurrencyResolver(ledger)
    dispatcher = NotificationDispatcher(
        _new_notification_sink(program), enabled=program.notifications_enabled
    )
    coordinator = TransactionCoordinator(
        reader=_new_subgraph(program),
        ledger=ledger,
        dispatcher=dispatcher,
        account=program.ledger_account_address,
        spender=program.ledger_marketplace_address,
        settings=program.payments,
        resolver=resolver,
        store=store,
    )
    try:
        return await action(coordinator, resolver)
    finally:
        await dispatcher.drain()


def _run_action(*, program_path: Path, state_db: str | None, action: ActionFn) -> int:
    program = _load_program(program_path)
    store = SqliteStore(_resolve_db_path(program, state_db))
    try:
        result = asyncio.run(_run_action_async(program, store, action))
    except AuctionhouseError as exc:
        _manager_logger.warning("action failed: %s", exc)
        _print_json(describe_failure(exc))
        return 1
    finally:
        store.close()
    _print_json(result.to_dict())
    return 0


async def _payment_amount(
    reader: Any, resolver: CurrencyResolver, listing_id: int, display_amount: str
) -> int:
    listing = await reader.get_listing(listing_id)
    currency = await resolver.resolve_for_payment(listing.payment_currency)
    return parse_amount(display_amount, currency.decimals)


def _bid(*, program_path: Path, state_db: str | None, listing_id: int, amount: str) -> int:
    async def _action(coordinator: TransactionCoordinator, resolver: CurrencyResolver) -> ActionResult:
        base_units = await _payment_amount(coordinator.reader, resolver, listing_id, amount)
        return await coordinator.place_bid(listing_id, base_units)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _purchase(*, program_path: Path, state_db: str | None, listing_id: int, quantity: int) -> int:
    async def _action(coordinator: TransactionCoordinator, _resolver: CurrencyResolver) -> ActionResult:
        return await coordinator.purchase(listing_id, quantity)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _offer(*, program_path: Path, state_db: str | None, listing_id: int, amount: str) -> int:
    async def _action(coordinator: TransactionCoordinator, resolver: CurrencyResolver) -> ActionResult:
        base_units = await _payment_amount(coordinator.reader, resolver, listing_id, amount)
        return await coordinator.make_offer(listing_id, base_units)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _accept_offer(*, program_path: Path, state_db: str | None, listing_id: int, offerer: str) -> int:
    async def _action(coordinator: TransactionCoordinator, _resolver: CurrencyResolver) -> ActionResult:
        return await coordinator.accept_offer(listing_id, offerer)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _cancel(*, program_path: Path, state_db: str | None, listing_id: int) -> int:
    async def _action(coordinator: TransactionCoordinator, _resolver: CurrencyResolver) -> ActionResult:
        return await coordinator.cancel(listing_id)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _finalize(*, program_path: Path, state_db: str | None, listing_id: int) -> int:
    async def _action(coordinator: TransactionCoordinator, _resolver: CurrencyResolver) -> ActionResult:
        return await coordinator.finalize(listing_id)

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _modify(
    *,
    program_path: Path,
    state_db: str | None,
    listing_id: int,
    start_time: int,
    end_time: int,
    initial_amount: str | None,
) -> int:
    async def _action(coordinator: TransactionCoordinator, resolver: CurrencyResolver) -> ActionResult:
        base_units = None
        if initial_amount:
            base_units = await _payment_amount(coordinator.reader, resolver, listing_id, initial_amount)
        return await coordinator.modify(
            listing_id, start_time=start_time, end_time=end_time, initial_amount=base_units
        )

    return _run_action(program_path=program_path, state_db=state_db, action=_action)


def _audit_events(
    *, program_path: Path, state_db: str | None, listing_id: int | None, limit: int
) -> int:
    program = load_program_config(program_path)
    store = SqliteStore(_resolve_db_path(program, state_db))
    try:
        events = store.list_recent_audit_events(listing_id=listing_id, limit=limit)
    finally:
        store.close()
    _print_json({"count": len(events), "events": events})
    return 0


def _tx_status(*, program_path: Path, state_db: str | None, listing_id: int | None, limit: int) -> int:
    program = load_program_config(program_path)
    store = SqliteStore(_resolve_db_path(program, state_db))
    try:
        rows = store.list_transaction_states(listing_id=listing_id, limit=limit)
    finally:
        store.close()
    _print_json({"count": len(rows), "transactions": rows})
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Auctionhouse listing transaction CLI")
    parser.add_argument("--program-config", default=_default_program_config_path())
    parser.add_argument("--state-db", default="")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("config-validate")

    p_status = sub.add_parser("listing-status")
    p_status.add_argument("--listing-id", required=True, type=int)

    p_bid = sub.add_parser("bid")
    p_bid.add_argument("--listing-id", required=True, type=int)
    p_bid.add_argument("--amount", required=True, help="Human amount in the listing currency")

    p_purchase = sub.add_parser("purchase")
    p_purchase.add_argument("--listing-id", required=True, type=int)
    p_purchase.add_argument("--quantity", default=1, type=int)

    p_offer = sub.add_parser("offer")
    p_offer.add_argument("--listing-id", required=True, type=int)
    p_offer.add_argument("--amount", required=True, help="Human amount in the listing currency")

    p_accept = sub.add_parser("accept-offer")
    p_accept.add_argument("--listing-id", required=True, type=int)
    p_accept.add_argument("--offerer", required=True)

    p_cancel = sub.add_parser("cancel")
    p_cancel.add_argument("--listing-id", required=True, type=int)

    p_finalize = sub.add_parser("finalize")
    p_finalize.add_argument("--listing-id", required=True, type=int)

    p_modify = sub.add_parser("modify")
    p_modify.add_argument("--listing-id", required=True, type=int)
    p_modify.add_argument("--start-time", default=0, type=int)
    p_modify.add_argument("--end-time", default=0, type=int)
    p_modify.add_argument("--initial-amount", default="")

    p_audit = sub.add_parser("audit-events")
    p_audit.add_argument("--listing-id", type=int, default=None)
    p_audit.add_argument("--limit", type=int, default=50)

    p_tx = sub.add_parser("tx-status")
    p_tx.add_argument("--listing-id", type=int, default=None)
    p_tx.add_argument("--limit", type=int, default=200)

    args = parser.parse_args()
    program_path = Path(args.program_config)
    state_db = args.state_db or None
    if args.command == "config-validate":
        code = _validate(program_path)
    elif args.command == "listing-status":
        code = _listing_status(program_path=program_path, listing_id=args.listing_id)
    elif args.command == "bid":
        code = _bid(
            program_path=program_path, state_db=state_db, listing_id=args.listing_id, amount=args.amount
        )
    elif args.command == "purchase":
        code = _purchase(
            program_path=program_path,
            state_db=state_db,
            listing_id=args.listing_id,
            quantity=int(args.quantity),
        )
    elif args.command == "offer":
        code = _offer(
            program_path=program_path, state_db=state_db, listing_id=args.listing_id, amount=args.amount
        )
    elif args.command == "accept-offer":
        code = _accept_offer(
            program_path=program_path,
            state_db=state_db,
            listing_id=args.listing_id,
            offerer=args.offerer,
        )
    elif args.command == "cancel":
        code = _cancel(program_path=program_path, state_db=state_db, listing_id=args.listing_id)
    elif args.command == "finalize":
        code = _finalize(program_path=program_path, state_db=state_db, listing_id=args.listing_id)
    elif args.command == "modify":
        code = _modify(
            program_path=program_path,
            state_db=state_db,
            listing_id=args.listing_id,
            start_time=int(args.start_time),
            end_time=int(args.end_time),
            initial_amount=args.initial_amount or None,
        )
    elif args.command == "audit-events":
        code = _audit_events(
            program_path=program_path,
            state_db=state_db,
            listing_id=args.listing_id,
            limit=int(args.limit),
        )
    elif args.command == "tx-status":
        code = _tx_status(
            program_path=program_path,
            state_db=state_db,
            listing_id=args.listing_id,
            limit=int(args.limit),
        )
    else:
        raise ValueError(f"unsupported command: {args.command}")
    raise SystemExit(code)


if __name__ == "__main__":
    main()
