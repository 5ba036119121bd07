from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Hashable, Sequence
from typing import Any

from auctionhouse.core.notifications import NotificationRecord
from auctionhouse.core.payment_flow import PaymentFlowState

logger = logging.getLogger("auctionhouse.dispatcher")

DISPATCHED_TX_HASH_LIMIT = 4096


class NotificationDispatcher:
    """Fan confirmed actions out to the notification sink.

    ``observe`` may be called on every re-evaluation of a flow; records are
    only sent on the transition into ACTION_CONFIRMED, and at most once per
    action transaction hash. Each record is delivered by its own task so one
    failed delivery never blocks or undoes another.
    """

    def __init__(
        self,
        sink: Any,
        *,
        enabled: bool = True,
        tx_hash_limit: int = DISPATCHED_TX_HASH_LIMIT,
    ) -> None:
        self._sink = sink
        self._enabled = bool(enabled)
        self._last_state: dict[Hashable, PaymentFlowState] = {}
        self._dispatched_tx_hashes: set[str] = set()
        self._dispatched_order: deque[str] = deque()
        self._tx_hash_limit = max(1, int(tx_hash_limit))
        self._pending: set[asyncio.Task[None]] = set()
        self.delivered = 0
        self.failed = 0

    def observe(
        self,
        flow_key: Hashable,
        state: PaymentFlowState,
        *,
        tx_hash: str | None,
        records: Sequence[NotificationRecord],
    ) -> int:
        previous = self._last_state.get(flow_key)
        self._last_state[flow_key] = state
        if state != PaymentFlowState.ACTION_CONFIRMED or previous == PaymentFlowState.ACTION_CONFIRMED:
            return 0
        if tx_hash:
            if tx_hash in self._dispatched_tx_hashes:
                return 0
            self._remember_tx_hash(tx_hash)
        return self.dispatch(records)

    def forget(self, flow_key: Hashable) -> None:
        self._last_state.pop(flow_key, None)

    def _remember_tx_hash(self, tx_hash: str) -> None:
        self._dispatched_tx_hashes.add(tx_hash)
        self._dispatched_order.append(tx_hash)
        while len(self._dispatched_order) > self._tx_hash_limit:
            self._dispatched_tx_hashes.discard(self._dispatched_order.popleft())

    def dispatch(self, records: Sequence[NotificationRecord]) -> int:
        if not self._enabled:
            logger.debug("notifications disabled, dropping %d records", len(records))
            return 0
        count = 0
        for record in records:
            if not record.user_address:
                logger.warning("notification without recipient dropped type=%s", record.type)
                continue
            task = asyncio.get_running_loop().create_task(self._deliver(record))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            count += 1
        return count

    async def _deliver(self, record: NotificationRecord) -> None:
        try:
            await self._sink.send(record)
        except Exception as exc:
            self.failed += 1
            logger.warning(
                "notification delivery failed type=%s listing=%s user=%s error=%s",
                record.type,
                record.listing_id,
                record.user_address,
                exc,
            )
            return
        self.delivered += 1

    async def drain(self) -> None:
        """Wait for in-flight deliveries; used before a short-lived process exits."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
