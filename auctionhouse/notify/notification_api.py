from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import aiohttp

from auctionhouse.core.errors import NotificationDeliveryError
from auctionhouse.core.notifications import NotificationRecord

NOTIFICATIONS_PATH = "/api/notifications"


class NotificationApiSink:
    """Deliver one notification record per POST to the notifications API."""

    def __init__(
        self,
        *,
        api_base: str,
        timeout_seconds: float = 10.0,
        session_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.url = f"{api_base.rstrip('/')}{NOTIFICATIONS_PATH}"
        self._timeout_seconds = float(timeout_seconds)
        self._session_factory = session_factory

    def _session(self) -> Any:
        if self._session_factory is not None:
            return self._session_factory()
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout_seconds))

    async def send(self, record: NotificationRecord) -> None:
        try:
            async with self._session() as session:
                async with session.post(self.url, json=record.to_payload()) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise NotificationDeliveryError(
                            f"notification_http_error:{response.status}:{body[:200]}"
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NotificationDeliveryError(f"notification_transport_error:{exc}") from exc
