"""Order status notifications for the automation webhook (n8n)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from stockledger.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# The event loop only keeps weak references to tasks; pending notifications live here
_pending_notifications: Set[asyncio.Task] = set()


class OrderNotificationService:
    """Fire-and-forget POST of order status changes.

    Delivery failures are logged and swallowed: whether the webhook answers
    has no bearing on the ledger.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings or get_settings()
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def notify_status_change(self, payload: Dict[str, Any]) -> bool:
        """POST ``payload`` to the configured webhook. Returns True on a 2xx reply."""
        url = self._settings.order_status_webhook_url
        if not url:
            logger.debug("No order status webhook configured; skipping notification")
            return False

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._settings.NOTIFICATION_TIMEOUT) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Order status webhook failed for order %s: %s", payload.get("order_id"), e)
            return False

        if response.is_success:
            logger.info("Order status webhook delivered for order %s (%s)", payload.get("order_id"), response.status_code)
            return True

        logger.warning(
            "Order status webhook rejected order %s: HTTP %s",
            payload.get("order_id"),
            response.status_code,
        )
        return False

    def dispatch(self, payload: Dict[str, Any]) -> asyncio.Task:
        """Schedule ``notify_status_change`` without waiting for it."""
        task = asyncio.create_task(self.notify_status_change(payload))
        _pending_notifications.add(task)
        task.add_done_callback(_notification_done)
        return task


def _notification_done(task: asyncio.Task) -> None:
    _pending_notifications.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Order status notification task crashed: %s", error, exc_info=error)
