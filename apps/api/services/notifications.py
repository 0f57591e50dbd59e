"""Low-balance alert requests and their delivery job."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import httpx
from redis.exceptions import RedisError

from config import settings
from services.credit_queue import enqueue_low_balance_alert


logger = logging.getLogger(__name__)


class RqLowBalanceNotifier:
    """Fire-and-forget notifier: pushes an alert job onto the notifications queue.

    Called after the deduction committed, so the balance lock is never held here.
    """

    def __init__(self, enqueue: Callable[[str, int, int], Any] = enqueue_low_balance_alert):
        self._enqueue = enqueue

    async def notify_low_balance(self, user_id: str, threshold: int, balance: int) -> None:
        try:
            await asyncio.to_thread(self._enqueue, user_id, threshold, balance)
        except RedisError as exc:
            # The dedup record is already committed; this alert will not be retried.
            logger.error(
                "Low balance alert for user %s at threshold %s could not be queued: %s",
                user_id,
                threshold,
                exc,
            )
            return
        logger.info("Queued low balance alert for user %s (threshold=%s, balance=%s)", user_id, threshold, balance)


def build_alert_payload(user_id: str, threshold: int, balance: int) -> Dict[str, Any]:
    return {
        "type": "credits.low_balance",
        "user_id": user_id,
        "threshold": int(threshold),
        "balance": int(balance),
        "requested_at": datetime.now(timezone.utc).isoformat(),
    }


def deliver_low_balance_alert(user_id: str, threshold: int, balance: int) -> Dict[str, Any]:
    """RQ worker entrypoint: hand the alert to the configured notification webhook."""
    payload = build_alert_payload(user_id, threshold, balance)
    url = (settings.ALERT_WEBHOOK_URL or "").strip()
    if not url:
        logger.info("No ALERT_WEBHOOK_URL configured; low balance alert logged only: %s", payload)
        return payload

    response = httpx.post(url, json=payload, timeout=settings.ALERT_WEBHOOK_TIMEOUT_SECONDS)
    response.raise_for_status()
    logger.info("Delivered low balance alert for user %s at threshold %s", user_id, threshold)
    return payload
