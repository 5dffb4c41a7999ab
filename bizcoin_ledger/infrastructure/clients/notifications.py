"""Notification webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict

import httpx

from bizcoin_ledger.config import settings
from bizcoin_ledger.domain.models import MilestoneEvent
from bizcoin_ledger.infrastructure.observability.metrics import (
    milestone_failure_counter,
    webhook_failure_counter,
    webhook_latency_histogram,
)

logger = logging.getLogger(__name__)


def milestone_payload(event: MilestoneEvent) -> Dict[str, Any]:
    """Serialize a milestone event for the delivery channel (toast, push)"""
    return {
        "event": "MILESTONE_REACHED",
        "milestone_id": event.milestone_id,
        "milestone_name": event.milestone_name,
        "student_id": event.student_id,
        "classroom_id": event.classroom_id,
        "metric": event.metric.value,
        "threshold": event.threshold,
        "value": event.value,
        "occurred_at": event.occurred_at.isoformat(),
    }


class NotificationClient:
    """Client for pushing milestone events to the notification service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Send one event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter

        Raises:
            httpx.HTTPError: After the final failed attempt
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

    async def deliver_milestones(self, events: list[MilestoneEvent]) -> None:
        """
        Best-effort delivery: a failed event is logged and counted, never raised.

        Runs as a background task after the ledger transaction has committed.
        """
        for event in events:
            try:
                await self.send_event(milestone_payload(event))
            except httpx.HTTPError as e:
                milestone_failure_counter.inc()
                logger.error(
                    f"Milestone notification failed: {e}",
                    extra={"student_id": event.student_id, "milestone_id": event.milestone_id},
                )
