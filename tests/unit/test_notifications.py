"""Unit tests for the milestone notification webhook client"""

from datetime import datetime, timezone

import httpx
import pytest

from bizcoin_ledger.domain.models import MilestoneEvent, MilestoneMetric
from bizcoin_ledger.infrastructure.clients.notifications import NotificationClient, milestone_payload


def make_event() -> MilestoneEvent:
    return MilestoneEvent(
        milestone_id="m-1",
        milestone_name="Century",
        student_id="s1",
        classroom_id="c1",
        metric=MilestoneMetric.TOTAL_EARNED,
        threshold=100,
        value=110,
        occurred_at=datetime(2024, 9, 1, tzinfo=timezone.utc),
    )


def make_client(handler) -> NotificationClient:
    client = NotificationClient(webhook_url="http://notify.test/events", transport=httpx.MockTransport(handler))
    client.backoff_base = 0
    return client


def test_milestone_payload():
    payload = milestone_payload(make_event())
    assert payload["event"] == "MILESTONE_REACHED"
    assert payload["metric"] == "total_earned"
    assert payload["occurred_at"] == "2024-09-01T00:00:00+00:00"


async def test_send_event_retries_server_errors():
    """5xx responses are retried until one succeeds"""
    responses = iter([500, 502, 200])
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(next(responses))

    await make_client(handler).send_event({"event": "MILESTONE_REACHED"})
    assert len(calls) == 3


async def test_send_event_raises_after_final_attempt():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    client = make_client(handler)
    client.max_retries = 2
    with pytest.raises(httpx.HTTPStatusError):
        await client.send_event({"event": "MILESTONE_REACHED"})


async def test_deliver_milestones_swallows_delivery_failure():
    """Delivery is best effort: failures are logged, not raised"""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    client.max_retries = 1
    await client.deliver_milestones([make_event()])
