"""
Fulfillment Service — Best-effort event notifications

The core calls Notifier.notify() after each committed state change. Delivery
runs in a detached asyncio task; sink failures are logged and dropped and can
never fail or roll back the operation that emitted them.
"""
import asyncio
import json
import logging
from typing import Any, Protocol

import httpx
import redis.asyncio as aioredis

from app.core.config import Settings
from app.db.database import utcnow

logger = logging.getLogger(__name__)

BOOKING_TOPIC = "booking-events"
DELIVERY_TOPIC = "delivery-events"
INVENTORY_TOPIC = "fuel-inventory-topic"
STOCK_ALERT_TOPIC = "fuel-stock-topic"


class NotificationSink(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> None: ...


class RedisNotificationSink:
    """Publishes to a Redis pub/sub channel per topic."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str = ""):
        self._redis = redis
        self._channel_prefix = channel_prefix

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        await self._redis.publish(f"{self._channel_prefix}{topic}", json.dumps(payload, default=str))


class HttpNotificationSink:
    """Pushes events to the Notification Hub's publish endpoint."""

    def __init__(self, hub_url: str, timeout: float = 3.0):
        self._url = f"{hub_url.rstrip('/')}/notifications/publish"
        self._timeout = timeout

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, content=json.dumps({"topic": topic, **payload}, default=str),
                                         headers={"Content-Type": "application/json"})
            response.raise_for_status()


class CeleryNotificationSink:
    """Hands events to a Celery worker, which owns retries against the hub."""

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        from app.tasks.notification_tasks import deliver_notification

        body = json.loads(json.dumps(payload, default=str))
        await asyncio.to_thread(deliver_notification.delay, topic, body)


class LogNotificationSink:
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        logger.info("event %s %s", topic, json.dumps(payload, default=str))


def build_sink(settings: Settings, redis: aioredis.Redis | None) -> NotificationSink:
    kind = settings.NOTIFICATION_SINK.lower()
    if kind == "redis" and redis is not None:
        return RedisNotificationSink(redis, settings.NOTIFICATION_CHANNEL_PREFIX)
    if kind == "http":
        return HttpNotificationSink(settings.NOTIFICATION_HUB_URL, settings.HTTP_TIMEOUT_SECONDS)
    if kind == "celery":
        return CeleryNotificationSink()
    return LogNotificationSink()


class Notifier:
    def __init__(self, sink: NotificationSink):
        self._sink = sink
        self._pending: set[asyncio.Task] = set()

    def notify(self, topic: str, event: str, **fields: Any) -> None:
        payload = {"event": event, "occurred_at": utcnow().isoformat(), **fields}
        task = asyncio.create_task(self._deliver(topic, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            await self._sink.publish(topic, payload)
        except Exception as exc:
            # Notification failures MUST NOT affect fulfillment
            logger.warning("Notification sink failed for %s (%s): %s", topic, payload.get("event"), exc)

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
