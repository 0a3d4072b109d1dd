"""
Fulfillment Service — Celery notification delivery

Retries belong to the transport: the API has already committed and returned
by the time this task runs.
"""
import logging

import httpx

from app.core.celery_app import celery_app
from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@celery_app.task(
    name="deliver_notification",
    bind=True,
    max_retries=settings.NOTIFICATION_MAX_RETRIES,
    default_retry_delay=settings.NOTIFICATION_RETRY_DELAY_SECONDS,
    acks_late=True,
)
def deliver_notification(self, topic: str, payload: dict):
    """Push one event to the Notification Hub."""
    try:
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = client.post(
                f"{settings.NOTIFICATION_HUB_URL}/notifications/publish",
                json={"topic": topic, **payload},
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Notification Hub delivery failed for %s (attempt %d): %s",
                       topic, self.request.retries + 1, exc)
        raise self.retry(exc=exc)
    logger.debug("Delivered %s %s", topic, payload.get("event"))
