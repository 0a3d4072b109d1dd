"""
Fulfillment Service — Celery application

Used only by the "celery" notification sink: events are queued on Redis and a
worker pushes them to the Notification Hub with retries, so the API process
never waits on the hub. Results are never read, so there is no result backend.

    celery -A app.core.celery_app worker -Q fulfillment-notifications
"""
from celery import Celery
from app.core.config import get_settings

settings = get_settings()

NOTIFICATION_QUEUE = "fulfillment-notifications"

celery_app = Celery(
    "fulfillment_notifications",
    broker=settings.celery_broker_url,
    include=["app.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_default_queue=NOTIFICATION_QUEUE,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_ignore_result=True,
    # one hub round trip plus slack; retries are scheduled as new messages
    task_time_limit=int(settings.HTTP_TIMEOUT_SECONDS * 4) + 5,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
)
