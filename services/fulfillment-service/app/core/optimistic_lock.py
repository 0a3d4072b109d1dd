"""
Fulfillment Service — Optimistic locking retry decorator

Bookings and deliveries carry a version_id column mapped as the SQLAlchemy
``version_id_col``. When another transaction commits a change to the same row
between our read and our flush, the UPDATE matches zero rows and SQLAlchemy
raises StaleDataError. The decorated unit of work is then replayed from a
fresh session, so it re-reads the row and re-validates its transition.
"""
import asyncio
import random
import functools
import logging

from sqlalchemy.orm.exc import StaleDataError

from app.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def backoff_delay(attempt: int) -> float:
    """Exponential backoff: base * 2^attempt, capped, plus jitter (seconds)."""
    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
    return min(base_delay * (2 ** attempt), max_delay) + jitter


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async functions that perform optimistic-lock DB writes.
    On StaleDataError, retries with exponential backoff + jitter.

    The wrapped function must open its own session per call; a session that
    raised StaleDataError is never reused.

    Usage:
        @with_optimistic_retry()
        async def update_status(self, delivery_id, new_status):
            ...
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    if attempt == _max:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "StaleDataError on attempt %d/%d in %s, retrying in %.3fs",
                        attempt, _max, func.__name__, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
