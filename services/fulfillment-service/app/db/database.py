"""
Fulfillment Service — Async SQLAlchemy engine and declarative base

The module-level engine serves the deployed app. Core components never import
it: they receive a session factory through their constructors.
"""
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(settings.database_url, pool_pre_ping=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
