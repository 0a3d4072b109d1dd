"""
Shared fixtures: a throwaway SQLite database per test, fakeredis for the cache,
and an in-memory notification sink that records every published event.
"""
from decimal import Decimal

import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.db.database import Base
from app.main import create_app
from app.models.booking import BookingStatus
from app.models.delivery import DeliveryStatus
from app.models.inventory import FuelType
from app.schemas.booking import BookingCreate
from app.schemas.delivery import DeliveryCreate
from app.schemas.inventory import InventoryCreate
from app.services.booking_lifecycle import BookingLifecycle
from app.services.cache import CacheCoordinator
from app.services.delivery_lifecycle import DeliveryLifecycle
from app.services.inventory_ledger import InventoryLedger
from app.services.notifications import Notifier
from app.services.stock_alerts import StockAlerts


class RecordingSink:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, topic, payload):
        self.events.append((topic, payload))

    def names(self, topic=None):
        return [p["event"] for t, p in self.events if topic is None or t == topic]


class FailingSink:
    def __init__(self):
        self.attempts = 0

    async def publish(self, topic, payload):
        self.attempts += 1
        raise ConnectionError("notification hub unreachable")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def cache(redis):
    return CacheCoordinator(redis, ttl_seconds=60, prefix="test")


@pytest_asyncio.fixture
async def notifier(sink):
    notifier = Notifier(sink)
    yield notifier
    await notifier.drain()


@pytest.fixture
def stock_alerts(notifier):
    return StockAlerts(notifier, default_threshold=50)


@pytest.fixture
def ledger(session_factory, cache, notifier):
    return InventoryLedger(session_factory, cache, notifier)


@pytest.fixture
def bookings(session_factory, cache, notifier):
    return BookingLifecycle(session_factory, cache, notifier)


@pytest.fixture
def deliveries(session_factory, cache, notifier, stock_alerts):
    return DeliveryLifecycle(session_factory, cache, notifier, stock_alerts)


@pytest_asyncio.fixture
async def client(engine, redis, sink):
    settings = Settings(METRICS_ENABLED=False, CACHE_KEY_PREFIX="api-test")
    app = create_app(settings=settings, engine=engine, redis=redis, sink=sink)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.notifier.drain()


# ─── Builders ──────────────────────────────────────────────────────────────────
_batch_seq = 0


def batch_data(fuel_type=FuelType.DIESEL, quantity="100", batch_number=None):
    global _batch_seq
    _batch_seq += 1
    return InventoryCreate(
        product_id="PRD-001",
        fuel_type=fuel_type,
        available_quantity=Decimal(quantity),
        storage_location="Depot North",
        batch_number=batch_number or f"BATCH-{_batch_seq:04d}",
    )


def booking_data(fuel_type=FuelType.DIESEL, quantity="60"):
    return BookingCreate(
        customer_id="CUST-001",
        product_id="PRD-001",
        fuel_type=fuel_type,
        quantity=Decimal(quantity),
    )


def delivery_data(booking, quantity=None, **overrides):
    fields = dict(
        booking_id=booking.id,
        delivery_address="12 Harbour Road, Chattogram",
        fuel_type=booking.fuel_type,
        quantity=booking.quantity if quantity is None else Decimal(quantity),
    )
    fields.update(overrides)
    return DeliveryCreate(**fields)


async def confirmed_booking(bookings, fuel_type=FuelType.DIESEL, quantity="60"):
    booking = await bookings.create(booking_data(fuel_type, quantity))
    return await bookings.update_status(booking.id, BookingStatus.CONFIRMED)


async def dispatched_delivery(bookings, deliveries, fuel_type=FuelType.DIESEL, quantity="60"):
    booking = await confirmed_booking(bookings, fuel_type, quantity)
    delivery = await deliveries.create(delivery_data(booking, agent_id="AGT-1", vehicle_id="VEH-1"))
    return booking, await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)
