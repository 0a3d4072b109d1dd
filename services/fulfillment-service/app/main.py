"""
Fulfillment Service — FastAPI entrypoint
"""
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from app.api import bookings, deliveries, health, inventory
from app.core.config import Settings, get_settings
from app.core.errors import ErrorKind, FulfillmentError
from app.core.redis_client import close_redis, get_redis
from app.db.database import Base, engine as default_engine
from app.services.booking_lifecycle import BookingLifecycle
from app.services.cache import CacheCoordinator
from app.services.delivery_lifecycle import DeliveryLifecycle
from app.services.inventory_ledger import InventoryLedger
from app.services.notifications import NotificationSink, Notifier, build_sink
from app.services.stock_alerts import StockAlerts

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    redis: aioredis.Redis | None = None,
    sink: NotificationSink | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    owns_redis = redis is None and settings.CACHE_ENABLED
    engine = engine or default_engine
    if owns_redis:
        redis = get_redis(settings)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    cache = CacheCoordinator(
        redis if settings.CACHE_ENABLED else None,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        prefix=settings.CACHE_KEY_PREFIX,
    )
    notifier = Notifier(sink or build_sink(settings, redis))
    stock_alerts = StockAlerts(notifier, settings.LOW_STOCK_THRESHOLD)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("%s started", settings.SERVICE_NAME)
        yield
        await notifier.drain()
        if owns_redis:
            await close_redis()
        await engine.dispose()

    app = FastAPI(
        title="FuelNexus Fulfillment Service",
        description="Bookings, deliveries and fuel inventory with atomic stock deduction.",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
    )

    app.state.engine = engine
    app.state.redis = redis
    app.state.notifier = notifier
    app.state.stock_alerts = stock_alerts
    app.state.ledger = InventoryLedger(session_factory, cache, notifier)
    app.state.bookings = BookingLifecycle(session_factory, cache, notifier)
    app.state.deliveries = DeliveryLifecycle(session_factory, cache, notifier, stock_alerts)

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True,
                       allow_methods=["*"], allow_headers=["*"])

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.exception_handler(FulfillmentError)
    async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"detail": errors or "Invalid request", "error": ErrorKind.INVALID_REQUEST.value},
        )

    app.include_router(bookings.router)
    app.include_router(deliveries.router)
    app.include_router(inventory.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}

    return app


app = create_app()
