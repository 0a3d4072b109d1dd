"""
Fulfillment Service — Booking lifecycle

    PENDING ──► CONFIRMED ──► DELIVERED
       │            │
       └──► CANCELLED ◄┘

DELIVERED is reachable only through delivery completion, which moves the
booking inside the same transaction that consumes inventory.
"""
import logging
from datetime import timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import InvalidRequest, InvalidStateTransition, NotFound
from app.core.optimistic_lock import with_optimistic_retry
from app.db.database import utcnow
from app.models.booking import Booking, BookingStatus
from app.schemas.booking import BookingCreate, BookingRead
from app.schemas.page import Page
from app.services.cache import BOOKING, CacheCoordinator
from app.services.inventory_ledger import positive_amount
from app.services.notifications import BOOKING_TOPIC, Notifier

logger = logging.getLogger(__name__)

BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.DELIVERED, BookingStatus.CANCELLED},
    BookingStatus.DELIVERED: set(),
    BookingStatus.CANCELLED: set(),
}


def assert_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidStateTransition(f"Invalid booking transition: {current.value} -> {target.value}")


async def load_booking(session: AsyncSession, booking_id: str) -> Booking:
    booking = await session.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFound("Booking", booking_id)
    return booking


class BookingLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheCoordinator,
        notifier: Notifier,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._notifier = notifier

    async def create(self, data: BookingCreate) -> BookingRead:
        logger.info("Creating new booking for customer: %s", data.customer_id)
        quantity = positive_amount(data.quantity)

        now = utcnow()
        booking_date = data.booking_date or now
        if booking_date.tzinfo is None:
            booking_date = booking_date.replace(tzinfo=timezone.utc)
        if booking_date > now:
            raise InvalidRequest("Booking date cannot be in the future")

        async with self._session_factory() as session:
            booking = Booking(
                customer_id=data.customer_id,
                product_id=data.product_id,
                fuel_type=data.fuel_type,
                quantity=quantity,
                booking_date=booking_date,
                status=BookingStatus.PENDING,
            )
            session.add(booking)
            await session.commit()

        await self._cache.invalidate(BOOKING, booking.id)
        logger.info("Booking created successfully with ID: %s", booking.id)
        self._notifier.notify(
            BOOKING_TOPIC, "booking.created",
            booking_id=booking.id, customer_id=booking.customer_id,
            fuel_type=booking.fuel_type.value, quantity=booking.quantity,
        )
        return BookingRead.model_validate(booking)

    @with_optimistic_retry()
    async def update_status(self, booking_id: str, new_status: BookingStatus) -> BookingRead:
        logger.info("Updating booking status for ID: %s to %s", booking_id, new_status.value)
        async with self._session_factory() as session:
            booking = await load_booking(session, booking_id)
            previous = booking.status
            if new_status == BookingStatus.DELIVERED:
                raise InvalidStateTransition(
                    "Booking becomes DELIVERED only when its delivery is completed"
                )
            assert_booking_transition(previous, new_status)
            booking.status = new_status
            await session.commit()

        await self._cache.invalidate(BOOKING, booking_id)
        logger.info("Booking ID: %s updated %s -> %s", booking_id, previous.value, new_status.value)
        self._notifier.notify(
            BOOKING_TOPIC, "booking.status-changed",
            booking_id=booking_id, previous_status=previous.value, status=new_status.value,
        )
        return BookingRead.model_validate(booking)

    async def get(self, booking_id: str) -> BookingRead:
        async def load() -> BookingRead:
            async with self._session_factory() as session:
                return BookingRead.model_validate(await load_booking(session, booking_id))

        return await self._cache.get(BOOKING, booking_id, BookingRead, load)

    async def list_page(self, page: int, size: int) -> Page[BookingRead]:
        async def load() -> Page[BookingRead]:
            logger.info("Fetching all bookings with pagination, page=%d, size=%d", page, size)
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(Booking))
                bookings = (await session.scalars(
                    select(Booking).order_by(Booking.created_at, Booking.id).offset(page * size).limit(size)
                )).all()
            return Page[BookingRead](
                items=[BookingRead.model_validate(b) for b in bookings],
                page=page, size=size, total=total or 0,
            )

        return await self._cache.get_page(BOOKING, page, size, Page[BookingRead], load)
