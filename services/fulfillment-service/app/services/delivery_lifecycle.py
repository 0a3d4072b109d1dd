"""
Fulfillment Service — Delivery lifecycle

    PENDING ──► DISPATCHED ──► DELIVERED
       │             │
       └──► CANCELLED ◄┘

Completing a delivery (DISPATCHED -> DELIVERED) is one unit of work:

  1. the linked booking must be CONFIRMED
  2. delivery and booking are flipped to DELIVERED and flushed; the version
     check on both rows is what makes a duplicate completion lose the race
  3. the booking's quantity is consumed from the oldest covering batch of
     its fuel type, recorded against the delivery id (unique)
  4. commit

Any failure rolls back all of it. A concurrent duplicate gets StaleDataError
at step 2, is replayed, reads DELIVERED and fails with InvalidStateTransition
without touching inventory.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DuplicateKey, InvalidRequest, InvalidStateTransition, NotFound
from app.core.optimistic_lock import with_optimistic_retry
from app.db import stock_ops
from app.db.database import utcnow
from app.models.booking import BookingStatus
from app.models.delivery import Delivery, DeliveryStatus
from app.schemas.delivery import DeliveryCreate, DeliveryRead, DeliveryTracking
from app.schemas.page import Page
from app.services.booking_lifecycle import assert_booking_transition, load_booking
from app.services.cache import BOOKING, DELIVERY, INVENTORY, CacheCoordinator
from app.services.inventory_ledger import positive_amount
from app.services.notifications import BOOKING_TOPIC, DELIVERY_TOPIC, INVENTORY_TOPIC, Notifier
from app.services.stock_alerts import StockAlerts

logger = logging.getLogger(__name__)

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.DISPATCHED, DeliveryStatus.CANCELLED},
    DeliveryStatus.DISPATCHED: {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}

ASSIGNABLE = {DeliveryStatus.PENDING, DeliveryStatus.DISPATCHED}
OPEN_BOOKING = {BookingStatus.PENDING, BookingStatus.CONFIRMED}


def assert_delivery_transition(current: DeliveryStatus, target: DeliveryStatus) -> None:
    if target not in DELIVERY_TRANSITIONS[current]:
        raise InvalidStateTransition(f"Invalid delivery transition: {current.value} -> {target.value}")


def is_repeat_consumption(exc: IntegrityError) -> bool:
    """True when the unique stock_movement.delivery_id rejected a second consumption."""
    message = str(exc.orig)
    return "stock_movement" in message and "delivery_id" in message


async def load_delivery(session: AsyncSession, delivery_id: str) -> Delivery:
    delivery = await session.get(Delivery, delivery_id, populate_existing=True)
    if delivery is None:
        raise NotFound("Delivery", delivery_id)
    return delivery


class DeliveryLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheCoordinator,
        notifier: Notifier,
        stock_alerts: StockAlerts,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._notifier = notifier
        self._stock_alerts = stock_alerts

    async def create(self, data: DeliveryCreate) -> DeliveryRead:
        logger.info("Creating new delivery for booking: %s", data.booking_id)
        quantity = positive_amount(data.quantity)

        async with self._session_factory() as session:
            booking = await load_booking(session, data.booking_id)
            if booking.status not in OPEN_BOOKING:
                raise InvalidStateTransition(
                    f"Cannot create a delivery for a {booking.status.value} booking"
                )
            if data.fuel_type != booking.fuel_type:
                raise InvalidRequest(
                    f"Delivery fuel type {data.fuel_type.value} does not match booking fuel type {booking.fuel_type.value}"
                )
            if quantity > booking.quantity:
                raise InvalidRequest(
                    f"Delivery quantity {quantity} exceeds booked quantity {booking.quantity}"
                )
            active = await session.scalar(
                select(func.count()).select_from(Delivery).where(
                    Delivery.booking_id == booking.id, Delivery.status != DeliveryStatus.CANCELLED
                )
            )
            if active:
                raise DuplicateKey(f"Booking {booking.id} already has an active delivery")

            delivery = Delivery(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                customer_name=data.customer_name,
                customer_phone=data.customer_phone,
                delivery_address=data.delivery_address,
                fuel_type=data.fuel_type,
                quantity=quantity,
                status=DeliveryStatus.PENDING,
                agent_id=data.agent_id,
                vehicle_id=data.vehicle_id,
            )
            session.add(delivery)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKey(f"Booking {data.booking_id} already has an active delivery") from exc

        await self._cache.invalidate(DELIVERY, delivery.id)
        logger.info("Delivery created successfully with ID: %s", delivery.id)
        self._notifier.notify(
            DELIVERY_TOPIC, "delivery.created",
            delivery_id=delivery.id, booking_id=delivery.booking_id,
            fuel_type=delivery.fuel_type.value, quantity=delivery.quantity,
        )
        return DeliveryRead.model_validate(delivery)

    @with_optimistic_retry()
    async def assign(self, delivery_id: str, agent_id: str | None = None, vehicle_id: str | None = None) -> DeliveryRead:
        """Set agent and/or vehicle. Re-assigning the current pair is a no-op."""
        if agent_id is None and vehicle_id is None:
            raise InvalidRequest("agent_id or vehicle_id is required")
        logger.info("Assigning agent %s and vehicle %s to delivery ID: %s", agent_id, vehicle_id, delivery_id)

        async with self._session_factory() as session:
            delivery = await load_delivery(session, delivery_id)
            if delivery.status not in ASSIGNABLE:
                raise InvalidStateTransition(
                    f"Cannot assign agent or vehicle to a {delivery.status.value} delivery"
                )
            new_agent = agent_id if agent_id is not None else delivery.agent_id
            new_vehicle = vehicle_id if vehicle_id is not None else delivery.vehicle_id
            if (new_agent, new_vehicle) == (delivery.agent_id, delivery.vehicle_id):
                return DeliveryRead.model_validate(delivery)

            delivery.agent_id = new_agent
            delivery.vehicle_id = new_vehicle
            await session.commit()

        await self._cache.invalidate(DELIVERY, delivery_id)
        self._notifier.notify(
            DELIVERY_TOPIC, "delivery.assigned",
            delivery_id=delivery_id, agent_id=new_agent, vehicle_id=new_vehicle,
        )
        return DeliveryRead.model_validate(delivery)

    async def update_status(self, delivery_id: str, new_status: DeliveryStatus) -> DeliveryRead:
        logger.info("Updating status for delivery ID: %s -> %s", delivery_id, new_status.value)
        if new_status == DeliveryStatus.DELIVERED:
            return await self._complete(delivery_id)
        if new_status == DeliveryStatus.CANCELLED:
            return await self._cancel(delivery_id, strict=True)
        return await self._transition(delivery_id, new_status)

    async def cancel(self, delivery_id: str) -> DeliveryRead:
        """Cancel from any non-DELIVERED state; cancelling twice is a no-op."""
        logger.info("Cancelling delivery ID: %s", delivery_id)
        return await self._cancel(delivery_id, strict=False)

    @with_optimistic_retry()
    async def _transition(self, delivery_id: str, new_status: DeliveryStatus) -> DeliveryRead:
        async with self._session_factory() as session:
            delivery = await load_delivery(session, delivery_id)
            previous = delivery.status
            assert_delivery_transition(previous, new_status)
            if new_status == DeliveryStatus.DISPATCHED and not (delivery.agent_id and delivery.vehicle_id):
                raise InvalidStateTransition("Agent and vehicle must both be assigned before dispatch")
            delivery.status = new_status
            await session.commit()

        await self._cache.invalidate(DELIVERY, delivery_id)
        self._status_changed(delivery, previous)
        return DeliveryRead.model_validate(delivery)

    @with_optimistic_retry()
    async def _cancel(self, delivery_id: str, strict: bool) -> DeliveryRead:
        async with self._session_factory() as session:
            delivery = await load_delivery(session, delivery_id)
            previous = delivery.status
            if previous == DeliveryStatus.DELIVERED:
                raise InvalidStateTransition("Delivered orders cannot be cancelled")
            if previous == DeliveryStatus.CANCELLED:
                if strict:
                    assert_delivery_transition(previous, DeliveryStatus.CANCELLED)
                return DeliveryRead.model_validate(delivery)
            delivery.status = DeliveryStatus.CANCELLED
            await session.commit()

        await self._cache.invalidate(DELIVERY, delivery_id)
        logger.info("Delivery ID: %s successfully cancelled", delivery_id)
        self._notifier.notify(
            DELIVERY_TOPIC, "delivery.cancelled",
            delivery_id=delivery_id, booking_id=delivery.booking_id, previous_status=previous.value,
        )
        self._status_changed(delivery, previous)
        return DeliveryRead.model_validate(delivery)

    @with_optimistic_retry()
    async def _complete(self, delivery_id: str) -> DeliveryRead:
        async with self._session_factory() as session:
            delivery = await load_delivery(session, delivery_id)
            previous = delivery.status
            assert_delivery_transition(previous, DeliveryStatus.DELIVERED)

            booking = await load_booking(session, delivery.booking_id)
            if booking.status != BookingStatus.CONFIRMED:
                raise InvalidStateTransition(
                    f"Booking {booking.id} must be CONFIRMED to complete its delivery, is {booking.status.value}"
                )
            assert_booking_transition(booking.status, BookingStatus.DELIVERED)

            delivery.status = DeliveryStatus.DELIVERED
            delivery.delivery_date = utcnow()
            booking.status = BookingStatus.DELIVERED
            await session.flush()

            try:
                record_id, remaining = await stock_ops.consume_fifo(
                    session, booking.fuel_type, booking.quantity, delivery_id=delivery.id
                )
                delivery.inventory_record_id = record_id
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if not is_repeat_consumption(exc):
                    raise
                raise InvalidStateTransition(
                    f"Inventory was already consumed for delivery {delivery_id}"
                ) from exc

        await self._cache.invalidate(DELIVERY, delivery_id)
        await self._cache.invalidate(BOOKING, booking.id)
        await self._cache.invalidate(INVENTORY, record_id)
        logger.info("Delivery ID: %s delivered, consumed %s %s from batch %s (remaining=%s)",
                    delivery_id, booking.quantity, booking.fuel_type.value, record_id, remaining)

        self._status_changed(delivery, previous)
        self._notifier.notify(
            BOOKING_TOPIC, "booking.status-changed",
            booking_id=booking.id, previous_status=BookingStatus.CONFIRMED.value,
            status=BookingStatus.DELIVERED.value,
        )
        self._notifier.notify(
            INVENTORY_TOPIC, "inventory.consumed",
            inventory_id=record_id, delivery_id=delivery_id,
            amount=booking.quantity, available_quantity=remaining,
        )
        self._stock_alerts.evaluate(record_id, remaining)
        return DeliveryRead.model_validate(delivery)

    def _status_changed(self, delivery: Delivery, previous: DeliveryStatus) -> None:
        self._notifier.notify(
            DELIVERY_TOPIC, "delivery.status-changed",
            delivery_id=delivery.id, booking_id=delivery.booking_id,
            previous_status=previous.value, status=delivery.status.value,
        )

    # ── Reads ────────────────────────────────────────────────

    async def get(self, delivery_id: str) -> DeliveryRead:
        async def load() -> DeliveryRead:
            async with self._session_factory() as session:
                return DeliveryRead.model_validate(await load_delivery(session, delivery_id))

        return await self._cache.get(DELIVERY, delivery_id, DeliveryRead, load)

    async def track(self, delivery_id: str) -> DeliveryTracking:
        async def load() -> DeliveryTracking:
            async with self._session_factory() as session:
                delivery = await load_delivery(session, delivery_id)
            logger.info("Current status of delivery ID %s: %s", delivery_id, delivery.status.value)
            return DeliveryTracking.model_validate(delivery)

        return await self._cache.get(DELIVERY, delivery_id, DeliveryTracking, load, view="track")

    async def list_page(self, page: int, size: int) -> Page[DeliveryRead]:
        async def load() -> Page[DeliveryRead]:
            logger.info("Fetching deliveries page=%d size=%d", page, size)
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(Delivery))
                deliveries = (await session.scalars(
                    select(Delivery).order_by(Delivery.created_at, Delivery.id).offset(page * size).limit(size)
                )).all()
            return Page[DeliveryRead](
                items=[DeliveryRead.model_validate(d) for d in deliveries],
                page=page, size=size, total=total or 0,
            )

        return await self._cache.get_page(DELIVERY, page, size, Page[DeliveryRead], load)
