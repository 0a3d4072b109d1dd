"""
Delivery lifecycle tests

Tests:
  1. Creation rules against the linked booking
  2. Assignment and dispatch
  3. Completion consumes inventory exactly once, atomically with both statuses
  4. Cancellation
  5. End-to-end scenarios
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.errors import DuplicateKey, InsufficientInventory, InvalidRequest, InvalidStateTransition, NotFound
from app.models.booking import BookingStatus
from app.models.delivery import DeliveryStatus
from app.models.inventory import FuelType, StockMovement
from app.services.delivery_lifecycle import is_repeat_consumption
from app.services.notifications import BOOKING_TOPIC, DELIVERY_TOPIC, INVENTORY_TOPIC, STOCK_ALERT_TOPIC
from conftest import batch_data, booking_data, confirmed_booking, delivery_data, dispatched_delivery


# ─── Test 1: Creation ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_copies_customer_from_booking(bookings, deliveries):
    booking = await bookings.create(booking_data())

    delivery = await deliveries.create(delivery_data(booking, customer_name="Rahim", customer_phone="01700000000"))

    assert delivery.status == DeliveryStatus.PENDING
    assert delivery.customer_id == booking.customer_id
    assert delivery.customer_name == "Rahim"
    assert delivery.inventory_record_id is None


@pytest.mark.asyncio
async def test_create_rejects_mismatched_booking(bookings, deliveries):
    booking = await bookings.create(booking_data(quantity="60"))

    with pytest.raises(InvalidRequest):
        await deliveries.create(delivery_data(booking, fuel_type=FuelType.PETROL))
    with pytest.raises(InvalidRequest):
        await deliveries.create(delivery_data(booking, quantity="61"))
    with pytest.raises(NotFound):
        await deliveries.create(delivery_data(booking, booking_id="missing"))


@pytest.mark.asyncio
async def test_create_rejects_closed_booking(bookings, deliveries):
    booking = await bookings.create(booking_data())
    await bookings.update_status(booking.id, BookingStatus.CANCELLED)

    with pytest.raises(InvalidStateTransition):
        await deliveries.create(delivery_data(booking))


@pytest.mark.asyncio
async def test_one_active_delivery_per_booking(bookings, deliveries):
    booking = await bookings.create(booking_data())
    first = await deliveries.create(delivery_data(booking))

    with pytest.raises(DuplicateKey):
        await deliveries.create(delivery_data(booking))

    await deliveries.cancel(first.id)
    replacement = await deliveries.create(delivery_data(booking))
    assert replacement.id != first.id


# ─── Test 2: Assignment and dispatch ───────────────────────────────────────────
@pytest.mark.asyncio
async def test_dispatch_requires_agent_and_vehicle(bookings, deliveries):
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking))

    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)

    await deliveries.assign(delivery.id, agent_id="AGT-7")
    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)

    await deliveries.assign(delivery.id, vehicle_id="VEH-7")
    dispatched = await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)
    assert (dispatched.status, dispatched.agent_id, dispatched.vehicle_id) == (
        DeliveryStatus.DISPATCHED, "AGT-7", "VEH-7",
    )


@pytest.mark.asyncio
async def test_reassigning_same_pair_is_a_no_op(bookings, deliveries, notifier, sink):
    booking = await bookings.create(booking_data())
    delivery = await deliveries.create(delivery_data(booking))
    await deliveries.assign(delivery.id, agent_id="AGT-1", vehicle_id="VEH-1")
    before = await deliveries.get(delivery.id)

    again = await deliveries.assign(delivery.id, agent_id="AGT-1", vehicle_id="VEH-1")

    assert (again.agent_id, again.vehicle_id) == ("AGT-1", "VEH-1")
    assert (await deliveries.get(delivery.id)).updated_at == before.updated_at
    await notifier.drain()
    assert sink.names(DELIVERY_TOPIC).count("delivery.assigned") == 1


@pytest.mark.asyncio
async def test_assign_requires_an_id(bookings, deliveries):
    booking = await bookings.create(booking_data())
    delivery = await deliveries.create(delivery_data(booking))

    with pytest.raises(InvalidRequest):
        await deliveries.assign(delivery.id)


# ─── Test 3: Completion ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delivery_consumes_booked_quantity(ledger, bookings, deliveries, notifier, sink):
    """Batch of 100, booking of 60: the batch ends at 40 and everything is DELIVERED."""
    batch = await ledger.create(batch_data(quantity="100"))
    booking, delivery = await dispatched_delivery(bookings, deliveries, quantity="60")

    delivered = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    assert delivered.status == DeliveryStatus.DELIVERED
    assert delivered.delivery_date is not None
    assert delivered.inventory_record_id == batch.id
    assert (await bookings.get(booking.id)).status == BookingStatus.DELIVERED
    assert await ledger.available_quantity(batch.id) == Decimal("40")

    await notifier.drain()
    assert "booking.status-changed" in sink.names(BOOKING_TOPIC)
    assert "inventory.consumed" in sink.names(INVENTORY_TOPIC)
    assert sink.names(STOCK_ALERT_TOPIC) == ["inventory.low-stock"]


@pytest.mark.asyncio
async def test_insufficient_inventory_rolls_back_completion(ledger, bookings, deliveries):
    batch = await ledger.create(batch_data(quantity="50"))
    booking, delivery = await dispatched_delivery(bookings, deliveries, quantity="60")

    with pytest.raises(InsufficientInventory):
        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    after = await deliveries.get(delivery.id)
    assert after.status == DeliveryStatus.DISPATCHED
    assert after.delivery_date is None
    assert (await bookings.get(booking.id)).status == BookingStatus.CONFIRMED
    assert await ledger.available_quantity(batch.id) == Decimal("50")


@pytest.mark.asyncio
async def test_delivering_twice_consumes_once(ledger, bookings, deliveries):
    batch = await ledger.create(batch_data(quantity="100"))
    _, delivery = await dispatched_delivery(bookings, deliveries, quantity="30")

    await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    assert await ledger.available_quantity(batch.id) == Decimal("70")


@pytest.mark.asyncio
async def test_concurrent_completion_consumes_once(ledger, bookings, deliveries, session_factory):
    batch = await ledger.create(batch_data(quantity="100"))
    _, delivery = await dispatched_delivery(bookings, deliveries, quantity="30")

    results = await asyncio.gather(
        deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED),
        deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1, results
    assert sum(1 for r in results if isinstance(r, InvalidStateTransition)) == 1, results
    assert await ledger.available_quantity(batch.id) == Decimal("70")
    async with session_factory() as session:
        consumed = await session.scalar(select(func.count()).select_from(StockMovement))
    assert consumed == 1


@pytest.mark.asyncio
async def test_completion_requires_confirmed_booking(ledger, bookings, deliveries):
    await ledger.create(batch_data(quantity="100"))
    booking = await bookings.create(booking_data())
    delivery = await deliveries.create(delivery_data(booking, agent_id="AGT-1", vehicle_id="VEH-1"))
    await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)

    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
    assert (await deliveries.get(delivery.id)).status == DeliveryStatus.DISPATCHED


@pytest.mark.asyncio
async def test_pending_delivery_cannot_skip_dispatch(ledger, bookings, deliveries):
    batch = await ledger.create(batch_data(quantity="100"))
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking, agent_id="AGT-1", vehicle_id="VEH-1"))

    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    after = await deliveries.get(delivery.id)
    assert after.status == DeliveryStatus.PENDING
    assert after.delivery_date is None
    assert await ledger.available_quantity(batch.id) == Decimal("100")


@pytest.mark.asyncio
async def test_consecutive_deliveries_keep_drawing_from_the_oldest_batch(ledger, bookings, deliveries):
    older = await ledger.create(batch_data(quantity="100", batch_number="DSL-OLDER"))
    newer = await ledger.create(batch_data(quantity="100", batch_number="DSL-NEWER"))

    picked = []
    for _ in range(2):
        _, delivery = await dispatched_delivery(bookings, deliveries, quantity="10")
        delivered = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
        picked.append(delivered.inventory_record_id)

    assert picked == [older.id, older.id], "consumption must not move a batch to the back of the queue"
    assert await ledger.available_quantity(older.id) == Decimal("80")
    assert await ledger.available_quantity(newer.id) == Decimal("100")
    assert [r.id for r in await ledger.find_by_fuel_type(FuelType.DIESEL)] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_batch_consumed_by_a_delivery_cannot_be_deleted(ledger, bookings, deliveries, session_factory):
    batch = await ledger.create(batch_data(quantity="100"))
    _, delivery = await dispatched_delivery(bookings, deliveries, quantity="25")
    await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    with pytest.raises(InvalidRequest):
        await ledger.delete(batch.id)

    assert (await deliveries.get(delivery.id)).inventory_record_id == batch.id
    assert await ledger.available_quantity(batch.id) == Decimal("75")
    async with session_factory() as session:
        movement = await session.scalar(select(StockMovement).where(StockMovement.delivery_id == delivery.id))
    assert movement.inventory_record_id == batch.id


def test_only_the_delivery_uniqueness_violation_reads_as_repeat_consumption():
    repeat = IntegrityError("INSERT INTO stock_movement", {}, Exception(
        "UNIQUE constraint failed: stock_movement.delivery_id"
    ))
    other = IntegrityError("UPDATE fuel_inventory", {}, Exception(
        "CHECK constraint failed: ck_fuel_inventory_non_negative"
    ))

    assert is_repeat_consumption(repeat) is True
    assert is_repeat_consumption(other) is False


# ─── Test 4: Cancellation ──────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_cancel_pending_delivery_leaves_inventory_alone(ledger, bookings, deliveries, notifier, sink):
    batch = await ledger.create(batch_data(quantity="100"))
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking))

    cancelled = await deliveries.cancel(delivery.id)
    again = await deliveries.cancel(delivery.id)

    assert cancelled.status == again.status == DeliveryStatus.CANCELLED
    assert await ledger.available_quantity(batch.id) == Decimal("100")
    await notifier.drain()
    assert sink.names(DELIVERY_TOPIC).count("delivery.cancelled") == 1


@pytest.mark.asyncio
async def test_delivered_delivery_cannot_be_cancelled(ledger, bookings, deliveries):
    await ledger.create(batch_data(quantity="100"))
    _, delivery = await dispatched_delivery(bookings, deliveries)
    await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

    with pytest.raises(InvalidStateTransition):
        await deliveries.cancel(delivery.id)
    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)
    assert (await deliveries.get(delivery.id)).status == DeliveryStatus.DELIVERED


@pytest.mark.asyncio
async def test_status_update_to_cancelled_follows_the_graph(bookings, deliveries):
    booking = await bookings.create(booking_data())
    delivery = await deliveries.create(delivery_data(booking))

    await deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)
    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)


@pytest.mark.asyncio
async def test_track_reflects_latest_status(bookings, deliveries):
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking, agent_id="AGT-1", vehicle_id="VEH-1"))

    assert (await deliveries.track(delivery.id)).status == DeliveryStatus.PENDING
    await deliveries.update_status(delivery.id, DeliveryStatus.DISPATCHED)
    tracking = await deliveries.track(delivery.id)

    assert tracking.status == DeliveryStatus.DISPATCHED
    assert tracking.agent_id == "AGT-1"


# ─── Test 5: End-to-end scenarios ──────────────────────────────────────────────
@pytest.mark.asyncio
async def test_second_booking_fails_once_stock_is_spent(ledger, bookings, deliveries):
    """100 in stock: the first 60 is delivered, the second 60 is refused and stock stays at 40."""
    batch = await ledger.create(batch_data(quantity="100"))

    _, first = await dispatched_delivery(bookings, deliveries, quantity="60")
    await deliveries.update_status(first.id, DeliveryStatus.DELIVERED)
    assert await ledger.available_quantity(batch.id) == Decimal("40")

    second_booking, second = await dispatched_delivery(bookings, deliveries, quantity="60")
    with pytest.raises(InsufficientInventory):
        await deliveries.update_status(second.id, DeliveryStatus.DELIVERED)

    assert await ledger.available_quantity(batch.id) == Decimal("40")
    assert (await deliveries.get(second.id)).status == DeliveryStatus.DISPATCHED
    assert (await bookings.get(second_booking.id)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_cancel_while_pending_keeps_booking_confirmed(ledger, bookings, deliveries):
    batch = await ledger.create(batch_data(quantity="100"))
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking))

    await deliveries.cancel(delivery.id)

    assert (await deliveries.get(delivery.id)).status == DeliveryStatus.CANCELLED
    assert (await bookings.get(booking.id)).status == BookingStatus.CONFIRMED
    assert await ledger.available_quantity(batch.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [DeliveryStatus.PENDING, DeliveryStatus.DISPATCHED, DeliveryStatus.DELIVERED])
async def test_cancelled_delivery_rejects_every_move(bookings, deliveries, target):
    booking = await confirmed_booking(bookings)
    delivery = await deliveries.create(delivery_data(booking, agent_id="AGT-1", vehicle_id="VEH-1"))
    cancelled = await deliveries.cancel(delivery.id)

    with pytest.raises(InvalidStateTransition):
        await deliveries.update_status(delivery.id, target)
    with pytest.raises(InvalidStateTransition):
        await deliveries.assign(delivery.id, agent_id="AGT-2")

    after = await deliveries.get(delivery.id)
    assert (after.status, after.agent_id, after.delivery_date) == (cancelled.status, "AGT-1", None)
