"""
Booking lifecycle tests
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.errors import InvalidRequest, InvalidStateTransition, NotFound
from app.models.booking import BookingStatus
from app.schemas.booking import BookingCreate
from app.services.booking_lifecycle import BOOKING_TRANSITIONS, assert_booking_transition
from app.services.notifications import BOOKING_TOPIC
from conftest import booking_data


@pytest.mark.asyncio
async def test_create_starts_pending_and_notifies(bookings, notifier, sink):
    booking = await bookings.create(booking_data(quantity="60"))

    assert booking.status == BookingStatus.PENDING
    assert booking.quantity == Decimal("60")
    await notifier.drain()
    assert sink.names(BOOKING_TOPIC) == ["booking.created"]


@pytest.mark.asyncio
async def test_future_booking_date_is_rejected(bookings):
    data = BookingCreate(
        customer_id="CUST-001",
        product_id="PRD-001",
        fuel_type="LPG",
        quantity=Decimal("5"),
        booking_date=datetime.now(timezone.utc) + timedelta(days=1),
    )
    with pytest.raises(InvalidRequest):
        await bookings.create(data)


@pytest.mark.asyncio
async def test_confirm_then_cancel(bookings, notifier, sink):
    booking = await bookings.create(booking_data())

    confirmed = await bookings.update_status(booking.id, BookingStatus.CONFIRMED)
    cancelled = await bookings.update_status(booking.id, BookingStatus.CANCELLED)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert cancelled.status == BookingStatus.CANCELLED
    await notifier.drain()
    changes = [p for t, p in sink.events if p["event"] == "booking.status-changed"]
    assert [(c["previous_status"], c["status"]) for c in changes] == [
        ("PENDING", "CONFIRMED"),
        ("CONFIRMED", "CANCELLED"),
    ]


@pytest.mark.asyncio
async def test_delivered_cannot_be_set_directly(bookings):
    booking = await bookings.create(booking_data())
    await bookings.update_status(booking.id, BookingStatus.CONFIRMED)

    with pytest.raises(InvalidStateTransition):
        await bookings.update_status(booking.id, BookingStatus.DELIVERED)
    assert (await bookings.get(booking.id)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CANCELLED])
async def test_cancelled_booking_is_terminal(bookings, target):
    booking = await bookings.create(booking_data())
    await bookings.update_status(booking.id, BookingStatus.CANCELLED)

    with pytest.raises(InvalidStateTransition):
        await bookings.update_status(booking.id, target)
    assert (await bookings.get(booking.id)).status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_unknown_booking_is_not_found(bookings):
    with pytest.raises(NotFound):
        await bookings.update_status("missing", BookingStatus.CONFIRMED)
    with pytest.raises(NotFound):
        await bookings.get("missing")


def test_transition_graph():
    assert_booking_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert_booking_transition(BookingStatus.CONFIRMED, BookingStatus.DELIVERED)
    with pytest.raises(InvalidStateTransition):
        assert_booking_transition(BookingStatus.PENDING, BookingStatus.DELIVERED)
    assert BOOKING_TRANSITIONS[BookingStatus.DELIVERED] == set()


@pytest.mark.asyncio
async def test_list_page_orders_by_creation(bookings):
    created = [await bookings.create(booking_data(quantity=str(q))) for q in (1, 2, 3)]

    first = await bookings.list_page(0, 2)
    second = await bookings.list_page(1, 2)

    assert first.total == 3
    assert [b.id for b in first.items + second.items] == [b.id for b in created]
