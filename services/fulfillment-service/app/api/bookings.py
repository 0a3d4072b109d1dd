"""
Fulfillment Service — Booking routes
"""
from fastapi import APIRouter, Depends, status

from app.api.deps import PageParams, get_bookings
from app.schemas.booking import BookingCreate, BookingRead, BookingStatusUpdate
from app.schemas.page import Page
from app.services.booking_lifecycle import BookingLifecycle

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(payload: BookingCreate, bookings: BookingLifecycle = Depends(get_bookings)):
    return await bookings.create(payload)


@router.get("", response_model=Page[BookingRead])
async def list_bookings(paging: PageParams = Depends(), bookings: BookingLifecycle = Depends(get_bookings)):
    return await bookings.list_page(paging.page, paging.size)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(booking_id: str, bookings: BookingLifecycle = Depends(get_bookings)):
    return await bookings.get(booking_id)


@router.put("/{booking_id}/status", response_model=BookingRead)
async def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdate,
    bookings: BookingLifecycle = Depends(get_bookings),
):
    """Move a booking along PENDING -> CONFIRMED, or cancel it. DELIVERED is refused."""
    return await bookings.update_status(booking_id, payload.status)
