"""
Fulfillment Service — Booking schemas
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from app.models.booking import BookingStatus
from app.models.inventory import FuelType


class BookingCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=36)
    product_id: str = Field(..., min_length=1, max_length=36)
    fuel_type: FuelType
    quantity: Decimal = Field(..., gt=0, max_digits=14, decimal_places=3)
    booking_date: datetime | None = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    product_id: str
    fuel_type: FuelType
    quantity: Decimal
    booking_date: datetime
    status: BookingStatus
    created_at: datetime
    updated_at: datetime
