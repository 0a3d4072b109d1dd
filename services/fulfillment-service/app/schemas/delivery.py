"""
Fulfillment Service — Delivery schemas
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from app.models.delivery import DeliveryStatus
from app.models.inventory import FuelType


class DeliveryCreate(BaseModel):
    booking_id: str = Field(..., min_length=1, max_length=36)
    delivery_address: str = Field(..., min_length=10, max_length=255)
    fuel_type: FuelType
    quantity: Decimal = Field(..., gt=0, max_digits=14, decimal_places=3)
    customer_name: str | None = Field(None, max_length=255)
    customer_phone: str | None = Field(None, max_length=32)
    agent_id: str | None = Field(None, max_length=36)
    vehicle_id: str | None = Field(None, max_length=36)


class DeliveryStatusUpdate(BaseModel):
    status: DeliveryStatus


class AssignmentRequest(BaseModel):
    agent_id: str | None = Field(None, max_length=36)
    vehicle_id: str | None = Field(None, max_length=36)


class DeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    customer_id: str
    customer_name: str | None
    customer_phone: str | None
    delivery_address: str
    fuel_type: FuelType
    quantity: Decimal
    status: DeliveryStatus
    agent_id: str | None
    vehicle_id: str | None
    inventory_record_id: str | None
    delivery_date: datetime | None
    created_at: datetime
    updated_at: datetime


class DeliveryTracking(BaseModel):
    """Read-only status projection returned by the track endpoint."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    status: DeliveryStatus
    agent_id: str | None
    vehicle_id: str | None
    delivery_date: datetime | None
    updated_at: datetime
