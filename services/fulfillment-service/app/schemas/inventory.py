"""
Fulfillment Service — Inventory schemas
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from app.models.inventory import FuelType

BATCH_NUMBER_PATTERN = r"^[A-Z0-9-]+$"


class InventoryCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    fuel_type: FuelType
    available_quantity: Decimal = Field(..., ge=0, max_digits=14, decimal_places=3)
    storage_location: str = Field(..., min_length=3, max_length=100)
    batch_number: str = Field(..., max_length=64, pattern=BATCH_NUMBER_PATTERN, examples=["DSL-2024-001"])


class InventoryUpdate(InventoryCreate):
    pass


class QuantityChange(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=3)


class InventoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    fuel_type: FuelType
    available_quantity: Decimal
    storage_location: str
    batch_number: str
    last_updated: datetime
    received_at: datetime
    version_id: int


class QuantityRead(BaseModel):
    inventory_id: str
    available_quantity: Decimal


class LowStockRead(BaseModel):
    inventory_id: str
    threshold: Decimal
    low_stock: bool
