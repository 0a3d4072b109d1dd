"""
Fulfillment Service — Inventory models

[TRANSACTIONAL DATA] fuel_inventory: one row per stock batch
[AUDIT DATA]         stock_movement: one row per restock, consumption or adjustment
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import String, Integer, Numeric, DateTime, Enum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.database import Base, utcnow

QUANTITY = Numeric(14, 3)


class FuelType(str, PyEnum):
    CNG = "CNG"
    LPG = "LPG"
    PETROL = "PETROL"
    DIESEL = "DIESEL"
    KEROSENE = "KEROSENE"


FUEL_TYPE = Enum(FuelType, name="fuel_type")


class MovementKind(str, PyEnum):
    RESTOCK = "RESTOCK"
    CONSUME = "CONSUME"
    ADJUSTMENT = "ADJUSTMENT"


class InventoryRecord(Base):
    """
    A quantity of one fuel type held at a storage location.
    available_quantity is only ever changed by single conditional UPDATEs
    (consume/restock) or by a versioned ORM update, both bumping version_id.
    """
    __tablename__ = "fuel_inventory"
    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_fuel_inventory_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    fuel_type: Mapped[FuelType] = mapped_column(FUEL_TYPE, index=True, nullable=False)
    available_quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal("0"))
    storage_location: Mapped[str] = mapped_column(String(100), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    # FIFO key: set on intake and restock, never by consumption
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)  # optimistic lock

    __mapper_args__ = {"version_id_col": version_id}


class StockMovement(Base):
    """
    [AUDIT DATA] Never updated.
    delivery_id is unique: a delivery can be recorded as a consumer once only.
    quantity is positive for RESTOCK and CONSUME; ADJUSTMENT carries the signed
    difference written by a record edit.
    """
    __tablename__ = "stock_movement"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    inventory_record_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    kind: Mapped[MovementKind] = mapped_column(Enum(MovementKind, name="movement_kind"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    delivery_id: Mapped[str | None] = mapped_column(String(36), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
