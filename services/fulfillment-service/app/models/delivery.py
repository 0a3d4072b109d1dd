"""
Fulfillment Service — Delivery model

Terminal states are DELIVERED and CANCELLED.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import String, Integer, DateTime, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.database import Base, utcnow
from app.models.inventory import FuelType, FUEL_TYPE, QUANTITY


class DeliveryStatus(str, PyEnum):
    PENDING = "PENDING"
    DISPATCHED = "DISPATCHED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class Delivery(Base):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    customer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # Contact snapshot taken at creation; not kept in sync with the customer record.
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    delivery_address: Mapped[str] = mapped_column(String(255), nullable=False)
    fuel_type: Mapped[FuelType] = mapped_column(FUEL_TYPE, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status"), default=DeliveryStatus.PENDING, nullable=False
    )
    agent_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    vehicle_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    inventory_record_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        # At most one live delivery per booking.
        Index(
            "uq_deliveries_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Delivery id={self.id} booking={self.booking_id} status={self.status}>"
