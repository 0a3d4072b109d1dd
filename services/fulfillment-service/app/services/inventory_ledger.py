"""
Fulfillment Service — Inventory ledger

Available-quantity accounting per stock batch. consume/restock are atomic
single-statement updates (see app.db.stock_ops); record edits go through the
versioned ORM path and are retried on conflict. Every mutation invalidates the
batch's cache entries after commit and before returning.
"""
import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DuplicateKey, InvalidRequest, NotFound
from app.core.optimistic_lock import with_optimistic_retry
from app.db import stock_ops
from app.db.database import utcnow
from app.models.inventory import FuelType, InventoryRecord, MovementKind, StockMovement
from app.schemas.inventory import InventoryCreate, InventoryRead, InventoryUpdate
from app.schemas.page import Page
from app.services.cache import INVENTORY, CacheCoordinator
from app.services.notifications import INVENTORY_TOPIC, Notifier

logger = logging.getLogger(__name__)


def positive_amount(amount) -> Decimal:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not value.is_finite() or value <= 0:
        raise InvalidRequest(f"Quantity must be greater than zero, got {amount}")
    return value


async def load_inventory(session: AsyncSession, record_id: str) -> InventoryRecord:
    record = await session.get(InventoryRecord, record_id, populate_existing=True)
    if record is None:
        raise NotFound("Fuel inventory", record_id)
    return record


class InventoryLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheCoordinator,
        notifier: Notifier,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._notifier = notifier

    # ── Quantity accounting ──────────────────────────────────

    async def restock(self, record_id: str, amount) -> Decimal:
        """Atomically add ``amount`` to the batch; returns the new quantity."""
        amount = positive_amount(amount)
        logger.info("Restocking fuel inventory ID=%s with quantity=%s", record_id, amount)

        async with self._session_factory.begin() as session:
            new_quantity = await stock_ops.apply_restock(session, record_id, amount)

        await self._cache.invalidate(INVENTORY, record_id)
        logger.info("Fuel inventory restocked ID=%s newQuantity=%s", record_id, new_quantity)
        self._notifier.notify(
            INVENTORY_TOPIC, "inventory.restocked",
            inventory_id=record_id, amount=amount, available_quantity=new_quantity,
        )
        return new_quantity

    async def consume(self, record_id: str, amount) -> Decimal:
        """
        Atomically remove ``amount`` from the batch; returns the new quantity.
        Raises InsufficientInventory, leaving the batch untouched, when the
        batch holds less than ``amount``.
        """
        amount = positive_amount(amount)
        async with self._session_factory.begin() as session:
            remaining = await stock_ops.apply_consume(session, record_id, amount)

        await self._cache.invalidate(INVENTORY, record_id)
        logger.info("Consumed %s from fuel inventory ID=%s, remaining=%s", amount, record_id, remaining)
        self._notifier.notify(
            INVENTORY_TOPIC, "inventory.consumed",
            inventory_id=record_id, amount=amount, available_quantity=remaining,
        )
        return remaining

    async def is_low_stock(self, record_id: str, threshold) -> bool:
        """Read-only: is the batch's available quantity below ``threshold``?"""
        threshold = threshold if isinstance(threshold, Decimal) else Decimal(str(threshold))
        async with self._session_factory() as session:
            available = await session.scalar(
                select(InventoryRecord.available_quantity).where(InventoryRecord.id == record_id)
            )
        if available is None:
            raise NotFound("Fuel inventory", record_id)
        return available < threshold

    async def available_quantity(self, record_id: str) -> Decimal:
        return (await self.get(record_id)).available_quantity

    # ── Lookups ──────────────────────────────────────────────

    async def find_by_batch_number(self, batch_number: str) -> InventoryRead | None:
        async with self._session_factory() as session:
            record = await session.scalar(
                select(InventoryRecord).where(InventoryRecord.batch_number == batch_number)
            )
        return InventoryRead.model_validate(record) if record else None

    async def find_by_fuel_type(self, fuel_type: FuelType) -> list[InventoryRead]:
        """Batches of one fuel type in consumption order (oldest first)."""
        async with self._session_factory() as session:
            records = (await session.scalars(
                select(InventoryRecord)
                .where(InventoryRecord.fuel_type == fuel_type)
                .order_by(InventoryRecord.received_at, InventoryRecord.id)
            )).all()
        return [InventoryRead.model_validate(r) for r in records]

    async def get(self, record_id: str) -> InventoryRead:
        async def load() -> InventoryRead:
            async with self._session_factory() as session:
                return InventoryRead.model_validate(await load_inventory(session, record_id))

        return await self._cache.get(INVENTORY, record_id, InventoryRead, load)

    async def list_page(self, page: int, size: int) -> Page[InventoryRead]:
        async def load() -> Page[InventoryRead]:
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(InventoryRecord))
                records = (await session.scalars(
                    select(InventoryRecord)
                    .order_by(InventoryRecord.received_at, InventoryRecord.id)
                    .offset(page * size)
                    .limit(size)
                )).all()
            return Page[InventoryRead](
                items=[InventoryRead.model_validate(r) for r in records],
                page=page, size=size, total=total or 0,
            )

        return await self._cache.get_page(INVENTORY, page, size, Page[InventoryRead], load)

    # ── Batch records ────────────────────────────────────────

    async def create(self, data: InventoryCreate) -> InventoryRead:
        logger.info("Saving new fuel inventory for batchNumber=%s", data.batch_number)
        async with self._session_factory() as session:
            now = utcnow()
            record = InventoryRecord(**data.model_dump(), last_updated=now, received_at=now)
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKey(f"Batch number already exists: {data.batch_number}") from exc

        await self._cache.invalidate(INVENTORY, record.id)
        self._notifier.notify(
            INVENTORY_TOPIC, "inventory.created",
            inventory_id=record.id, batch_number=record.batch_number,
            fuel_type=record.fuel_type.value, available_quantity=record.available_quantity,
        )
        return InventoryRead.model_validate(record)

    @with_optimistic_retry()
    async def update(self, record_id: str, data: InventoryUpdate) -> InventoryRead:
        """
        Overwrite the batch's fields. A changed available_quantity is booked as
        an ADJUSTMENT movement of the difference, in the same transaction.
        """
        logger.info("Updating fuel inventory ID=%s", record_id)
        async with self._session_factory() as session:
            record = await load_inventory(session, record_id)
            delta = data.available_quantity - record.available_quantity
            for field, value in data.model_dump().items():
                setattr(record, field, value)
            record.last_updated = utcnow()
            if delta:
                session.add(StockMovement(
                    inventory_record_id=record_id, kind=MovementKind.ADJUSTMENT, quantity=delta,
                ))
                logger.info("Adjusting fuel inventory ID=%s by %s", record_id, delta)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKey(f"Batch number already exists: {data.batch_number}") from exc

        await self._cache.invalidate(INVENTORY, record_id)
        self._notifier.notify(
            INVENTORY_TOPIC, "inventory.updated",
            inventory_id=record_id, batch_number=record.batch_number,
            available_quantity=record.available_quantity,
        )
        return InventoryRead.model_validate(record)

    @with_optimistic_retry()
    async def delete(self, record_id: str) -> None:
        logger.info("Deleting fuel inventory ID=%s", record_id)
        async with self._session_factory() as session:
            record = await load_inventory(session, record_id)
            movements = await session.scalar(
                select(func.count()).select_from(StockMovement)
                .where(StockMovement.inventory_record_id == record_id)
            )
            if movements:
                raise InvalidRequest(
                    f"Fuel inventory {record_id} has {movements} stock movements and cannot be deleted"
                )
            batch_number = record.batch_number
            await session.delete(record)
            await session.commit()

        await self._cache.invalidate(INVENTORY, record_id)
        self._notifier.notify(INVENTORY_TOPIC, "inventory.deleted", inventory_id=record_id, batch_number=batch_number)
