"""
Fulfillment Service — Atomic stock mutations

Each mutation is a single conditional UPDATE ... RETURNING, so the
availability check and the write happen in one statement under the row lock:

  - consume:  WHERE available_quantity >= :amount   (never goes negative)
  - restock:  unconditional increment

Both bump version_id so any concurrent versioned ORM update of the same batch
fails with StaleDataError instead of overwriting the new quantity. These
helpers never commit; the caller owns the transaction, which is what lets a
delivery completion consume stock and flip statuses in one unit of work.
"""
import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import InsufficientInventory, NotFound
from app.db.database import utcnow
from app.models.inventory import FuelType, InventoryRecord, MovementKind, StockMovement

logger = logging.getLogger(__name__)

_RETURNING = (
    InventoryRecord.available_quantity,
    InventoryRecord.version_id,
    InventoryRecord.last_updated,
    InventoryRecord.received_at,
)


def _sync_identity(session: AsyncSession, record_id: str, row) -> None:
    """Mirror the new column values onto an already-loaded instance without dirtying it."""
    record = session.identity_map.get(session.identity_key(InventoryRecord, record_id))
    if record is not None:
        set_committed_value(record, "available_quantity", row.available_quantity)
        set_committed_value(record, "version_id", row.version_id)
        set_committed_value(record, "last_updated", row.last_updated)
        set_committed_value(record, "received_at", row.received_at)


async def apply_restock(session: AsyncSession, record_id: str, amount: Decimal) -> Decimal:
    """Add ``amount``; the batch moves to the back of the FIFO queue as fresh stock."""
    now = utcnow()
    result = await session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.id == record_id)
        .values(
            available_quantity=InventoryRecord.available_quantity + amount,
            version_id=InventoryRecord.version_id + 1,
            last_updated=now,
            received_at=now,
        )
        .returning(*_RETURNING)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound("Fuel inventory", record_id)

    session.add(StockMovement(inventory_record_id=record_id, kind=MovementKind.RESTOCK, quantity=amount))
    _sync_identity(session, record_id, row)
    return row.available_quantity


async def try_consume(
    session: AsyncSession,
    record_id: str,
    amount: Decimal,
    delivery_id: str | None = None,
) -> Decimal | None:
    """Decrement if enough stock is available. Returns the new quantity, or None if not."""
    result = await session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.id == record_id, InventoryRecord.available_quantity >= amount)
        .values(
            available_quantity=InventoryRecord.available_quantity - amount,
            version_id=InventoryRecord.version_id + 1,
            last_updated=utcnow(),
        )
        .returning(*_RETURNING)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        return None

    session.add(StockMovement(
        inventory_record_id=record_id,
        kind=MovementKind.CONSUME,
        quantity=amount,
        delivery_id=delivery_id,
    ))
    _sync_identity(session, record_id, row)
    return row.available_quantity


async def apply_consume(
    session: AsyncSession,
    record_id: str,
    amount: Decimal,
    delivery_id: str | None = None,
) -> Decimal:
    remaining = await try_consume(session, record_id, amount, delivery_id)
    if remaining is not None:
        return remaining

    available = await session.scalar(
        select(InventoryRecord.available_quantity).where(InventoryRecord.id == record_id)
    )
    if available is None:
        raise NotFound("Fuel inventory", record_id)
    raise InsufficientInventory(
        f"Insufficient stock in batch '{record_id}': requested={amount}, available={available}"
    )


async def consume_fifo(
    session: AsyncSession,
    fuel_type: FuelType,
    amount: Decimal,
    delivery_id: str | None = None,
) -> tuple[str, Decimal]:
    """
    Consume ``amount`` from the oldest batch of ``fuel_type`` that can cover it
    (received_at ascending, id as tie-breaker). A batch drained by a concurrent
    caller between the candidate query and the UPDATE is skipped.
    """
    candidates = (await session.scalars(
        select(InventoryRecord.id)
        .where(InventoryRecord.fuel_type == fuel_type, InventoryRecord.available_quantity >= amount)
        .order_by(InventoryRecord.received_at, InventoryRecord.id)
    )).all()

    for record_id in candidates:
        remaining = await try_consume(session, record_id, amount, delivery_id)
        if remaining is not None:
            return record_id, remaining
        logger.info("Batch %s drained concurrently, trying next %s batch", record_id, fuel_type.value)

    raise InsufficientInventory(
        f"Insufficient {fuel_type.value} inventory: no batch holds {amount}"
    )
