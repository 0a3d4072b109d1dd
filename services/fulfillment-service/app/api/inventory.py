"""
Fulfillment Service — Fuel inventory routes
"""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import PageParams, get_ledger, get_stock_alerts
from app.core.errors import NotFound
from app.models.inventory import FuelType
from app.schemas.inventory import (
    InventoryCreate,
    InventoryRead,
    InventoryUpdate,
    LowStockRead,
    QuantityChange,
    QuantityRead,
)
from app.schemas.page import Page
from app.services.inventory_ledger import InventoryLedger
from app.services.stock_alerts import StockAlerts

router = APIRouter(prefix="/api/fuel-inventory", tags=["fuel-inventory"])


@router.post("", response_model=InventoryRead, status_code=status.HTTP_201_CREATED)
async def create_inventory(payload: InventoryCreate, ledger: InventoryLedger = Depends(get_ledger)):
    return await ledger.create(payload)


@router.get("", response_model=Page[InventoryRead])
async def list_inventory(paging: PageParams = Depends(), ledger: InventoryLedger = Depends(get_ledger)):
    return await ledger.list_page(paging.page, paging.size)


@router.get("/batch/{batch_number}", response_model=InventoryRead)
async def get_by_batch_number(batch_number: str, ledger: InventoryLedger = Depends(get_ledger)):
    record = await ledger.find_by_batch_number(batch_number)
    if record is None:
        raise NotFound("Fuel inventory batch", batch_number)
    return record


@router.get("/fuel-type/{fuel_type}", response_model=list[InventoryRead])
async def list_by_fuel_type(fuel_type: FuelType, ledger: InventoryLedger = Depends(get_ledger)):
    return await ledger.find_by_fuel_type(fuel_type)


@router.get("/{record_id}", response_model=InventoryRead)
async def get_inventory(record_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    return await ledger.get(record_id)


@router.put("/{record_id}", response_model=InventoryRead)
async def update_inventory(record_id: str, payload: InventoryUpdate, ledger: InventoryLedger = Depends(get_ledger)):
    return await ledger.update(record_id, payload)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_inventory(record_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    await ledger.delete(record_id)


@router.post("/{record_id}/restock", response_model=QuantityRead)
async def restock(
    record_id: str,
    payload: QuantityChange,
    ledger: InventoryLedger = Depends(get_ledger),
    alerts: StockAlerts = Depends(get_stock_alerts),
):
    available = await ledger.restock(record_id, payload.amount)
    alerts.evaluate(record_id, available)
    return QuantityRead(inventory_id=record_id, available_quantity=available)


@router.post("/{record_id}/consume", response_model=QuantityRead)
async def consume(
    record_id: str,
    payload: QuantityChange,
    ledger: InventoryLedger = Depends(get_ledger),
    alerts: StockAlerts = Depends(get_stock_alerts),
):
    available = await ledger.consume(record_id, payload.amount)
    alerts.evaluate(record_id, available)
    return QuantityRead(inventory_id=record_id, available_quantity=available)


@router.get("/{record_id}/low-stock", response_model=LowStockRead)
async def check_low_stock(
    record_id: str,
    threshold: Decimal | None = Query(None, ge=0),
    ledger: InventoryLedger = Depends(get_ledger),
    alerts: StockAlerts = Depends(get_stock_alerts),
):
    threshold = alerts.default_threshold if threshold is None else threshold
    low = await alerts.check(ledger, record_id, threshold)
    return LowStockRead(inventory_id=record_id, threshold=threshold, low_stock=low)


@router.get("/{record_id}/quantity", response_model=QuantityRead)
async def get_quantity(record_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    return QuantityRead(inventory_id=record_id, available_quantity=await ledger.available_quantity(record_id))
