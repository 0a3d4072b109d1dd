"""
Fulfillment Service — Delivery routes
"""
from fastapi import APIRouter, Depends, status

from app.api.deps import PageParams, get_deliveries
from app.schemas.delivery import (
    AssignmentRequest,
    DeliveryCreate,
    DeliveryRead,
    DeliveryStatusUpdate,
    DeliveryTracking,
)
from app.schemas.page import Page
from app.services.delivery_lifecycle import DeliveryLifecycle

router = APIRouter(prefix="/api/v1/deliveries", tags=["deliveries"])


@router.post("", response_model=DeliveryRead, status_code=status.HTTP_201_CREATED)
async def create_delivery(payload: DeliveryCreate, deliveries: DeliveryLifecycle = Depends(get_deliveries)):
    return await deliveries.create(payload)


@router.get("", response_model=Page[DeliveryRead])
async def list_deliveries(paging: PageParams = Depends(), deliveries: DeliveryLifecycle = Depends(get_deliveries)):
    return await deliveries.list_page(paging.page, paging.size)


@router.get("/{delivery_id}", response_model=DeliveryRead)
async def get_delivery(delivery_id: str, deliveries: DeliveryLifecycle = Depends(get_deliveries)):
    return await deliveries.get(delivery_id)


@router.patch("/{delivery_id}/status", response_model=DeliveryRead)
async def update_delivery_status(
    delivery_id: str,
    payload: DeliveryStatusUpdate,
    deliveries: DeliveryLifecycle = Depends(get_deliveries),
):
    """
    DELIVERED consumes the booking's quantity from inventory and marks the
    booking DELIVERED in the same transaction.
    """
    return await deliveries.update_status(delivery_id, payload.status)


@router.patch("/{delivery_id}/assign", response_model=DeliveryRead)
async def assign_delivery(
    delivery_id: str,
    payload: AssignmentRequest,
    deliveries: DeliveryLifecycle = Depends(get_deliveries),
):
    return await deliveries.assign(delivery_id, payload.agent_id, payload.vehicle_id)


@router.delete("/{delivery_id}", response_model=DeliveryRead)
async def cancel_delivery(delivery_id: str, deliveries: DeliveryLifecycle = Depends(get_deliveries)):
    return await deliveries.cancel(delivery_id)


@router.get("/{delivery_id}/track", response_model=DeliveryTracking)
async def track_delivery(delivery_id: str, deliveries: DeliveryLifecycle = Depends(get_deliveries)):
    return await deliveries.track(delivery_id)
