"""
Fulfillment Service — Route dependencies

Components are built once in create_app() and hung off app.state.
"""
from fastapi import Query, Request

from app.core.config import get_settings
from app.services.booking_lifecycle import BookingLifecycle
from app.services.delivery_lifecycle import DeliveryLifecycle
from app.services.inventory_ledger import InventoryLedger
from app.services.stock_alerts import StockAlerts

settings = get_settings()


def get_ledger(request: Request) -> InventoryLedger:
    return request.app.state.ledger


def get_bookings(request: Request) -> BookingLifecycle:
    return request.app.state.bookings


def get_deliveries(request: Request) -> DeliveryLifecycle:
    return request.app.state.deliveries


def get_stock_alerts(request: Request) -> StockAlerts:
    return request.app.state.stock_alerts


class PageParams:
    def __init__(
        self,
        page: int = Query(0, ge=0),
        size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    ):
        self.page = page
        self.size = size
