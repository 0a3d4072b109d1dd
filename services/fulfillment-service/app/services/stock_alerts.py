"""
Fulfillment Service — Low-stock alerting

The ledger only answers "is this batch low?". Deciding to raise an alert is
made here, by the callers that just changed or inspected a batch.
"""
import logging
from decimal import Decimal

from app.services.inventory_ledger import InventoryLedger
from app.services.notifications import STOCK_ALERT_TOPIC, Notifier

logger = logging.getLogger(__name__)


class StockAlerts:
    def __init__(self, notifier: Notifier, default_threshold: float):
        self._notifier = notifier
        self.default_threshold = Decimal(str(default_threshold))

    def evaluate(self, record_id: str, available: Decimal, threshold: Decimal | None = None) -> bool:
        """Alert when a known quantity is below the threshold; returns whether it was."""
        threshold = self.default_threshold if threshold is None else threshold
        if available >= threshold:
            return False
        logger.warning("Low stock detected for inventory ID=%s quantity=%s threshold=%s",
                       record_id, available, threshold)
        self._notifier.notify(
            STOCK_ALERT_TOPIC, "inventory.low-stock",
            inventory_id=record_id, available_quantity=available, threshold=threshold,
        )
        return True

    async def check(self, ledger: InventoryLedger, record_id: str, threshold: Decimal | None = None) -> bool:
        threshold = self.default_threshold if threshold is None else threshold
        low = await ledger.is_low_stock(record_id, threshold)
        if low:
            available = await ledger.available_quantity(record_id)
            self.evaluate(record_id, available, threshold)
        return low
