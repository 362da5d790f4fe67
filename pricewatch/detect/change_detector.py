"""Diffs a reconciled observation against stored item state."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pricewatch.db.models import TrackedItem
from pricewatch.db.repository import ItemRepository
from pricewatch.detect.engine import ReconciledObservation
from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN
from pricewatch.metrics import price_changes_total, record_notification, stock_status_changes_total
from pricewatch.notify.events import NotificationEvent, Notifier

logger = logging.getLogger(__name__)


@dataclass
class ChangeSummary:
    """What one check changed for one item."""

    item_id: int
    old_stock_status: str = UNKNOWN
    new_stock_status: str = UNKNOWN
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    price_recorded: bool = False
    events: List[NotificationEvent] = field(default_factory=list)

    @property
    def stock_changed(self) -> bool:
        return self.old_stock_status != self.new_stock_status

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "old_stock_status": self.old_stock_status,
            "new_stock_status": self.new_stock_status,
            "stock_changed": self.stock_changed,
            "old_price": str(self.old_price) if self.old_price is not None else None,
            "new_price": str(self.new_price) if self.new_price is not None else None,
            "price_recorded": self.price_recorded,
            "events": [e.to_dict() for e in self.events],
        }


class ChangeDetector:
    """
    Writes history rows for changed stock or price and fires notification events.

    Persistence errors propagate to the caller. A failing notifier is logged
    per event and never stops the rest of the diff.
    """

    def __init__(self, repository: ItemRepository, notifier: Notifier):
        self.repository = repository
        self.notifier = notifier

    async def apply(self, item: TrackedItem, observation: ReconciledObservation, now: datetime) -> ChangeSummary:
        old_stock = item.stock_status or UNKNOWN
        new_stock = observation.stock_status
        summary = ChangeSummary(item_id=item.id, old_stock_status=old_stock, new_stock_status=new_stock)
        name = observation.name or item.name or "Unknown Product"
        currency = observation.price.currency if observation.price else "USD"

        if new_stock != old_stock:
            await self.repository.add_stock_observation(item.id, new_stock, now)
            await self.repository.update_item_fields(item.id, stock_status=new_stock)
            stock_status_changes_total.labels(status=new_stock).inc()
            logger.info(f"Stock status changed for item {item.id}: {old_stock} -> {new_stock}")

            if old_stock == OUT_OF_STOCK and new_stock == IN_STOCK and item.notify_back_in_stock:
                await self._fire(
                    summary,
                    NotificationEvent(
                        type="back_in_stock",
                        item_id=item.id,
                        owner_id=item.owner_id,
                        product_name=name,
                        product_url=item.url,
                        currency=currency,
                        new_price=observation.price.price if observation.price else None,
                    ),
                )

        if observation.price is None:
            if new_stock == OUT_OF_STOCK:
                logger.info(f"Item {item.id} is out of stock, no price available")
            else:
                logger.warning(f"Could not extract price for item {item.id}")
            return summary

        new_price = observation.price.price
        latest = await self.repository.latest_price(item.id)
        old_price = latest.price if latest is not None else None
        summary.old_price = old_price
        summary.new_price = new_price

        if old_price is not None and old_price == new_price:
            logger.debug(f"Price unchanged for item {item.id}")
            return summary

        await self.repository.add_price_observation(
            item.id, new_price, observation.price.currency, observation.ai_status, now
        )
        summary.price_recorded = True
        if old_price is None:
            price_changes_total.labels(direction="initial").inc()
        else:
            price_changes_total.labels(direction="down" if new_price < old_price else "up").inc()
        logger.info(f"Recorded new price for item {item.id}: {observation.price.currency} {new_price}")

        threshold = item.price_drop_threshold
        if old_price is not None and threshold and old_price - new_price >= threshold:
            await self._fire(
                summary,
                NotificationEvent(
                    type="price_drop",
                    item_id=item.id,
                    owner_id=item.owner_id,
                    product_name=name,
                    product_url=item.url,
                    currency=observation.price.currency,
                    old_price=old_price,
                    new_price=new_price,
                    threshold=threshold,
                ),
            )

        target = item.target_price
        if target is not None and new_price <= target and (old_price is None or old_price > target):
            await self._fire(
                summary,
                NotificationEvent(
                    type="target_price",
                    item_id=item.id,
                    owner_id=item.owner_id,
                    product_name=name,
                    product_url=item.url,
                    currency=observation.price.currency,
                    old_price=old_price,
                    new_price=new_price,
                    target_price=target,
                ),
            )

        return summary

    async def _fire(self, summary: ChangeSummary, event: NotificationEvent) -> None:
        summary.events.append(event)
        try:
            await self.notifier.notify(event)
        except Exception as e:
            record_notification(event.type, "error")
            logger.error(f"Failed to send {event.type} notification for item {event.item_id}: {e}")
            return
        record_notification(event.type, "sent")
