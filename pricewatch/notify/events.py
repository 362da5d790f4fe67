"""Notification events raised by change detection."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional, Protocol

logger = logging.getLogger(__name__)

EventType = Literal["price_drop", "target_price", "back_in_stock"]


@dataclass(frozen=True)
class NotificationEvent:
    """A structured event handed to the notification collaborator."""

    type: EventType
    item_id: int
    product_name: str
    product_url: str
    currency: str = "USD"
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    threshold: Optional[Decimal] = None
    target_price: Optional[Decimal] = None
    owner_id: Optional[int] = None

    def to_dict(self) -> dict:
        def money(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "type": self.type,
            "item_id": self.item_id,
            "owner_id": self.owner_id,
            "product_name": self.product_name,
            "product_url": self.product_url,
            "currency": self.currency,
            "old_price": money(self.old_price),
            "new_price": money(self.new_price),
            "threshold": money(self.threshold),
            "target_price": money(self.target_price),
        }


class Notifier(Protocol):
    """Delivers events. Formatting and channels are its own concern."""

    async def notify(self, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default notifier that only logs events."""

    async def notify(self, event: NotificationEvent) -> None:
        if event.type == "price_drop":
            logger.info(
                f"Price drop for item {event.item_id} ({event.product_name}): "
                f"{event.currency} {event.old_price} -> {event.new_price}"
            )
        elif event.type == "target_price":
            logger.info(
                f"Target price reached for item {event.item_id} ({event.product_name}): "
                f"{event.currency} {event.new_price} <= {event.target_price}"
            )
        else:
            logger.info(f"Back in stock: item {event.item_id} ({event.product_name}) {event.product_url}")
