"""Persistence access for tracked items and their history."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Protocol

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.db.models import PriceObservation, StockStatusObservation, TrackedItem

logger = logging.getLogger(__name__)

# Columns a check or a user action may write; identity and history are excluded
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "image_url",
        "refresh_interval",
        "last_checked",
        "next_check_at",
        "stock_status",
        "price_drop_threshold",
        "target_price",
        "notify_back_in_stock",
        "anchor_price",
        "preferred_method",
        "skip_ai_verification",
        "skip_ai_extraction",
        "checking_paused",
        "needs_review",
    }
)


class ItemRepository(Protocol):
    """What the scheduler and change detector need from storage."""

    async def create_item(
        self, url: str, refresh_interval: int, next_check_at: datetime, **fields: Any
    ) -> TrackedItem: ...

    async def get_due_items(self, now: datetime) -> List[TrackedItem]: ...

    async def get_item(self, item_id: int) -> Optional[TrackedItem]: ...

    async def update_item_fields(self, item_id: int, **fields: Any) -> None: ...

    async def latest_price(self, item_id: int) -> Optional[PriceObservation]: ...

    async def add_price_observation(
        self,
        item_id: int,
        price: Decimal,
        currency: str,
        ai_status: Optional[str],
        recorded_at: datetime,
    ) -> None: ...

    async def add_stock_observation(self, item_id: int, status: str, changed_at: datetime) -> None: ...


class SqlAlchemyItemRepository:
    """ItemRepository over an async session factory, one transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_item(self, url: str, refresh_interval: int, next_check_at: datetime, **fields: Any) -> TrackedItem:
        item = TrackedItem(url=url, refresh_interval=refresh_interval, next_check_at=next_check_at, **fields)
        async with self.session_factory() as db:
            db.add(item)
            await db.commit()
            await db.refresh(item)
        logger.info(f"Tracking item {item.id}: {url}")
        return item

    async def get_item(self, item_id: int) -> Optional[TrackedItem]:
        async with self.session_factory() as db:
            return await db.get(TrackedItem, item_id)

    async def get_due_items(self, now: datetime) -> List[TrackedItem]:
        """Items never checked or past their next check, excluding paused ones."""
        query = (
            select(TrackedItem)
            .where(
                TrackedItem.checking_paused.is_(False),
                or_(TrackedItem.next_check_at.is_(None), TrackedItem.next_check_at <= now),
            )
            .order_by(TrackedItem.id)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def update_item_fields(self, item_id: int, **fields: Any) -> None:
        """
        Write only the given columns.

        Concurrent writers touching different columns do not overwrite each
        other; the same column is last-write-wins.
        """
        if not fields:
            return
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update item fields: {', '.join(sorted(unknown))}")

        async with self.session_factory() as db:
            await db.execute(update(TrackedItem).where(TrackedItem.id == item_id).values(**fields))
            await db.commit()

    async def latest_price(self, item_id: int) -> Optional[PriceObservation]:
        query = (
            select(PriceObservation)
            .where(PriceObservation.item_id == item_id)
            .order_by(PriceObservation.recorded_at.desc(), PriceObservation.id.desc())
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return result.scalar_one_or_none()

    async def price_history(self, item_id: int, limit: int = 100) -> List[PriceObservation]:
        query = (
            select(PriceObservation)
            .where(PriceObservation.item_id == item_id)
            .order_by(PriceObservation.recorded_at.desc(), PriceObservation.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def stock_history(self, item_id: int, limit: int = 100) -> List[StockStatusObservation]:
        query = (
            select(StockStatusObservation)
            .where(StockStatusObservation.item_id == item_id)
            .order_by(StockStatusObservation.changed_at.desc(), StockStatusObservation.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def add_price_observation(
        self,
        item_id: int,
        price: Decimal,
        currency: str,
        ai_status: Optional[str],
        recorded_at: datetime,
    ) -> None:
        async with self.session_factory() as db:
            db.add(
                PriceObservation(
                    item_id=item_id,
                    price=price,
                    currency=currency,
                    ai_status=ai_status,
                    recorded_at=recorded_at,
                )
            )
            await db.commit()

    async def add_stock_observation(self, item_id: int, status: str, changed_at: datetime) -> None:
        async with self.session_factory() as db:
            db.add(StockStatusObservation(item_id=item_id, status=status, changed_at=changed_at))
            await db.commit()

    async def delete_item(self, item_id: int) -> bool:
        """Delete an item together with its history."""
        async with self.session_factory() as db:
            await db.execute(delete(PriceObservation).where(PriceObservation.item_id == item_id))
            await db.execute(delete(StockStatusObservation).where(StockStatusObservation.item_id == item_id))
            result = await db.execute(delete(TrackedItem).where(TrackedItem.id == item_id))
            await db.commit()
        return result.rowcount > 0
