"""Tests for the SQLAlchemy item repository."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pricewatch.db.repository import SqlAlchemyItemRepository
from pricewatch.db.session import create_tables, dispose_engine

NOW = datetime(2024, 6, 1, 12, 0)


@pytest_asyncio.fixture
async def repository(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pricewatch.db'}")
    await create_tables(engine)
    yield SqlAlchemyItemRepository(async_sessionmaker(engine, expire_on_commit=False))
    await dispose_engine(engine)


@pytest.mark.asyncio
async def test_create_and_get_item(repository):
    item = await repository.create_item(
        "https://shop.example.com/a", 1800, NOW, owner_id=5, target_price=Decimal("20.00")
    )

    loaded = await repository.get_item(item.id)
    assert loaded.url == "https://shop.example.com/a"
    assert loaded.refresh_interval == 1800
    assert loaded.owner_id == 5
    assert loaded.stock_status == "unknown"
    assert loaded.needs_review is False
    assert await repository.get_item(item.id + 100) is None


@pytest.mark.asyncio
async def test_due_items(repository):
    never = await repository.create_item("https://shop.example.com/never", 3600, None)
    past = await repository.create_item("https://shop.example.com/past", 3600, NOW - timedelta(minutes=1))
    await repository.create_item("https://shop.example.com/future", 3600, NOW + timedelta(minutes=1))
    await repository.create_item("https://shop.example.com/paused", 3600, None, checking_paused=True)

    due = await repository.get_due_items(NOW)

    assert [item.id for item in due] == [never.id, past.id]


@pytest.mark.asyncio
async def test_update_item_fields(repository):
    item = await repository.create_item("https://shop.example.com/a", 3600, NOW)

    await repository.update_item_fields(item.id, needs_review=True, anchor_price=Decimal("9.99"))
    loaded = await repository.get_item(item.id)

    assert loaded.needs_review is True
    assert loaded.anchor_price == Decimal("9.99")
    assert loaded.url == "https://shop.example.com/a"


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(repository):
    item = await repository.create_item("https://shop.example.com/a", 3600, NOW)
    with pytest.raises(ValueError):
        await repository.update_item_fields(item.id, url="https://elsewhere.example.com")


@pytest.mark.asyncio
async def test_price_history(repository):
    item = await repository.create_item("https://shop.example.com/a", 3600, NOW)
    assert await repository.latest_price(item.id) is None

    await repository.add_price_observation(item.id, Decimal("30.00"), "USD", None, NOW)
    await repository.add_price_observation(item.id, Decimal("25.00"), "USD", "verified", NOW + timedelta(hours=1))

    latest = await repository.latest_price(item.id)
    assert latest.price == Decimal("25.00")
    assert latest.ai_status == "verified"
    assert [p.price for p in await repository.price_history(item.id)] == [Decimal("25.00"), Decimal("30.00")]


@pytest.mark.asyncio
async def test_stock_history(repository):
    item = await repository.create_item("https://shop.example.com/a", 3600, NOW)
    await repository.add_stock_observation(item.id, "out_of_stock", NOW)
    await repository.add_stock_observation(item.id, "in_stock", NOW + timedelta(hours=2))

    history = await repository.stock_history(item.id)
    assert [s.status for s in history] == ["in_stock", "out_of_stock"]


@pytest.mark.asyncio
async def test_delete_item_removes_history(repository):
    item = await repository.create_item("https://shop.example.com/a", 3600, NOW)
    await repository.add_price_observation(item.id, Decimal("30.00"), "USD", None, NOW)
    await repository.add_stock_observation(item.id, "in_stock", NOW)

    assert await repository.delete_item(item.id) is True
    assert await repository.get_item(item.id) is None
    assert await repository.price_history(item.id) == []
    assert await repository.delete_item(item.id) is False
