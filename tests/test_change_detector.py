"""Tests for diffing observations against stored item state."""

from datetime import datetime
from decimal import Decimal

import pytest

from pricewatch.detect.change_detector import ChangeDetector
from pricewatch.detect.engine import ReconciledObservation
from pricewatch.ingest.base import ParsedPrice
from tests.fakes import FakeNotifier, FakeRepository, make_item

NOW = datetime(2024, 6, 1, 12, 0)


def observed(price=None, stock_status="unknown", name=None, ai_status=None):
    return ReconciledObservation(
        name=name,
        price=ParsedPrice(Decimal(price), "USD") if price is not None else None,
        stock_status=stock_status,
        ai_status=ai_status,
    )


def setup(**item_fields):
    item = make_item(**item_fields)
    repository = FakeRepository([item])
    notifier = FakeNotifier()
    return item, repository, notifier, ChangeDetector(repository, notifier)


@pytest.mark.asyncio
async def test_first_price_is_recorded_without_events():
    item, repository, notifier, detector = setup()

    summary = await detector.apply(item, observed("19.99", ai_status="verified"), NOW)

    assert summary.price_recorded
    assert summary.old_price is None
    assert len(repository.prices) == 1
    assert repository.prices[0].ai_status == "verified"
    assert repository.prices[0].recorded_at == NOW
    assert notifier.events == []


@pytest.mark.asyncio
async def test_unchanged_price_is_not_recorded_again():
    item, repository, notifier, detector = setup()
    repository.seed_price(item.id, "19.99")

    summary = await detector.apply(item, observed("19.99"), NOW)

    assert not summary.price_recorded
    assert len(repository.prices) == 1


@pytest.mark.asyncio
async def test_stock_change_writes_history_and_item():
    item, repository, notifier, detector = setup(stock_status="in_stock")

    summary = await detector.apply(item, observed(stock_status="out_of_stock"), NOW)

    assert summary.stock_changed
    assert [(s.status, s.changed_at) for s in repository.stock] == [("out_of_stock", NOW)]
    assert item.stock_status == "out_of_stock"
    assert repository.prices == []


@pytest.mark.asyncio
async def test_same_stock_writes_nothing():
    item, repository, notifier, detector = setup(stock_status="in_stock")
    summary = await detector.apply(item, observed(stock_status="in_stock"), NOW)
    assert not summary.stock_changed
    assert repository.stock == []


@pytest.mark.asyncio
async def test_back_in_stock_event():
    item, repository, notifier, detector = setup(stock_status="out_of_stock", notify_back_in_stock=True)

    summary = await detector.apply(item, observed("49.00", stock_status="in_stock"), NOW)

    assert [e.type for e in summary.events] == ["back_in_stock"]
    assert notifier.events[0].new_price == Decimal("49.00")
    assert notifier.events[0].owner_id == item.owner_id


@pytest.mark.asyncio
async def test_back_in_stock_requires_opt_in_and_out_of_stock_origin():
    item, repository, notifier, detector = setup(stock_status="out_of_stock")
    await detector.apply(item, observed(stock_status="in_stock"), NOW)

    other, other_repository, other_notifier, other_detector = setup(stock_status="unknown", notify_back_in_stock=True)
    await other_detector.apply(other, observed(stock_status="in_stock"), NOW)

    assert notifier.events == []
    assert other_notifier.events == []


@pytest.mark.asyncio
async def test_price_drop_at_threshold():
    item, repository, notifier, detector = setup(price_drop_threshold=Decimal("5.00"))
    repository.seed_price(item.id, "30.00")

    summary = await detector.apply(item, observed("25.00"), NOW)

    assert [e.type for e in summary.events] == ["price_drop"]
    event = notifier.events[0]
    assert event.old_price == Decimal("30.00")
    assert event.new_price == Decimal("25.00")
    assert event.threshold == Decimal("5.00")


@pytest.mark.asyncio
async def test_price_drop_below_threshold_is_quiet():
    item, repository, notifier, detector = setup(price_drop_threshold=Decimal("5.00"))
    repository.seed_price(item.id, "30.00")

    summary = await detector.apply(item, observed("26.00"), NOW)

    assert summary.price_recorded
    assert notifier.events == []


@pytest.mark.asyncio
async def test_target_price_crossing():
    item, repository, notifier, detector = setup(target_price=Decimal("20.00"))
    repository.seed_price(item.id, "24.00")

    await detector.apply(item, observed("19.50"), NOW)
    # Already below the target, a further drop does not re-fire
    await detector.apply(item, observed("18.00"), NOW)

    assert [e.type for e in notifier.events] == ["target_price"]
    assert notifier.events[0].target_price == Decimal("20.00")


@pytest.mark.asyncio
async def test_target_price_on_first_observation():
    item, repository, notifier, detector = setup(target_price=Decimal("20.00"))
    await detector.apply(item, observed("20.00"), NOW)
    assert [e.type for e in notifier.events] == ["target_price"]


@pytest.mark.asyncio
async def test_drop_and_target_fire_together():
    item, repository, notifier, detector = setup(price_drop_threshold=Decimal("1.00"), target_price=Decimal("20.00"))
    repository.seed_price(item.id, "30.00")

    summary = await detector.apply(item, observed("15.00"), NOW)

    assert [e.type for e in summary.events] == ["price_drop", "target_price"]


@pytest.mark.asyncio
async def test_notifier_failure_does_not_stop_diff():
    item = make_item(price_drop_threshold=Decimal("1.00"), target_price=Decimal("20.00"))
    repository = FakeRepository([item])
    repository.seed_price(item.id, "30.00")
    notifier = FakeNotifier(fail=True)

    summary = await ChangeDetector(repository, notifier).apply(item, observed("15.00"), NOW)

    assert summary.price_recorded
    assert len(notifier.events) == 2


@pytest.mark.asyncio
async def test_persistence_failure_propagates():
    item, repository, notifier, detector = setup()
    repository.fail_on_price_write = True

    with pytest.raises(RuntimeError):
        await detector.apply(item, observed("10.00"), NOW)
    assert notifier.events == []


@pytest.mark.asyncio
async def test_missing_price_only_tracks_stock():
    item, repository, notifier, detector = setup()
    summary = await detector.apply(item, observed(stock_status="out_of_stock"), NOW)
    assert summary.new_price is None
    assert repository.prices == []
    assert summary.to_dict()["new_stock_status"] == "out_of_stock"


@pytest.mark.asyncio
async def test_event_name_falls_back_to_item_name():
    item, repository, notifier, detector = setup(target_price=Decimal("50.00"), name="Stored Name")
    await detector.apply(item, observed("10.00"), NOW)
    assert notifier.events[0].product_name == "Stored Name"
