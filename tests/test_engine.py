"""Tests for the reconciliation engine."""

import asyncio
from decimal import Decimal

import pytest

from pricewatch.ai.oracle import OracleArbitration, OracleExtraction, OracleStockCheck, OracleVerification
from pricewatch.detect.engine import ItemContext, ReconciliationEngine
from pricewatch.ingest.base import PageExtraction, ParsedPrice, PriceCandidate
from tests.fakes import FakeOracle

HTML = "<html><body>product</body></html>"


def candidate(price: str, method: str = "generic-css", confidence: float = 0.6) -> PriceCandidate:
    return PriceCandidate(price=Decimal(price), currency="USD", method=method, confidence=confidence)


def extraction(*candidates, stock_status="unknown", name=None) -> PageExtraction:
    return PageExtraction(candidates=tuple(candidates), stock_status=stock_status, name=name)


@pytest.fixture
def engine():
    return ReconciliationEngine(oracle_timeout=1, verification_enabled=True)


@pytest.mark.asyncio
async def test_consensus_selects_majority(engine):
    result = await engine.reconcile(
        extraction(
            candidate("29.99", "json-ld", 0.9),
            candidate("29.99", "site-specific", 0.85),
            candidate("31.00", "generic-css", 0.6),
        ),
        HTML,
    )
    assert result.price == ParsedPrice(Decimal("29.99"), "USD")
    assert result.selected_method == "json-ld"
    assert not result.needs_review
    assert result.outcome == "consensus"


@pytest.mark.asyncio
async def test_no_consensus_without_oracle_needs_review(engine):
    result = await engine.reconcile(
        extraction(candidate("40.00", confidence=0.8), candidate("25.00", confidence=0.8)),
        HTML,
    )
    assert result.needs_review
    assert result.price.price == Decimal("40.00")
    assert result.ai_status is None
    assert len(result.candidates) == 2


@pytest.mark.asyncio
async def test_anchor_exact_match_skips_oracle_price_checks(engine):
    oracle = FakeOracle(stock_check=OracleStockCheck(stock_status="in_stock", confidence=0.9))
    result = await engine.reconcile(
        extraction(candidate("99.99"), candidate("129.99")),
        HTML,
        ItemContext(anchor_price=Decimal("99.99"), skip_ai_verification=True),
        oracle,
    )
    assert result.price.price == Decimal("99.99")
    assert result.ai_status == "verified"
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_anchor_near_match_is_verified(engine):
    result = await engine.reconcile(
        extraction(candidate("95.00")),
        HTML,
        ItemContext(anchor_price=Decimal("100.00")),
    )
    assert result.price.price == Decimal("95.00")
    assert result.ai_status == "verified"
    assert result.outcome == "anchor"


@pytest.mark.asyncio
async def test_anchor_variant_stock_check(engine):
    oracle = FakeOracle(stock_check=OracleStockCheck(stock_status="out_of_stock", confidence=0.8))
    result = await engine.reconcile(
        extraction(candidate("50.00"), stock_status="in_stock"),
        HTML,
        ItemContext(anchor_price=Decimal("50.00")),
        oracle,
    )
    assert oracle.calls == ["stock"]
    assert result.stock_status == "out_of_stock"


@pytest.mark.asyncio
async def test_anchor_stock_check_below_threshold_is_ignored(engine):
    oracle = FakeOracle(stock_check=OracleStockCheck(stock_status="out_of_stock", confidence=0.4))
    result = await engine.reconcile(
        extraction(candidate("50.00"), stock_status="in_stock"),
        HTML,
        ItemContext(anchor_price=Decimal("50.00")),
        oracle,
    )
    assert result.stock_status == "in_stock"


@pytest.mark.asyncio
async def test_preferred_method_wins_over_consensus(engine):
    result = await engine.reconcile(
        extraction(
            candidate("10.00", "generic-css", 0.6),
            candidate("10.00", "generic-css", 0.6),
            candidate("12.00", "json-ld", 0.7),
            candidate("12.50", "json-ld", 0.9),
        ),
        HTML,
        ItemContext(preferred_method="json-ld"),
    )
    assert result.price.price == Decimal("12.50")
    assert result.outcome == "preferred"


@pytest.mark.asyncio
async def test_preferred_method_missing_falls_back_to_consensus(engine):
    result = await engine.reconcile(
        extraction(candidate("10.00"), candidate("10.00")),
        HTML,
        ItemContext(preferred_method="json-ld"),
    )
    assert result.outcome == "consensus"
    assert result.unanimous


@pytest.mark.asyncio
async def test_arbitration_accepted(engine):
    oracle = FakeOracle(arbitration=OracleArbitration(selected_index=1, confidence=0.9, reason="main price"))
    result = await engine.reconcile(
        extraction(candidate("40.00", confidence=0.8), candidate("25.00", confidence=0.8)),
        HTML,
        oracle=oracle,
    )
    assert result.price.price == Decimal("25.00")
    assert result.ai_status == "verified"
    assert not result.needs_review
    assert result.candidates[-1].method == "ai"
    assert result.candidates[-1].context.startswith("AI arbitration")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "verdict",
    [
        OracleArbitration(selected_index=1, confidence=0.3),
        OracleArbitration(selected_index=5, confidence=0.9),
        OracleArbitration(selected_index=None, confidence=0.9),
    ],
)
async def test_arbitration_rejected_needs_review(engine, verdict):
    oracle = FakeOracle(arbitration=verdict)
    result = await engine.reconcile(
        extraction(candidate("40.00", confidence=0.9), candidate("25.00", confidence=0.8)),
        HTML,
        oracle=oracle,
    )
    assert result.needs_review
    assert result.price.price == Decimal("40.00")
    assert result.ai_status is None


@pytest.mark.asyncio
async def test_oracle_failure_is_treated_as_absent(engine):
    oracle = FakeOracle(error=RuntimeError("rate limited"))
    result = await engine.reconcile(
        extraction(candidate("40.00", confidence=0.9), candidate("25.00", confidence=0.8)),
        HTML,
        oracle=oracle,
    )
    assert oracle.calls == ["arbitrate"]
    assert result.needs_review
    assert result.price.price == Decimal("40.00")


@pytest.mark.asyncio
async def test_oracle_timeout_is_treated_as_absent():
    class SlowOracle(FakeOracle):
        async def arbitrate(self, html, candidates):
            await asyncio.sleep(5)

    engine = ReconciliationEngine(oracle_timeout=0.01)
    result = await engine.reconcile(
        extraction(candidate("40.00"), candidate("25.00")),
        HTML,
        oracle=SlowOracle(),
    )
    assert result.needs_review


@pytest.mark.asyncio
async def test_oracle_extraction_when_nothing_found(engine):
    oracle = FakeOracle(
        extraction=OracleExtraction(
            price=ParsedPrice(Decimal("18.00"), "EUR"),
            confidence=0.8,
            name="Lamp",
            stock_status="in_stock",
        )
    )
    result = await engine.reconcile(extraction(), HTML, oracle=oracle)

    assert result.price == ParsedPrice(Decimal("18.00"), "EUR")
    assert result.selected_method == "ai"
    assert result.name == "Lamp"
    assert result.stock_status == "in_stock"
    assert result.candidates[0].context == "AI extraction (no other methods found price)"
    # A price produced by the oracle is not sent back to it for verification
    assert oracle.calls == ["extract"]


@pytest.mark.asyncio
async def test_oracle_extraction_low_confidence(engine):
    oracle = FakeOracle(extraction=OracleExtraction(price=ParsedPrice(Decimal("18.00")), confidence=0.5))
    result = await engine.reconcile(extraction(), HTML, oracle=oracle)
    assert result.price is None


@pytest.mark.asyncio
async def test_oracle_extraction_disabled_for_item(engine):
    oracle = FakeOracle()
    result = await engine.reconcile(extraction(), HTML, ItemContext(skip_ai_extraction=True), oracle)
    assert result.price is None
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_verification_marks_verified(engine):
    oracle = FakeOracle(verification=OracleVerification(is_correct=True, confidence=0.9, stock_status="in_stock"))
    result = await engine.reconcile(extraction(candidate("15.00")), HTML, oracle=oracle)
    assert result.ai_status == "verified"
    assert result.stock_status == "in_stock"


@pytest.mark.asyncio
async def test_verification_correction_to_existing_candidate(engine):
    oracle = FakeOracle(
        verification=OracleVerification(
            is_correct=False,
            confidence=0.9,
            suggested_price=ParsedPrice(Decimal("15.20")),
            reason="savings amount",
        )
    )
    result = await engine.reconcile(extraction(candidate("15.00")), HTML, oracle=oracle)
    assert result.ai_status == "corrected"
    assert result.price.price == Decimal("15.20")


@pytest.mark.asyncio
async def test_verification_unmatched_suggestion_needs_review(engine):
    oracle = FakeOracle(
        verification=OracleVerification(
            is_correct=False,
            confidence=0.9,
            suggested_price=ParsedPrice(Decimal("150.00")),
            reason="bundle price",
            stock_status="out_of_stock",
        )
    )
    result = await engine.reconcile(extraction(candidate("15.00"), stock_status="in_stock"), HTML, oracle=oracle)
    assert result.needs_review
    assert result.price.price == Decimal("15.00")
    assert result.candidates[-1].price == Decimal("150.00")
    assert result.candidates[-1].context == "AI suggestion: bundle price"
    assert result.stock_status == "out_of_stock"


@pytest.mark.asyncio
async def test_unsure_verification_changes_nothing(engine):
    oracle = FakeOracle(
        verification=OracleVerification(is_correct=True, confidence=0.05, stock_status="out_of_stock")
    )
    result = await engine.reconcile(extraction(candidate("15.00"), stock_status="in_stock"), HTML, oracle=oracle)
    assert oracle.calls == ["verify"]
    assert result.ai_status is None
    assert result.stock_status == "in_stock"
    assert result.price.price == Decimal("15.00")


@pytest.mark.asyncio
async def test_verification_skipped_for_multiple_candidates_or_item_flag(engine):
    oracle = FakeOracle()
    await engine.reconcile(extraction(candidate("15.00"), candidate("15.00")), HTML, oracle=oracle)
    await engine.reconcile(extraction(candidate("15.00")), HTML, ItemContext(skip_ai_verification=True), oracle)
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_verification_disabled_globally():
    oracle = FakeOracle()
    engine = ReconciliationEngine(verification_enabled=False)
    result = await engine.reconcile(extraction(candidate("15.00")), HTML, oracle=oracle)
    assert oracle.calls == []
    assert result.ai_status is None


@pytest.mark.asyncio
async def test_reconciliation_is_deterministic(engine):
    page = extraction(candidate("29.99", "json-ld", 0.9), candidate("31.00"), candidate("45.00"))
    first = await engine.reconcile(page, HTML)
    second = await engine.reconcile(page, HTML)
    assert first.to_dict() == second.to_dict()
