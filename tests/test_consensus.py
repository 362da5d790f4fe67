"""Tests for consensus voting and anchor matching."""

from decimal import Decimal

import pytest

from pricewatch.detect.anchor import match_anchor
from pricewatch.detect.consensus import find_price_consensus, group_candidates, prices_match
from pricewatch.ingest.base import PriceCandidate


def candidate(price: str, method: str = "generic-css", confidence: float = 0.6) -> PriceCandidate:
    return PriceCandidate(price=Decimal(price), currency="USD", method=method, confidence=confidence)


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("10.00", "10.00", True),
        ("100.00", "104.00", True),
        ("100.00", "106.00", False),
        ("29.99", "31.00", True),
        ("40.00", "25.00", False),
    ],
)
def test_prices_match(a, b, expected):
    assert prices_match(Decimal(a), Decimal(b)) is expected
    assert prices_match(Decimal(b), Decimal(a)) is expected


def test_candidate_rejects_non_positive_price():
    with pytest.raises(ValueError):
        candidate("0")
    with pytest.raises(ValueError):
        PriceCandidate(price=Decimal("5"), currency="USD", method="json-ld", confidence=1.5)


def test_group_requires_match_with_every_member():
    # 100 ~ 104 and 104 ~ 108, but 100 and 108 are too far apart
    groups = group_candidates([candidate("100"), candidate("104"), candidate("108")])
    assert [[c.price for c in g] for g in groups] == [
        [Decimal("100"), Decimal("104")],
        [Decimal("108")],
    ]


def test_consensus_majority_group_wins():
    result = find_price_consensus([
        candidate("29.99", "json-ld", 0.9),
        candidate("29.99", "site-specific", 0.85),
        candidate("31.00", "generic-css", 0.6),
    ])
    assert result.has_consensus
    assert result.winner.price == Decimal("29.99")
    assert result.winner.method == "json-ld"


def test_consensus_tie_has_no_consensus():
    result = find_price_consensus([
        candidate("40.00", confidence=0.8),
        candidate("25.00", confidence=0.8),
    ])
    assert not result.has_consensus
    assert len(result.groups) == 2
    # The first discovered group ranks first on a full tie
    assert result.winner.price == Decimal("40.00")


def test_consensus_single_candidate():
    result = find_price_consensus([candidate("12.00")])
    assert result.has_consensus
    assert result.winner.price == Decimal("12.00")


def test_consensus_plurality_without_majority():
    result = find_price_consensus([
        candidate("10.00"),
        candidate("10.00"),
        candidate("50.00"),
        candidate("80.00"),
        candidate("120.00"),
    ])
    assert result.has_consensus
    assert result.winner.price == Decimal("10.00")


def test_consensus_empty():
    result = find_price_consensus([])
    assert result.winner is None
    assert not result.has_consensus


def test_consensus_result_serializes():
    data = find_price_consensus([candidate("9.99"), candidate("9.99")]).to_dict()
    assert data["winner"]["price"] == "9.99"
    assert data["has_consensus"] is True
    assert len(data["groups"]) == 1


def test_anchor_exact_match_wins():
    match = match_anchor(Decimal("99.99"), [candidate("99.99"), candidate("129.99")])
    assert match.candidate.price == Decimal("99.99")
    assert match.distance == 0
    assert match.within_tolerance


def test_anchor_near_match():
    match = match_anchor(Decimal("100.00"), [candidate("95.00")])
    assert match.candidate.price == Decimal("95.00")
    assert match.within_tolerance


def test_anchor_closest_outside_tolerance():
    match = match_anchor(Decimal("100.00"), [candidate("150.00"), candidate("40.00")])
    assert match.candidate.price == Decimal("150.00")
    assert not match.within_tolerance


def test_anchor_tie_keeps_first():
    match = match_anchor(Decimal("100.00"), [candidate("90.00", "generic-css"), candidate("110.00", "json-ld")])
    assert match.candidate.method == "generic-css"


def test_anchor_without_candidates_or_anchor():
    assert match_anchor(Decimal("10"), []) is None
    assert match_anchor(None, [candidate("10")]) is None
