"""Agreement voting across price candidates from independent extractors."""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from pricewatch.config import settings
from pricewatch.ingest.base import PriceCandidate

logger = logging.getLogger(__name__)


def prices_match(a: Decimal, b: Decimal, tolerance: Optional[float] = None) -> bool:
    """True if two amounts are equal or differ by less than `tolerance` relative to their mean."""
    if a == b:
        return True
    tolerance = settings.consensus_tolerance if tolerance is None else tolerance
    mean = (a + b) / 2
    if mean <= 0:
        return False
    return abs(a - b) / mean < Decimal(str(tolerance))


@dataclass(frozen=True)
class ConsensusResult:
    """Outcome of a consensus vote; `groups` is kept for auditing."""

    winner: Optional[PriceCandidate]
    has_consensus: bool
    groups: Tuple[Tuple[PriceCandidate, ...], ...] = ()

    def to_dict(self) -> dict:
        return {
            "winner": self.winner.to_dict() if self.winner else None,
            "has_consensus": self.has_consensus,
            "groups": [[c.to_dict() for c in group] for group in self.groups],
        }


def _mean_confidence(group: Sequence[PriceCandidate]) -> float:
    return sum(c.confidence for c in group) / len(group)


def group_candidates(candidates: Sequence[PriceCandidate]) -> list[list[PriceCandidate]]:
    """
    Greedy grouping in discovery order.

    A candidate joins the first group all of whose members it matches,
    otherwise it starts a new group.
    """
    groups: list[list[PriceCandidate]] = []
    for candidate in candidates:
        for group in groups:
            if all(prices_match(candidate.price, member.price) for member in group):
                group.append(candidate)
                break
        else:
            groups.append([candidate])
    return groups


def find_price_consensus(candidates: Sequence[PriceCandidate]) -> ConsensusResult:
    """
    Vote on the price.

    Groups are ranked by size, then mean confidence; the sort is stable so
    discovery order breaks remaining ties. The winner is the most confident
    member of the top group. There is consensus when the top group holds at
    least half the candidates and is not tied with the runner-up, or when it
    is strictly larger than the runner-up.
    """
    if not candidates:
        return ConsensusResult(winner=None, has_consensus=False)

    groups = group_candidates(candidates)
    groups.sort(key=lambda g: (-len(g), -_mean_confidence(g)))

    top = groups[0]
    # max() keeps the first of equally confident members
    winner = max(top, key=lambda c: c.confidence)

    if len(groups) == 1:
        has_consensus = True
    else:
        runner_up = len(groups[1])
        majority = len(top) >= math.ceil(len(candidates) / 2)
        has_consensus = (majority and len(top) != runner_up) or len(top) > runner_up

    result = ConsensusResult(
        winner=winner,
        has_consensus=has_consensus,
        groups=tuple(tuple(g) for g in groups),
    )
    logger.debug(
        f"Consensus over {len(candidates)} candidates: {len(groups)} groups, "
        f"winner {winner.price} {winner.currency}, consensus={has_consensus}"
    )
    return result
