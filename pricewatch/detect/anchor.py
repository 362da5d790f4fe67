"""Match extracted candidates against a user-confirmed anchor price."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from pricewatch.config import settings
from pricewatch.ingest.base import PriceCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnchorMatch:
    candidate: PriceCandidate
    distance: Decimal
    within_tolerance: bool

    def to_dict(self) -> dict:
        return {
            "candidate": self.candidate.to_dict(),
            "distance": str(self.distance),
            "within_tolerance": self.within_tolerance,
        }


def match_anchor(
    anchor: Optional[Decimal],
    candidates: Sequence[PriceCandidate],
    tolerance: Optional[float] = None,
) -> Optional[AnchorMatch]:
    """
    Closest candidate to the anchor by absolute distance.

    Ties go to the first discovered candidate. The closest candidate is
    returned even outside the tolerance; `within_tolerance` records whether
    it is an exact or near (< tolerance relative) match.
    """
    if anchor is None or anchor <= 0 or not candidates:
        return None

    tolerance = settings.anchor_tolerance if tolerance is None else tolerance

    closest = min(candidates, key=lambda c: abs(c.price - anchor))
    distance = abs(closest.price - anchor)
    within = distance == 0 or distance / anchor < Decimal(str(tolerance))

    if not within:
        logger.info(
            f"No candidate within {tolerance:.0%} of anchor {anchor}; "
            f"closest is {closest.price} ({closest.method})"
        )

    return AnchorMatch(candidate=closest, distance=distance, within_tolerance=within)
