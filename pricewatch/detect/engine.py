"""Price reconciliation engine."""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, List, Literal, Optional, TypeVar

from pricewatch.ai.oracle import ArbitrationOracle
from pricewatch.config import settings
from pricewatch.detect.anchor import AnchorMatch, match_anchor
from pricewatch.detect.consensus import ConsensusResult, find_price_consensus, prices_match
from pricewatch.ingest.base import (
    METHOD_AI,
    OUT_OF_STOCK,
    UNKNOWN,
    ExtractionMethod,
    PageExtraction,
    ParsedPrice,
    PriceCandidate,
    StockStatus,
)
from pricewatch.metrics import record_reconciliation

logger = logging.getLogger(__name__)

AIStatus = Optional[Literal["verified", "corrected"]]

T = TypeVar("T")


@dataclass(frozen=True)
class ItemContext:
    """Per-item state that steers reconciliation."""

    anchor_price: Optional[Decimal] = None
    preferred_method: Optional[ExtractionMethod] = None
    skip_ai_verification: bool = False
    skip_ai_extraction: bool = False


@dataclass(frozen=True)
class ReconciledObservation:
    """The single answer produced by one check of an item."""

    name: Optional[str] = None
    price: Optional[ParsedPrice] = None
    image_url: Optional[str] = None
    stock_status: StockStatus = UNKNOWN
    ai_status: AIStatus = None
    needs_review: bool = False
    candidates: tuple = ()
    selected_method: Optional[ExtractionMethod] = None
    used_renderer: bool = False
    fetch_error: Optional[str] = None
    outcome: str = "none"
    consensus: Optional[ConsensusResult] = None

    @property
    def unanimous(self) -> bool:
        """All candidates (at least two) agreed on one price."""
        return bool(
            self.consensus
            and self.consensus.has_consensus
            and len(self.consensus.groups) == 1
            and len(self.consensus.groups[0]) >= 2
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "price": self.price.to_dict() if self.price else None,
            "image_url": self.image_url,
            "stock_status": self.stock_status,
            "ai_status": self.ai_status,
            "needs_review": self.needs_review,
            "candidates": [c.to_dict() for c in self.candidates],
            "selected_method": self.selected_method,
            "used_renderer": self.used_renderer,
            "fetch_error": self.fetch_error,
            "outcome": self.outcome,
        }


@dataclass
class _Draft:
    name: Optional[str]
    image_url: Optional[str]
    stock_status: StockStatus
    candidates: List[PriceCandidate]
    price: Optional[ParsedPrice] = None
    ai_status: AIStatus = None
    needs_review: bool = False
    selected_method: Optional[ExtractionMethod] = None
    outcome: str = "none"
    consensus: Optional[ConsensusResult] = None
    price_from_oracle: bool = False
    extra: List[PriceCandidate] = field(default_factory=list)

    def select(self, candidate: PriceCandidate, outcome: str) -> None:
        self.price = candidate.parsed
        self.selected_method = candidate.method
        self.outcome = outcome


def _most_confident(candidates: List[PriceCandidate]) -> PriceCandidate:
    return max(candidates, key=lambda c: c.confidence)


class ReconciliationEngine:
    """
    Turns the candidates of one fetch into a single observation.

    Order: anchor match, preferred method, consensus, oracle arbitration or
    needs-review, oracle extraction when nothing was found, then verification
    of a lone price. Oracle failures are logged and treated as no oracle.
    """

    def __init__(self, oracle_timeout: Optional[float] = None, verification_enabled: Optional[bool] = None):
        self.oracle_timeout = oracle_timeout or settings.llm_timeout_seconds + 5
        self.verification_enabled = (
            settings.ai_verification_enabled if verification_enabled is None else verification_enabled
        )

    async def _consult(self, operation: str, call: Awaitable[T]) -> Optional[T]:
        try:
            return await asyncio.wait_for(call, timeout=self.oracle_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Oracle {operation} timed out")
        except Exception as e:
            logger.warning(f"Oracle {operation} failed: {type(e).__name__}: {e}")
        return None

    async def reconcile(
        self,
        extraction: PageExtraction,
        html: Optional[str],
        context: Optional[ItemContext] = None,
        oracle: Optional[ArbitrationOracle] = None,
        used_renderer: bool = False,
        fetch_error: Optional[str] = None,
    ) -> ReconciledObservation:
        context = context or ItemContext()
        candidates = list(extraction.candidates)
        if not html:
            oracle = None

        draft = _Draft(
            name=extraction.name,
            image_url=extraction.image_url,
            stock_status=extraction.stock_status,
            candidates=candidates,
        )

        match = match_anchor(context.anchor_price, candidates) if context.anchor_price else None
        if match is not None:
            await self._use_anchor(draft, match, context, html, oracle)
        else:
            await self._vote(draft, context, html, oracle)
            await self._verify(draft, context, html, oracle)

        record_reconciliation(draft.outcome)
        logger.debug(
            f"Reconciled {len(candidates)} candidates -> "
            f"{draft.price.price if draft.price else None} via {draft.outcome}"
            f"{' (needs review)' if draft.needs_review else ''}"
        )

        return ReconciledObservation(
            name=draft.name,
            price=draft.price,
            image_url=draft.image_url,
            stock_status=draft.stock_status,
            ai_status=draft.ai_status,
            needs_review=draft.needs_review,
            candidates=tuple(candidates + draft.extra),
            selected_method=draft.selected_method,
            used_renderer=used_renderer,
            fetch_error=fetch_error,
            outcome=draft.outcome,
            consensus=draft.consensus,
        )

    async def _use_anchor(self, draft: _Draft, match: AnchorMatch, context: ItemContext, html: str, oracle) -> None:
        chosen = match.candidate
        draft.select(chosen, "anchor" if match.within_tolerance else "anchor_closest")
        # A user-confirmed anchor is never second-guessed by the oracle's price checks
        draft.ai_status = "verified"

        if oracle is None or context.skip_ai_verification:
            return
        stock = await self._consult(
            "stock check", oracle.verify_variant_stock(html, chosen.price, chosen.currency)
        )
        if stock and stock.confidence > settings.oracle_stock_threshold:
            logger.info(f"Oracle stock status for the {chosen.price} variant: {stock.stock_status} ({stock.reason})")
            draft.stock_status = stock.stock_status

    async def _vote(self, draft: _Draft, context: ItemContext, html: str, oracle) -> None:
        candidates = draft.candidates

        if context.preferred_method and candidates:
            preferred = [c for c in candidates if c.method == context.preferred_method]
            if preferred:
                draft.select(_most_confident(preferred), "preferred")
                return

        if not candidates:
            await self._extract_with_oracle(draft, context, html, oracle)
            return

        consensus = find_price_consensus(candidates)
        draft.consensus = consensus
        if consensus.has_consensus and consensus.winner:
            draft.select(consensus.winner, "consensus")
            return

        if oracle is not None and len(candidates) >= 2:
            verdict = await self._consult("arbitration", oracle.arbitrate(html, candidates))
            if (
                verdict
                and verdict.selected_index is not None
                and 0 <= verdict.selected_index < len(candidates)
                and verdict.confidence > settings.oracle_arbitration_threshold
            ):
                chosen = candidates[verdict.selected_index]
                draft.select(chosen, "arbitrated")
                draft.ai_status = "verified"
                draft.extra.append(
                    PriceCandidate(
                        price=chosen.price,
                        currency=chosen.currency,
                        method=METHOD_AI,
                        context=f"AI arbitration: {verdict.reason}"[:200],
                        confidence=verdict.confidence or 0.8,
                    )
                )
                logger.info(f"Oracle picked {chosen.price} ({chosen.method}): {verdict.reason}")
                return

        # Nobody could decide; keep a provisional value for the user to confirm
        draft.select(_most_confident(candidates), "review")
        draft.needs_review = True

    async def _extract_with_oracle(self, draft: _Draft, context: ItemContext, html: str, oracle) -> None:
        if oracle is None or context.skip_ai_extraction:
            return
        found = await self._consult("extraction", oracle.extract(html))
        if not found or not found.price or found.confidence <= settings.oracle_extraction_threshold:
            return

        logger.info(f"Oracle extracted price {found.price.price} {found.price.currency}")
        draft.price = found.price
        draft.selected_method = METHOD_AI
        draft.outcome = "extracted"
        draft.price_from_oracle = True
        draft.extra.append(
            PriceCandidate(
                price=found.price.price,
                currency=found.price.currency,
                method=METHOD_AI,
                context="AI extraction (no other methods found price)",
                confidence=found.confidence,
            )
        )
        draft.name = draft.name or found.name
        draft.image_url = draft.image_url or found.image_url
        if draft.stock_status == UNKNOWN and found.stock_status != UNKNOWN:
            draft.stock_status = found.stock_status

    async def _verify(self, draft: _Draft, context: ItemContext, html: str, oracle) -> None:
        if (
            oracle is None
            or draft.price is None
            or draft.ai_status is not None
            or draft.price_from_oracle
            or len(draft.candidates) > 1
            or context.skip_ai_verification
            or not self.verification_enabled
        ):
            return

        result = await self._consult("verification", oracle.verify(html, draft.price.price, draft.price.currency))
        if result is None:
            return

        if result.confidence <= settings.oracle_verification_threshold:
            logger.info(f"Oracle verification too unsure to use (confidence {result.confidence})")
            return

        if result.is_correct:
            draft.ai_status = "verified"
        elif result.suggested_price and result.confidence > settings.oracle_correction_threshold:
            suggested = result.suggested_price
            existing = next((c for c in draft.candidates if prices_match(c.price, suggested.price)), None)
            if existing is not None:
                logger.info(f"Oracle corrected {draft.price.price} -> {suggested.price}: {result.reason}")
                draft.price = suggested
                draft.selected_method = existing.method
                draft.ai_status = "corrected"
                draft.outcome = "corrected"
            elif not draft.needs_review:
                logger.info(f"Oracle suggests unseen price {suggested.price}; flagging for review")
                draft.needs_review = True
                draft.extra.append(
                    PriceCandidate(
                        price=suggested.price,
                        currency=suggested.currency,
                        method=METHOD_AI,
                        context=f"AI suggestion: {result.reason}"[:200],
                        confidence=result.confidence,
                    )
                )

        if result.stock_status != UNKNOWN and (
            draft.stock_status == UNKNOWN or result.stock_status == OUT_OF_STOCK
        ):
            draft.stock_status = result.stock_status
