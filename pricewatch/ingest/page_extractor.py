"""Run every extractor over one document and merge what they found."""

import logging
from typing import Callable, List, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser

from pricewatch.ingest.base import METHOD_SITE_SPECIFIC, UNKNOWN, PageExtraction, PriceCandidate
from pricewatch.ingest.dom import parse_html
from pricewatch.ingest.generic_extractor import (
    extract_generic_candidates,
    extract_generic_image,
    extract_generic_name,
    extract_meta_image,
    extract_meta_name,
)
from pricewatch.ingest.json_extractor import StructuredProduct, extract_structured_product
from pricewatch.ingest.retailers.strategies import SiteExtraction, get_strategy_for_url
from pricewatch.ingest.stock_status import StockStatusInferencer

logger = logging.getLogger(__name__)

SITE_SPECIFIC_CONFIDENCE = 0.85


def _first_non_empty(providers: List[Callable[[], Optional[str]]]) -> Optional[str]:
    for provider in providers:
        value = provider()
        if value:
            return value
    return None


class PageExtractor:
    """
    Extract price candidates, name, image and stock status from markup.

    Structured data, the retailer strategy and the generic selectors all run;
    candidates are merged in that order. A failing extractor is logged and
    contributes nothing.
    """

    def __init__(self, stock_inferencer: Optional[StockStatusInferencer] = None):
        self.stock_inferencer = stock_inferencer or StockStatusInferencer()

    def extract(self, html: str, url: str) -> PageExtraction:
        tree = parse_html(html)

        structured = self._structured(tree)
        site = self._site_specific(tree, url)
        generic = self._generic(tree)

        candidates: List[PriceCandidate] = list(structured.candidates)
        host = urlparse(url).hostname or url
        for parsed in site.prices:
            candidates.append(
                PriceCandidate(
                    price=parsed.price,
                    currency=parsed.currency,
                    method=METHOD_SITE_SPECIFIC,
                    context=f"Site-specific extractor for {host}",
                    confidence=SITE_SPECIFIC_CONFIDENCE,
                )
            )
        candidates.extend(generic)

        name = _first_non_empty([
            lambda: structured.name,
            lambda: site.name,
            lambda: extract_generic_name(tree),
            lambda: extract_meta_name(tree),
        ])
        image_url = _first_non_empty([
            lambda: structured.image_url,
            lambda: site.image_url,
            lambda: extract_generic_image(tree, url),
            lambda: extract_meta_image(tree, url),
        ])

        try:
            stock_status = self.stock_inferencer.infer(tree, structured.stock_status, site.stock_status)
        except Exception as e:
            logger.warning(f"Stock status inference failed for {url}: {e}")
            stock_status = UNKNOWN

        logger.debug(
            f"Extracted {len(candidates)} candidates from {host} "
            f"(structured={len(structured.candidates)}, site={len(site.prices)}, generic={len(generic)})"
        )

        return PageExtraction(
            candidates=tuple(candidates),
            name=name,
            image_url=image_url,
            stock_status=stock_status,
        )

    @staticmethod
    def _structured(tree: HTMLParser) -> StructuredProduct:
        try:
            return extract_structured_product(tree)
        except Exception as e:
            logger.warning(f"Structured data extraction failed: {e}")
            return StructuredProduct(candidates=[])

    @staticmethod
    def _site_specific(tree: HTMLParser, url: str) -> SiteExtraction:
        strategy = get_strategy_for_url(url)
        if strategy is None:
            return SiteExtraction()
        try:
            return strategy.extract(tree, url)
        except Exception as e:
            logger.warning(f"{strategy.store} extractor failed for {url}: {e}")
            return SiteExtraction()

    @staticmethod
    def _generic(tree: HTMLParser) -> List[PriceCandidate]:
        try:
            return extract_generic_candidates(tree)
        except Exception as e:
            logger.warning(f"Generic extraction failed: {e}")
            return []
