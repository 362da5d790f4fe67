"""Retailer-agnostic price, name and image extraction from common markup."""

import logging
import re
from typing import List, Optional

from selectolax.parser import HTMLParser, Node

from pricewatch.config import settings
from pricewatch.ingest.base import METHOD_GENERIC_CSS, ParsedPrice, PriceCandidate
from pricewatch.ingest.dom import absolute_url, ancestors, attr, first_attr, first_text, node_text, safe_css
from pricewatch.ingest.price_parser import parse_price
from pricewatch.ingest.retailers.strategies.magento_strategy import price_amount

logger = logging.getLogger(__name__)

GENERIC_CSS_CONFIDENCE = 0.6

GENERIC_PRICE_SELECTORS = [
    '[itemprop="price"]',
    "[data-price-amount]",
    "[data-price]",
    "[data-product-price]",
    ".price-wrapper [data-price-amount]",
    ".price-box .price",
    ".special-price .price",
    ".price",
    ".product-price",
    ".current-price",
    ".sale-price",
    ".final-price",
    ".offer-price",
    "#price",
    '[class*="price"]',
    '[class*="Price"]',
]

GENERIC_NAME_SELECTORS = [
    '[itemprop="name"]',
    'h1[class*="product"]',
    'h1[class*="title"]',
    ".product-title",
    ".product-name",
    "h1",
]

GENERIC_IMAGE_SELECTORS = [
    '[itemprop="image"]',
    '[property="og:image"]',
    ".product-image img",
    ".main-image img",
    "[data-zoom-image]",
    'img[class*="product"]',
]

# Reference prices shown next to the selling price, matched as whole class words
STRUCK_PRICE = re.compile(r"(?<![a-z])(original|was|old|regular|compare|strikethrough|line-through)(?![a-z])")
CAMEL_CASE = re.compile(r"([a-z])([A-Z])")
REFERENCE_PRICE_DEPTH = 4


def _class_words(node: Node) -> str:
    return CAMEL_CASE.sub(r"\1-\2", node.attributes.get("class") or "").lower()


def _is_reference_price(node: Node) -> bool:
    for candidate in (node, *ancestors(node, limit=REFERENCE_PRICE_DEPTH)):
        if STRUCK_PRICE.search(_class_words(candidate)):
            return True
    return False


def _parse_node(node: Node, selector: str) -> tuple[Optional[ParsedPrice], str]:
    parsed = price_amount(node)
    if parsed is not None:
        return parsed, "data-price-amount attribute"

    text = node_text(node)
    raw = attr(node, "content") or attr(node, "data-price") or text
    parsed = parse_price(raw)
    if parsed is not None:
        return parsed, text[:50] or selector
    return None, selector


def extract_generic_candidates(tree: HTMLParser, max_candidates: Optional[int] = None) -> List[PriceCandidate]:
    """
    Collect price candidates from a fixed list of common price selectors.

    Reference prices (was/original/compare-at) are skipped. Each distinct
    amount is proposed once; collection stops after the selector that brings
    the total to `max_candidates`.
    """
    limit = max_candidates or settings.generic_max_candidates
    candidates: List[PriceCandidate] = []
    seen = set()

    for selector in GENERIC_PRICE_SELECTORS:
        taken = 0
        for node in safe_css(tree, selector):
            if taken >= limit:
                break
            if _is_reference_price(node):
                continue
            parsed, context = _parse_node(node, selector)
            if parsed is None or parsed.price in seen:
                continue
            seen.add(parsed.price)
            taken += 1
            candidates.append(
                PriceCandidate(
                    price=parsed.price,
                    currency=parsed.currency,
                    method=METHOD_GENERIC_CSS,
                    context=context,
                    confidence=GENERIC_CSS_CONFIDENCE,
                )
            )

        if len(candidates) >= limit:
            break

    return candidates


def extract_generic_name(tree: HTMLParser) -> Optional[str]:
    return first_text(tree, GENERIC_NAME_SELECTORS)


def extract_generic_image(tree: HTMLParser, url: str) -> Optional[str]:
    src = first_attr(tree, GENERIC_IMAGE_SELECTORS, ("content", "src", "data-zoom-image"))
    return absolute_url(src, url)


def extract_meta_name(tree: HTMLParser) -> Optional[str]:
    """og:title, falling back to the document title."""
    for node in safe_css(tree, 'meta[property="og:title"]'):
        value = attr(node, "content")
        if value:
            return value
    title = first_text(tree, ["title"])
    return title or None


def extract_meta_image(tree: HTMLParser, url: str) -> Optional[str]:
    for selector in ('meta[property="og:image"]', 'meta[name="twitter:image"]'):
        for node in safe_css(tree, selector):
            value = attr(node, "content")
            if value:
                return absolute_url(value, url)
    return None
