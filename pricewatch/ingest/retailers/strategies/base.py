"""Retailer-specific strategy base classes."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from selectolax.parser import HTMLParser

from pricewatch.ingest.base import UNKNOWN, ParsedPrice, StockStatus
from pricewatch.ingest.dom import absolute_url, attr, first_attr, first_text, node_text, safe_css
from pricewatch.ingest.price_parser import is_financing_text, parse_price

logger = logging.getLogger(__name__)


@dataclass
class SiteExtraction:
    """What a retailer strategy found in its own markup."""

    prices: List[ParsedPrice] = field(default_factory=list)
    name: Optional[str] = None
    image_url: Optional[str] = None
    stock_status: StockStatus = UNKNOWN

    def add_price(self, parsed: Optional[ParsedPrice], floor=None) -> bool:
        """Append a distinct price; returns True if it was added."""
        if parsed is None:
            return False
        if floor is not None and parsed.price < floor:
            return False
        if any(p.price == parsed.price for p in self.prices):
            return False
        self.prices.append(parsed)
        return True


class RetailerStrategy:
    """
    Base retailer strategy implementation.

    Subclasses set `host_pattern` and selector lists; the default `extract`
    takes the first selector that parses to a price (its `content` attribute
    first, then text), skipping financing rows.
    """

    store: str = "generic"
    host_pattern: Optional[re.Pattern] = None
    requires_browser: bool = False

    price_selectors: Sequence[str] = ()
    name_selectors: Sequence[str] = ()
    image_selectors: Sequence[str] = ()

    def matches(self, url: str) -> bool:
        """Whether this strategy handles the URL."""
        if self.host_pattern is None:
            return False
        return bool(self.host_pattern.search(url or ""))

    def extract(self, tree: HTMLParser, url: str) -> SiteExtraction:
        """Extract prices, name, image and stock status from a parsed page."""
        result = SiteExtraction()
        result.add_price(self.first_price(tree, self.price_selectors))
        result.name = self.extract_name(tree)
        result.image_url = self.extract_image(tree, url)
        result.stock_status = self.detect_stock(tree)
        return result

    def first_price(self, tree: HTMLParser, selectors: Sequence[str]) -> Optional[ParsedPrice]:
        """Price from the first selector whose element parses, checking every match."""
        for selector in selectors:
            for node in safe_css(tree, selector):
                text = attr(node, "content") or node_text(node)
                if not text or is_financing_text(text):
                    continue
                parsed = parse_price(text)
                if parsed:
                    return parsed
        return None

    def extract_name(self, tree: HTMLParser) -> Optional[str]:
        return first_text(tree, self.name_selectors)

    def extract_image(self, tree: HTMLParser, url: str) -> Optional[str]:
        return absolute_url(first_attr(tree, self.image_selectors, ("src", "content")), url)

    def detect_stock(self, tree: HTMLParser) -> StockStatus:
        """Retailer-specific stock status; unknown unless overridden."""
        return UNKNOWN
