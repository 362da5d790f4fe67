"""Best Buy retailer strategy."""

from __future__ import annotations

import re
from typing import Optional, Sequence

from selectolax.parser import HTMLParser

from pricewatch.ingest.base import ParsedPrice
from pricewatch.ingest.dom import node_text, safe_css
from pricewatch.ingest.price_parser import parse_price
from pricewatch.ingest.retailers.strategies.base import RetailerStrategy

PAYMENT_PLAN_MARKERS = ("/mo", "per month", "monthly", "financing", "payment")


class BestBuyStrategy(RetailerStrategy):
    store = "bestbuy"
    host_pattern = re.compile(r"bestbuy\.com", re.IGNORECASE)
    requires_browser = True

    price_selectors = (
        '[data-testid="customer-price"] span',
        ".priceView-customer-price span",
        ".priceView-hero-price span",
        '[class*="customerPrice"]',
        '[class*="priceView"] span[aria-hidden="true"]',
        ".pricing-price__regular-price",
        '[data-testid="product-price"]',
        ".price-box span",
    )
    name_selectors = ("h1.heading-5", ".sku-title h1", '[data-testid="product-title"]', "h1")
    image_selectors = ("img.primary-image", '[data-testid="image-gallery-image"]', 'img[class*="product-image"]')

    def first_price(self, tree: HTMLParser, selectors: Sequence[str]) -> Optional[ParsedPrice]:
        for selector in selectors:
            for node in safe_css(tree, selector):
                text = node_text(node)
                if not text:
                    continue
                if any(marker in text.lower() for marker in PAYMENT_PLAN_MARKERS):
                    continue
                parsed = parse_price(text)
                if parsed:
                    return parsed
        return None
