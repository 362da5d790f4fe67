"""Target retailer strategy."""

from __future__ import annotations

import re

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy


class TargetStrategy(RetailerStrategy):
    store = "target"
    host_pattern = re.compile(r"target\.com", re.IGNORECASE)
    requires_browser = True

    price_selectors = (
        '[data-test="product-price"]',
        '[data-test="current-price"]',
        ".styles__CurrentPriceFontSize-sc-1qc6t3e-1",
    )
    name_selectors = ('[data-test="product-title"]', 'h1[class*="Heading"]')
    image_selectors = ('[data-test="image-gallery-item-0"] img',)
