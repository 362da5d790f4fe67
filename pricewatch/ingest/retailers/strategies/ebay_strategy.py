"""eBay retailer strategy."""

from __future__ import annotations

import re

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy


class EbayStrategy(RetailerStrategy):
    store = "ebay"
    host_pattern = re.compile(r"ebay\.(com|co\.uk|de|fr|ca|com\.au)", re.IGNORECASE)

    price_selectors = (
        '[data-testid="x-price-primary"] .ux-textspans',
        ".x-price-primary .ux-textspans",
        "#prcIsum",
        "#mm-saleDscPrc",
        ".vi-price .notranslate",
    )
    name_selectors = ("h1.x-item-title__mainTitle span", 'h1[itemprop="name"]')
    image_selectors = ('[data-testid="ux-image-carousel"] img', "#icImg")
