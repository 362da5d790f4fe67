"""Costco retailer strategy."""

from __future__ import annotations

import re

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy


class CostcoStrategy(RetailerStrategy):
    store = "costco"
    host_pattern = re.compile(r"costco\.com", re.IGNORECASE)
    requires_browser = True

    price_selectors = ('[automation-id="productPriceOutput"]', ".price")
    name_selectors = ('h1[itemprop="name"]', "h1.product-title")
    image_selectors = ("img.product-image",)
