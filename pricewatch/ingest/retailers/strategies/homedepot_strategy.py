"""Home Depot retailer strategy."""

from __future__ import annotations

import re

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy


class HomeDepotStrategy(RetailerStrategy):
    store = "homedepot"
    host_pattern = re.compile(r"homedepot\.com", re.IGNORECASE)

    price_selectors = ('[data-testid="price-format"] span', ".price-format__main-price span", "#ajaxPrice")
    name_selectors = ("h1.product-title__title", 'h1[class*="product-details"]')
    image_selectors = ('img[data-testid="media-gallery-image"]',)
