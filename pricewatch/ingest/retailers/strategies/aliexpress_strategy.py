"""AliExpress retailer strategy."""

from __future__ import annotations

import re

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy


class AliExpressStrategy(RetailerStrategy):
    store = "aliexpress"
    host_pattern = re.compile(r"aliexpress\.com", re.IGNORECASE)

    price_selectors = (
        ".product-price-value",
        '[class*="uniformBannerBoxPrice"]',
        ".snow-price_SnowPrice__mainS__1occeh",
    )
    name_selectors = ('h1[data-pl="product-title"]', "h1.product-title-text")
    image_selectors = ("img.magnifier-image",)
