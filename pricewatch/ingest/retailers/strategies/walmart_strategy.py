"""Walmart retailer strategy."""

from __future__ import annotations

import logging
import re
from decimal import InvalidOperation
from typing import Any, Dict, Optional

from selectolax.parser import HTMLParser

from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, ParsedPrice, StockStatus, to_money
from pricewatch.ingest.dom import absolute_url, node_text, safe_css_first
from pricewatch.ingest.json_extractor import extract_next_data
from pricewatch.ingest.retailers.strategies.base import RetailerStrategy, SiteExtraction

logger = logging.getLogger(__name__)


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class WalmartStrategy(RetailerStrategy):
    store = "walmart"
    host_pattern = re.compile(r"walmart\.com", re.IGNORECASE)
    requires_browser = True

    price_selectors = (
        '[itemprop="price"]',
        '[data-testid="price-wrap"] span[class*="price"]',
        ".price-characteristic",
        '[data-automation="product-price"]',
        'span[data-automation-id="product-price"]',
    )
    name_selectors = ('h1[itemprop="name"]', "h1#main-title", '[data-testid="product-title"]')
    image_selectors = (
        '[data-testid="hero-image-container"] img',
        'img[data-testid="hero-image"]',
        'meta[property="og:image"]',
    )

    def extract(self, tree: HTMLParser, url: str) -> SiteExtraction:
        result = SiteExtraction()

        product = self._next_data_product(tree)
        if product:
            result.add_price(self._product_price(product))
            name = product.get("name")
            result.name = name.strip() if isinstance(name, str) and name.strip() else None
            image = _dig(product, "imageInfo", "thumbnailUrl")
            if not image:
                images = _dig(product, "imageInfo", "allImages")
                if isinstance(images, list) and images and isinstance(images[0], dict):
                    image = images[0].get("url")
            result.image_url = absolute_url(image, url) if isinstance(image, str) else None
            result.stock_status = self._availability_status(
                product.get("availabilityStatus") or _dig(product, "fulfillment", "availabilityStatus")
            )

        if not result.prices:
            result.add_price(self.first_price(tree, self.price_selectors))
        if not result.name:
            result.name = self.extract_name(tree)
        if not result.image_url:
            result.image_url = self.extract_image(tree, url)
        if result.stock_status == UNKNOWN:
            result.stock_status = self.detect_stock(tree)
        return result

    @staticmethod
    def _next_data_product(tree: HTMLParser) -> Optional[Dict[str, Any]]:
        data = extract_next_data(tree)
        if not data:
            return None
        product = _dig(data, "props", "pageProps", "initialData", "data", "product") or _dig(
            data, "props", "pageProps", "initialProps", "data", "product"
        )
        return product if isinstance(product, dict) else None

    @staticmethod
    def _product_price(product: Dict[str, Any]) -> Optional[ParsedPrice]:
        info = _dig(product, "priceInfo", "currentPrice") or _dig(product, "priceInfo", "priceRange", "minPrice")
        if not isinstance(info, dict) or info.get("price") in (None, ""):
            return None
        try:
            amount = to_money(info["price"])
        except (InvalidOperation, ValueError):
            logger.debug(f"Unparseable Walmart price {info.get('price')!r}")
            return None
        if amount <= 0:
            return None
        return ParsedPrice(price=amount, currency=(info.get("currencyCode") or "USD").upper())

    @staticmethod
    def _availability_status(value: Optional[str]) -> StockStatus:
        if not isinstance(value, str):
            return UNKNOWN
        value = value.lower()
        if value in ("in_stock", "available"):
            return IN_STOCK
        if value in ("out_of_stock", "not_available"):
            return OUT_OF_STOCK
        return UNKNOWN

    def detect_stock(self, tree: HTMLParser) -> StockStatus:
        if safe_css_first(tree, '[data-testid="add-to-cart-button"]') or safe_css_first(
            tree, 'button[aria-label*="Add to cart"]'
        ):
            return IN_STOCK
        if safe_css_first(tree, '[data-testid="out-of-stock-message"]'):
            return OUT_OF_STOCK
        body = node_text(tree.body).lower()
        if "this item is currently out of stock" in body or "this product is currently unavailable" in body:
            return OUT_OF_STOCK
        return UNKNOWN
