"""Magento 2 storefront strategy, matched by URL shape rather than host."""

from __future__ import annotations

import re
from decimal import InvalidOperation
from typing import Optional

from selectolax.parser import HTMLParser, Node

from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, ParsedPrice, StockStatus, to_money
from pricewatch.ingest.dom import attr, closest, node_text, safe_css, safe_css_first
from pricewatch.ingest.price_parser import DEFAULT_CURRENCY, detect_currency
from pricewatch.ingest.retailers.strategies.base import RetailerStrategy, SiteExtraction

PRICE_AMOUNT_SELECTORS = (
    ".price-box .special-price [data-price-amount]",
    ".price-box .price-final_price [data-price-amount]",
    '.price-box [data-price-type="finalPrice"] [data-price-amount]',
    ".price-box [data-price-amount]",
    "[data-price-amount]",
)


def price_amount_currency(node: Node) -> str:
    """Currency for a data-price-amount element, read from itself, its parent, then its price box."""
    box = closest(node, lambda parent: "price-box" in (parent.attributes.get("class") or "").split())
    for source in (node, node.parent, box):
        currency = detect_currency(node_text(source))
        if currency:
            return currency
    return DEFAULT_CURRENCY


def price_amount(node: Node) -> Optional[ParsedPrice]:
    """Numeric data-price-amount with its detected currency."""
    raw = attr(node, "data-price-amount")
    if not raw:
        return None
    try:
        amount = to_money(raw)
    except (InvalidOperation, ValueError):
        return None
    if amount <= 0:
        return None
    return ParsedPrice(price=amount, currency=price_amount_currency(node))


class MagentoStrategy(RetailerStrategy):
    store = "magento"

    name_selectors = (
        "h1.page-title span",
        "h1.product-name",
        ".product-info-main h1",
        '[data-ui-id="page-title-wrapper"]',
    )
    image_selectors = ('[data-gallery-role="gallery"] img', ".product.media img", ".fotorama__stage img")

    def matches(self, url: str) -> bool:
        path = (url or "").split("?", 1)[0].split("#", 1)[0]
        return bool(re.search(r"\.(html|htm)$", path, re.IGNORECASE) or re.search(r"/catalog/product/", path, re.IGNORECASE))

    def extract(self, tree: HTMLParser, url: str) -> SiteExtraction:
        result = SiteExtraction()
        for selector in PRICE_AMOUNT_SELECTORS:
            node = safe_css_first(tree, selector)
            if node is not None and result.add_price(price_amount(node)):
                break

        # Without a price this is most likely not a Magento page
        if not result.prices:
            return result

        result.name = self.extract_name(tree)
        result.image_url = self.extract_image(tree, url)
        result.stock_status = self.detect_stock(tree)
        return result

    def detect_stock(self, tree: HTMLParser) -> StockStatus:
        stock = safe_css_first(tree, ".product-info-stock-sku .stock")
        stock_text = node_text(stock).lower()
        stock_class = (attr(stock, "class") or "").lower()

        if "unavailable" in stock_class or "out of stock" in stock_text:
            return OUT_OF_STOCK
        if "available" in stock_class or "in stock" in stock_text:
            return IN_STOCK

        has_cart = bool(
            safe_css(
                tree,
                '#product-addtocart-button, button.tocart, button[title="Add to Cart"], button[title="Add to Basket"]',
            )
        )
        out_of_stock_message = bool(safe_css(tree, '.out-of-stock, .unavailable, [class*="outofstock"]'))
        if out_of_stock_message:
            return OUT_OF_STOCK
        if has_cart:
            return IN_STOCK
        return UNKNOWN
