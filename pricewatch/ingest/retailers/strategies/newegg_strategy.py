"""Newegg retailer strategy."""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Optional

from selectolax.parser import HTMLParser, Node

from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, ParsedPrice, StockStatus
from pricewatch.ingest.dom import ancestors, attr, class_and_id, node_text, safe_css, safe_css_first
from pricewatch.ingest.json_extractor import extract_json_ld, find_product, offer_price
from pricewatch.ingest.price_parser import parse_price
from pricewatch.ingest.retailers.strategies.base import RetailerStrategy, SiteExtraction

# Buy-box amounts at or below this are savings or combo figures
MIN_BUY_BOX_PRICE = Decimal("50")

BUY_BOX_SELECTORS = (
    ".product-buy-box .price-current",
    ".price-main-product .price-current",
    ".product-price .price-current",
    "#app .price-current",
)

_SAVINGS_CONTAINER = re.compile(r"combo|save|saving|deal|bundle|discount", re.IGNORECASE)


def _in_savings_container(node: Node) -> bool:
    for parent in ancestors(node):
        if _SAVINGS_CONTAINER.search(class_and_id(parent)):
            return True
    parent_text = node_text(node.parent).lower() if node.parent is not None else ""
    return "you save" in parent_text or "save $" in parent_text


class NeweggStrategy(RetailerStrategy):
    store = "newegg"
    host_pattern = re.compile(r"newegg\.com", re.IGNORECASE)

    name_selectors = ("h1.product-title", ".product-title", '[itemprop="name"]')
    image_selectors = ("img.product-view-img-original", ".product-view-img-original", '[itemprop="image"]')

    def extract(self, tree: HTMLParser, url: str) -> SiteExtraction:
        result = SiteExtraction()
        price = self._structured_price(tree) or self._buy_box_price(tree)
        if price is None:
            price = parse_price(attr(safe_css_first(tree, '[itemprop="price"]'), "content"))
        result.add_price(price)
        result.name = self.extract_name(tree)
        result.image_url = self.extract_image(tree, url)
        result.stock_status = self.detect_stock(tree)
        return result

    @staticmethod
    def _structured_price(tree: HTMLParser) -> Optional[ParsedPrice]:
        for data in extract_json_ld(tree):
            product = find_product(data)
            offers = product.get("offers") if product else None
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            if isinstance(offers, dict):
                priced = offer_price({"price": offers.get("price"), "priceCurrency": offers.get("priceCurrency")})
                if priced:
                    return ParsedPrice(price=priced[0], currency=priced[1])
        return None

    @staticmethod
    def _buy_box_price(tree: HTMLParser) -> Optional[ParsedPrice]:
        for selector in BUY_BOX_SELECTORS:
            for node in safe_css(tree, selector):
                if _in_savings_container(node):
                    continue
                dollars = node_text(safe_css_first(node, "strong")) or node_text(node)
                cents = node_text(safe_css_first(node, "sup"))
                dollars = re.sub(r"[^0-9,]", "", dollars)
                cents = re.sub(r"[^0-9]", "", cents)
                if not dollars:
                    continue
                parsed = parse_price(f"${dollars}.{cents}" if cents else f"${dollars}")
                if parsed and parsed.price > MIN_BUY_BOX_PRICE:
                    return parsed
        return None

    def detect_stock(self, tree: HTMLParser) -> StockStatus:
        buy_button = node_text(safe_css_first(tree, ".btn-primary.btn-wide")).lower()
        inventory = node_text(safe_css_first(tree, ".product-inventory")).lower()
        flag = node_text(safe_css_first(tree, ".product-flag-text")).lower()

        if (
            "out of stock" in inventory
            or "sold out" in inventory
            or "out of stock" in flag
            or safe_css_first(tree, ".product-buy-box .btn-message-error") is not None
        ):
            return OUT_OF_STOCK
        if (
            "add to cart" in buy_button
            or "buy now" in buy_button
            or safe_css_first(tree, ".product-buy-box .btn-primary") is not None
        ):
            return IN_STOCK
        return UNKNOWN
