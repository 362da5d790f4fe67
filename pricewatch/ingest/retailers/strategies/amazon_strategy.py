"""Amazon retailer strategy."""

from __future__ import annotations

import re
from decimal import Decimal

from selectolax.parser import HTMLParser, Node

from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, StockStatus
from pricewatch.ingest.dom import ancestors, class_and_id, node_text, safe_css, safe_css_first
from pricewatch.ingest.price_parser import extract_prices_from_text, parse_price
from pricewatch.ingest.retailers.strategies.base import RetailerStrategy, SiteExtraction

MIN_PRICE = Decimal("2")

BUY_BOX_CONTAINERS = (
    "#corePrice_feature_div",
    "#corePriceDisplay_desktop_feature_div",
    "#apex_desktop_newAccordionRow",
    "#apex_offerDisplay_desktop",
)

OTHER_SELLER_SELECTORS = (
    "#aod-offer-price .a-offscreen",
    "#olp-upd-new .a-color-price",
    "#olp-upd-used .a-color-price",
    "#usedBuySection .a-color-price",
    "#newBuySection .a-color-price",
    ".olp-from-new-price",
    ".olp-from-used-price",
    "#buyNew_noncbb .a-color-price",
)

FALLBACK_SELECTORS = (
    "#priceblock_dealprice",
    "#priceblock_saleprice",
    "#priceblock_ourprice",
    "#price_inside_buybox",
    "#newBuyBoxPrice",
    'span[data-a-color="price"] .a-offscreen',
)

_COUPON_MARKER = re.compile(r"coupon|savings|save\s*\$|clipcoupon|promoprice", re.IGNORECASE)
_SAVINGS_CLASS = re.compile(r"savings|coupon|save", re.IGNORECASE)


def _in_coupon_container(node: Node) -> bool:
    for parent in ancestors(node):
        if _COUPON_MARKER.search(class_and_id(parent)):
            return True
        text = node_text(parent).lower()
        if len(text) < 100 and ("save $" in text or "coupon" in text or "clip" in text):
            return True
    return False


class AmazonStrategy(RetailerStrategy):
    store = "amazon"
    host_pattern = re.compile(r"amazon\.(com|co\.uk|ca|de|fr|es|it|co\.jp|in|com\.au)", re.IGNORECASE)

    name_selectors = ("#productTitle", "h1.a-size-large")
    image_selectors = ("#landingImage", "#imgBlkFront", "img[data-a-dynamic-image]")

    def extract(self, tree: HTMLParser, url: str) -> SiteExtraction:
        result = SiteExtraction()
        main_found = False

        # Buy box
        for container_selector in BUY_BOX_CONTAINERS:
            container = safe_css_first(tree, container_selector)
            if container is None:
                continue
            for node in safe_css(container, ".a-price .a-offscreen"):
                if _in_coupon_container(node):
                    continue
                if node.parent is not None and _SAVINGS_CLASS.search(node.parent.attributes.get("class") or ""):
                    continue
                parsed = parse_price(node_text(node))
                if parsed and parsed.price >= MIN_PRICE:
                    main_found = True
                    result.add_price(parsed, floor=MIN_PRICE)

        # Other sellers, new and used offers
        for selector in OTHER_SELLER_SELECTORS:
            for node in safe_css(tree, selector):
                result.add_price(parse_price(node_text(node)), floor=MIN_PRICE)

        new_used_text = " ".join(
            node_text(node) for node in safe_css(tree, '#usedAndNewBuySection, #newUsedBuyBox, [id*="olp"]')
        )
        for parsed in extract_prices_from_text(new_used_text):
            result.add_price(parsed, floor=MIN_PRICE)

        # Subscribe & Save
        sns = safe_css_first(tree, "#subscribeAndSavePrice, #sns-price, .sns-price-block .a-offscreen")
        if sns is not None:
            result.add_price(parse_price(node_text(sns)), floor=MIN_PRICE)

        for selector in FALLBACK_SELECTORS:
            node = safe_css_first(tree, selector)
            if node is None or _in_coupon_container(node):
                continue
            parsed = parse_price(node_text(node))
            if parsed and parsed.price >= MIN_PRICE:
                main_found = True
                result.add_price(parsed, floor=MIN_PRICE)

        # Whole + fraction markup
        if not main_found:
            whole = node_text(safe_css_first(tree, "#corePrice_feature_div .a-price-whole"))
            whole = whole.replace(",", "").rstrip(".")
            fraction = node_text(safe_css_first(tree, "#corePrice_feature_div .a-price-fraction"))
            if whole:
                parsed = parse_price(f"${whole}.{fraction}" if fraction else f"${whole}")
                result.add_price(parsed, floor=MIN_PRICE)

        result.name = self.extract_name(tree)
        result.image_url = self.extract_image(tree, url)
        result.stock_status = self.detect_stock(tree)
        return result

    def detect_stock(self, tree: HTMLParser) -> StockStatus:
        availability = node_text(safe_css_first(tree, "#availability")).lower()
        out_of_stock_div = safe_css_first(tree, "#outOfStock") is not None
        has_cart = safe_css_first(tree, "#add-to-cart-button") is not None
        has_buy_now = safe_css_first(tree, "#buy-now-button") is not None

        if (
            out_of_stock_div
            or "currently unavailable" in availability
            or "out of stock" in availability
            or "not available" in availability
            or (not has_cart and not has_buy_now)
        ):
            body = node_text(tree.body).lower()
            if (
                "currently unavailable" in body
                or "we don't know when or if this item will be back in stock" in body
                or out_of_stock_div
                or "out of stock" in availability
            ):
                return OUT_OF_STOCK
            return UNKNOWN

        if "in stock" in availability or "available" in availability or has_cart:
            return IN_STOCK
        return UNKNOWN
