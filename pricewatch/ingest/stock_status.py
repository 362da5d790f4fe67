"""Infer whether a product page offers the item for purchase."""

import logging
from typing import Callable, List, Optional

from selectolax.parser import HTMLParser, Node

from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, StockStatus
from pricewatch.ingest.dom import node_text, safe_css
from pricewatch.ingest.json_extractor import microdata_availability

logger = logging.getLogger(__name__)

MAIN_REGION_SELECTOR = 'main, [role="main"], #main, .main-content, .product-detail, .pdp-main'
BODY_TEXT_LIMIT = 5000
PHRASE_CONTEXT_CHARS = 200

PREORDER_PHRASES = (
    "coming soon",
    "available soon",
    "arriving soon",
    "releases on",
    "release date",
    "expected release",
    "launches on",
    "launching soon",
    "pre-order",
    "preorder",
    "pre order",
    "notify me when available",
    "notify when available",
    "sign up to be notified",
    "sign up for availability",
    "email me when available",
    "get notified when",
    "join the waitlist",
    "join waitlist",
    "not yet released",
    "not yet available",
    "available starting",
    "available from",
    "ships in",
    "expected to ship",
    "estimated arrival",
)

IN_STOCK_PHRASES = (
    "in stock",
    "add to cart",
    "add to basket",
    "buy now",
    "available now",
    "ships today",
    "ships immediately",
    "ready to ship",
)

SHIPS_NOW_PHRASES = ("ships today", "ships immediately", "ready to ship")

PURCHASE_CONTEXT = ("$", "price", "buy", "cart", "order", "purchase")

STRONG_OUT_OF_STOCK_PHRASES = (
    "this item is out of stock",
    "this product is out of stock",
    "currently out of stock",
    "this item is currently unavailable",
    "this product is currently unavailable",
    "temporarily out of stock",
    "this item is sold out",
)

PREORDER_CLASS_FRAGMENTS = ("pre-order", "preorder", "coming-soon", "comingsoon")
PREORDER_TESTID_FRAGMENTS = ("pre-order", "coming-soon")
PREORDER_BUTTON_TEXT = ("pre-order", "preorder", "notify me")
OUT_OF_STOCK_CLASS_FRAGMENTS = ("out-of-stock", "sold-out")
NOT_A_CART_BUTTON = ("pre-order", "preorder", "notify", "waitlist")


def _lower_attr(node: Node, name: str) -> str:
    return (node.attributes.get(name) or "").lower()


def _is_disabled(node: Node) -> bool:
    attrs = node.attributes
    return "disabled" in attrs or (attrs.get("aria-disabled") or "").lower() == "true"


def product_regions(tree: HTMLParser) -> List[Node]:
    """Main product region nodes, else the body."""
    regions = safe_css(tree, MAIN_REGION_SELECTOR)
    if regions:
        return regions
    return [tree.body] if tree.body is not None else []


def main_region_text(tree: HTMLParser) -> str:
    """Lowercased text of the main product region, else the start of the body."""
    regions = safe_css(tree, MAIN_REGION_SELECTOR)
    text = " ".join(node_text(node) for node in regions).lower()
    if text:
        return text
    return node_text(tree.body).lower()[:BODY_TEXT_LIMIT]


def _in_regions(regions: List[Node], selector: str) -> List[Node]:
    return [node for region in regions for node in safe_css(region, selector)]


def _phrase_in_purchase_context(text: str, phrase: str) -> bool:
    index = text.find(phrase)
    if index < 0:
        return False
    start = max(0, index - PHRASE_CONTEXT_CHARS)
    context = text[start:index + PHRASE_CONTEXT_CHARS]
    return any(marker in context for marker in PURCHASE_CONTEXT)


def _has_preorder_badge(regions: List[Node]) -> bool:
    for node in _in_regions(regions, "[class]"):
        css_class = _lower_attr(node, "class")
        if any(fragment in css_class for fragment in PREORDER_CLASS_FRAGMENTS):
            return True
    for node in _in_regions(regions, "[data-testid]"):
        testid = _lower_attr(node, "data-testid")
        if any(fragment in testid for fragment in PREORDER_TESTID_FRAGMENTS):
            return True
    for button in _in_regions(regions, "button"):
        text = node_text(button).lower()
        if any(marker in text for marker in PREORDER_BUTTON_TEXT):
            return True
    return False


def _add_to_cart_controls(tree: HTMLParser) -> List[Node]:
    controls = []
    for node in safe_css(tree, "button"):
        if (
            "add-to-cart" in _lower_attr(node, "class")
            or "add-to-cart" in _lower_attr(node, "id")
            or "add to cart" in node_text(node).lower()
        ):
            controls.append(node)
    for node in safe_css(tree, "[data-testid]"):
        if "add-to-cart" in _lower_attr(node, "data-testid"):
            controls.append(node)
    for node in safe_css(tree, "input[value]"):
        if "add to cart" in _lower_attr(node, "value"):
            controls.append(node)
    return controls


def _has_real_add_to_cart(tree: HTMLParser) -> bool:
    for node in _add_to_cart_controls(tree):
        if _is_disabled(node):
            continue
        text = node_text(node).lower()
        css_class = _lower_attr(node, "class")
        if any(marker in text for marker in NOT_A_CART_BUTTON):
            continue
        if "pre-order" in css_class or "preorder" in css_class:
            continue
        return True
    return False


def _has_out_of_stock_badge(regions: List[Node]) -> bool:
    for node in _in_regions(regions, "[class]"):
        css_class = _lower_attr(node, "class")
        if any(fragment in css_class for fragment in OUT_OF_STOCK_CLASS_FRAGMENTS):
            return True
    for node in _in_regions(regions, "[data-testid]"):
        if "out-of-stock" in _lower_attr(node, "data-testid"):
            return True
    return False


def infer_generic_stock_status(tree: HTMLParser) -> StockStatus:
    """
    Heuristic stock status from page text and controls.

    An enabled add-to-cart control or ships-today wording wins over everything
    else. Clear in-stock wording keeps pre-order phrases from counting, and a
    pre-order phrase only counts with purchase wording near it. Badges and
    buttons are looked up in the main product region only.
    """
    if _has_real_add_to_cart(tree):
        return IN_STOCK

    text = main_region_text(tree)
    if any(phrase in text for phrase in SHIPS_NOW_PHRASES):
        return IN_STOCK

    if not any(phrase in text for phrase in IN_STOCK_PHRASES):
        for phrase in PREORDER_PHRASES:
            if _phrase_in_purchase_context(text, phrase):
                return OUT_OF_STOCK

    regions = product_regions(tree)
    if _has_preorder_badge(regions):
        return OUT_OF_STOCK

    if _has_out_of_stock_badge(regions):
        return OUT_OF_STOCK

    if any(phrase in text for phrase in STRONG_OUT_OF_STOCK_PHRASES):
        return OUT_OF_STOCK

    return UNKNOWN


class StockStatusInferencer:
    """Ordered stock-status providers; the first non-unknown answer wins."""

    def infer(
        self,
        tree: HTMLParser,
        structured_status: StockStatus = UNKNOWN,
        site_status: StockStatus = UNKNOWN,
    ) -> StockStatus:
        providers: List[Callable[[], Optional[StockStatus]]] = [
            lambda: structured_status,
            lambda: microdata_availability(tree),
            lambda: site_status,
            lambda: infer_generic_stock_status(tree),
        ]
        for provider in providers:
            status = provider()
            if status and status != UNKNOWN:
                return status
        return UNKNOWN
