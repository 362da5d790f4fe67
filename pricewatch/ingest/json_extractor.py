"""Extract product data from embedded JSON in HTML pages."""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from selectolax.parser import HTMLParser

from pricewatch.ingest.base import (
    IN_STOCK,
    METHOD_JSON_LD,
    OUT_OF_STOCK,
    UNKNOWN,
    PriceCandidate,
    StockStatus,
    to_money,
)
from pricewatch.ingest.dom import attr, safe_css_first
from pricewatch.ingest.price_parser import DEFAULT_CURRENCY, parse_price

logger = logging.getLogger(__name__)

STRUCTURED_DATA_CONFIDENCE = 0.9
CURRENCY_CODE = re.compile(r"[A-Z]{3}")

IN_STOCK_AVAILABILITY = ("instock", "in_stock", "limitedavailability", "onlineonly", "instoreonly")
OUT_OF_STOCK_AVAILABILITY = (
    "outofstock",
    "out_of_stock",
    "soldout",
    "sold_out",
    "discontinued",
    "preorder",
    "presale",
    "backorder",
)


@dataclass
class StructuredProduct:
    """Product facts asserted by the retailer's schema.org markup."""

    candidates: List[PriceCandidate]
    name: Optional[str] = None
    image_url: Optional[str] = None
    stock_status: StockStatus = UNKNOWN


def extract_next_data(html_or_tree) -> Optional[Dict[str, Any]]:
    """
    Extract __NEXT_DATA__ script tag content.

    Common in Next.js applications.
    """
    try:
        tree = html_or_tree if isinstance(html_or_tree, HTMLParser) else HTMLParser(html_or_tree)
        script = tree.css_first("script#__NEXT_DATA__")
        if script:
            return json.loads(script.text())
    except (json.JSONDecodeError, AttributeError, ValueError) as e:
        logger.debug(f"Failed to extract __NEXT_DATA__: {e}")
    return None


def extract_json_ld(tree: HTMLParser) -> List[Any]:
    """
    Extract JSON-LD structured data from script tags.

    Malformed blocks are skipped; the others are still returned.
    """
    results = []
    for script in tree.css('script[type="application/ld+json"]'):
        content = script.text()
        if not content or not content.strip():
            continue
        try:
            results.append(json.loads(content))
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
    return results


def _is_product(obj: Dict[str, Any]) -> bool:
    obj_type = obj.get("@type", "")
    if isinstance(obj_type, list):
        return "Product" in obj_type
    return obj_type == "Product"


def find_product(data: Any) -> Optional[Dict[str, Any]]:
    """Depth-first search for the first schema.org Product in a JSON-LD value."""
    if isinstance(data, list):
        for item in data:
            found = find_product(item)
            if found:
                return found
        return None

    if not isinstance(data, dict):
        return None

    if _is_product(data):
        return data

    graph = data.get("@graph")
    if isinstance(graph, list):
        return find_product(graph)

    return None


def _first_offer(product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    offers = product.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if isinstance(offers, dict):
        # AggregateOffer may nest concrete offers
        nested = offers.get("offers")
        if not any(key in offers for key in ("price", "lowPrice", "priceSpecification")):
            if isinstance(nested, list) and nested and isinstance(nested[0], dict):
                return nested[0]
            if isinstance(nested, dict):
                return nested
        return offers
    return None


def _price_specification(offer: Dict[str, Any]) -> Dict[str, Any]:
    spec = offer.get("priceSpecification")
    if isinstance(spec, list):
        spec = spec[0] if spec else None
    return spec if isinstance(spec, dict) else {}


def _to_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        try:
            return to_money(value)
        except InvalidOperation:
            return None
    text = str(value).strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return to_money(text)
    parsed = parse_price(text)
    return parsed.price if parsed else None


def _currency_code(value: Any) -> str:
    code = str(value or "").strip().upper()
    return code if CURRENCY_CODE.fullmatch(code) else DEFAULT_CURRENCY

def offer_price(offer: Dict[str, Any]) -> Optional[tuple]:
    """
    Price and currency of an offer.

    Order: lowPrice, then price, then priceSpecification.price.
    """
    spec = _price_specification(offer)
    for value in (offer.get("lowPrice"), offer.get("price"), spec.get("price")):
        amount = _to_amount(value)
        if amount is not None and amount > 0:
            currency = offer.get("priceCurrency") or spec.get("priceCurrency")
            return amount, _currency_code(currency)
    return None


def availability_to_status(availability: Optional[str]) -> StockStatus:
    """Map a schema.org availability value (URL or bare token) to a stock status."""
    if not availability:
        return UNKNOWN
    token = str(availability).lower().rsplit("/", 1)[-1]
    if any(marker in token for marker in OUT_OF_STOCK_AVAILABILITY):
        return OUT_OF_STOCK
    if any(marker in token for marker in IN_STOCK_AVAILABILITY):
        return IN_STOCK
    return UNKNOWN


def _image_from(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_structured_product(tree: HTMLParser) -> StructuredProduct:
    """
    Collect price candidates and product facts from JSON-LD blocks.

    Each block contributes the first offer of its first Product. Name, image
    and availability come from the first Product that carries them.
    """
    result = StructuredProduct(candidates=[])

    for data in extract_json_ld(tree):
        product = find_product(data)
        if not product:
            continue

        name = product.get("name")
        if not result.name and isinstance(name, str) and name.strip():
            result.name = name.strip()
        if not result.image_url:
            result.image_url = _image_from(product.get("image"))

        offer = _first_offer(product)
        if not offer:
            continue

        if result.stock_status == UNKNOWN:
            result.stock_status = availability_to_status(offer.get("availability"))

        priced = offer_price(offer)
        if priced:
            amount, currency = priced
            result.candidates.append(
                PriceCandidate(
                    price=amount,
                    currency=currency,
                    method=METHOD_JSON_LD,
                    context=f"Structured data: {product.get('name') or 'Product'}"[:120],
                    confidence=STRUCTURED_DATA_CONFIDENCE,
                )
            )

    return result


def microdata_availability(tree: HTMLParser) -> StockStatus:
    """Stock status from an [itemprop=availability] microdata element."""
    node = safe_css_first(tree, '[itemprop="availability"]')
    if node is None:
        return UNKNOWN
    value = attr(node, "content") or attr(node, "href") or ""
    return availability_to_status(value)
