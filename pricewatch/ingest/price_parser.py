"""Parse free-form price text into a normalized amount and currency."""

import logging
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional

from pricewatch.ingest.base import CENT, ParsedPrice

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"

CURRENCY_MAP = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "FR.": "CHF",
    "CHF": "CHF",
    "CAD": "CAD",
    "AUD": "AUD",
    "USD": "USD",
    "EUR": "EUR",
    "GBP": "GBP",
    "JPY": "JPY",
    "INR": "INR",
}

_NUMBER = r"\d[\d,.]*"

# Tried in order; the first one producing a positive amount wins.
PRICE_PATTERNS = [
    # $29.99, €29,99, £1,299.00
    re.compile(rf"(?P<currency>[$€£¥₹])\s*(?P<price>{_NUMBER})"),
    # 29,99 €, 29.99 $
    re.compile(rf"(?P<price>{_NUMBER})\s*(?P<currency>[$€£¥₹])"),
    # CHF 29.99, Fr. 29.99
    re.compile(rf"(?P<currency>CHF|Fr\.)\s*(?P<price>{_NUMBER})", re.IGNORECASE),
    # 29.99 USD, 1.234,56 CHF
    re.compile(rf"(?P<price>{_NUMBER})\s*(?P<currency>USD|EUR|GBP|CAD|AUD|JPY|INR|CHF)\b", re.IGNORECASE),
    # USD 29.99
    re.compile(rf"\b(?P<currency>USD|EUR|GBP|CAD|AUD|JPY|INR)\s*(?P<price>{_NUMBER})", re.IGNORECASE),
    # Plain number
    re.compile(r"(?P<price>\d{1,3}(?:[,.\s]?\d{3})*(?:[.,]\d{1,2})?)"),
]

FINANCING_PHRASES = (
    "/mo",
    "per month",
    "monthly payment",
    "a month",
    "payments starting",
    "payment of",
    "payments of",
)
FINANCING_PATTERNS = (
    re.compile(r"\d+\s*payments?\b"),
    re.compile(r"\d+\s*mo\b"),
)

_ALL_PRICES = re.compile(
    r"[$€£¥₹]\s*\d[\d,.]*"
    r"|\d[\d,.]*\s*[$€£¥₹]"
    r"|(?:CHF|Fr\.)\s*\d[\d,.]*"
    r"|\d[\d,.]*\s*(?:USD|EUR|GBP|CAD|AUD|CHF)\b",
    re.IGNORECASE,
)

_CURRENCY_CODE = re.compile(r"\b(CHF|EUR|GBP|USD|CAD|AUD|JPY|INR)\b", re.IGNORECASE)
_CURRENCY_SYMBOL = re.compile(r"([$€£¥₹])")


def is_financing_text(text: str) -> bool:
    """True if the text reads like an installment/financing offer."""
    lower = text.lower()
    if any(phrase in lower for phrase in FINANCING_PHRASES):
        return True
    return any(pattern.search(lower) for pattern in FINANCING_PATTERNS)


def normalize_amount(raw: str) -> Optional[Decimal]:
    """
    Turn a number with US or European separators into a 2-place Decimal.

    "1,234.56" -> 1234.56, "1.234,56" -> 1234.56, "29,99" -> 29.99,
    "1.234" -> 1234 (dot followed by three digits is a thousands separator).
    """
    if not raw:
        return None

    normalized = re.sub(r"\s", "", raw).strip(".,")
    if not normalized:
        return None

    last_comma = normalized.rfind(",")
    last_dot = normalized.rfind(".")

    if last_comma > last_dot:
        # Comma is the last separator
        decimals = normalized[last_comma + 1:]
        if len(decimals) in (1, 2) or (len(decimals) != 3 and last_dot != -1):
            # European decimal comma: 1.234,56 / 29,99 / 29,9
            normalized = normalized.replace(".", "").replace(",", ".")
        else:
            # Thousands comma: 1,234
            normalized = normalized.replace(",", "")
    elif last_dot > last_comma:
        decimals = normalized[last_dot + 1:]
        if len(decimals) == 3 and (last_comma != -1 or normalized.count(".") > 1):
            # 1.234.567 or 1,234.567 -> treat dots as grouping
            normalized = normalized.replace(",", "").replace(".", "")
        elif len(decimals) == 3 and normalized.count(".") == 1 and last_comma == -1:
            # 1.234 is ambiguous; European sites use it for thousands
            normalized = normalized.replace(".", "")
        else:
            normalized = normalized.replace(",", "")
            if normalized.count(".") > 1:
                head, _, tail = normalized.rpartition(".")
                normalized = head.replace(".", "") + "." + tail

    try:
        return Decimal(normalized).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def parse_price(text: Optional[str]) -> Optional[ParsedPrice]:
    """
    Parse a price from free text.

    Args:
        text: Raw text such as "$1,234.56", "29,99 €" or "CHF 12.50"

    Returns:
        ParsedPrice, or None for empty text, financing offers and non-positive amounts
    """
    if not text:
        return None

    clean = re.sub(r"\s+", " ", text.strip())
    if not clean or is_financing_text(clean):
        return None

    for pattern in PRICE_PATTERNS:
        match = pattern.search(clean)
        if not match:
            continue
        amount = normalize_amount(match.group("price"))
        if amount is None or amount <= 0:
            continue
        symbol = (match.groupdict().get("currency") or "$").upper()
        return ParsedPrice(price=amount, currency=CURRENCY_MAP.get(symbol, DEFAULT_CURRENCY))

    return None


def detect_currency(text: Optional[str]) -> Optional[str]:
    """Find a currency in surrounding text, preferring explicit codes over symbols."""
    if not text:
        return None
    code = _CURRENCY_CODE.search(text)
    if code:
        return code.group(1).upper()
    symbol = _CURRENCY_SYMBOL.search(text)
    if symbol:
        return CURRENCY_MAP.get(symbol.group(1))
    return None


def extract_prices_from_text(text: str) -> List[ParsedPrice]:
    """Return every distinct currency-marked price found in a blob of text."""
    prices: List[ParsedPrice] = []
    seen = set()
    for match in _ALL_PRICES.finditer(text or ""):
        parsed = parse_price(match.group(0))
        if parsed and parsed.price not in seen:
            seen.add(parsed.price)
            prices.append(parsed)
    return prices
