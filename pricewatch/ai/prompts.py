"""Centralized prompt templates for LLM interactions."""

import logging
from decimal import Decimal
from typing import List

from pydantic import BaseModel
from selectolax.parser import HTMLParser

from pricewatch.config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a careful e-commerce analyst. You read product page markup and answer "
    "questions about the main product's current selling price and availability."
)

# Regions tried in order when condensing a page for a prompt
PRODUCT_REGION_SELECTORS = [
    '[itemtype*="Product"]',
    '[class*="product"]',
    '[id*="product"]',
    '[class*="pdp"]',
    "main",
    '[role="main"]',
]
MIN_REGION_CHARS = 500

STRIPPED_TAGS = ["script", "style", "noscript", "iframe", "svg", "path", "meta", "link"]


def prepare_html_for_prompt(html: str, max_chars: int = None) -> str:
    """
    Condense page markup for a prompt.

    Product-related JSON-LD is kept ahead of the markup, scripts and styles are
    stripped, the product region is preferred over the whole body, and the
    result is truncated to `max_chars`.
    """
    max_chars = max_chars or settings.ai_prompt_max_chars
    tree = HTMLParser(html or "")

    json_ld: List[str] = []
    for script in tree.css('script[type="application/ld+json"]'):
        content = script.text() or ""
        if "price" in content or "Product" in content or "Offer" in content:
            json_ld.append(content.strip())

    tree.strip_tags(STRIPPED_TAGS)

    content = tree.body.html if tree.body is not None else (html or "")
    for selector in PRODUCT_REGION_SELECTORS:
        try:
            section = tree.css_first(selector)
        except Exception:
            continue
        if section is not None and section.html and len(section.html) > MIN_REGION_CHARS:
            content = section.html
            break

    if json_ld:
        content = "JSON-LD Structured Data:\n" + "\n".join(json_ld) + "\n\nHTML Content:\n" + (content or "")

    if len(content) > max_chars:
        content = content[:max_chars] + "\n... [truncated]"

    logger.debug(f"Prepared {len(content)} characters of page content for the LLM")
    return content


class ExtractionPrompt(BaseModel):
    """Prompt schema for price extraction from a page."""

    page_content: str

    def to_prompt(self) -> str:
        return f"""Analyze the following content from a product page and extract the product information.

Return a JSON object with these fields:
- name: The product name/title (string or null)
- price: The current selling price as a number (not the original/crossed-out price)
- currency: The currency code (USD, EUR, GBP, etc.)
- imageUrl: The main product image URL (string or null)
- stockStatus: One of "in_stock", "out_of_stock", or "unknown"
- confidence: Your confidence in the extraction from 0 to 1

Important:
- Extract the CURRENT/SALE price, not the original price if there's a discount
- If you can't find a price with confidence, set price to null

Page Content:
{self.page_content}"""


class VerificationPrompt(BaseModel):
    """Prompt schema for checking a scraped price and availability."""

    page_content: str
    price: Decimal
    currency: str

    def to_prompt(self) -> str:
        return f"""I scraped a product page and found a price. Verify whether this price is correct AND whether the product is currently available for purchase.

Scraped Price: {self.price} {self.currency}

Common price issues to watch for:
- The scraped price might be a "savings" amount (e.g., "Save $189.99")
- The scraped price might be from a bundle/combo deal section
- The scraped price might be a shipping cost or add-on price
- The scraped price might be the original/crossed-out price instead of the sale price

Availability:
- "Coming Soon", "Pre-order", "Notify me", future release dates, "Out of stock", "Sold out": NOT in stock
- The product can be added to the cart and purchased today: IN stock

Return a JSON object with:
- isCorrect: true if the scraped price is correct
- confidence: number from 0 to 1
- suggestedPrice: the correct price as a number (or null if the scraped price is correct)
- suggestedCurrency: currency code if suggesting a different price
- stockStatus: "in_stock", "out_of_stock", or "unknown"
- reason: brief explanation covering both price and availability

Page Content:
{self.page_content}"""


class ArbitrationPrompt(BaseModel):
    """Prompt schema for choosing between disagreeing price candidates."""

    page_content: str
    candidates: List[dict]

    def to_prompt(self) -> str:
        lines = [
            f"  {i}. {c['price']} {c['currency']} (found by {c['method']}: {c.get('context') or 'no context'})"
            for i, c in enumerate(self.candidates)
        ]
        listing = "\n".join(lines)
        return f"""Several extractors disagree about the price of the main product on this page.

Candidates:
{listing}

Pick the candidate that is the current selling price of the main product (not a savings amount,
financing payment, accessory, bundle or crossed-out price).

Return a JSON object with:
- selectedIndex: the number of the chosen candidate, or null if none of them is the price
- confidence: number from 0 to 1
- reason: brief explanation

Page Content:
{self.page_content}"""


class StockCheckPrompt(BaseModel):
    """Prompt schema for checking availability of the variant sold at a given price."""

    page_content: str
    price: Decimal
    currency: str

    def to_prompt(self) -> str:
        return f"""This product page may list several variants or sellers. Consider only the offer priced at {self.price} {self.currency}.

Can that offer be purchased RIGHT NOW? Pre-order, coming soon, notify-me, sold out and
out-of-stock offers are NOT in stock.

Return a JSON object with:
- stockStatus: "in_stock", "out_of_stock", or "unknown"
- confidence: number from 0 to 1
- reason: brief explanation

Page Content:
{self.page_content}"""


# Response schemas for structured output
EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": ["string", "null"]},
        "price": {"type": ["number", "null"]},
        "currency": {"type": "string"},
        "imageUrl": {"type": ["string", "null"]},
        "stockStatus": {"type": "string", "enum": ["in_stock", "out_of_stock", "unknown"]},
        "confidence": {"type": "number"},
    },
    "required": ["price", "confidence"],
}

VERIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "isCorrect": {"type": "boolean"},
        "confidence": {"type": "number"},
        "suggestedPrice": {"type": ["number", "null"]},
        "suggestedCurrency": {"type": ["string", "null"]},
        "stockStatus": {"type": "string", "enum": ["in_stock", "out_of_stock", "unknown"]},
        "reason": {"type": "string"},
    },
    "required": ["isCorrect", "confidence"],
}

ARBITRATION_SCHEMA = {
    "type": "object",
    "properties": {
        "selectedIndex": {"type": ["integer", "null"]},
        "confidence": {"type": "number"},
        "reason": {"type": "string"},
    },
    "required": ["selectedIndex", "confidence"],
}

STOCK_CHECK_SCHEMA = {
    "type": "object",
    "properties": {
        "stockStatus": {"type": "string", "enum": ["in_stock", "out_of_stock", "unknown"]},
        "confidence": {"type": "number"},
        "reason": {"type": "string"},
    },
    "required": ["stockStatus", "confidence"],
}
