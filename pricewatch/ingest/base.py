"""Core value types and collaborator interfaces for page ingestion."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal, Optional

StockStatus = Literal["in_stock", "out_of_stock", "unknown"]
IN_STOCK: StockStatus = "in_stock"
OUT_OF_STOCK: StockStatus = "out_of_stock"
UNKNOWN: StockStatus = "unknown"

ExtractionMethod = Literal["json-ld", "site-specific", "generic-css", "ai"]
METHOD_JSON_LD: ExtractionMethod = "json-ld"
METHOD_SITE_SPECIFIC: ExtractionMethod = "site-specific"
METHOD_GENERIC_CSS: ExtractionMethod = "generic-css"
METHOD_AI: ExtractionMethod = "ai"

EXTRACTION_METHODS = (METHOD_JSON_LD, METHOD_SITE_SPECIFIC, METHOD_GENERIC_CSS, METHOD_AI)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Convert a number or numeric string to a 2-place Decimal."""
    return Decimal(str(value)).quantize(CENT)


@dataclass(frozen=True)
class ParsedPrice:
    """A normalized (amount, ISO currency) pair."""

    price: Decimal
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {"price": str(self.price), "currency": self.currency}


@dataclass(frozen=True)
class PriceCandidate:
    """One extractor's proposal for the product price, scoped to a single fetch."""

    price: Decimal
    currency: str
    method: ExtractionMethod
    context: str = ""
    confidence: float = 0.5

    def __post_init__(self):
        if self.price is None or self.price <= 0:
            raise ValueError(f"Candidate price must be positive, got {self.price!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Candidate confidence must be in [0, 1], got {self.confidence!r}")
        if self.method not in EXTRACTION_METHODS:
            raise ValueError(f"Unknown extraction method {self.method!r}")

    @property
    def parsed(self) -> ParsedPrice:
        return ParsedPrice(price=self.price, currency=self.currency)

    def to_dict(self) -> dict:
        return {
            "price": str(self.price),
            "currency": self.currency,
            "method": self.method,
            "context": self.context,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class PageExtraction:
    """Everything the extractors found in one document."""

    candidates: tuple[PriceCandidate, ...] = ()
    name: Optional[str] = None
    image_url: Optional[str] = None
    stock_status: StockStatus = UNKNOWN

    def to_dict(self) -> dict:
        return {
            "candidates": [c.to_dict() for c in self.candidates],
            "name": self.name,
            "image_url": self.image_url,
            "stock_status": self.stock_status,
        }


@dataclass
class FetchedPage:
    """Raw markup returned by a fetch tier."""

    url: str
    html: str
    status_code: int = 200
    tier: str = "static"
    headers: dict = field(default_factory=dict)


class FetchError(Exception):
    """A fetch tier failed to return usable markup."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {reason}")


class FetchBlockedError(FetchError):
    """The target answered with a block (403-class status or bot challenge)."""


class RenderError(FetchError):
    """The rendered-browser tier failed."""


class BaseRenderer(ABC):
    """Rendered-browser fetch collaborator."""

    @abstractmethod
    async def render(self, url: str, timeout: float) -> str:
        """
        Load a page in a real browser and return the final DOM markup.

        Implementations must wait out anti-bot interstitials before returning.

        Raises:
            RenderError: If the page could not be rendered
        """
        pass

    async def close(self) -> None:
        """Release browser resources."""
        return None
