"""LLM-backed arbitration oracle for prices the extractors cannot settle."""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricewatch.ai.llm_service import LLMService, OracleError
from pricewatch.ai.prompts import (
    ARBITRATION_SCHEMA,
    EXTRACTION_SCHEMA,
    STOCK_CHECK_SCHEMA,
    SYSTEM_PROMPT,
    VERIFICATION_SCHEMA,
    ArbitrationPrompt,
    ExtractionPrompt,
    StockCheckPrompt,
    VerificationPrompt,
    prepare_html_for_prompt,
)
from pricewatch.config import settings
from pricewatch.ingest.base import IN_STOCK, OUT_OF_STOCK, UNKNOWN, ParsedPrice, PriceCandidate, StockStatus, to_money
from pricewatch.ingest.price_parser import normalize_amount
from pricewatch.metrics import record_oracle_call

logger = logging.getLogger(__name__)

LLMProvider = Literal["openai", "anthropic", "ollama"]


# =============================================================================
# Results handed to the reconciliation engine
# =============================================================================


@dataclass(frozen=True)
class OracleExtraction:
    price: Optional[ParsedPrice]
    confidence: float
    name: Optional[str] = None
    image_url: Optional[str] = None
    stock_status: StockStatus = UNKNOWN


@dataclass(frozen=True)
class OracleVerification:
    is_correct: bool
    confidence: float
    suggested_price: Optional[ParsedPrice] = None
    reason: str = ""
    stock_status: StockStatus = UNKNOWN


@dataclass(frozen=True)
class OracleArbitration:
    selected_index: Optional[int]
    confidence: float
    reason: str = ""


@dataclass(frozen=True)
class OracleStockCheck:
    stock_status: StockStatus
    confidence: float
    reason: str = ""


class ArbitrationOracle(Protocol):
    """External judge consulted when extraction is ambiguous or empty."""

    async def extract(self, html: str) -> OracleExtraction: ...

    async def verify(self, html: str, price: Decimal, currency: str) -> OracleVerification: ...

    async def arbitrate(self, html: str, candidates: Sequence[PriceCandidate]) -> OracleArbitration: ...

    async def verify_variant_stock(self, html: str, price: Decimal, currency: str) -> OracleStockCheck: ...


# =============================================================================
# Response validation
# =============================================================================


def _normalize_stock(value: Any) -> StockStatus:
    if not isinstance(value, str):
        return UNKNOWN
    status = re.sub(r"[^a-z_]", "", value.lower())
    if status in ("in_stock", "instock"):
        return IN_STOCK
    if status in ("out_of_stock", "outofstock"):
        return OUT_OF_STOCK
    return UNKNOWN


def _to_amount(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        amount = normalize_amount(re.sub(r"[^0-9.,]", "", value))
        return amount if amount and amount > 0 else None
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError):
        return None
    return amount if amount > 0 else None


def _clamp(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(value, 0.0), 1.0)


def _currency(value: Any, default: str) -> str:
    if isinstance(value, str) and re.fullmatch(r"[A-Za-z]{3}", value.strip()):
        return value.strip().upper()
    return default


class _OracleResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    confidence: float = 0.5
    reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return 0.5 if v is None else _clamp(v)

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, v):
        return "" if v is None else str(v)


class ExtractionResponse(_OracleResponse):
    name: Optional[str] = None
    price: Optional[Decimal] = None
    currency: str = "USD"
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    stock_status: StockStatus = Field(default=UNKNOWN, alias="stockStatus")

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v):
        return _to_amount(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency_code(cls, v):
        return _currency(v, settings.default_currency)

    @field_validator("stock_status", mode="before")
    @classmethod
    def _stock(cls, v):
        return _normalize_stock(v)

    def to_result(self) -> OracleExtraction:
        price = ParsedPrice(price=self.price, currency=self.currency) if self.price else None
        return OracleExtraction(
            price=price,
            confidence=self.confidence,
            name=self.name or None,
            image_url=self.image_url or None,
            stock_status=self.stock_status,
        )


class VerificationResponse(_OracleResponse):
    is_correct: bool = Field(default=True, alias="isCorrect")
    suggested_price: Optional[Decimal] = Field(default=None, alias="suggestedPrice")
    suggested_currency: Optional[str] = Field(default=None, alias="suggestedCurrency")
    stock_status: StockStatus = Field(default=UNKNOWN, alias="stockStatus")

    @field_validator("is_correct", mode="before")
    @classmethod
    def _is_correct(cls, v):
        return True if v is None else v

    @field_validator("suggested_price", mode="before")
    @classmethod
    def _price(cls, v):
        return _to_amount(v)

    @field_validator("stock_status", mode="before")
    @classmethod
    def _stock(cls, v):
        return _normalize_stock(v)

    def to_result(self, currency: str) -> OracleVerification:
        suggested = None
        if not self.is_correct and self.suggested_price:
            suggested = ParsedPrice(price=self.suggested_price, currency=_currency(self.suggested_currency, currency))
        return OracleVerification(
            is_correct=self.is_correct,
            confidence=self.confidence,
            suggested_price=suggested,
            reason=self.reason,
            stock_status=self.stock_status,
        )


class ArbitrationResponse(_OracleResponse):
    selected_index: Optional[int] = Field(default=None, alias="selectedIndex")

    @field_validator("selected_index", mode="before")
    @classmethod
    def _index(cls, v):
        if v is None or isinstance(v, bool):
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    def to_result(self) -> OracleArbitration:
        return OracleArbitration(selected_index=self.selected_index, confidence=self.confidence, reason=self.reason)


class StockCheckResponse(_OracleResponse):
    stock_status: StockStatus = Field(default=UNKNOWN, alias="stockStatus")

    @field_validator("stock_status", mode="before")
    @classmethod
    def _stock(cls, v):
        return _normalize_stock(v)

    def to_result(self) -> OracleStockCheck:
        return OracleStockCheck(stock_status=self.stock_status, confidence=self.confidence, reason=self.reason)


# =============================================================================
# Oracle
# =============================================================================


@dataclass(frozen=True)
class OracleConfig:
    """Which LLM provider answers oracle questions, and how to reach it."""

    provider: LLMProvider = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    base_url: Optional[str] = None

    @classmethod
    def for_provider(cls, provider: str, model: Optional[str] = None) -> "OracleConfig":
        """
        Config for a provider name, filled in from settings.

        Anthropic and Ollama are both reached through their OpenAI-compatible
        endpoints.
        """
        provider = provider.strip().lower()
        if provider == "ollama":
            return cls(
                provider="ollama",
                model=model or settings.ollama_model,
                base_url=settings.ollama_base_url.rstrip("/") + "/v1",
            )
        if provider == "anthropic":
            return cls(
                provider="anthropic",
                model=model or settings.anthropic_model,
                api_key=settings.anthropic_api_key,
                base_url=settings.anthropic_base_url,
            )
        if provider != "openai":
            raise ValueError(f"Unknown LLM provider {provider!r}")
        return cls(provider="openai", model=model or settings.llm_model, api_key=settings.openai_api_key)

    @classmethod
    def from_settings(cls) -> "OracleConfig":
        return cls.for_provider(settings.llm_provider)

    @classmethod
    def for_owner(cls, owner_id: Optional[int]) -> Optional["OracleConfig"]:
        """
        The owner's own provider choice from LLM_OWNER_PROVIDERS, if any.

        Entries look like "anthropic" or "ollama:llama3.1"; owners without an
        entry use the deployment-wide oracle (None).
        """
        if owner_id is None:
            return None
        choice = settings.llm_owner_providers.get(owner_id)
        if not choice:
            return None
        provider, _, model = choice.partition(":")
        return cls.for_provider(provider, model or None)

    @property
    def usable(self) -> bool:
        if self.provider == "ollama":
            return bool(self.base_url)
        return bool(self.api_key)


class LLMOracle:
    """ArbitrationOracle backed by a chat completion model."""

    def __init__(self, llm: LLMService, max_prompt_chars: Optional[int] = None):
        self.llm = llm
        self.max_prompt_chars = max_prompt_chars or settings.ai_prompt_max_chars

    async def _ask(self, operation: str, prompt: str, schema: dict) -> dict:
        try:
            data = await self.llm.call_llm_structured(prompt, schema, system_prompt=SYSTEM_PROMPT)
        except OracleError:
            record_oracle_call(operation, "error")
            raise
        record_oracle_call(operation, "ok")
        return data

    def _content(self, html: str) -> str:
        return prepare_html_for_prompt(html, self.max_prompt_chars)

    async def extract(self, html: str) -> OracleExtraction:
        prompt = ExtractionPrompt(page_content=self._content(html)).to_prompt()
        data = await self._ask("extract", prompt, EXTRACTION_SCHEMA)
        return ExtractionResponse.model_validate(data).to_result()

    async def verify(self, html: str, price: Decimal, currency: str) -> OracleVerification:
        prompt = VerificationPrompt(page_content=self._content(html), price=price, currency=currency).to_prompt()
        data = await self._ask("verify", prompt, VERIFICATION_SCHEMA)
        return VerificationResponse.model_validate(data).to_result(currency)

    async def arbitrate(self, html: str, candidates: Sequence[PriceCandidate]) -> OracleArbitration:
        prompt = ArbitrationPrompt(
            page_content=self._content(html),
            candidates=[c.to_dict() for c in candidates],
        ).to_prompt()
        data = await self._ask("arbitrate", prompt, ARBITRATION_SCHEMA)
        return ArbitrationResponse.model_validate(data).to_result()

    async def verify_variant_stock(self, html: str, price: Decimal, currency: str) -> OracleStockCheck:
        prompt = StockCheckPrompt(page_content=self._content(html), price=price, currency=currency).to_prompt()
        data = await self._ask("stock", prompt, STOCK_CHECK_SCHEMA)
        return StockCheckResponse.model_validate(data).to_result()

    async def close(self):
        await self.llm.close()


def build_oracle(config: Optional[OracleConfig] = None) -> Optional[LLMOracle]:
    """
    Build the oracle for a provider configuration.

    Returns None when AI is disabled or the provider is not usable, which the
    engine treats as "no oracle".
    """
    if not settings.ai_enabled:
        return None
    config = config or OracleConfig.from_settings()
    if not config.usable:
        logger.warning(f"LLM provider {config.provider} is not configured; running without an oracle")
        return None
    llm = LLMService(model=config.model, api_key=config.api_key, base_url=config.base_url)
    logger.info(f"Using {config.provider} oracle ({config.model})")
    return LLMOracle(llm)
