"""Tests for the LLM-backed arbitration oracle."""

from decimal import Decimal

import pytest

from pricewatch.ai.llm_service import OracleError
from pricewatch.ai.oracle import (
    ArbitrationResponse,
    ExtractionResponse,
    LLMOracle,
    OracleConfig,
    VerificationResponse,
    build_oracle,
)
from pricewatch.ai.prompts import prepare_html_for_prompt
from pricewatch.config import settings
from pricewatch.ingest.base import PriceCandidate


class FakeLLM:
    def __init__(self, reply=None, error=None):
        self.reply = reply or {}
        self.error = error
        self.prompts = []
        self.closed = False

    async def call_llm_structured(self, prompt, response_schema, system_prompt=""):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def close(self):
        self.closed = True


def test_extraction_response_normalizes_fields():
    result = ExtractionResponse.model_validate(
        {
            "name": "Desk Lamp",
            "price": "$1,299.50",
            "currency": "eur",
            "imageUrl": "https://cdn.example.com/lamp.jpg",
            "stockStatus": "In Stock",
            "confidence": 1.7,
        }
    ).to_result()

    assert result.price.price == Decimal("1299.50")
    assert result.price.currency == "EUR"
    assert result.image_url == "https://cdn.example.com/lamp.jpg"
    assert result.stock_status == "in_stock"
    assert result.confidence == 1.0


def test_extraction_response_without_price():
    result = ExtractionResponse.model_validate({"price": None, "confidence": -2, "currency": "dollars"}).to_result()
    assert result.price is None
    assert result.confidence == 0.0


@pytest.mark.parametrize(
    "raw,expected",
    [("29,99 €", Decimal("29.99")), ("1.299,00", Decimal("1299.00")), ("$1,299.50", Decimal("1299.50")), ("n/a", None)],
)
def test_string_amounts_use_locale_separators(raw, expected):
    result = ExtractionResponse.model_validate({"price": raw, "currency": "EUR"}).to_result()
    assert (result.price.price if result.price else None) == expected

    disputed = VerificationResponse.model_validate({"isCorrect": False, "suggestedPrice": raw}).to_result("EUR")
    assert (disputed.suggested_price.price if disputed.suggested_price else None) == expected


def test_verification_suggestion_only_when_incorrect():
    agreed = VerificationResponse.model_validate({"isCorrect": True, "suggestedPrice": 5}).to_result("USD")
    assert agreed.suggested_price is None

    disputed = VerificationResponse.model_validate(
        {"isCorrect": False, "suggestedPrice": 17.5, "confidence": 0.9, "reason": "bundle"}
    ).to_result("GBP")
    assert disputed.suggested_price.price == Decimal("17.50")
    assert disputed.suggested_price.currency == "GBP"
    assert disputed.reason == "bundle"


@pytest.mark.parametrize("raw,expected", [(2, 2), ("1", 1), (None, None), ("first", None), (True, None)])
def test_arbitration_index_coercion(raw, expected):
    assert ArbitrationResponse.model_validate({"selectedIndex": raw}).selected_index == expected


@pytest.mark.asyncio
async def test_oracle_arbitrate_lists_candidates():
    llm = FakeLLM({"selectedIndex": 1, "confidence": 0.8, "reason": "main buy box"})
    oracle = LLMOracle(llm)
    candidates = [
        PriceCandidate(price=Decimal("189.99"), currency="USD", method="generic-css", context="Save $189.99"),
        PriceCandidate(price=Decimal("499.00"), currency="USD", method="json-ld"),
    ]

    verdict = await oracle.arbitrate("<main>Price $499.00</main>", candidates)

    assert verdict.selected_index == 1
    assert verdict.confidence == 0.8
    assert "0. 189.99 USD" in llm.prompts[0]
    assert "1. 499.00 USD" in llm.prompts[0]


@pytest.mark.asyncio
async def test_oracle_verify_and_stock():
    llm = FakeLLM({"isCorrect": True, "confidence": 0.9, "stockStatus": "OutOfStock"})
    oracle = LLMOracle(llm)

    verification = await oracle.verify("<main></main>", Decimal("20.00"), "USD")
    stock = await oracle.verify_variant_stock("<main></main>", Decimal("20.00"), "USD")

    assert verification.is_correct
    assert verification.stock_status == "out_of_stock"
    assert stock.stock_status == "out_of_stock"
    assert "20.00 USD" in llm.prompts[1]


@pytest.mark.asyncio
async def test_oracle_errors_propagate():
    oracle = LLMOracle(FakeLLM(error=OracleError("Invalid JSON response from LLM")))
    with pytest.raises(OracleError):
        await oracle.extract("<main></main>")


@pytest.mark.asyncio
async def test_oracle_close():
    llm = FakeLLM()
    await LLMOracle(llm).close()
    assert llm.closed


def test_build_oracle_disabled(monkeypatch):
    monkeypatch.setattr(settings, "ai_enabled", False)
    assert build_oracle() is None


def test_build_oracle_unconfigured(monkeypatch):
    monkeypatch.setattr(settings, "ai_enabled", True)
    assert build_oracle(OracleConfig(provider="openai", api_key="")) is None


def test_build_oracle_ollama(monkeypatch):
    monkeypatch.setattr(settings, "ai_enabled", True)
    monkeypatch.setattr(settings, "llm_provider", "ollama")
    config = OracleConfig.from_settings()

    assert config.provider == "ollama"
    assert config.base_url.endswith("/v1")
    assert isinstance(build_oracle(config), LLMOracle)


def test_prepare_html_keeps_product_json_ld_and_strips_scripts():
    filler = "<p>" + "specs " * 200 + "</p>"
    html = (
        '<html><head><script type="application/ld+json">{"@type": "Product", "offers": {"price": "9.99"}}</script>'
        "<script>trackPageview()</script></head>"
        f'<body><nav>menu</nav><div class="product-detail"><h1>Mug</h1>{filler}</div></body></html>'
    )

    content = prepare_html_for_prompt(html, max_chars=100000)

    assert content.startswith("JSON-LD Structured Data:")
    assert '"price": "9.99"' in content
    assert "trackPageview" not in content
    assert "menu" not in content


def test_prepare_html_truncates():
    content = prepare_html_for_prompt("<body><p>" + "x" * 500 + "</p></body>", max_chars=100)
    assert content.endswith("... [truncated]")
    assert len(content) == 100 + len("\n... [truncated]")


def test_oracle_config_per_provider(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "sk-ant-test")
    anthropic = OracleConfig.for_provider("Anthropic")
    assert anthropic.provider == "anthropic"
    assert anthropic.base_url == settings.anthropic_base_url
    assert anthropic.usable

    assert OracleConfig.for_provider("openai", "gpt-4o").model == "gpt-4o"
    with pytest.raises(ValueError):
        OracleConfig.for_provider("gemini")


def test_oracle_config_for_owner(monkeypatch):
    monkeypatch.setattr(settings, "llm_owner_providers", {7: "ollama:qwen2.5"})
    config = OracleConfig.for_owner(7)
    assert (config.provider, config.model) == ("ollama", "qwen2.5")
    assert OracleConfig.for_owner(8) is None
    assert OracleConfig.for_owner(None) is None
