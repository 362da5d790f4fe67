"""Tests for LLM service."""

import os
from types import SimpleNamespace

import pytest

from pricewatch.ai.llm_service import LLMService, OracleError, parse_json_response


class FakeCompletions:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeClient:
    def __init__(self, completions):
        self.chat = SimpleNamespace(completions=completions)
        self.closed = False

    async def close(self):
        self.closed = True


def service_with(completions) -> LLMService:
    return LLMService(model="test-model", client=FakeClient(completions), cache_enabled=False)


def test_parse_plain_json():
    assert parse_json_response('{"price": 12.5}') == {"price": 12.5}


def test_parse_fenced_json():
    reply = 'Here you go:\n```json\n{"isCorrect": false, "suggestedPrice": "19.99"}\n```'
    assert parse_json_response(reply) == {"isCorrect": False, "suggestedPrice": "19.99"}


def test_parse_json_inside_prose():
    assert parse_json_response('The answer is {"selectedIndex": 1} as requested.') == {"selectedIndex": 1}


@pytest.mark.parametrize("reply", ["", "no json here", "[1, 2, 3]", "{broken"])
def test_parse_rejects_unusable_replies(reply):
    with pytest.raises(OracleError):
        parse_json_response(reply)


@pytest.mark.asyncio
async def test_call_llm_structured_sends_schema():
    completions = FakeCompletions(reply='{"brand": "Samsung"}')
    service = service_with(completions)

    result = await service.call_llm_structured(
        prompt="Extract the brand from: 'Samsung 55 inch TV'",
        response_schema={"type": "object", "properties": {"brand": {"type": "string"}}},
        system_prompt="You are helpful.",
    )

    assert result == {"brand": "Samsung"}
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["messages"][0]["role"] == "system"
    assert "Respond with valid JSON" in request["messages"][0]["content"]
    assert service.get_stats()["call_count"] == 1


@pytest.mark.asyncio
async def test_api_failure_raises_oracle_error():
    service = service_with(FakeCompletions(error=RuntimeError("rate limited")))
    with pytest.raises(OracleError):
        await service.call_llm("hello")


@pytest.mark.asyncio
async def test_missing_credentials():
    service = LLMService(model="gpt-4o-mini", api_key="", cache_enabled=False)
    with pytest.raises(OracleError):
        await service.call_llm("hello")


@pytest.mark.asyncio
async def test_close_closes_client():
    client = FakeClient(FakeCompletions(reply="{}"))
    service = LLMService(model="test-model", client=client, cache_enabled=False)
    await service.close()
    assert client.closed


@pytest.mark.asyncio
async def test_call_llm_live():
    """Test a real LLM call (requires API key)."""
    if not os.getenv("OPENAI_API_KEY"):
        pytest.skip("OpenAI API key not configured")

    service = LLMService(model="gpt-4o-mini", api_key=os.environ["OPENAI_API_KEY"], cache_enabled=False)
    try:
        response = await service.call_llm(prompt="What is 2+2? Respond with only the number.")
    finally:
        await service.close()

    assert response is not None
    assert len(response) > 0
