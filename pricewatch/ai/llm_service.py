"""LLM service for OpenAI-compatible chat completion endpoints."""

import hashlib
import json
import logging
import re
from typing import Any, Dict, Optional

import redis.asyncio as redis
from openai import AsyncOpenAI

from pricewatch.config import settings

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class OracleError(Exception):
    """An LLM call failed or returned something unusable."""


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of a model reply.

    Handles fenced code blocks and prose around the object.

    Raises:
        OracleError: If no JSON object can be decoded
    """
    text = (text or "").strip()
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()
    obj = _JSON_OBJECT.search(text)
    if obj:
        text = obj.group(0)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse LLM JSON response: {e}\nResponse: {text[:200]}")
        raise OracleError(f"Invalid JSON response from LLM: {e}") from e
    if not isinstance(data, dict):
        raise OracleError("LLM response is not a JSON object")
    return data


class LLMService:
    """
    Service for LLM interactions.

    Talks to OpenAI, or to any OpenAI-compatible server (Ollama) through
    `base_url`. Responses can be cached in Redis.
    """

    def __init__(
        self,
        model: str,
        api_key: str = "",
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        cache_enabled: Optional[bool] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.timeout = timeout or settings.llm_timeout_seconds
        self.cache_enabled = settings.llm_cache_enabled if cache_enabled is None else cache_enabled
        self._client = client
        self._redis: Optional[redis.Redis] = None
        self._call_count: int = 0

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the chat completion client."""
        if self._client is None:
            if not self.api_key and not self.base_url:
                raise OracleError("OpenAI API key not configured")
            self._client = AsyncOpenAI(
                api_key=self.api_key or "unused",
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get or create Redis connection for caching."""
        if not self.cache_enabled:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Failed to connect to Redis for LLM cache: {e}")
                return None
        return self._redis

    def _get_cache_key(self, prompt: str, system_prompt: str) -> str:
        """Generate cache key for prompt."""
        combined = f"{system_prompt}:{prompt}:{self.base_url or 'openai'}:{self.model}"
        key_hash = hashlib.sha256(combined.encode("utf-8")).hexdigest()
        return f"llm_cache:{key_hash}"

    async def _cache_get(self, key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        if redis_client is None:
            return None
        try:
            return await redis_client.get(key)
        except Exception as e:
            logger.warning(f"LLM cache read failed: {e}")
            return None

    async def _cache_set(self, key: str, value: str) -> None:
        redis_client = await self._get_redis()
        if redis_client is None:
            return
        try:
            await redis_client.setex(key, settings.llm_cache_ttl_seconds, value)
        except Exception as e:
            logger.warning(f"LLM cache write failed: {e}")

    async def call_llm(self, prompt: str, system_prompt: str = "", use_cache: bool = True) -> str:
        """
        Call the LLM with a prompt and return the text response.

        Raises:
            OracleError: If the API call fails
        """
        cache_key = self._get_cache_key(prompt, system_prompt)
        if use_cache and self.cache_enabled:
            cached = await self._cache_get(cache_key)
            if cached:
                logger.debug(f"LLM cache hit for prompt: {prompt[:50]}...")
                self._call_count += 1
                return cached

        client = await self._get_client()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"LLM API call failed: {e}")
            raise OracleError(f"LLM API call failed: {e}") from e

        result = response.choices[0].message.content or ""
        self._call_count += 1

        if use_cache and self.cache_enabled and result:
            await self._cache_set(cache_key, result)

        return result

    async def call_llm_structured(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        system_prompt: str = "",
    ) -> Dict[str, Any]:
        """
        Call the LLM for a JSON object matching `response_schema`.

        Returns:
            Parsed JSON response as dictionary
        """
        enhanced_system = system_prompt
        if enhanced_system:
            enhanced_system += "\n\n"
        enhanced_system += (
            f"Respond with valid JSON matching this schema: {json.dumps(response_schema, indent=2)}\n"
            "Return only the JSON object, no additional text."
        )

        response_text = await self.call_llm(prompt=prompt, system_prompt=enhanced_system)
        return parse_json_response(response_text)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "call_count": self._call_count,
            "model": self.model,
            "cache_enabled": self.cache_enabled,
        }

    async def close(self):
        """Close connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._client:
            await self._client.close()
            self._client = None
