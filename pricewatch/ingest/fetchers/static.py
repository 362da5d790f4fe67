"""Plain HTTP fetcher for server-rendered product pages."""

import asyncio
import logging
from typing import Optional

import httpx

from pricewatch.config import settings
from pricewatch.ingest.base import FetchBlockedError, FetchedPage, FetchError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Ch-Ua": '"Not A(Brand";v="99", "Google Chrome";v="121", "Chromium";v="121"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

BLOCKED_STATUS_CODES = {403, 429, 503}

# Interstitial markers, matched against the start of the body
CHALLENGE_INDICATORS = [
    "<title>just a moment",
    "checking your browser",
    "cf-browser-verification",
    "challenge-platform",
    "enter the characters you see below",
    "robot check",
    "verify you are a human",
]
CHALLENGE_SCAN_CHARS = 20000


def looks_like_challenge(html: str) -> bool:
    """True if the markup is an anti-bot interstitial rather than a product page."""
    head = (html or "")[:CHALLENGE_SCAN_CHARS].lower()
    return any(indicator in head for indicator in CHALLENGE_INDICATORS)


class StaticHTMLFetcher:
    """Fetch raw markup over HTTP with browser-like headers."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_redirects = max_redirects or settings.http_max_redirects
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers=BROWSER_HEADERS,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchedPage:
        """
        Fetch a page.

        Raises:
            FetchBlockedError: On a 403/429/503 answer or an anti-bot interstitial
            FetchError: On any other HTTP error, transport failure or timeout
        """
        client = await self._get_client()

        try:
            response = await asyncio.wait_for(client.get(url), timeout=self.timeout + 5)
        except asyncio.TimeoutError:
            raise FetchError(url, "timeout")
        except httpx.TimeoutException as e:
            raise FetchError(url, f"timeout: {e}")
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}")

        if response.status_code in BLOCKED_STATUS_CODES:
            raise FetchBlockedError(url, f"HTTP {response.status_code}", status_code=response.status_code)
        if response.status_code >= 400:
            raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)

        html = response.text
        if looks_like_challenge(html):
            raise FetchBlockedError(url, "anti-bot challenge page", status_code=response.status_code)

        logger.debug(f"Fetched {url} ({response.status_code}, {len(html)} bytes)")
        return FetchedPage(
            url=str(response.url),
            html=html,
            status_code=response.status_code,
            tier="static",
            headers=dict(response.headers),
        )
