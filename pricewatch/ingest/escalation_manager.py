"""Escalation manager for two-tier fetching."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from pricewatch.config import settings
from pricewatch.ingest.base import BaseRenderer, FetchBlockedError, FetchError, PageExtraction
from pricewatch.ingest.fetchers.static import StaticHTMLFetcher
from pricewatch.ingest.page_extractor import PageExtractor
from pricewatch.ingest.retailers.strategies import requires_browser
from pricewatch.metrics import record_fetch

logger = logging.getLogger(__name__)


@dataclass
class EscalationResult:
    """Markup and extraction from the last tier that produced a document."""

    html: Optional[str]
    extraction: PageExtraction = field(default_factory=PageExtraction)
    tier: Optional[str] = None
    used_renderer: bool = False
    error: Optional[str] = None

    @property
    def fetched(self) -> bool:
        return self.html is not None


class FetchEscalationController:
    """
    Decides when to escalate from a plain HTTP fetch to a rendered browser.

    Escalation happens when the plain fetch is blocked or fails, when it
    yields zero price candidates, or when the retailer is known to render
    prices client-side. The renderer is tried at most once per call.
    """

    def __init__(
        self,
        fetcher: Optional[StaticHTMLFetcher] = None,
        renderer: Optional[BaseRenderer] = None,
        extractor: Optional[PageExtractor] = None,
        render_timeout: Optional[float] = None,
    ):
        self.fetcher = fetcher or StaticHTMLFetcher()
        self.renderer = renderer
        self.extractor = extractor or PageExtractor()
        self.render_timeout = render_timeout or settings.render_timeout_seconds

    async def fetch_and_extract(self, url: str) -> EscalationResult:
        """Fetch and extract a page; never raises for fetch failures."""
        result = EscalationResult(html=None)
        errors = []

        if requires_browser(url) and self.renderer is not None:
            logger.info(f"{url} requires browser rendering, skipping plain fetch")
        else:
            try:
                page = await self.fetcher.fetch(url)
                result.html = page.html
                result.tier = "static"
                result.extraction = self.extractor.extract(page.html, url)
                record_fetch("static", "ok")
            except FetchBlockedError as e:
                logger.warning(f"Plain fetch blocked for {url}: {e.reason}")
                record_fetch("static", "blocked")
                errors.append(str(e))
            except FetchError as e:
                logger.warning(f"Plain fetch failed for {url}: {e.reason}")
                record_fetch("static", "error")
                errors.append(str(e))

            if result.extraction.candidates:
                return result

            if result.fetched:
                logger.info(f"No price candidates in static HTML for {url}, escalating")

        if self.renderer is None:
            if not result.fetched:
                result.error = "; ".join(errors) or f"No fetch tier available for {url}"
            return result

        try:
            html = await asyncio.wait_for(
                self.renderer.render(url, self.render_timeout),
                timeout=self.render_timeout + settings.challenge_wait_seconds + 15,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Rendered fetch timed out for {url}")
            record_fetch("rendered", "timeout")
            errors.append(f"Rendered fetch timed out for {url}")
        except Exception as e:
            logger.warning(f"Rendered fetch failed for {url}: {e}")
            record_fetch("rendered", "error")
            errors.append(str(e))
        else:
            record_fetch("rendered", "ok")
            result.html = html
            result.tier = "rendered"
            result.used_renderer = True
            result.extraction = self.extractor.extract(html, url)
            result.error = None
            return result

        # Keep the plain-pass document if there was one
        if not result.fetched:
            result.error = "; ".join(errors)
        return result

    async def close(self):
        await self.fetcher.close()
        if self.renderer is not None:
            await self.renderer.close()
