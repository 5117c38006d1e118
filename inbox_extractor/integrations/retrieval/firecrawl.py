"""
Firecrawl fetch backend.

Scrapes a page through the Firecrawl API and returns its main content as
markdown. Firecrawl follows wrapper redirects (SafeLinks and similar), so the
original link URL can be passed straight through.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.integrations.retrieval.base import BackendResult, FetchBackend

logger = logging.getLogger(__name__)


class FirecrawlFetchBackend(FetchBackend):
    """FetchBackend backed by the Firecrawl scrape endpoint."""

    name = "firecrawl"

    def __init__(self, api_key: str, config: Optional[Dict[str, Any]] = None):
        if not api_key:
            raise ValueError("Firecrawl API key is required")
        self.api_key = api_key
        self.config = config or ANALYZER_CONFIG["retrieval"]["firecrawl"]
        self.api_url = self.config["api_url"]

    async def fetch(self, url: str) -> BackendResult:
        """
        Scrape a URL.

        Args:
            url: Page URL

        Returns:
            BackendResult with markdown content and page title
        """
        payload = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "timeout": self.config["request_timeout_ms"]
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        # Leave a little headroom over Firecrawl's own timeout
        timeout = aiohttp.ClientTimeout(total=self.config["request_timeout_ms"] / 1000 + 5)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.api_url, json=payload, headers=headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Firecrawl scrape failed for {url[:100]}: {response.status} {error_text[:200]}")
                        return BackendResult.failure(self.name, url, f"Firecrawl HTTP {response.status}: {error_text[:200]}")

                    body = await response.json()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Firecrawl request error for {url[:100]}: {e!r}")
            return BackendResult.failure(self.name, url, f"Firecrawl request error: {e!r}")
        except ValueError as e:
            logger.error(f"Firecrawl returned invalid JSON for {url[:100]}: {e}")
            return BackendResult.failure(self.name, url, "Firecrawl returned invalid JSON")

        if not body.get("success"):
            error = body.get("error") or "Firecrawl reported failure"
            logger.warning(f"Firecrawl could not scrape {url[:100]}: {error}")
            return BackendResult.failure(self.name, url, str(error))

        data = body.get("data") or {}
        metadata = data.get("metadata") or {}
        markdown = data.get("markdown") or ""

        logger.info(f"Firecrawl scraped {url[:100]} ({len(markdown)} chars)")
        return BackendResult(
            content=markdown,
            title=metadata.get("title") or "",
            success=bool(markdown.strip()),
            error=None if markdown.strip() else "Firecrawl returned no content",
            source=self.name,
            url=metadata.get("sourceURL") or url
        )
