"""
Direct HTTP fetch backend.

Downloads a page with aiohttp and extracts its main text with BeautifulSoup.
Used when no scraping service is configured; it cannot render JavaScript.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.handlers.content import extract_main_content
from inbox_extractor.integrations.retrieval.base import BackendResult, FetchBackend

logger = logging.getLogger(__name__)


class DirectFetchBackend(FetchBackend):
    """FetchBackend performing a plain HTTP GET."""

    name = "direct"

    def __init__(self, config: Optional[Dict[str, Any]] = None, request_timeout: float = 30):
        self.config = config or ANALYZER_CONFIG["retrieval"]["direct"]
        self.request_timeout = request_timeout

    async def fetch(self, url: str) -> BackendResult:
        headers = {
            "User-Agent": self.config["user_agent"],
            "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.5"
        }
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                async with session.get(url, allow_redirects=True) as response:
                    if response.status != 200:
                        logger.warning(f"Direct fetch of {url[:100]} returned HTTP {response.status}")
                        return BackendResult.failure(self.name, url, f"HTTP {response.status}")

                    content_type = response.headers.get("Content-Type", "")
                    if "html" not in content_type and "text" not in content_type:
                        return BackendResult.failure(self.name, url, f"Unsupported content type: {content_type}")

                    body = await response.text(errors="replace")
                    final_url = str(response.url)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Direct fetch error for {url[:100]}: {e!r}")
            return BackendResult.failure(self.name, url, f"Request error: {e!r}")

        body = body[:self.config["max_content_chars"]]
        if "html" in content_type:
            title, text = extract_main_content(body)
        else:
            title, text = "", body

        logger.info(f"Fetched {final_url[:100]} directly ({len(text)} chars)")
        return BackendResult(
            content=text,
            title=title,
            success=bool(text.strip()),
            error=None if text.strip() else "Page has no readable content",
            source=self.name,
            url=final_url
        )
