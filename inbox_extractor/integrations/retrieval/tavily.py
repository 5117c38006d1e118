"""
Tavily search backend.

Finds public pages about a link through the Tavily search API. search()
combines the top results into one markdown document; discover() returns the
candidate pages themselves for the discovery strategy.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.models import RetrievalContext
from inbox_extractor.integrations.retrieval.base import BackendResult, SearchBackend, SearchHit

logger = logging.getLogger(__name__)


class TavilySearchBackend(SearchBackend):
    """SearchBackend backed by the Tavily search endpoint."""

    name = "tavily"

    def __init__(self, api_key: str, config: Optional[Dict[str, Any]] = None, request_timeout: float = 30):
        if not api_key:
            raise ValueError("Tavily API key is required")
        self.api_key = api_key
        self.config = config or ANALYZER_CONFIG["retrieval"]["tavily"]
        self.request_timeout = request_timeout

    async def search(self, query: str, context: RetrievalContext) -> BackendResult:
        """
        Search for content matching the query.

        Args:
            query: Search query built from link and email context
            context: Retrieval context (unused beyond the query today)

        Returns:
            BackendResult combining the top results as markdown
        """
        if not query:
            return BackendResult.failure(self.name, "", "Empty search query")

        results, error = await self._post(query, self.config["search_depth"], self.config["max_results"])
        if error:
            return BackendResult.failure(self.name, "", error)
        if not results:
            logger.info(f"Tavily found no results for {query!r}")
            return BackendResult.failure(self.name, "", "No search results found")

        top = results[0]
        content = self.combine_results(results[:self.config["results_to_combine"]])
        logger.info(f"Tavily found {len(results)} results for {query!r}")
        return BackendResult(
            content=content,
            title=top.get("title") or "",
            success=True,
            source=self.name,
            url=top.get("url") or ""
        )

    async def discover(
        self,
        query: str,
        exclude_domains: Sequence[str] = (),
        max_results: int = 5,
        search_depth: str = "advanced"
    ) -> List[SearchHit]:
        """
        Search for alternative public pages, skipping the given domains.

        Returns:
            Search hits in Tavily's order; empty on failure
        """
        if not query:
            return []

        results, error = await self._post(query, search_depth, max_results, exclude_domains)
        if error:
            return []

        hits = [
            SearchHit(
                url=result["url"],
                title=result.get("title") or "",
                snippet=result.get("content") or "",
                score=float(result.get("score") or 0)
            )
            for result in results
            if result.get("url")
        ]
        logger.info(f"Tavily discovered {len(hits)} candidate pages for {query!r}")
        return hits

    async def _post(
        self,
        query: str,
        search_depth: str,
        max_results: int,
        exclude_domains: Sequence[str] = ()
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "include_answer": False,
            "include_images": False
        }
        if exclude_domains:
            payload["exclude_domains"] = list(exclude_domains)

        try:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.config["api_url"], json=payload) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Tavily search failed: {response.status} {error_text[:200]}")
                        return [], f"Tavily HTTP {response.status}: {error_text[:200]}"

                    body = await response.json()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Tavily request error for query {query!r}: {e!r}")
            return [], f"Tavily request error: {e!r}"
        except ValueError as e:
            logger.error(f"Tavily returned invalid JSON: {e}")
            return [], "Tavily returned invalid JSON"

        return body.get("results") or [], None

    @staticmethod
    def combine_results(results: List[Dict[str, Any]]) -> str:
        """Render search results as one markdown document."""
        sections = []
        for result in results:
            sections.append(
                f"## {result.get('title', 'Untitled')}\n\n"
                f"**Source**: {result.get('url', '')}\n"
                f"**Relevance Score**: {result.get('score', 0)}\n\n"
                f"{result.get('content', '')}\n\n---"
            )
        return "\n\n".join(sections)
