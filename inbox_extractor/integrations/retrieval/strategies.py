"""
Retrieval strategies: fetch-only, search-only, fetch-and-search and
intelligent discovery.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.models import RetrievalContext, RetrievedUnit
from inbox_extractor.integrations.retrieval.base import (
    GENERIC_LINK_WORDS,
    REPLY_PREFIX,
    BackendResult,
    ContentRetriever,
    FetchBackend,
    SearchBackend,
    SearchHit,
    build_search_query,
)

logger = logging.getLogger(__name__)


class FetchOnlyRetriever(ContentRetriever):
    """Downloads the page behind the link."""

    strategy_name = "fetch-only"

    def __init__(self, fetch_backend: FetchBackend):
        self.fetch_backend = fetch_backend

    async def retrieve(self, url: str, context: RetrievalContext) -> RetrievedUnit:
        result = await self.fetch_backend.fetch(url)
        return self.to_unit(url, result)


class SearchOnlyRetriever(ContentRetriever):
    """
    Looks the link up through web search instead of fetching it.

    Used for pages behind authentication the pipeline cannot supply.
    """

    strategy_name = "search-only"

    def __init__(self, search_backend: SearchBackend):
        self.search_backend = search_backend

    async def retrieve(self, url: str, context: RetrievalContext) -> RetrievedUnit:
        query = build_search_query(context, url)
        logger.debug(f"Search query for {url[:100]}: {query!r}")
        result = await self.search_backend.search(query, context)
        return self.to_unit(url, result)


class FetchAndSearchRetriever(ContentRetriever):
    """
    Runs fetch and search together and keeps the richer result.

    Richer means more content. When both backends return the same amount
    the fetched page wins, since it is the page the link actually points to.
    """

    strategy_name = "fetch-and-search"

    def __init__(self, fetch_backend: FetchBackend, search_backend: SearchBackend):
        self.fetch_backend = fetch_backend
        self.search_backend = search_backend

    async def retrieve(self, url: str, context: RetrievalContext) -> RetrievedUnit:
        query = build_search_query(context, url)
        fetched, searched = await asyncio.gather(
            self.fetch_backend.fetch(url),
            self.search_backend.search(query, context),
            return_exceptions=True
        )
        fetched = self._as_result(fetched, self.fetch_backend.name, url)
        searched = self._as_result(searched, self.search_backend.name, url)

        best = self.choose(fetched, searched)
        if best is None:
            error = f"fetch: {fetched.error or 'no content'}; search: {searched.error or 'no content'}"
            logger.warning(f"Both backends failed for {url[:100]}: {error}")
            return RetrievedUnit(
                source_id=url,
                retrieval_succeeded=False,
                retrieval_source=self.strategy_name,
                error=error
            )

        logger.debug(f"Using {best.source} result for {url[:100]} ({len(best.content)} chars)")
        return self.to_unit(url, best)

    @staticmethod
    def choose(fetched: BackendResult, searched: BackendResult) -> Optional[BackendResult]:
        """Return the richer usable result, preferring fetch on ties."""
        if fetched.usable and searched.usable:
            return searched if len(searched.content) > len(fetched.content) else fetched
        if fetched.usable:
            return fetched
        if searched.usable:
            return searched
        return None

    @staticmethod
    def _as_result(outcome, source: str, url: str) -> BackendResult:
        if isinstance(outcome, BaseException):
            logger.warning(f"{source} raised for {url[:100]}: {outcome}")
            return BackendResult.failure(source, url, str(outcome))
        return outcome


class IntelligentDiscoveryRetriever(ContentRetriever):
    """
    Finds the same content on other public sites and fetches it from there.

    Meant for links the pipeline cannot open itself: expired tokens, logins,
    paywalls. The original domain is excluded from the search, candidates
    are ranked, the best few are fetched concurrently and the first with a
    plausible amount of content wins. When none can be fetched, the search
    snippets are used instead.
    """

    strategy_name = "intelligent-discovery"

    def __init__(
        self,
        fetch_backend: FetchBackend,
        search_backend: SearchBackend,
        config: Optional[Dict[str, Any]] = None
    ):
        self.fetch_backend = fetch_backend
        self.search_backend = search_backend
        self.config = config or ANALYZER_CONFIG["retrieval"]["discovery"]

    async def retrieve(self, url: str, context: RetrievalContext) -> RetrievedUnit:
        query, exclude_domains = self.build_discovery_query(context, url, self.config["max_query_chars"])
        logger.info(f"Discovering alternatives for {url[:100]}: {query!r} (excluding {exclude_domains})")

        hits = await self.search_backend.discover(
            query,
            exclude_domains=exclude_domains,
            max_results=self.config["max_results"],
            search_depth=self.config["search_depth"]
        )
        if not hits:
            return RetrievedUnit(
                source_id=url,
                retrieval_succeeded=False,
                retrieval_source=self.strategy_name,
                error="No alternative sources found"
            )

        candidates = self.rank_hits(hits, context.link_text)[:self.config["candidates_to_fetch"]]
        fetched = await asyncio.gather(
            *(self.fetch_backend.fetch(hit.url) for hit in candidates),
            return_exceptions=True
        )

        for hit, result in zip(candidates, fetched):
            if isinstance(result, BaseException):
                logger.warning(f"Fetching discovered page {hit.url[:100]} raised: {result}")
                continue
            if self._plausible(result):
                logger.info(f"Using discovered page {hit.url[:100]} for {url[:100]}")
                unit = self.to_unit(url, result)
                unit.title = result.title or hit.title
                return unit

        logger.warning(f"No discovered page could be fetched for {url[:100]}, using search snippets")
        return RetrievedUnit(
            source_id=url,
            content=self.combine_snippets(candidates),
            title=candidates[0].title,
            retrieval_succeeded=True,
            retrieval_source=self.search_backend.name
        )

    @staticmethod
    def build_discovery_query(context: RetrievalContext, url: str, max_chars: int = 250) -> Tuple[str, List[str]]:
        """
        Build the discovery query and the domains to exclude.

        The link text carries the most specific description (title, company,
        place), so it is used alone when meaningful; otherwise the email
        subject, otherwise a generic placeholder.
        """
        host = (urlsplit(url).hostname or "").lower()
        exclude_domains = [host[4:] if host.startswith("www.") else host] if host else []

        link_text = " ".join((context.link_text or "").replace("·", " ").split())
        for word in GENERIC_LINK_WORDS:
            link_text = re.sub(rf"\b{re.escape(word)}\b", " ", link_text, flags=re.IGNORECASE)
        link_text = " ".join(link_text.split())

        query = link_text if len(link_text) > 5 else ""
        if not query:
            query = " ".join(REPLY_PREFIX.sub("", context.email_subject or "").split())
        return (query or "content")[:max_chars].strip(), exclude_domains

    @staticmethod
    def rank_hits(hits: List[SearchHit], link_text: str = "") -> List[SearchHit]:
        """
        Order hits by how likely they are to be the specific page.

        Starts from the search score, penalizes home pages, search pages and
        long filter query strings, and rewards URLs containing words of the
        link text. Ties keep the search order.
        """
        link_words = [word for word in (link_text or "").lower().split() if len(word) > 3]

        def relevance(hit: SearchHit) -> float:
            score = hit.score
            parts = urlsplit(hit.url)
            if not [segment for segment in parts.path.split("/") if segment]:
                score -= 2
            if "/search" in parts.path:
                score -= 3
            if len(parts.query) > 50:
                score -= 2
            url = hit.url.lower()
            score += 0.5 * sum(1 for word in link_words if word in url)
            return score

        return sorted(hits, key=relevance, reverse=True)

    @staticmethod
    def combine_snippets(hits: List[SearchHit]) -> str:
        return "\n\n".join(f"## {hit.title}\n\n**Source**: {hit.url}\n\n{hit.snippet}\n\n---" for hit in hits)

    def _plausible(self, result: BackendResult) -> bool:
        # Too little is a teaser, too much is an aggregator page
        length = len(result.content or "")
        return result.usable and self.config["min_content_chars"] <= length <= self.config["max_content_chars"]
