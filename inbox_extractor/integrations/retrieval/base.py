"""
Content Retrieval Interfaces

Backends know how to talk to one service (a scraper, a search API, plain
HTTP). Retrievers combine backends into a strategy and always answer with a
RetrievedUnit, successful or not.

Design Considerations:
- Backends report failure in their result instead of raising
- Every retrieval is bounded by its own timeout
- Concurrent retrievals write to pre-sized slots; one failure never affects
  another link
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.models import ExtractedLink, RetrievalContext, RetrievedUnit

logger = logging.getLogger(__name__)

GENERIC_LINK_WORDS = ("click here", "read more", "learn more", "details", "view", "see", "apply")
REPLY_PREFIX = re.compile(r"^\s*(?:(?:re|fwd|fw)\s*:\s*)+", re.IGNORECASE)


@dataclass
class BackendResult:
    """Outcome of a single backend call."""
    content: str = ""
    title: str = ""
    success: bool = False
    error: Optional[str] = None
    source: str = ""
    url: str = ""

    @classmethod
    def failure(cls, source: str, url: str, error: str) -> "BackendResult":
        return cls(success=False, error=error, source=source, url=url)

    @property
    def usable(self) -> bool:
        return self.success and bool(self.content and self.content.strip())


@dataclass
class SearchHit:
    """One web search result: a candidate page with its snippet."""
    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0


class FetchBackend(ABC):
    """Downloads a page and extracts its readable content."""

    name: str = "fetch"

    @abstractmethod
    async def fetch(self, url: str) -> BackendResult:
        pass


class SearchBackend(ABC):
    """Finds content about a link through web search instead of fetching it."""

    name: str = "search"

    @abstractmethod
    async def search(self, query: str, context: RetrievalContext) -> BackendResult:
        pass

    @abstractmethod
    async def discover(
        self,
        query: str,
        exclude_domains: Sequence[str] = (),
        max_results: int = 5,
        search_depth: str = "advanced"
    ) -> List[SearchHit]:
        """
        Return candidate pages for a query instead of one combined document.

        An empty list means nothing was found or the search failed.
        """
        pass


class ContentRetriever(ABC):
    """Retrieval strategy interface."""

    strategy_name: str = ""

    @abstractmethod
    async def retrieve(self, url: str, context: RetrievalContext) -> RetrievedUnit:
        """
        Retrieve the content behind a URL.

        Args:
            url: URL to retrieve (the original link URL)
            context: Email-level hints for query building

        Returns:
            RetrievedUnit with retrieval_succeeded set accordingly
        """
        pass

    @staticmethod
    def to_unit(url: str, result: BackendResult) -> RetrievedUnit:
        """Convert a backend result into a RetrievedUnit for url."""
        if result.usable:
            return RetrievedUnit(
                source_id=url,
                content=result.content,
                title=result.title,
                retrieval_succeeded=True,
                retrieval_source=result.source
            )
        return RetrievedUnit(
            source_id=url,
            retrieval_succeeded=False,
            retrieval_source=result.source,
            error=result.error or "No content returned"
        )


def build_search_query(context: RetrievalContext, url: str = "", max_chars: Optional[int] = None) -> str:
    """
    Build a web search query from link text, email subject and criteria.

    Generic link words ("click here", "view") are removed from the link text
    and reply/forward prefixes from the subject. Fragments too short to be
    meaningful are left out.
    """
    max_chars = max_chars or ANALYZER_CONFIG["retrieval"]["tavily"]["max_query_chars"]

    link_text = (context.link_text or "").lower()
    for word in GENERIC_LINK_WORDS:
        link_text = link_text.replace(word, " ")
    link_text = " ".join(link_text.split())

    parts = []
    if len(link_text) > 5:
        parts.append(link_text)

    subject = REPLY_PREFIX.sub("", context.email_subject or "").strip()
    if len(subject) > 10:
        parts.append(subject)

    if context.key_terms:
        parts.append(" ".join(context.key_terms[:5]))
    elif context.match_criteria and len(context.match_criteria) > 10:
        parts.append(context.match_criteria[:100])

    if not parts and url:
        parts.append(url)

    query = " ".join(" ".join(parts).split())
    return query[:max_chars]


async def _retrieve_one(
    retriever: ContentRetriever,
    link: ExtractedLink,
    context: RetrievalContext,
    timeout: float
) -> RetrievedUnit:
    source_id = link.normalized_url or link.url
    link_context = replace(context, link_text=link.display_text)

    try:
        unit = await asyncio.wait_for(retriever.retrieve(link.url, link_context), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Retrieval of {source_id} timed out after {timeout}s")
        unit = RetrievedUnit(source_id=source_id, retrieval_succeeded=False, error=f"timed out after {timeout}s",
                             retrieval_source=retriever.strategy_name)
    except Exception as e:
        logger.error(f"Retrieval of {source_id} failed: {e}")
        unit = RetrievedUnit(source_id=source_id, retrieval_succeeded=False, error=str(e),
                             retrieval_source=retriever.strategy_name)

    return replace(unit, source_id=source_id, original_url=link.url)


async def retrieve_all(
    retriever: ContentRetriever,
    links: List[ExtractedLink],
    context: RetrievalContext,
    timeout: Optional[float] = None
) -> List[RetrievedUnit]:
    """
    Retrieve all selected links concurrently.

    Args:
        retriever: Strategy to use for every link
        links: Selected links, in priority order
        context: Email-level retrieval hints
        timeout: Per-link timeout, defaults to ANALYZER_CONFIG

    Returns:
        One RetrievedUnit per link, in the order of links. Units are keyed by
        the normalized URL and remember the original URL they were fetched
        from.
    """
    timeout = timeout or ANALYZER_CONFIG["retrieval"]["timeout"]
    units: List[Optional[RetrievedUnit]] = [None] * len(links)

    async def run(slot: int, link: ExtractedLink):
        units[slot] = await _retrieve_one(retriever, link, context, timeout)

    await asyncio.gather(*(run(i, link) for i, link in enumerate(links)))

    succeeded = sum(1 for unit in units if unit.retrieval_succeeded)
    logger.info(f"Retrieved {succeeded}/{len(links)} links with {retriever.strategy_name}")
    return units
