"""
Content Retriever Factory

Builds the retrieval strategy named in an agent configuration from whatever
backends are available.

Design Considerations:
- Fixed registry of strategy builders keyed by RetrievalStrategy
- Missing search backend degrades search strategies to fetch-only
- Missing fetch backend falls back to direct HTTP fetching
"""

import logging
from typing import Callable, Dict, Optional

from inbox_extractor.email_processing.models import RetrievalStrategy
from inbox_extractor.integrations.retrieval.base import ContentRetriever, FetchBackend, SearchBackend
from inbox_extractor.integrations.retrieval.direct import DirectFetchBackend
from inbox_extractor.integrations.retrieval.strategies import (
    FetchAndSearchRetriever,
    FetchOnlyRetriever,
    IntelligentDiscoveryRetriever,
    SearchOnlyRetriever,
)

logger = logging.getLogger(__name__)

StrategyBuilder = Callable[[FetchBackend, Optional[SearchBackend]], ContentRetriever]


class ContentRetrieverFactory:
    """
    Registry-based factory for retrieval strategies.

    Holds the backends once and hands out a retriever per strategy.
    """

    _registry: Dict[RetrievalStrategy, StrategyBuilder] = {
        RetrievalStrategy.FETCH_ONLY: lambda fetch, search: FetchOnlyRetriever(fetch),
        RetrievalStrategy.SEARCH_ONLY: lambda fetch, search: SearchOnlyRetriever(search),
        RetrievalStrategy.FETCH_AND_SEARCH: lambda fetch, search: FetchAndSearchRetriever(fetch, search),
        RetrievalStrategy.INTELLIGENT_DISCOVERY: lambda fetch, search: IntelligentDiscoveryRetriever(fetch, search),
    }

    def __init__(self, fetch_backend: Optional[FetchBackend] = None, search_backend: Optional[SearchBackend] = None):
        self.fetch_backend = fetch_backend or DirectFetchBackend()
        self.search_backend = search_backend

    def get_retriever(self, strategy: RetrievalStrategy) -> ContentRetriever:
        """
        Return a retriever for the strategy.

        Raises:
            ValueError: If the strategy has no registered builder
        """
        strategy = RetrievalStrategy(strategy)
        if strategy not in self._registry:
            raise ValueError(f"No retriever registered for strategy: {strategy.value}")

        if strategy != RetrievalStrategy.FETCH_ONLY and self.search_backend is None:
            logger.warning(f"Strategy {strategy.value} needs a search backend, none configured; using fetch-only")
            strategy = RetrievalStrategy.FETCH_ONLY

        return self._registry[strategy](self.fetch_backend, self.search_backend)


def create_content_retriever(
    strategy: RetrievalStrategy,
    fetch_backend: Optional[FetchBackend] = None,
    search_backend: Optional[SearchBackend] = None
) -> ContentRetriever:
    """Convenience wrapper building a single retriever."""
    return ContentRetrieverFactory(fetch_backend, search_backend).get_retriever(strategy)
