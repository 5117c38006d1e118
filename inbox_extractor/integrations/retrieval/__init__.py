from .base import (
    BackendResult,
    ContentRetriever,
    FetchBackend,
    SearchBackend,
    SearchHit,
    build_search_query,
    retrieve_all,
)
from .direct import DirectFetchBackend
from .factory import ContentRetrieverFactory, create_content_retriever
from .firecrawl import FirecrawlFetchBackend
from .strategies import (
    FetchAndSearchRetriever,
    FetchOnlyRetriever,
    IntelligentDiscoveryRetriever,
    SearchOnlyRetriever,
)
from .tavily import TavilySearchBackend

__all__ = [
    'BackendResult',
    'ContentRetriever',
    'FetchBackend',
    'SearchBackend',
    'SearchHit',
    'build_search_query',
    'retrieve_all',
    'DirectFetchBackend',
    'FirecrawlFetchBackend',
    'TavilySearchBackend',
    'FetchOnlyRetriever',
    'SearchOnlyRetriever',
    'FetchAndSearchRetriever',
    'IntelligentDiscoveryRetriever',
    'ContentRetrieverFactory',
    'create_content_retriever'
]
