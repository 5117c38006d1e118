"""
Pipeline assembly from runtime settings.

Chooses concrete collaborators based on which service keys are configured:
Groq for the oracle, Firecrawl or direct HTTP for fetching, Tavily for
search when available.
"""

import logging
from typing import Optional

from inbox_extractor.config.settings import ExtractorSettings, get_settings
from inbox_extractor.email_processing.processor import ExtractionPipeline
from inbox_extractor.email_processing.recorder import FileRunRecorder, RunRecorder
from inbox_extractor.integrations.email_source import EmailSource, ResultSink
from inbox_extractor.integrations.groq.oracle import GroqExtractionOracle
from inbox_extractor.integrations.knowledge_base import KnowledgeBaseProvider
from inbox_extractor.integrations.oracle import ExtractionOracle
from inbox_extractor.integrations.outlook.client import OutlookEmailSource
from inbox_extractor.integrations.retrieval.direct import DirectFetchBackend
from inbox_extractor.integrations.retrieval.factory import ContentRetrieverFactory
from inbox_extractor.integrations.retrieval.firecrawl import FirecrawlFetchBackend
from inbox_extractor.integrations.retrieval.tavily import TavilySearchBackend

logger = logging.getLogger(__name__)


def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def build_retriever_factory(settings: ExtractorSettings) -> ContentRetrieverFactory:
    """Build retrieval backends from the configured service keys."""
    firecrawl_key = _secret(settings.FIRECRAWL_API_KEY)
    tavily_key = _secret(settings.TAVILY_API_KEY)

    if firecrawl_key:
        fetch_backend = FirecrawlFetchBackend(firecrawl_key)
    else:
        logger.info("FIRECRAWL_API_KEY not set, using direct HTTP fetching")
        fetch_backend = DirectFetchBackend()

    search_backend = TavilySearchBackend(tavily_key) if tavily_key else None
    if search_backend is None:
        logger.info("TAVILY_API_KEY not set, search strategies will fall back to fetch-only")

    return ContentRetrieverFactory(fetch_backend, search_backend)


def build_pipeline(
    settings: Optional[ExtractorSettings] = None,
    oracle: Optional[ExtractionOracle] = None,
    email_source: Optional[EmailSource] = None,
    knowledge_base: Optional[KnowledgeBaseProvider] = None,
    result_sink: Optional[ResultSink] = None,
    recorder: Optional[RunRecorder] = None
) -> ExtractionPipeline:
    """
    Assemble an ExtractionPipeline with production collaborators.

    Any collaborator passed explicitly is used as is.

    Raises:
        ValueError: If no oracle is given and GROQ_API_KEY is not configured
    """
    settings = settings or get_settings()

    if oracle is None:
        groq_key = _secret(settings.GROQ_API_KEY)
        if not groq_key:
            raise ValueError("GROQ_API_KEY must be configured to build the default pipeline")
        oracle = GroqExtractionOracle(api_key=groq_key)

    if recorder is None and settings.EMAIL_ANALYSIS_DEBUG:
        recorder = FileRunRecorder(base_dir=settings.DEBUG_RUNS_DIR)
        logger.info(f"Run recording enabled in {settings.DEBUG_RUNS_DIR}")

    return ExtractionPipeline(
        oracle=oracle,
        retriever_factory=build_retriever_factory(settings),
        email_source=email_source or OutlookEmailSource(),
        knowledge_base=knowledge_base,
        recorder=recorder,
        result_sink=result_sink
    )
