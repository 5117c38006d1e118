"""
Shared test doubles for the extraction pipeline.

FakeOracle answers each oracle-backed stage from a configurable handler,
recognizing the stage by its system prompt. Handlers may be a dict (sent as
JSON), a raw string, an exception instance (raised), or a callable taking
the user prompt and returning any of those.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from inbox_extractor.email_processing.analyzers import intent, link_prioritizer, unit_analyzer
from inbox_extractor.email_processing.models import RetrievalContext
from inbox_extractor.integrations.oracle import ExtractionOracle
from inbox_extractor.integrations.retrieval.base import BackendResult, FetchBackend, SearchBackend, SearchHit

DEFAULT_INTENT = {
    "refinedGoal": "Find open engineering roles mentioned in this newsletter",
    "keyTerms": ["engineer", "salary", "remote"],
    "expectedContent": "Job descriptions"
}
DEFAULT_SELECTION = {"selected": "NONE"}
DEFAULT_ANALYSIS = {"matched": False, "extractedData": {}, "reasoning": "Not relevant", "confidence": 0.2}


class FakeOracle(ExtractionOracle):
    """Deterministic oracle dispatching on the calling stage."""

    def __init__(self, intent=DEFAULT_INTENT, selection=DEFAULT_SELECTION, analysis=DEFAULT_ANALYSIS):
        self.handlers = {"intent": intent, "selection": selection, "analysis": analysis}
        self.calls: List[Tuple[str, str]] = []
        self.options: List[Dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def complete(self, system_prompt, user_prompt, *, temperature=0.0, max_tokens=1000,
                       model=None, json_mode=False, max_retries=None) -> str:
        kind = self._kind(system_prompt)
        self.calls.append((kind, user_prompt))
        self.options.append({"kind": kind, "model": model, "json_mode": json_mode, "max_retries": max_retries})

        handler = self.handlers[kind]
        if callable(handler) and not isinstance(handler, BaseException):
            handler = handler(user_prompt)
        if isinstance(handler, BaseException):
            raise handler
        return handler if isinstance(handler, str) else json.dumps(handler)

    def calls_for(self, kind: str) -> List[str]:
        return [prompt for call_kind, prompt in self.calls if call_kind == kind]

    @staticmethod
    def _kind(system_prompt: str) -> str:
        if system_prompt == intent.SYSTEM_PROMPT:
            return "intent"
        if system_prompt == link_prioritizer.SYSTEM_PROMPT:
            return "selection"
        if system_prompt == unit_analyzer.SYSTEM_PROMPT:
            return "analysis"
        raise AssertionError(f"Unexpected system prompt: {system_prompt[:60]}")


class FakeFetchBackend(FetchBackend):
    """
    Serves pages from a dict keyed by URL.

    Values may be page text or an exception instance to raise. Unknown URLs
    produce a failed BackendResult.
    """

    name = "fake-fetch"

    def __init__(self, pages: Optional[Dict[str, Any]] = None):
        self.pages = pages or {}
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> BackendResult:
        self.fetched.append(url)
        page = self.pages.get(url)
        if isinstance(page, BaseException):
            raise page
        if page is None:
            return BackendResult.failure(self.name, url, "HTTP 404")
        return BackendResult(content=page, title=f"Page {url}", success=True, source=self.name, url=url)


class FakeSearchBackend(SearchBackend):
    """
    Returns a fixed search document, or a failure when none is given.

    discover() answers with the given hits and records each request.
    """

    name = "fake-search"

    def __init__(self, content: Optional[str] = None, hits: Optional[List[SearchHit]] = None):
        self.content = content
        self.hits = hits or []
        self.queries: List[str] = []
        self.discoveries: List[Dict[str, Any]] = []

    async def search(self, query: str, context: RetrievalContext) -> BackendResult:
        self.queries.append(query)
        if self.content is None:
            return BackendResult.failure(self.name, "", "No search results found")
        return BackendResult(content=self.content, title="Search result", success=True, source=self.name)

    async def discover(self, query, exclude_domains=(), max_results=5, search_depth="advanced") -> List[SearchHit]:
        self.discoveries.append({"query": query, "exclude_domains": list(exclude_domains), "max_results": max_results})
        return list(self.hits[:max_results])
