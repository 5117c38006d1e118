"""
Shared data models for the extraction pipeline.

Plain dataclasses carry data between stages; the user-facing agent
configuration is a pydantic model so that it can be validated once at the
pipeline boundary and passed around read-only afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from inbox_extractor.email_processing.handlers.content import html_to_text
from inbox_extractor.exceptions import ConfigurationError

EMAIL_SOURCE_ID = "Email"


class RetrievalStrategy(str, Enum):
    """How linked content is obtained."""
    FETCH_ONLY = "fetch-only"
    FETCH_AND_SEARCH = "fetch-and-search"
    SEARCH_ONLY = "search-only"
    INTELLIGENT_DISCOVERY = "intelligent-discovery"


_STRATEGY_ALIASES = {
    "scrape_only": RetrievalStrategy.FETCH_ONLY,
    "scrape-only": RetrievalStrategy.FETCH_ONLY,
    "fetch_only": RetrievalStrategy.FETCH_ONLY,
    "scrape_and_search": RetrievalStrategy.FETCH_AND_SEARCH,
    "scrape-and-search": RetrievalStrategy.FETCH_AND_SEARCH,
    "fetch_and_search": RetrievalStrategy.FETCH_AND_SEARCH,
    "search_only": RetrievalStrategy.SEARCH_ONLY,
    "intelligent_discovery": RetrievalStrategy.INTELLIGENT_DISCOVERY,
}


class PipelineStage(str, Enum):
    """States of a single extraction run."""
    FETCHING = "fetching"
    LINK_DISCOVERY = "link_discovery"
    INTENT_REFINEMENT = "intent_refinement"
    PRIORITIZATION = "prioritization"
    RETRIEVAL = "retrieval"
    SIZE_ROUTING = "size_routing"
    UNIT_ANALYSIS = "unit_analysis"
    AGGREGATION = "aggregation"
    DONE = "done"


class AgentConfig(BaseModel):
    """
    User-declared extraction agent.

    Accepts snake_case or camelCase keys. Instances are immutable for the
    duration of a run.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore"
    )

    match_criteria: str = Field(..., description="What kind of email or content counts as relevant")
    extraction_fields: str = Field(..., description="What to pull out when matched")
    user_intent: Optional[str] = Field(default=None, description="Deeper goal behind the criteria")
    link_selection_guidance: Optional[str] = Field(default=None, description="Hints for which links to follow")
    extraction_examples: Optional[str] = Field(default=None, description="Example outputs")
    analysis_feedback: Optional[str] = Field(default=None, description="Past mistakes to avoid")
    button_text_pattern: Optional[str] = Field(default=None, description="Regex boosting link ranking")
    follow_links: bool = True
    max_links_to_scrape: int = Field(default=10, ge=1)
    content_retrieval_strategy: RetrievalStrategy = RetrievalStrategy.FETCH_ONLY
    user_id: Optional[str] = None
    knowledge_base_ids: List[str] = Field(default_factory=list)

    @field_validator("match_criteria", "extraction_fields")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        """Reject blank required fields."""
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("content_retrieval_strategy", mode="before")
    @classmethod
    def parse_strategy(cls, value: Any) -> Any:
        """Accept legacy underscore spellings of the strategy names."""
        if isinstance(value, str):
            return _STRATEGY_ALIASES.get(value.strip().lower(), value.strip().lower())
        return value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
        """
        Build a validated config, converting validation failures to ConfigurationError.

        Raises:
            ConfigurationError: If required fields are missing or values are invalid
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid agent configuration: {problems}") from e


@dataclass
class EmailDocument:
    """A single email as read from the mailbox."""
    id: str
    subject: str
    sender: str
    html_body: str
    plain_text_body: Optional[str] = None
    received_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.plain_text_body:
            self.plain_text_body = html_to_text(self.html_body or "")


@dataclass
class ExtractedLink:
    """A hyperlink discovered in an email body."""
    url: str
    display_text: str = ""
    is_button_like: bool = False
    normalized_url: str = ""


@dataclass
class EmailIntent:
    """Refined reading of what the user wants from this email."""
    refined_goal: str
    key_terms: List[str] = field(default_factory=list)
    expected_content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refinedGoal": self.refined_goal,
            "keyTerms": list(self.key_terms),
            "expectedContent": self.expected_content
        }


@dataclass
class LinkSelection:
    """Links chosen for retrieval, in fetch order, plus the exchange that chose them."""
    selected: List[ExtractedLink]
    reasoning: str = ""
    total_links: int = 0
    prompt: str = ""
    raw_response: str = ""


@dataclass
class RetrievalContext:
    """Email-level hints handed to retrievers for building search queries."""
    email_subject: str = ""
    match_criteria: str = ""
    link_text: str = ""
    key_terms: List[str] = field(default_factory=list)


@dataclass
class RetrievedUnit:
    """One analyzable body of text: the email itself or one linked page."""
    source_id: str
    content: str = ""
    title: str = ""
    retrieval_succeeded: bool = True
    retrieval_source: str = ""
    error: Optional[str] = None
    original_url: Optional[str] = None


@dataclass
class ContentChunk:
    """A contiguous slice of an oversized unit."""
    unit_source_id: str
    index: int
    text: str
    char_count: int = 0

    def __post_init__(self):
        if not self.char_count:
            self.char_count = len(self.text)


@dataclass
class UnitAnalysisResult:
    """Extraction outcome for one retrieved unit."""
    source_id: str
    matched: bool
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.0
    used_chunking: bool = False
    content_length: int = 0
    chunk_count: int = 0
    title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source_id,
            "matched": self.matched,
            "extractedData": self.extracted_data,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "usedChunking": self.used_chunking,
            "contentLength": self.content_length,
            "chunkCount": self.chunk_count
        }


@dataclass
class SourcedData:
    """Data attributed to the unit it came from."""
    source: str
    data: Dict[str, Any]
    reasoning: str = ""
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "data": self.data,
            "reasoning": self.reasoning,
            "confidence": self.confidence
        }


@dataclass
class AggregatedResult:
    """Final merged answer for one email."""
    matched: bool
    merged_data: Dict[str, Any] = field(default_factory=dict)
    overall_confidence: float = 0.0
    data_by_source: List[SourcedData] = field(default_factory=list)
    total_matched_units: int = 0
    error: Optional[str] = None

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "AggregatedResult":
        return cls(matched=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "matched": self.matched,
            "mergedData": self.merged_data,
            "overallConfidence": self.overall_confidence,
            "dataBySource": [sourced.to_dict() for sourced in self.data_by_source],
            "totalMatchedUnits": self.total_matched_units
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class AnalysisJobResult:
    """
    Terminal report of one run, handed back to the calling job.

    A run that never started (input error) has success=False and no
    aggregate. A run that started always carries an aggregate, even when a
    stage failed unexpectedly; in that case the aggregate holds the error.
    """
    success: bool
    email_id: str
    run_id: str = ""
    aggregated: Optional[AggregatedResult] = None
    all_links_found: List[str] = field(default_factory=list)
    scraped_urls: List[str] = field(default_factory=list)
    original_urls: Dict[str, str] = field(default_factory=dict)
    unit_results: List[UnitAnalysisResult] = field(default_factory=list)
    skipped_stages: List[str] = field(default_factory=list)
    reasoning: str = ""
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "emailId": self.email_id, "error": self.error}

        aggregated = self.aggregated or AggregatedResult.empty()
        result = {
            "success": True,
            "emailId": self.email_id,
            "runId": self.run_id,
            **aggregated.to_dict(),
            "allLinksFound": list(self.all_links_found),
            "scrapedUrls": list(self.scraped_urls),
            "originalUrls": dict(self.original_urls),
            "skippedStages": list(self.skipped_stages),
            "reasoning": self.reasoning,
            "durationSeconds": round(self.duration_seconds, 3)
        }
        if self.error and "error" not in result:
            result["error"] = self.error
        return result
