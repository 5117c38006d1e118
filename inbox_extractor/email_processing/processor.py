"""
ExtractionPipeline: Email Extraction Orchestrator

Runs one email through the extraction stages:

    Fetching -> LinkDiscovery -> (IntentRefinement) -> Prioritization ->
    Retrieval -> SizeRouting -> UnitAnalysis -> Aggregation -> Done

Design Considerations:
- Only input errors (unknown email, unusable configuration, unreadable
  mailbox) fail a run; they are detected before any stage executes
- Every other failure degrades the affected stage or unit and the run goes on
- A started run always ends with an AggregatedResult, carrying an error
  description when a stage failed unexpectedly
- Retrieval and unit analysis fan out concurrently into pre-sized slots and
  join before the next stage
- Run recording and result persistence are best-effort side channels
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.aggregator import ResultAggregator
from inbox_extractor.email_processing.analyzers.intent import IntentRefiner
from inbox_extractor.email_processing.analyzers.link_prioritizer import LinkPrioritizer
from inbox_extractor.email_processing.analyzers.unit_analyzer import UnitAnalyzer
from inbox_extractor.email_processing.handlers.chunker import SizeRouter
from inbox_extractor.email_processing.handlers.links import LinkExtractor, UrlNormalizer
from inbox_extractor.email_processing.models import (
    EMAIL_SOURCE_ID,
    AgentConfig,
    AggregatedResult,
    AnalysisJobResult,
    EmailDocument,
    EmailIntent,
    ExtractedLink,
    PipelineStage,
    RetrievalContext,
    RetrievedUnit,
    UnitAnalysisResult,
)
from inbox_extractor.email_processing.recorder import RunRecorder
from inbox_extractor.exceptions import ConfigurationError, EmailNotFoundError, EmailSourceError, InputError
from inbox_extractor.integrations.email_source import EmailSource, ResultSink
from inbox_extractor.integrations.knowledge_base import KnowledgeBaseProvider, fetch_reference_context
from inbox_extractor.integrations.oracle import ExtractionOracle
from inbox_extractor.integrations.retrieval.base import retrieve_all
from inbox_extractor.integrations.retrieval.factory import ContentRetrieverFactory

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Mutable bookkeeping for one run; owned by the orchestrating coroutine only."""
    run_id: str
    stage: PipelineStage = PipelineStage.FETCHING
    skipped: List[str] = field(default_factory=list)
    links: List[ExtractedLink] = field(default_factory=list)
    selected: List[ExtractedLink] = field(default_factory=list)
    intent: Optional[EmailIntent] = None
    retrieved: List[RetrievedUnit] = field(default_factory=list)
    unit_results: List[UnitAnalysisResult] = field(default_factory=list)

    def enter(self, stage: PipelineStage):
        self.stage = stage
        logger.debug(f"[{self.run_id}] -> {stage.value}")

    def skip(self, stage: PipelineStage, reason: str):
        self.skipped.append(stage.value)
        logger.info(f"[{self.run_id}] Skipping {stage.value}: {reason}")


class ExtractionPipeline:
    """
    Orchestrates extraction for one email at a time.

    All external collaborators are injected so that each can be replaced by
    a deterministic fake in tests.

    Args:
        oracle: Extraction oracle shared by all oracle-backed stages
        retriever_factory: Provides the retrieval strategy per agent configuration
        email_source: Mailbox reader, required only for process_email()
        knowledge_base: Optional reference-context provider
        recorder: Optional run recorder
        result_sink: Optional destination for finished results
        size_router: Size router override (threshold, chunk size)
        config: Analyzer configuration override
    """

    def __init__(
        self,
        oracle: ExtractionOracle,
        retriever_factory: Optional[ContentRetrieverFactory] = None,
        email_source: Optional[EmailSource] = None,
        knowledge_base: Optional[KnowledgeBaseProvider] = None,
        recorder: Optional[RunRecorder] = None,
        result_sink: Optional[ResultSink] = None,
        size_router: Optional[SizeRouter] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        self.config = config or ANALYZER_CONFIG
        self.retriever_factory = retriever_factory or ContentRetrieverFactory()
        self.email_source = email_source
        self.knowledge_base = knowledge_base
        self.recorder = recorder
        self.result_sink = result_sink

        self.link_extractor = LinkExtractor()
        self.normalizer = UrlNormalizer()
        self.intent_refiner = IntentRefiner(oracle, self.config["intent_refiner"])
        self.link_prioritizer = LinkPrioritizer(oracle, self.normalizer, self.config["link_prioritizer"])
        self.unit_analyzer = UnitAnalyzer(
            oracle,
            router=size_router or SizeRouter(),
            max_concurrent_calls=self.config["pipeline"]["max_concurrent_oracle_calls"],
            config=self.config["unit_analyzer"]
        )
        self.aggregator = ResultAggregator()

    async def process_email(
        self,
        email_id: str,
        access_token: str,
        agent_config: Union[AgentConfig, Dict[str, Any]]
    ) -> AnalysisJobResult:
        """
        Fetch an email from the mailbox and run extraction on it.

        Args:
            email_id: Mailbox message id
            access_token: Mailbox access token
            agent_config: Agent configuration, validated if given as a dict

        Returns:
            AnalysisJobResult; success=False only for input errors
        """
        start = datetime.now()
        try:
            config = self._validate_config(agent_config)
            email = await self._fetch_email(email_id, access_token)
        except InputError as e:
            logger.error(f"Run for email {email_id} rejected: {e}")
            return AnalysisJobResult(
                success=False,
                email_id=email_id,
                error=str(e),
                duration_seconds=(datetime.now() - start).total_seconds()
            )

        return await self.run(email, config)

    async def run(self, email: EmailDocument, agent_config: Union[AgentConfig, Dict[str, Any]]) -> AnalysisJobResult:
        """
        Run all extraction stages on an already fetched email.

        Args:
            email: Email to analyze
            agent_config: Agent configuration, validated if given as a dict

        Returns:
            AnalysisJobResult; success=False only for an invalid configuration
        """
        start = datetime.now()
        try:
            config = self._validate_config(agent_config)
        except ConfigurationError as e:
            logger.error(f"Run for email {email.id} rejected: {e}")
            return AnalysisJobResult(success=False, email_id=email.id, error=str(e))

        state = _RunState(run_id=f"{start.strftime('%Y%m%d%H%M%S%f')}-{email.id[:8]}")
        logger.info(f"[{state.run_id}] Starting extraction for email {email.id}: {email.subject!r}")
        self._record(state.run_id, "metadata", {
            "runId": state.run_id,
            "emailId": email.id,
            "emailSubject": email.subject,
            "emailFrom": email.sender,
            "emailBodyLength": len(email.plain_text_body or ""),
            "emailHtmlLength": len(email.html_body or ""),
            "agentConfig": config.model_dump(mode="json"),
        })

        try:
            aggregated = await self._run_stages(email, config, state)
        except Exception as e:
            logger.exception(f"[{state.run_id}] Stage {state.stage.value} failed unexpectedly")
            aggregated = AggregatedResult.empty(error=f"{state.stage.value} failed: {e}")

        state.enter(PipelineStage.DONE)
        result = AnalysisJobResult(
            success=True,
            email_id=email.id,
            run_id=state.run_id,
            aggregated=aggregated,
            all_links_found=[link.normalized_url for link in state.links],
            scraped_urls=[unit.source_id for unit in state.retrieved if unit.retrieval_succeeded],
            original_urls={
                unit.source_id: unit.original_url
                for unit in state.retrieved
                if unit.retrieval_succeeded and unit.original_url
            },
            unit_results=state.unit_results,
            skipped_stages=state.skipped,
            reasoning=self._summarize_reasoning(aggregated, state.unit_results),
            error=aggregated.error,
            duration_seconds=(datetime.now() - start).total_seconds()
        )

        logger.info(
            f"[{state.run_id}] Finished: matched={aggregated.matched} "
            f"confidence={aggregated.overall_confidence:.2f} sources={len(aggregated.data_by_source)} "
            f"in {result.duration_seconds:.2f}s"
        )
        await self._finish(state.run_id, email, result)
        return result

    async def _run_stages(self, email: EmailDocument, config: AgentConfig, state: _RunState) -> AggregatedResult:
        state.enter(PipelineStage.LINK_DISCOVERY)
        if email.html_body and email.html_body.strip():
            raw_links = self.link_extractor.extract(email.html_body, config.button_text_pattern)
        else:
            raw_links = self.link_extractor.extract_from_text(email.plain_text_body, config.button_text_pattern)
        state.links = self.normalizer.deduplicate(raw_links)
        logger.info(f"[{state.run_id}] Found {len(state.links)} unique links ({len(raw_links)} raw)")
        self._record(state.run_id, "links-extracted", {
            "links": [
                {"url": link.url, "normalizedUrl": link.normalized_url,
                 "text": link.display_text, "isButton": link.is_button_like}
                for link in state.links
            ]
        })

        if not config.follow_links or not state.links:
            reason = "follow_links disabled" if not config.follow_links else "no links found"
            for stage in (PipelineStage.INTENT_REFINEMENT, PipelineStage.PRIORITIZATION, PipelineStage.RETRIEVAL):
                state.skip(stage, reason)
        else:
            await self._select_links(email, config, state)
            if state.selected:
                await self._retrieve(email, config, state)
            else:
                state.skip(PipelineStage.RETRIEVAL, "no links selected")

        reference_context = await self._reference_context(config, state)

        units = [self._email_unit(email)] + [unit for unit in state.retrieved if unit.retrieval_succeeded]

        state.enter(PipelineStage.SIZE_ROUTING)
        oversized = [unit.source_id for unit in units if self.unit_analyzer.router.needs_chunking(unit.content)]
        if oversized:
            logger.info(f"[{state.run_id}] Chunking required for {len(oversized)} units")
        else:
            state.skipped.append("chunking")

        state.enter(PipelineStage.UNIT_ANALYSIS)
        state.unit_results = await self._analyze_units(units, email, config, reference_context, state.intent)
        self._record(state.run_id, "unit-analysis", {
            "results": [result.to_dict() for result in state.unit_results]
        })

        state.enter(PipelineStage.AGGREGATION)
        return self.aggregator.aggregate(state.unit_results)

    async def _select_links(self, email: EmailDocument, config: AgentConfig, state: _RunState):
        state.enter(PipelineStage.INTENT_REFINEMENT)
        intent_outcome = await self.intent_refiner.refine(email.plain_text_body or "", email.subject, config)
        state.intent = intent_outcome.value
        self._record(state.run_id, "email-intent", {
            "status": intent_outcome.status.value,
            "reason": intent_outcome.reason,
            "intent": state.intent.to_dict() if state.intent else None
        })

        state.enter(PipelineStage.PRIORITIZATION)
        selection_outcome = await self.link_prioritizer.prioritize(state.links, config, state.intent)
        selection = selection_outcome.value
        state.selected = selection.selected if selection else []
        self._record(state.run_id, "ai-prioritization", {
            "status": selection_outcome.status.value,
            "reason": selection_outcome.reason,
            "prompt": selection.prompt if selection else "",
            "response": selection.raw_response if selection else "",
            "reasoning": selection.reasoning if selection else "",
            "selectedLinks": [link.normalized_url for link in state.selected]
        })

    async def _retrieve(self, email: EmailDocument, config: AgentConfig, state: _RunState):
        state.enter(PipelineStage.RETRIEVAL)
        retriever = self.retriever_factory.get_retriever(config.content_retrieval_strategy)
        context = RetrievalContext(
            email_subject=email.subject,
            match_criteria=config.match_criteria,
            key_terms=list(state.intent.key_terms) if state.intent else []
        )
        state.retrieved = await retrieve_all(
            retriever,
            state.selected,
            context,
            timeout=self.config["retrieval"]["timeout"]
        )
        self._record(state.run_id, "content-retrieval", {
            "strategy": retriever.strategy_name,
            "attempts": [
                {"url": unit.source_id, "originalUrl": unit.original_url, "success": unit.retrieval_succeeded,
                 "source": unit.retrieval_source, "error": unit.error, "contentLength": len(unit.content),
                 "title": unit.title}
                for unit in state.retrieved
            ]
        })

    async def _reference_context(self, config: AgentConfig, state: _RunState) -> Optional[str]:
        query = state.intent.refined_goal if state.intent else config.match_criteria
        kb_config = self.config["knowledge_base"]
        context = await fetch_reference_context(
            self.knowledge_base,
            query,
            config.user_id,
            config.knowledge_base_ids,
            kb_config["top_k"],
            kb_config["timeout"]
        )
        if context:
            self._record(state.run_id, "rag-context", {"query": query, "context": context})
        return context

    async def _analyze_units(
        self,
        units: List[RetrievedUnit],
        email: EmailDocument,
        config: AgentConfig,
        reference_context: Optional[str],
        intent: Optional[EmailIntent]
    ) -> List[UnitAnalysisResult]:
        results: List[Optional[UnitAnalysisResult]] = [None] * len(units)
        semaphore = asyncio.Semaphore(self.unit_analyzer.max_concurrent_calls)

        async def analyze(slot: int, unit: RetrievedUnit):
            results[slot] = await self.unit_analyzer.analyze_unit(
                unit, config, email.subject, reference_context, intent, semaphore=semaphore
            )

        await asyncio.gather(*(analyze(i, unit) for i, unit in enumerate(units)))
        return results

    @staticmethod
    def _email_unit(email: EmailDocument) -> RetrievedUnit:
        return RetrievedUnit(
            source_id=EMAIL_SOURCE_ID,
            content=email.plain_text_body or "",
            title=email.subject,
            retrieval_succeeded=True,
            retrieval_source="email"
        )

    @staticmethod
    def _validate_config(agent_config: Union[AgentConfig, Dict[str, Any]]) -> AgentConfig:
        if isinstance(agent_config, AgentConfig):
            return agent_config
        if isinstance(agent_config, dict):
            return AgentConfig.from_dict(agent_config)
        raise ConfigurationError(f"Unsupported agent configuration type: {type(agent_config).__name__}")

    async def _fetch_email(self, email_id: str, access_token: str) -> EmailDocument:
        if self.email_source is None:
            raise ConfigurationError("No email source configured")

        timeout = self.config["email_source"]["timeout"]
        try:
            email = await asyncio.wait_for(
                self.email_source.get_email_by_id(access_token, email_id),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise EmailSourceError(f"Timed out reading email {email_id} after {timeout}s") from e

        if email is None:
            raise EmailNotFoundError(email_id)
        return email

    @staticmethod
    def _summarize_reasoning(aggregated: AggregatedResult, unit_results: List[UnitAnalysisResult]) -> str:
        if aggregated.matched:
            return " | ".join(f"{sourced.source}: {sourced.reasoning}" for sourced in aggregated.data_by_source)
        if aggregated.error:
            return aggregated.error
        return f"No matching content in {len(unit_results)} analyzed sources"

    def _record(self, run_id: str, stage: str, snapshot: Dict[str, Any]):
        if self.recorder is None:
            return
        try:
            self.recorder.record(run_id, stage, snapshot)
        except Exception as e:
            logger.warning(f"[{run_id}] Run recorder failed on {stage}: {e}")

    async def _finish(self, run_id: str, email: EmailDocument, result: AnalysisJobResult):
        if self.recorder is not None:
            try:
                self.recorder.finalize(run_id, {
                    "emailId": email.id,
                    "emailSubject": email.subject,
                    "result": result.to_dict()
                })
                await self.recorder.drain(self.config["pipeline"]["recorder_drain_timeout"])
            except Exception as e:
                logger.warning(f"[{run_id}] Run recorder failed to finalize: {e}")

        if self.result_sink is not None:
            try:
                await self.result_sink.save(result)
            except Exception as e:
                logger.error(f"[{run_id}] Failed to save result: {e}")
