"""
UnitAnalyzer: Structured Extraction per Content Unit

Judges whether one unit of content (the email body or one retrieved page)
matches the user's goal and, if so, extracts the requested fields.

Design Considerations:
- Full-context analysis in a single oracle call is the default path
- Units above the safe size are chunked; chunk results are folded back into
  one unit result with the aggregator's merge rule
- Reply fields are validated and defaulted individually; a bad reply makes
  the unit a non-match, never an exception
- Oracle calls are bounded by a per-call timeout and a semaphore created per
  run, since a semaphore binds to the event loop that first waits on it
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.aggregator import merge_extracted_data
from inbox_extractor.email_processing.handlers.chunker import SizeRouter
from inbox_extractor.email_processing.models import (
    EMAIL_SOURCE_ID,
    AgentConfig,
    EmailIntent,
    RetrievedUnit,
    UnitAnalysisResult,
)
from inbox_extractor.exceptions import OracleError
from inbox_extractor.integrations.oracle import ExtractionOracle, parse_json_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert data extraction assistant. Analyze content and extract specific information based on the user's criteria.

Key principles:
1. Be THOROUGH - scan the entire content for relevant information
2. Be ACCURATE - only extract data that is actually present
3. Be STRUCTURED - follow the user's desired output format exactly
4. Judge relevance by the user's intent, not by keyword overlap alone

Return a JSON object with:
- matched: boolean
- extractedData: object keyed by the requested fields, null for fields not found
- reasoning: string
- confidence: number between 0 and 1"""


@dataclass
class _Reply:
    matched: bool
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.0


class UnitAnalyzer:
    """
    Produces exactly one UnitAnalysisResult per retrieved unit.

    Args:
        oracle: Extraction oracle
        router: Size router deciding between full-context and chunked analysis
        max_concurrent_calls: Bound on concurrent oracle calls when the caller
            does not pass its own semaphore to analyze_unit()
        config: Stage settings, defaults to ANALYZER_CONFIG["unit_analyzer"]
    """

    def __init__(
        self,
        oracle: ExtractionOracle,
        router: Optional[SizeRouter] = None,
        max_concurrent_calls: Optional[int] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        self.oracle = oracle
        self.router = router or SizeRouter()
        self.max_concurrent_calls = max_concurrent_calls or ANALYZER_CONFIG["pipeline"]["max_concurrent_oracle_calls"]
        self.config = config or ANALYZER_CONFIG["unit_analyzer"]
        self.model_config = self.config["model"]

    async def analyze_unit(
        self,
        unit: RetrievedUnit,
        agent_config: AgentConfig,
        subject: str = "",
        reference_context: Optional[str] = None,
        intent: Optional[EmailIntent] = None,
        semaphore: Optional[asyncio.Semaphore] = None
    ) -> UnitAnalysisResult:
        """
        Analyze one unit, chunking it first when it is too large.

        Args:
            unit: Successfully retrieved content
            agent_config: User's agent configuration
            subject: Email subject, used as title for the email unit
            reference_context: Optional knowledge-base reference text
            intent: Optional refined intent
            semaphore: Bound shared with other units of the same run; a
                fresh one is created for this call when omitted

        Returns:
            UnitAnalysisResult for the unit's source
        """
        request_id = f"unit-{uuid.uuid4().hex[:8]}"
        title = unit.title or (subject if unit.source_id == EMAIL_SOURCE_ID else "")
        chunks = self.router.route(unit)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.max_concurrent_calls)

        if chunks is None:
            logger.info(f"[{request_id}] Full-context analysis of {unit.source_id} ({len(unit.content)} chars)")
            prompt = self.build_prompt(unit.content, unit.source_id, title, agent_config, reference_context, intent)
            reply = await self._ask(prompt, request_id, semaphore)
            return UnitAnalysisResult(
                source_id=unit.source_id,
                matched=reply.matched,
                extracted_data=reply.extracted_data,
                reasoning=reply.reasoning,
                confidence=reply.confidence,
                used_chunking=False,
                content_length=len(unit.content),
                chunk_count=0,
                title=title
            )

        logger.info(f"[{request_id}] Chunked analysis of {unit.source_id}: {len(chunks)} chunks")
        prompts = [
            self.build_prompt(
                chunk.text,
                unit.source_id,
                f"{title} (part {chunk.index + 1} of {len(chunks)})".strip(),
                agent_config,
                reference_context,
                intent
            )
            for chunk in chunks
        ]
        replies = await asyncio.gather(
            *(self._ask(prompt, f"{request_id}.{i}", semaphore) for i, prompt in enumerate(prompts))
        )
        return self._combine_chunks(unit, title, list(replies))

    def _combine_chunks(self, unit: RetrievedUnit, title: str, replies: List[_Reply]) -> UnitAnalysisResult:
        matched = [(part, reply) for part, reply in enumerate(replies, start=1) if reply.matched]

        data: Dict[str, Any] = {}
        for _, reply in matched:
            data = merge_extracted_data(data, reply.extracted_data)

        if matched:
            confidence = sum(reply.confidence for _, reply in matched) / len(matched)
            reasoning = "; ".join(f"Part {part}: {reply.reasoning}" for part, reply in matched)
        else:
            confidence = sum(reply.confidence for reply in replies) / len(replies) if replies else 0.0
            reasoning = f"No match in any of {len(replies)} parts"

        return UnitAnalysisResult(
            source_id=unit.source_id,
            matched=bool(matched),
            extracted_data=data,
            reasoning=reasoning,
            confidence=confidence,
            used_chunking=True,
            content_length=len(unit.content),
            chunk_count=len(replies),
            title=title
        )

    async def _ask(self, prompt: str, request_id: str, semaphore: asyncio.Semaphore) -> _Reply:
        try:
            async with semaphore:
                text = await self._complete(prompt)
        except asyncio.TimeoutError:
            logger.error(f"[{request_id}] Unit analysis timed out after {self.config['timeout']}s")
            return _Reply(matched=False, reasoning="Analysis failed: oracle call timed out", confidence=0.0)
        except Exception as e:
            logger.error(f"[{request_id}] Unit analysis failed: {e}")
            return _Reply(matched=False, reasoning=f"Analysis failed: {e}", confidence=0.0)

        try:
            reply = parse_json_object(text)
        except OracleError as e:
            logger.warning(f"[{request_id}] Unparseable analysis reply, treating as no match: {e}")
            reply = {}

        parsed = self.parse_reply(reply)
        logger.debug(
            f"[{request_id}] matched={parsed.matched} confidence={parsed.confidence:.2f} "
            f"fields={list(parsed.extracted_data.keys())}"
        )
        return parsed

    async def _complete(self, prompt: str) -> str:
        return await asyncio.wait_for(
            self.oracle.complete(
                SYSTEM_PROMPT,
                prompt,
                temperature=self.model_config["temperature"],
                max_tokens=self.model_config["max_tokens"],
                model=self.model_config["name"],
                json_mode=True,
                max_retries=self.model_config["retry_count"]
            ),
            timeout=self.config["timeout"]
        )

    def parse_reply(self, reply: Dict[str, Any]) -> _Reply:
        """Validate reply fields one by one, defaulting anything missing or malformed."""
        matched = reply.get("matched")
        if isinstance(matched, str):
            matched = matched.strip().lower() == "true"
        elif not isinstance(matched, bool):
            matched = False

        extracted = reply.get("extractedData")
        if not isinstance(extracted, dict):
            extracted = {}

        reasoning = reply.get("reasoning")
        if not isinstance(reasoning, str) or not reasoning.strip():
            reasoning = self.config["default_reasoning"]

        default_confidence = self.config["default_confidence"]
        confidence = reply.get("confidence")
        if confidence is None or isinstance(confidence, bool):
            confidence = default_confidence
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = default_confidence
        if confidence != confidence:  # NaN
            confidence = default_confidence
        confidence = min(1.0, max(0.0, confidence))

        return _Reply(matched=matched, extracted_data=extracted, reasoning=reasoning.strip(), confidence=confidence)

    @staticmethod
    def build_prompt(
        content: str,
        source: str,
        title: str,
        agent_config: AgentConfig,
        reference_context: Optional[str] = None,
        intent: Optional[EmailIntent] = None
    ) -> str:
        """
        Construct the extraction prompt for one unit or chunk.

        Sections for intent, examples, reference context and feedback are
        included only when present.
        """
        source_description = "Email body" if source == EMAIL_SOURCE_ID else f"Web page: {source}"
        sections = [
            "## Content to Analyze\n"
            f"**Source**: {source_description}\n"
            f"**Title**: {title or 'Untitled'}\n"
            f"**Length**: {len(content)} characters\n\n"
            f"**Content**:\n{content}",

            "## User's Requirements\n"
            f"**What the user is interested in**:\n{agent_config.match_criteria}"
        ]
        if agent_config.user_intent:
            sections.append(f"**User's Intent/Context** (why they need this data):\n{agent_config.user_intent}")
        if intent is not None and intent.refined_goal != agent_config.match_criteria:
            terms = f"\nKey terms: {', '.join(intent.key_terms)}" if intent.key_terms else ""
            sections.append(f"**Refined goal for this email**:\n{intent.refined_goal}{terms}")
        sections.append(f"**What to extract** (if content matches the goal):\n{agent_config.extraction_fields}")

        if agent_config.extraction_examples:
            sections.append(
                "## Expected Output Examples\n"
                f"{agent_config.extraction_examples}\n\n"
                "Your output should match this format and level of detail."
            )
        if reference_context:
            sections.append(
                "## Reference Context (from Knowledge Base)\n"
                f"{reference_context}\n\n"
                "Use this as guidance for format and detail, adapted to the current content."
            )
        if agent_config.analysis_feedback:
            sections.append(
                "## CRITICAL: Learn from Past Mistakes\n"
                f"{agent_config.analysis_feedback}\n\n"
                "Treat this feedback as hard constraints and do not repeat these mistakes."
            )

        sections.append(
            "## Output Format\n"
            "{\n"
            '  "matched": boolean,\n'
            '  "extractedData": {"<field>": value or null},\n'
            '  "reasoning": "clear explanation of your decision",\n'
            '  "confidence": number between 0 and 1\n'
            "}\n\n"
            "Use the field names from the extraction request. Set a field to null when it is not "
            "present instead of omitting it. Extract ALL relevant items, not just the first one. "
            "Only extract information that is explicitly present."
        )
        return "\n\n".join(sections)
