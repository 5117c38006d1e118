"""
IntentRefiner: Email-Specific Goal Refinement

Reads the opening of an email together with the agent configuration and asks
the extraction oracle what the user is really looking for in this particular
email. The refined goal and key terms steer link prioritization, which matters
because link text is often generic ("View Details") while the specifics live
on the linked pages.

Design Considerations:
- Bounded input: only the first part of the email text is sent
- Oracle failure never aborts the run; the original criteria are used instead
- Key terms are capped to keep downstream prompts focused
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.base import StageOutcome
from inbox_extractor.email_processing.models import AgentConfig, EmailIntent
from inbox_extractor.integrations.oracle import ExtractionOracle

logger = logging.getLogger(__name__)

FALLBACK_EXPECTED_CONTENT = "Relevant information matching user criteria"

SYSTEM_PROMPT = (
    "You extract user intent and key terms from email content to guide link selection. "
    "Link text is often generic but the specifics are inside the linked pages. "
    "Return only valid JSON."
)


class IntentRefiner:
    """
    Refines the user's match criteria against a specific email.

    Produces an EmailIntent used as additional context by the link
    prioritizer. Always returns a usable intent: OK when the oracle answered
    sensibly, DEGRADED with the configured criteria otherwise.
    """

    def __init__(self, oracle: ExtractionOracle, config: Optional[Dict[str, Any]] = None):
        """
        Initialize refiner with an oracle and stage configuration.

        Args:
            oracle: Extraction oracle used for the refinement call
            config: Stage settings, defaults to ANALYZER_CONFIG["intent_refiner"]
        """
        self.oracle = oracle
        self.config = config or ANALYZER_CONFIG["intent_refiner"]
        self.model_config = self.config["model"]

    @staticmethod
    def fallback_intent(agent_config: AgentConfig) -> EmailIntent:
        """Intent used whenever refinement is unavailable."""
        return EmailIntent(
            refined_goal=agent_config.match_criteria,
            key_terms=[],
            expected_content=FALLBACK_EXPECTED_CONTENT
        )

    async def refine(self, email_text: str, subject: str, agent_config: AgentConfig) -> StageOutcome[EmailIntent]:
        """
        Ask the oracle for a refined goal, key terms and expected page content.

        Args:
            email_text: Plain text of the email body
            subject: Email subject line
            agent_config: User's agent configuration

        Returns:
            StageOutcome carrying an EmailIntent (OK or DEGRADED)
        """
        request_id = f"intent-{uuid.uuid4().hex[:8]}"
        fallback = self.fallback_intent(agent_config)

        prompt = self._build_prompt(email_text, subject, agent_config)
        logger.debug(f"[{request_id}] Intent prompt built ({len(prompt)} chars)")

        try:
            reply = await asyncio.wait_for(
                self.oracle.complete_json(
                    SYSTEM_PROMPT,
                    prompt,
                    temperature=self.model_config["temperature"],
                    max_tokens=self.model_config["max_tokens"],
                    model=self.model_config["name"],
                    max_retries=self.model_config["retry_count"]
                ),
                timeout=self.config["timeout"]
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{request_id}] Intent refinement timed out, using original criteria")
            return StageOutcome.degraded(fallback, "intent refinement timed out")
        except Exception as e:
            logger.warning(f"[{request_id}] Intent refinement failed, using original criteria: {e}")
            return StageOutcome.degraded(fallback, f"intent refinement failed: {e}")

        logger.debug(f"[{request_id}] Intent reply: {json.dumps(reply)[:500]}")

        refined_goal = reply.get("refinedGoal")
        if not isinstance(refined_goal, str) or not refined_goal.strip():
            logger.warning(f"[{request_id}] Intent reply had no refined goal, using original criteria")
            return StageOutcome.degraded(fallback, "intent reply missing refinedGoal")

        intent = EmailIntent(
            refined_goal=refined_goal.strip(),
            key_terms=self._parse_key_terms(reply.get("keyTerms")),
            expected_content=self._text_or(reply.get("expectedContent"), FALLBACK_EXPECTED_CONTENT)
        )
        logger.info(f"[{request_id}] Refined intent with {len(intent.key_terms)} key terms")
        return StageOutcome.ok(intent)

    def _parse_key_terms(self, raw: Any) -> list:
        if isinstance(raw, str):
            raw = raw.split(",")
        if not isinstance(raw, list):
            return []

        terms = []
        for term in raw:
            if term is None:
                continue
            term = str(term).strip()
            if term and term not in terms:
                terms.append(term)
        return terms[:self.config["max_key_terms"]]

    @staticmethod
    def _text_or(value: Any, default: str) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return default

    def _build_prompt(self, email_text: str, subject: str, agent_config: AgentConfig) -> str:
        """
        Construct the refinement prompt.

        Optional configuration sections are included only when set.
        """
        limit = self.config["max_content_chars"]
        truncated = (email_text or "")[:limit]
        max_terms = self.config["max_key_terms"]

        sections = [
            "Analyze this email to understand what specific information the user is looking for.",
            f"**User's Goal**:\n{agent_config.match_criteria}",
            f"**What User Wants to Extract**:\n{agent_config.extraction_fields}",
        ]
        if agent_config.user_intent:
            sections.append(f"**User's Intent/Context**: {agent_config.user_intent}")
        if agent_config.link_selection_guidance:
            sections.append(f"**Link Selection Guidance**: {agent_config.link_selection_guidance}")

        sections.append(f"**Email Subject**: {subject}")
        sections.append(f"**Email Content** (first {limit} chars):\n{truncated}")

        if agent_config.extraction_examples:
            sections.append(
                "**Examples of Expected Extractions**:\n"
                f"{agent_config.extraction_examples}\n"
                "Use these to understand the type, format and specificity of the data wanted."
            )
        if agent_config.analysis_feedback:
            sections.append(
                "**Known Issues to Avoid** (from past analyses):\n"
                f"{agent_config.analysis_feedback}"
            )

        sections.append(
            "**Your Task**:\n"
            "Extract the specific details the user is looking for, based on their goal and this email. "
            "Key terms should be words expected on the TARGET PAGES, not necessarily in the link text.\n\n"
            f"Return JSON with at most {max_terms} key terms:\n"
            '{\n'
            '  "refinedGoal": "specific description incorporating email context and the user\'s end goal",\n'
            '  "keyTerms": ["term1", "term2"],\n'
            '  "expectedContent": "what relevant pages should contain"\n'
            '}'
        )
        return "\n\n".join(sections)
