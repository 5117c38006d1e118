"""
LinkPrioritizer: Oracle-Ranked Link Selection

Decides which of an email's links are worth retrieving. The oracle sees a
numbered list of links, with links matching the user's button text pattern
listed first and marked as priority, and answers with the numbers of the
links to follow in order of relevance.

Design Considerations:
- Button text pattern is a ranking boost, never a filter, while the oracle works
- Index parsing is defensive: junk tokens are dropped, not fatal
- On oracle failure the selection is deterministic: pattern matches or nothing
- Final selection is deduplicated again and capped at max_links_to_scrape
"""

import asyncio
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.base import StageOutcome
from inbox_extractor.email_processing.handlers.links import UrlNormalizer, compile_button_pattern
from inbox_extractor.email_processing.models import AgentConfig, EmailIntent, ExtractedLink, LinkSelection
from inbox_extractor.exceptions import OracleError
from inbox_extractor.integrations.oracle import ExtractionOracle, parse_json_object

logger = logging.getLogger(__name__)

PRIORITY_MARKER = "🎯 PRIORITY"
NONE_SENTINEL = "NONE"

SYSTEM_PROMPT = (
    "You are an expert link selector. Strongly prefer links marked PRIORITY, they match the "
    "user's configured button pattern. Link text is often generic but the specifics are inside "
    "the pages. Return only the selection, no commentary outside it."
)

_INDEX_TOKEN = re.compile(r"^\s*#?(\d+)\s*\.?\s*$")


class LinkPrioritizer:
    """
    Selects and orders links for retrieval.

    The prioritizer never raises for oracle trouble: a failed or timed-out
    call yields a DEGRADED outcome carrying the fallback selection.
    """

    def __init__(
        self,
        oracle: ExtractionOracle,
        normalizer: Optional[UrlNormalizer] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        self.oracle = oracle
        self.normalizer = normalizer or UrlNormalizer()
        self.config = config or ANALYZER_CONFIG["link_prioritizer"]
        self.model_config = self.config["model"]

    async def prioritize(
        self,
        links: List[ExtractedLink],
        agent_config: AgentConfig,
        intent: Optional[EmailIntent] = None
    ) -> StageOutcome[LinkSelection]:
        """
        Choose which links to retrieve, most relevant first.

        Args:
            links: Normalized, deduplicated links in document order
            agent_config: User's agent configuration
            intent: Refined intent, when the intent stage ran

        Returns:
            StageOutcome carrying a LinkSelection
        """
        request_id = f"links-{uuid.uuid4().hex[:8]}"

        if not links:
            return StageOutcome.ok(LinkSelection(selected=[], reasoning="No links found in email"))

        pattern = compile_button_pattern(agent_config.button_text_pattern)
        presented = self._order_for_presentation(links, pattern)[:self.config["max_links_per_prompt"]]
        prompt = self._build_prompt(presented, pattern, agent_config, intent, len(links))

        logger.info(
            f"[{request_id}] Prioritizing {len(links)} links "
            f"({len(presented)} presented, pattern={agent_config.button_text_pattern!r})"
        )

        try:
            text = await asyncio.wait_for(
                self.oracle.complete(
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
            logger.warning(f"[{request_id}] Link prioritization timed out, applying fallback")
            return self._fallback(links, pattern, agent_config, prompt, "link prioritization timed out")
        except Exception as e:
            logger.warning(f"[{request_id}] Link prioritization failed, applying fallback: {e}")
            return self._fallback(links, pattern, agent_config, prompt, f"link prioritization failed: {e}")

        raw_selection, reasoning = self.read_reply(text)
        logger.debug(f"[{request_id}] Oracle selection: {raw_selection!r}")

        indices = self.parse_indices(raw_selection, len(presented))
        chosen = [presented[i] for i in indices]
        selected = self._finalize(chosen, agent_config.max_links_to_scrape)

        if not selected:
            reasoning = reasoning or "Oracle determined no links are relevant to user criteria"

        logger.info(f"[{request_id}] Selected {len(selected)}/{len(links)} links")
        return StageOutcome.ok(LinkSelection(
            selected=selected,
            reasoning=reasoning or f"Oracle identified {len(selected)} links as relevant",
            total_links=len(links),
            prompt=prompt,
            raw_response=str(raw_selection)
        ))

    @staticmethod
    def read_reply(text: str) -> Tuple[Any, str]:
        """
        Split an oracle reply into the raw selection and its reasoning.

        A JSON object contributes its "selected" and "reasoning" keys. Any
        other reply is taken as the selection itself: comma-separated
        numbers or NONE.
        """
        try:
            reply = parse_json_object(text)
        except OracleError:
            return (text or "").strip(), ""
        reasoning = reply.get("reasoning")
        return reply.get("selected"), reasoning if isinstance(reasoning, str) else ""

    @staticmethod
    def parse_indices(raw: Any, count: int) -> List[int]:
        """
        Convert an oracle selection into zero-based indices.

        Accepts a list of numbers or numeric strings, a comma-separated
        string, or the NONE sentinel. Non-numeric and out-of-range tokens are
        dropped; repeats keep their first position.

        Args:
            raw: Selection as returned by the oracle (1-based)
            count: Number of links that were presented

        Returns:
            Zero-based indices in oracle order
        """
        if raw is None:
            return []
        if isinstance(raw, str):
            if raw.strip().upper() in (NONE_SENTINEL, ""):
                return []
            tokens: List[Any] = raw.split(",")
        elif isinstance(raw, (list, tuple)):
            tokens = list(raw)
        else:
            tokens = [raw]

        indices = []
        for token in tokens:
            if isinstance(token, bool):
                continue
            if isinstance(token, int):
                number = token
            elif isinstance(token, float) and token.is_integer():
                number = int(token)
            elif isinstance(token, str):
                match = _INDEX_TOKEN.match(token)
                if not match:
                    continue
                number = int(match.group(1))
            else:
                continue

            index = number - 1
            if 0 <= index < count and index not in indices:
                indices.append(index)
        return indices

    def _fallback(
        self,
        links: List[ExtractedLink],
        pattern,
        agent_config: AgentConfig,
        prompt: str,
        reason: str
    ) -> StageOutcome[LinkSelection]:
        if pattern is None:
            logger.warning("No button pattern configured, selecting no links")
            return StageOutcome.degraded(
                LinkSelection(selected=[], reasoning="Prioritization failed and no fallback available",
                              total_links=len(links), prompt=prompt),
                reason
            )

        matches = [link for link in links if link.display_text and pattern.search(link.display_text)]
        selected = self._finalize(matches, agent_config.max_links_to_scrape)
        logger.warning(f"Fallback: selected {len(selected)} links matching button pattern")
        return StageOutcome.degraded(
            LinkSelection(selected=selected, reasoning="Prioritization failed, used button pattern as fallback",
                          total_links=len(links), prompt=prompt),
            reason
        )

    def _finalize(self, links: List[ExtractedLink], limit: int) -> List[ExtractedLink]:
        return self.normalizer.deduplicate(links)[:limit]

    @staticmethod
    def _order_for_presentation(links: List[ExtractedLink], pattern) -> List[ExtractedLink]:
        if pattern is None:
            return list(links)
        boosted = [link for link in links if link.display_text and pattern.search(link.display_text)]
        regular = [link for link in links if link not in boosted]
        return boosted + regular

    def _build_prompt(
        self,
        presented: List[ExtractedLink],
        pattern,
        agent_config: AgentConfig,
        intent: Optional[EmailIntent],
        total: int
    ) -> str:
        url_limit = self.config["max_url_display_chars"]
        lines = []
        for number, link in enumerate(presented, start=1):
            url = link.normalized_url or link.url
            if len(url) > url_limit:
                url = url[:url_limit] + "..."
            boosted = pattern is not None and bool(link.display_text) and pattern.search(link.display_text)
            marker = f"{PRIORITY_MARKER}: " if boosted else ""
            button = " [button]" if link.is_button_like else ""
            lines.append(f'{number}. {marker}"{link.display_text}"{button} -> {url}')

        goal = intent.refined_goal if intent else agent_config.match_criteria
        sections = [
            "You are selecting links from an email that lead to pages containing specific information.",
            f"**USER'S GOAL**: {goal}",
        ]
        if intent and intent.key_terms:
            sections.append(f"**KEY TERMS TO FIND**: {', '.join(intent.key_terms)}")
        if intent and intent.expected_content:
            sections.append(f"**EXPECTED PAGE CONTENT**: {intent.expected_content}")
        sections.append(f"**WHAT TO EXTRACT**: {agent_config.extraction_fields}")
        if agent_config.link_selection_guidance:
            sections.append(f"**LINK GUIDANCE**: {agent_config.link_selection_guidance}")
        if pattern is not None:
            sections.append(
                f'The user configured "{agent_config.button_text_pattern}" as their primary link pattern. '
                f"Links marked {PRIORITY_MARKER} match it and should be selected unless clearly irrelevant "
                "(unsubscribe, privacy policy). Other links are secondary."
            )
        if agent_config.analysis_feedback:
            sections.append(f"**PAST MISTAKES TO AVOID**:\n{agent_config.analysis_feedback}")

        sections.append("**AVAILABLE LINKS**:\n" + "\n".join(lines))
        if total > len(presented):
            sections.append(f"... and {total - len(presented)} more links not shown")

        sections.append(
            "**RULES**:\n"
            "1. Prefer priority links, then links whose text or URL points at specific content\n"
            "2. Skip navigation, login, settings, unsubscribe, social media, about/terms/privacy pages\n"
            "3. Think about whether the page would contain the key terms and data the user needs\n\n"
            '**RESPOND** with the link numbers, most relevant first, separated by commas (for example: 3, 1), '
            f'or {NONE_SENTINEL} if no link is relevant. '
            'JSON is also accepted: {"selected": [numbers], "reasoning": "short"}.'
        )
        return "\n\n".join(sections)
