"""
Knowledge-Base Context Provider

Interface to the external knowledge-base search that supplies reference
material (past successful extractions, user notes) for unit analysis. The
embedding and search subsystem itself lives outside this package.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

logger = logging.getLogger(__name__)


class KnowledgeBaseProvider(ABC):
    """Abstract source of reference context for extraction prompts."""

    @abstractmethod
    async def get_context(
        self,
        query: str,
        user_id: Optional[str],
        knowledge_base_ids: List[str],
        top_k: int
    ) -> str:
        """
        Return reference text relevant to the query.

        Args:
            query: Search text, usually the match criteria and refined goal
            user_id: Owner of the knowledge bases
            knowledge_base_ids: Knowledge bases to search
            top_k: Maximum number of passages

        Returns:
            Reference text, empty when nothing relevant exists
        """
        pass


async def fetch_reference_context(
    provider: Optional[KnowledgeBaseProvider],
    query: str,
    user_id: Optional[str],
    knowledge_base_ids: List[str],
    top_k: int,
    timeout: float
) -> Optional[str]:
    """
    Look up reference context, treating any failure as "no context".

    Returns:
        Reference text, or None when there is no provider, no knowledge
        base to search, nothing relevant, or the lookup failed
    """
    if provider is None or not knowledge_base_ids:
        return None

    try:
        context = await asyncio.wait_for(
            provider.get_context(query, user_id, list(knowledge_base_ids), top_k),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning(f"Knowledge-base lookup timed out after {timeout}s, continuing without context")
        return None
    except Exception as e:
        logger.warning(f"Knowledge-base lookup failed, continuing without context: {e}")
        return None

    if not context or not context.strip():
        return None
    logger.debug(f"Knowledge-base context: {len(context)} chars")
    return context.strip()
