"""
Extraction Oracle Interface

Abstract text-completion service used by every oracle-backed stage. Stages
depend only on this interface so that providers can be swapped and tests can
inject deterministic fakes.

Design Considerations:
- Providers raise OracleError for any failure; stages decide the fallback
- JSON replies are parsed tolerantly (code fences, leading prose)
- A JSON reply that is not an object is an error
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from inbox_extractor.exceptions import OracleError

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse an oracle reply into a JSON object.

    Args:
        text: Raw reply text

    Returns:
        Parsed dictionary

    Raises:
        OracleError: If no JSON object can be recovered from the reply
    """
    if not text or not text.strip():
        raise OracleError("Empty oracle reply")

    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Fall back to the outermost braces when the model wrapped JSON in prose
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise OracleError(f"Oracle reply is not JSON: {cleaned[:100]}")
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise OracleError(f"Oracle reply is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise OracleError(f"Oracle reply is JSON but not an object: {type(parsed).__name__}")
    return parsed


class ExtractionOracle(ABC):
    """
    Abstract completion service.

    Implementations must be safe to call concurrently from several
    coroutines.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this oracle provider."""
        pass

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 1000,
        model: Optional[str] = None,
        json_mode: bool = False,
        max_retries: Optional[int] = None
    ) -> str:
        """
        Return the completion text for a prompt.

        Args:
            system_prompt: Instructions for the model
            user_prompt: Task content
            temperature: Sampling temperature
            max_tokens: Completion token cap
            model: Provider model override
            json_mode: Ask the provider to constrain output to a JSON object
            max_retries: Attempt count override for providers that retry

        Raises:
            OracleError: If the provider call fails
        """
        pass

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 1000,
        model: Optional[str] = None,
        max_retries: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Return the completion parsed as a JSON object.

        Raises:
            OracleError: If the call fails or the reply is not a JSON object
        """
        text = await self.complete(
            system_prompt,
            user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            model=model,
            json_mode=True,
            max_retries=max_retries
        )
        return parse_json_object(text)
