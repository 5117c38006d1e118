"""
Groq-backed extraction oracle.

Adapts EnhancedGroqClient to the ExtractionOracle interface. JSON-mode
requests use Groq's response_format so the model is constrained to a single
JSON object.
"""

import logging
from typing import Optional

from inbox_extractor.exceptions import OracleError
from inbox_extractor.integrations.groq.client import DEFAULT_MODEL, EnhancedGroqClient
from inbox_extractor.integrations.oracle import ExtractionOracle

logger = logging.getLogger(__name__)


class GroqExtractionOracle(ExtractionOracle):
    """ExtractionOracle implementation over the Groq chat completions API."""

    def __init__(
        self,
        client: Optional[EnhancedGroqClient] = None,
        api_key: Optional[str] = None,
        default_model: str = DEFAULT_MODEL,
        max_retries: int = 3
    ):
        self.client = client or EnhancedGroqClient(api_key=api_key)
        self.default_model = default_model
        self.max_retries = max_retries

    @property
    def provider_name(self) -> str:
        return "groq"

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
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt}
        ]
        params = {
            "model": model or self.default_model,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        response = await self.client.process_with_retry(
            messages=messages,
            max_retries=max_retries or self.max_retries,
            **params
        )

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise OracleError(f"Unexpected Groq response shape: {e}") from e

        if content is None:
            raise OracleError("Groq returned an empty completion")

        logger.debug(f"Groq completion ({len(content)} chars): {content[:200]}")
        return content
