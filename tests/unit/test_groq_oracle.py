"""
Unit tests for the Groq client wrapper, the Groq oracle and JSON reply parsing.
"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from inbox_extractor.exceptions import OracleError
from inbox_extractor.integrations.groq.client import METRICS_HISTORY_LIMIT, EnhancedGroqClient
from inbox_extractor.integrations.groq.oracle import GroqExtractionOracle
from inbox_extractor.integrations.oracle import parse_json_object


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def groq_client():
    """
    Returns:
        EnhancedGroqClient: Client whose underlying Groq SDK object is mocked
    """
    with patch("inbox_extractor.integrations.groq.client.Groq"):
        client = EnhancedGroqClient(api_key="gsk-test", retry_base_delay=0)
        client.client = MagicMock()
        yield client


class TestParseJsonObject:
    """Tests for parse_json_object."""

    @pytest.mark.parametrize("text", [
        '{"matched": true}',
        '```json\n{"matched": true}\n```',
        'Here is the result: {"matched": true} Hope this helps.',
    ])
    def test_recovers_object(self, text):
        assert parse_json_object(text) == {"matched": True}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2]", "{broken"])
    def test_rejects_non_objects(self, text):
        with pytest.raises(OracleError):
            parse_json_object(text)


class TestEnhancedGroqClient:
    """Tests for EnhancedGroqClient.process_with_retry."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, groq_client):
        groq_client.client.chat.completions.create.side_effect = [
            RuntimeError("rate limited"),
            completion("{}")
        ]

        response = await groq_client.process_with_retry(
            messages=[{"role": "user", "content": "hi"}], max_retries=3, temperature=0.1, response_format=None
        )

        assert response.choices[0].message.content == "{}"
        assert groq_client.client.chat.completions.create.call_count == 2
        kwargs = groq_client.client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert "response_format" not in kwargs
        assert len(groq_client.metrics["errors"]) == 1

    @pytest.mark.asyncio
    async def test_raises_oracle_error_after_last_attempt(self, groq_client):
        groq_client.client.chat.completions.create.side_effect = RuntimeError("service down")

        with pytest.raises(OracleError, match="Failed after 2 retries"):
            await groq_client.process_with_retry(messages=[], max_retries=2)

        assert groq_client.client.chat.completions.create.call_count == 2

    def test_metric_history_is_capped(self, groq_client):
        for i in range(METRICS_HISTORY_LIMIT + 50):
            groq_client.record_error(f"error {i}")
        groq_client.record_success(datetime.now())

        assert len(groq_client.metrics["errors"]) == METRICS_HISTORY_LIMIT
        assert groq_client.metrics["errors"][-1]["error"] == f"error {METRICS_HISTORY_LIMIT + 49}"
        performance = groq_client.metrics["performance"]
        assert performance["total_errors"] == METRICS_HISTORY_LIMIT + 50
        assert performance["total_requests"] == 1
        assert performance["success_rate"] == pytest.approx(100 / (METRICS_HISTORY_LIMIT + 51))

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)

        with patch("inbox_extractor.integrations.groq.client.load_dotenv"):
            with pytest.raises(ValueError):
                EnhancedGroqClient()


class TestGroqExtractionOracle:
    """Tests for GroqExtractionOracle."""

    @pytest.mark.asyncio
    async def test_json_mode_request(self):
        client = MagicMock(spec=EnhancedGroqClient)
        client.process_with_retry = AsyncMock(return_value=completion('{"selected": [1]}'))
        oracle = GroqExtractionOracle(client=client, max_retries=2)

        reply = await oracle.complete_json("system", "user", temperature=0.0, max_tokens=150)

        assert reply == {"selected": [1]}
        kwargs = client.process_with_retry.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["max_retries"] == 2
        assert kwargs["max_completion_tokens"] == 150
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "llama-3.3-70b-versatile"

    @pytest.mark.asyncio
    async def test_plain_request_has_no_response_format(self):
        client = MagicMock(spec=EnhancedGroqClient)
        client.process_with_retry = AsyncMock(return_value=completion("text"))

        text = await GroqExtractionOracle(client=client).complete("system", "user", model="other-model")

        assert text == "text"
        kwargs = client.process_with_retry.call_args.kwargs
        assert "response_format" not in kwargs
        assert kwargs["model"] == "other-model"

    @pytest.mark.asyncio
    async def test_per_call_retry_override(self):
        client = MagicMock(spec=EnhancedGroqClient)
        client.process_with_retry = AsyncMock(return_value=completion("{}"))

        await GroqExtractionOracle(client=client, max_retries=3).complete_json("system", "user", max_retries=1)

        assert client.process_with_retry.call_args.kwargs["max_retries"] == 1

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        client = MagicMock(spec=EnhancedGroqClient)
        client.process_with_retry = AsyncMock(return_value=completion(None))

        with pytest.raises(OracleError):
            await GroqExtractionOracle(client=client).complete("system", "user")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        client = MagicMock(spec=EnhancedGroqClient)
        client.process_with_retry = AsyncMock(return_value=SimpleNamespace(choices=[]))

        with pytest.raises(OracleError):
            await GroqExtractionOracle(client=client).complete("system", "user")

    def test_provider_name(self):
        assert GroqExtractionOracle(client=MagicMock(spec=EnhancedGroqClient)).provider_name == "groq"
