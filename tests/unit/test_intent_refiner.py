"""
Unit tests for IntentRefiner.

Oracle trouble of any kind must produce a DEGRADED outcome carrying the
configured match criteria, never an exception.
"""

import asyncio
import copy

import pytest

from fakes import FakeOracle
from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.analyzers.intent import FALLBACK_EXPECTED_CONTENT, IntentRefiner
from inbox_extractor.email_processing.base import OutcomeStatus
from inbox_extractor.exceptions import OracleError


class TestIntentRefiner:
    """Tests for IntentRefiner.refine."""

    @pytest.mark.asyncio
    async def test_successful_refinement(self, agent_config):
        oracle = FakeOracle(intent={
            "refinedGoal": "  Senior backend roles in Berlin ",
            "keyTerms": ["backend", "Berlin", "backend", "", None],
            "expectedContent": "Job ads"
        })
        outcome = await IntentRefiner(oracle).refine("email text", "Jobs", agent_config)

        assert outcome.status == OutcomeStatus.OK
        assert outcome.value.refined_goal == "Senior backend roles in Berlin"
        assert outcome.value.key_terms == ["backend", "Berlin"]
        assert outcome.value.expected_content == "Job ads"

    @pytest.mark.asyncio
    async def test_key_terms_as_string_are_split_and_capped(self, agent_config):
        terms = ", ".join(f"term{i}" for i in range(12))
        oracle = FakeOracle(intent={"refinedGoal": "goal", "keyTerms": terms})

        outcome = await IntentRefiner(oracle).refine("", "", agent_config)

        assert outcome.value.key_terms == [f"term{i}" for i in range(8)]
        assert outcome.value.expected_content == FALLBACK_EXPECTED_CONTENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        OracleError("rate limited"),
        "this is not json",
        {"keyTerms": ["a"]},
        {"refinedGoal": "   "},
    ])
    async def test_falls_back_to_criteria(self, agent_config, reply):
        outcome = await IntentRefiner(FakeOracle(intent=reply)).refine("text", "subject", agent_config)

        assert outcome.status == OutcomeStatus.DEGRADED
        assert outcome.is_usable
        assert outcome.value.refined_goal == agent_config.match_criteria
        assert outcome.value.key_terms == []
        assert outcome.value.expected_content == FALLBACK_EXPECTED_CONTENT

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, agent_config):
        class SlowOracle(FakeOracle):
            async def complete(self, *args, **kwargs):
                await asyncio.sleep(1)
                return "{}"

        config = copy.deepcopy(ANALYZER_CONFIG["intent_refiner"])
        config["timeout"] = 0.01

        outcome = await IntentRefiner(SlowOracle(), config).refine("text", "subject", agent_config)

        assert outcome.status == OutcomeStatus.DEGRADED
        assert "timed out" in outcome.reason

    @pytest.mark.asyncio
    async def test_prompt_truncates_email_and_omits_unset_sections(self, agent_config):
        oracle = FakeOracle()
        await IntentRefiner(oracle).refine("a" * 5000 + "TAIL", "Jobs", agent_config)

        prompt = oracle.calls_for("intent")[0]
        assert "a" * 2000 in prompt
        assert "TAIL" not in prompt
        assert "Known Issues to Avoid" not in prompt
        assert "Examples of Expected Extractions" not in prompt

    @pytest.mark.asyncio
    async def test_model_settings_come_from_config(self, agent_config):
        config = copy.deepcopy(ANALYZER_CONFIG["intent_refiner"])
        config["model"].update(name="intent-model", retry_count=7)
        oracle = FakeOracle()

        await IntentRefiner(oracle, config).refine("text", "subject", agent_config)

        assert oracle.options == [{"kind": "intent", "model": "intent-model", "json_mode": True, "max_retries": 7}]
