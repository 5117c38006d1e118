"""
Tests for pipeline assembly from settings and the command-line entry point.
"""

import json
from unittest.mock import patch

import pytest

import main
from fakes import FakeFetchBackend, FakeOracle
from inbox_extractor.config.settings import ExtractorSettings
from inbox_extractor.email_processing.processor import ExtractionPipeline
from inbox_extractor.email_processing.recorder import FileRunRecorder
from inbox_extractor.integrations.retrieval.direct import DirectFetchBackend
from inbox_extractor.integrations.retrieval.factory import ContentRetrieverFactory
from inbox_extractor.integrations.retrieval.firecrawl import FirecrawlFetchBackend
from inbox_extractor.integrations.retrieval.tavily import TavilySearchBackend
from inbox_extractor.runner import build_pipeline, build_retriever_factory


def settings(**overrides):
    values = {"GROQ_API_KEY": None, "FIRECRAWL_API_KEY": None, "TAVILY_API_KEY": None}
    values.update(overrides)
    return ExtractorSettings(_env_file=None, **values)


class TestBuildPipeline:
    """Tests for runner.build_pipeline and build_retriever_factory."""

    def test_backends_follow_configured_keys(self):
        factory = build_retriever_factory(settings(FIRECRAWL_API_KEY="fc-key", TAVILY_API_KEY="tvly-key"))

        assert isinstance(factory.fetch_backend, FirecrawlFetchBackend)
        assert isinstance(factory.search_backend, TavilySearchBackend)

    def test_without_keys_uses_direct_fetching(self):
        factory = build_retriever_factory(settings())

        assert isinstance(factory.fetch_backend, DirectFetchBackend)
        assert factory.search_backend is None

    def test_requires_oracle_key(self):
        with pytest.raises(ValueError):
            build_pipeline(settings())

    def test_debug_enables_file_recorder(self, tmp_path):
        pipeline = build_pipeline(
            settings(EMAIL_ANALYSIS_DEBUG=True, DEBUG_RUNS_DIR=str(tmp_path)),
            oracle=FakeOracle()
        )

        assert isinstance(pipeline.recorder, FileRunRecorder)
        assert pipeline.email_source.provider_name == "outlook"


class TestCommandLine:
    """Tests for main.main."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        """Keep main() from replacing the root logger handlers during tests."""
        with patch("main.configure_logging"):
            yield

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({
            "matchCriteria": "Job newsletters",
            "extractionFields": "title",
            "followLinks": False
        }), encoding="utf-8")
        return path

    def test_html_file_run(self, tmp_path, config_file, capsys):
        email_file = tmp_path / "newsletter.html"
        email_file.write_text("<p>Senior Engineer wanted</p>", encoding="utf-8")
        pipeline = ExtractionPipeline(
            FakeOracle(analysis={"matched": True, "extractedData": {"title": "Senior Engineer"}, "confidence": 0.9}),
            retriever_factory=ContentRetrieverFactory(FakeFetchBackend())
        )

        with patch("main.build_pipeline", return_value=pipeline):
            exit_code = main.main(["--config", str(config_file), "--html-file", str(email_file), "--subject", "Jobs"])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert output["emailId"] == "newsletter"
        assert output["mergedData"] == {"title": "Senior Engineer"}

    def test_unreadable_config(self, tmp_path):
        exit_code = main.main(["--config", str(tmp_path / "missing.json"), "--html-file", "x.html"])

        assert exit_code == 2

    def test_mailbox_run_needs_token(self, config_file):
        with patch("main.build_pipeline", return_value=ExtractionPipeline(FakeOracle())):
            exit_code = main.main(["--config", str(config_file), "--email-id", "AAMk-1", "--access-token", ""])

        assert exit_code == 2
