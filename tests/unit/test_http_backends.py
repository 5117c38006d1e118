"""
Unit tests for the HTTP integrations: Firecrawl, Tavily, direct fetching and
the Outlook mailbox reader.

aiohttp.ClientSession is patched with a mock session whose post/get return
async context managers, so no network traffic happens.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from inbox_extractor.email_processing.models import RetrievalContext
from inbox_extractor.exceptions import EmailSourceError
from inbox_extractor.integrations.outlook.client import OutlookEmailSource
from inbox_extractor.integrations.retrieval.direct import DirectFetchBackend
from inbox_extractor.integrations.retrieval.firecrawl import FirecrawlFetchBackend
from inbox_extractor.integrations.retrieval.tavily import TavilySearchBackend


def mock_session(status=200, json_data=None, text="", headers=None, url="https://example.com"):
    """
    Build a mock aiohttp session returning a single canned response.

    Returns:
        Tuple of (session, response) mocks
    """
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    response.headers = headers or {}
    response.url = url

    request = MagicMock()
    request.__aenter__ = AsyncMock(return_value=response)
    request.__aexit__ = AsyncMock(return_value=None)

    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    session.post = MagicMock(return_value=request)
    session.get = MagicMock(return_value=request)
    return session, response


class TestFirecrawlFetchBackend:
    """Tests for FirecrawlFetchBackend."""

    @pytest.fixture
    def backend(self):
        return FirecrawlFetchBackend("fc-test-key")

    @pytest.mark.asyncio
    async def test_successful_scrape(self, backend):
        session, _ = mock_session(json_data={
            "success": True,
            "data": {
                "markdown": "# Senior Engineer\n\nSalary 120k",
                "metadata": {"title": "Senior Engineer", "sourceURL": "https://jobs.example.com/1"}
            }
        })

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.fetch("https://safelinks.example.com/?url=x")

        assert result.usable
        assert result.title == "Senior Engineer"
        assert result.url == "https://jobs.example.com/1"
        assert result.source == "firecrawl"

        args, kwargs = session.post.call_args
        assert args[0] == "https://api.firecrawl.dev/v1/scrape"
        assert kwargs["json"]["url"] == "https://safelinks.example.com/?url=x"
        assert kwargs["json"]["formats"] == ["markdown"]
        assert kwargs["headers"]["Authorization"] == "Bearer fc-test-key"

    @pytest.mark.asyncio
    async def test_http_error(self, backend):
        session, _ = mock_session(status=402, text="Payment required")

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.fetch("https://jobs.example.com/1")

        assert not result.success
        assert "402" in result.error

    @pytest.mark.asyncio
    async def test_reported_failure(self, backend):
        session, _ = mock_session(json_data={"success": False, "error": "blocked by robots.txt"})

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.fetch("https://jobs.example.com/1")

        assert not result.success
        assert result.error == "blocked by robots.txt"

    @pytest.mark.asyncio
    async def test_network_error(self, backend):
        session, _ = mock_session()
        session.post.side_effect = aiohttp.ClientConnectionError("connection refused")

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.fetch("https://jobs.example.com/1")

        assert not result.success
        assert "connection refused" in result.error

    def test_requires_key(self):
        with pytest.raises(ValueError):
            FirecrawlFetchBackend("")


class TestTavilySearchBackend:
    """Tests for TavilySearchBackend."""

    @pytest.fixture
    def backend(self):
        return TavilySearchBackend("tvly-test-key")

    @pytest.mark.asyncio
    async def test_combines_top_results(self, backend):
        session, _ = mock_session(json_data={"results": [
            {"title": "Senior Engineer", "url": "https://a.example.com", "content": "First", "score": 0.9},
            {"title": "Engineer II", "url": "https://b.example.com", "content": "Second", "score": 0.7},
            {"title": "Intern", "url": "https://c.example.com", "content": "Third", "score": 0.2},
        ]})

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.search("senior engineer", RetrievalContext())

        assert result.usable
        assert result.title == "Senior Engineer"
        assert "## Senior Engineer" in result.content
        assert "**Source**: https://b.example.com" in result.content
        assert "Third" not in result.content

        payload = session.post.call_args.kwargs["json"]
        assert payload["query"] == "senior engineer"
        assert payload["max_results"] == 3
        assert payload["search_depth"] == "basic"

    @pytest.mark.asyncio
    async def test_no_results(self, backend):
        session, _ = mock_session(json_data={"results": []})

        with patch("aiohttp.ClientSession", return_value=session):
            result = await backend.search("nothing", RetrievalContext())

        assert not result.success
        assert result.error == "No search results found"

    @pytest.mark.asyncio
    async def test_empty_query_skips_request(self, backend):
        with patch("aiohttp.ClientSession") as session_class:
            result = await backend.search("", RetrievalContext())

        assert not result.success
        session_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_discover_returns_candidate_pages(self, backend):
        session, _ = mock_session(json_data={"results": [
            {"title": "Senior Engineer", "url": "https://careers.acme.example/42", "content": "Acme is hiring", "score": 0.8},
            {"title": "No url"},
        ]})

        with patch("aiohttp.ClientSession", return_value=session):
            hits = await backend.discover("senior engineer acme", exclude_domains=["linkedin.com"], max_results=5)

        assert [(hit.url, hit.title, hit.snippet, hit.score) for hit in hits] == [
            ("https://careers.acme.example/42", "Senior Engineer", "Acme is hiring", 0.8)
        ]
        payload = session.post.call_args.kwargs["json"]
        assert payload["search_depth"] == "advanced"
        assert payload["max_results"] == 5
        assert payload["exclude_domains"] == ["linkedin.com"]

    @pytest.mark.asyncio
    async def test_discover_http_error_finds_nothing(self, backend):
        session, _ = mock_session(status=429, text="rate limited")

        with patch("aiohttp.ClientSession", return_value=session):
            hits = await backend.discover("senior engineer")

        assert hits == []


class TestDirectFetchBackend:
    """Tests for DirectFetchBackend."""

    @pytest.mark.asyncio
    async def test_extracts_main_content(self):
        html = "<html><head><title>Role</title></head><body><nav>Menu</nav><main><p>Salary 120k</p></main></body></html>"
        session, _ = mock_session(text=html, headers={"Content-Type": "text/html; charset=utf-8"},
                                  url="https://jobs.example.com/1")

        with patch("aiohttp.ClientSession", return_value=session):
            result = await DirectFetchBackend().fetch("https://jobs.example.com/1")

        assert result.usable
        assert result.title == "Role"
        assert result.content == "Salary 120k"
        assert session.get.call_args.kwargs["allow_redirects"] is True

    @pytest.mark.asyncio
    async def test_rejects_binary_content(self):
        session, _ = mock_session(headers={"Content-Type": "application/pdf"})

        with patch("aiohttp.ClientSession", return_value=session):
            result = await DirectFetchBackend().fetch("https://jobs.example.com/file.pdf")

        assert not result.success
        assert "Unsupported content type" in result.error

    @pytest.mark.asyncio
    async def test_http_error(self):
        session, _ = mock_session(status=403)

        with patch("aiohttp.ClientSession", return_value=session):
            result = await DirectFetchBackend().fetch("https://jobs.example.com/1")

        assert result.error == "HTTP 403"


class TestOutlookEmailSource:
    """Tests for OutlookEmailSource."""

    @pytest.mark.asyncio
    async def test_reads_message(self):
        session, _ = mock_session(json_data={
            "id": "AAMk-1",
            "subject": "Jobs this week",
            "from": {"emailAddress": {"address": "jobs@example.com"}},
            "body": {"contentType": "html", "content": "<p>Hello <a href='https://x.example.com'>Apply</a></p>"},
            "receivedDateTime": "2024-05-01T09:30:00Z"
        })

        with patch("aiohttp.ClientSession", return_value=session):
            email = await OutlookEmailSource().get_email_by_id("token", "AAMk-1")

        assert email.id == "AAMk-1"
        assert email.sender == "jobs@example.com"
        assert email.plain_text_body == "Hello Apply"
        assert email.received_at.year == 2024

        args, kwargs = session.get.call_args
        assert args[0] == "https://graph.microsoft.com/v1.0/me/messages/AAMk-1"
        assert kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_plain_text_body(self):
        session, _ = mock_session(json_data={
            "id": "AAMk-2",
            "subject": "Plain",
            "body": {"contentType": "text", "content": "Just text"}
        })

        with patch("aiohttp.ClientSession", return_value=session):
            email = await OutlookEmailSource().get_email_by_id("token", "AAMk-2")

        assert email.html_body == ""
        assert email.plain_text_body == "Just text"

    @pytest.mark.asyncio
    async def test_missing_message(self):
        session, _ = mock_session(status=404)

        with patch("aiohttp.ClientSession", return_value=session):
            assert await OutlookEmailSource().get_email_by_id("token", "gone") is None

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        session, _ = mock_session(status=401, text="InvalidAuthenticationToken")

        with patch("aiohttp.ClientSession", return_value=session):
            with pytest.raises(EmailSourceError):
                await OutlookEmailSource().get_email_by_id("expired", "AAMk-1")
