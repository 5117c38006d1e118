import pytest

from fakes import FakeOracle
from inbox_extractor.email_processing.models import AgentConfig, EmailDocument


@pytest.fixture
def agent_config():
    """
    Returns:
        AgentConfig: A job-listing extraction agent
    """
    return AgentConfig(
        match_criteria="Newsletters advertising software engineering jobs",
        extraction_fields="job title, company, salary range",
        button_text_pattern="Apply"
    )


@pytest.fixture
def fake_oracle():
    """
    Returns:
        FakeOracle: Oracle with default no-match answers
    """
    return FakeOracle()


@pytest.fixture
def sample_email():
    """
    Returns:
        EmailDocument: Newsletter with three job links and an unsubscribe link
    """
    html = """
    <html><body>
      <p>This week's picks for you.</p>
      <a href="https://jobs.example.com/1?utm_source=newsletter">Apply now</a>
      <a href="https://jobs.example.com/2">Apply for Senior Engineer</a>
      <a href="https://blog.example.com/post">Company blog</a>
      <a href="https://example.com/unsubscribe">Unsubscribe</a>
      <a href="mailto:hr@example.com">Email HR</a>
      <a href="#top">Back to top</a>
    </body></html>
    """
    return EmailDocument(id="msg-0001", subject="Jobs this week", sender="jobs@example.com", html_body=html)
