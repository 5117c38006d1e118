"""
Extraction Exception Hierarchy

Errors raised by the extraction pipeline and its collaborators. Input errors
abort a run before any stage executes; every other error is caught at the
stage boundary and turned into a degraded or failed stage outcome.
"""


class ExtractionError(Exception):
    """Base class for all extraction pipeline errors."""


class InputError(ExtractionError):
    """The run cannot start: the email or the agent configuration is unusable."""


class EmailNotFoundError(InputError):
    """The requested email does not exist in the mailbox."""

    def __init__(self, email_id: str):
        self.email_id = email_id
        super().__init__(f"Email not found: {email_id}")


class ConfigurationError(InputError):
    """The agent configuration is missing required fields or is malformed."""


class EmailSourceError(InputError):
    """The mailbox could not be read."""


class OracleError(ExtractionError):
    """The extraction oracle failed or returned an unusable reply."""
