"""
Mailbox and result-sink interfaces consumed at the start and end of a run.
"""

from abc import ABC, abstractmethod
from typing import Optional

from inbox_extractor.email_processing.models import AnalysisJobResult, EmailDocument


class EmailSource(ABC):
    """Abstract mailbox reader."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this mailbox provider."""
        pass

    @abstractmethod
    async def get_email_by_id(self, access_token: str, email_id: str) -> Optional[EmailDocument]:
        """
        Fetch one email.

        Args:
            access_token: Mailbox access token
            email_id: Provider message id

        Returns:
            EmailDocument, or None when the message does not exist

        Raises:
            EmailSourceError: If the mailbox cannot be read
        """
        pass


class ResultSink(ABC):
    """Destination for finished job results, such as a results table."""

    @abstractmethod
    async def save(self, result: AnalysisJobResult) -> None:
        """Persist one job result."""
        pass
