"""
Outlook Mail Client

Reads single messages from a Microsoft 365 mailbox through Microsoft Graph.

Design Considerations:
- Bearer token supplied per call; token refresh is the caller's concern
- HTML bodies requested explicitly so links survive
- 404 means "no such email", any other failure is a mailbox error
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from inbox_extractor.email_processing.models import EmailDocument
from inbox_extractor.exceptions import EmailSourceError
from inbox_extractor.integrations.email_source import EmailSource

logger = logging.getLogger(__name__)


class OutlookEmailSource(EmailSource):
    """EmailSource over the Microsoft Graph messages endpoint."""

    OUTLOOK_MAIL_URL = "https://graph.microsoft.com/v1.0/me/messages"
    SELECT_FIELDS = "id,subject,from,body,receivedDateTime"

    def __init__(self, request_timeout: float = 30):
        self.request_timeout = request_timeout

    @property
    def provider_name(self) -> str:
        return "outlook"

    async def get_email_by_id(self, access_token: str, email_id: str) -> Optional[EmailDocument]:
        """
        Fetch a message by id.

        Args:
            access_token: Microsoft Graph access token
            email_id: Graph message id

        Returns:
            EmailDocument, or None if the message does not exist

        Raises:
            EmailSourceError: On authentication, network or server errors
        """
        url = f"{self.OUTLOOK_MAIL_URL}/{quote(email_id, safe='')}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Prefer": 'outlook.body-content-type="html"'
        }
        params = {"$select": self.SELECT_FIELDS}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=headers, params=params) as response:
                    if response.status == 404:
                        logger.info(f"Email {email_id} not found in mailbox")
                        return None
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Failed to get email {email_id}: {response.status} {error_text[:200]}")
                        raise EmailSourceError(f"Failed to get email: HTTP {response.status}")

                    message = await response.json()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error reading email {email_id}: {e!r}")
            raise EmailSourceError(f"Error reading email: {e!r}") from e

        return self._to_document(message)

    @staticmethod
    def _to_document(message: Dict[str, Any]) -> EmailDocument:
        body = message.get("body") or {}
        content = body.get("content") or ""
        is_html = (body.get("contentType") or "html").lower() == "html"

        sender = ((message.get("from") or {}).get("emailAddress") or {}).get("address", "")

        received_at = None
        raw_date = message.get("receivedDateTime")
        if raw_date:
            try:
                received_at = datetime.fromisoformat(raw_date.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable receivedDateTime: {raw_date}")

        return EmailDocument(
            id=message.get("id", ""),
            subject=message.get("subject") or "",
            sender=sender,
            html_body=content if is_html else "",
            plain_text_body=None if is_html else content,
            received_at=received_at
        )
