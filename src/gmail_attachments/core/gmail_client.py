"""Gmail API client for listing messages, fetching details and attachments."""

from __future__ import annotations

import logging
from typing import Any

from googleapiclient.discovery import Resource

from gmail_attachments.core.exceptions import (
    AttachmentFetchFailed,
    GmailApiError,
    PageFetchFailed,
)

logger = logging.getLogger(__name__)


class GmailClient:
    """Thin wrapper around the Gmail API resource."""

    def __init__(self, service: Resource, user_id: str = "me") -> None:
        self._service = service
        self._user_id = user_id

    def _execute(
        self,
        request: Any,
        context: str,
        error_cls: type[GmailApiError] = GmailApiError,
    ) -> Any:
        """Execute a single API request.

        Raises:
            error_cls: On any API or transport error (GmailApiError by default).
        """
        try:
            return request.execute()
        except Exception as e:
            raise error_cls(f"Failed to {context}: {e}") from e

    def list_message_ids(
        self,
        query: str | None = None,
        max_results: int = 100,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        """Fetch one page of message ids.

        Returns:
            Tuple of (message ids, next page token or None).
        """
        kwargs: dict[str, Any] = {"userId": self._user_id, "maxResults": max_results}
        if page_token:
            kwargs["pageToken"] = page_token
        if query:
            kwargs["q"] = query

        request = self._service.users().messages().list(**kwargs)
        response = self._execute(request, "list messages", PageFetchFailed)

        ids = [msg["id"] for msg in response.get("messages", [])]
        logger.debug("Listed %d message IDs (page)", len(ids))
        return ids, response.get("nextPageToken") or None

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch one message with its full MIME structure."""
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        return self._execute(request, f"get message {message_id}")

    def get_attachment(self, message_id: str, attachment_id: str) -> str:
        """Fetch an attachment payload.

        Returns:
            The base64url-encoded attachment data.
        """
        request = (
            self._service.users()
            .messages()
            .attachments()
            .get(userId=self._user_id, messageId=message_id, id=attachment_id)
        )
        response = self._execute(
            request, f"get attachment of {message_id}", AttachmentFetchFailed
        )
        data = response.get("data")
        if data is None:
            raise AttachmentFetchFailed(f"Attachment of {message_id} returned no data")
        return data
