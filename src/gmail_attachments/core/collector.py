"""Date-window message discovery over the paginated Gmail list API."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime

from gmail_attachments.core.exceptions import PageFetchFailed
from gmail_attachments.core.gmail_client import GmailClient
from gmail_attachments.core.models import MessageRef

logger = logging.getLogger(__name__)


def month_window(year: int, month: int) -> tuple[datetime, datetime]:
    """Return the [first of month, first of next month) window in local time."""
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def filename_filter(extensions: Iterable[str]) -> str | None:
    """Gmail search clause matching any of the given filename extensions."""
    names = {ext.strip().lstrip(".").lower() for ext in extensions}
    terms = [f"filename:{name}" for name in sorted(names) if name]
    if not terms:
        return None
    if len(terms) == 1:
        return terms[0]
    return "{" + " ".join(terms) + "}"


def build_query(
    start_inclusive: datetime, end_exclusive: datetime, extra_filter: str | None = None
) -> str:
    """Gmail search query for messages with attachments inside the window."""
    after = int(start_inclusive.timestamp())
    before = int(end_exclusive.timestamp())
    query = f"has:attachment after:{after} before:{before}"
    if extra_filter:
        query = f"{query} {extra_filter}"
    return query


class DateWindowCollector:
    """Lists message references for a time window, page by page."""

    def __init__(self, client: GmailClient, page_size: int = 100) -> None:
        self._client = client
        self._page_size = page_size

    def collect(
        self,
        start_inclusive: datetime,
        end_exclusive: datetime,
        extra_filter: str | None = None,
    ) -> Iterator[MessageRef]:
        """Yield every message in the window, following page tokens.

        Each call starts again from the first page. Collection is
        best-effort: if a page cannot be fetched the error is logged and the
        sequence simply ends, so callers receive whatever was listed before
        the failure. Stops at the first page without a next-page token or
        without messages.
        """
        query = build_query(start_inclusive, end_exclusive, extra_filter)
        logger.debug("Collecting messages with query: %s", query)

        page_token: str | None = None
        page_number = 0
        while True:
            page_number += 1
            try:
                ids, page_token = self._client.list_message_ids(
                    query, self._page_size, page_token
                )
            except PageFetchFailed as e:
                logger.error(
                    "Page %d failed, returning messages collected so far: %s", page_number, e
                )
                return

            if not ids:
                return

            for message_id in ids:
                yield MessageRef(message_id=message_id)

            if not page_token:
                return
