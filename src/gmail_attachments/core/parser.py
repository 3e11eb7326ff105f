"""Gmail message parser: MIME tree walking and base64url decoding."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from gmail_attachments.core.exceptions import GmailApiError
from gmail_attachments.core.models import MessageDetail, MessageHeader, Part


class GmailParser:
    """Parses raw Gmail API message dicts into MessageDetail objects."""

    def parse(self, raw_message: dict[str, Any]) -> MessageDetail:
        """Parse a raw Gmail API message dict (format=full).

        Raises:
            GmailApiError: If the message has no id.
        """
        message_id = raw_message.get("id")
        if not message_id:
            raise GmailApiError("Message payload has no id")

        payload = raw_message.get("payload") or {}
        headers = tuple(
            MessageHeader(name=h.get("name", ""), value=h.get("value", ""))
            for h in payload.get("headers", [])
        )

        parts: list[Part] = []
        for sub_part in payload.get("parts") or []:
            self._walk_parts(sub_part, parts)

        return MessageDetail(
            message_id=message_id,
            headers=headers,
            snippet=raw_message.get("snippet", ""),
            parts=tuple(parts),
        )

    def _walk_parts(self, part: dict[str, Any], out: list[Part]) -> None:
        """Append ``part`` and its nested parts to ``out`` in document order."""
        body = part.get("body") or {}
        out.append(
            Part(
                mime_type=part.get("mimeType", ""),
                filename=part.get("filename") or None,
                attachment_id=body.get("attachmentId") or None,
                size=int(body.get("size") or 0),
            )
        )
        for sub_part in part.get("parts") or []:
            self._walk_parts(sub_part, out)


def decode_base64url(data: str) -> bytes:
    """Decode base64url-encoded data as returned by the Gmail API.

    Raises:
        ValueError: If ``data`` is not valid base64.
    """
    # Gmail uses base64url encoding (RFC 4648 §5), usually without padding
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64url payload: {e}") from e
