"""Shared fixtures for Gmail Attachments tests."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import pytest

from gmail_attachments.config.settings import GmailAttachmentsSettings
from gmail_attachments.core.models import MessageDetail, Part


def b64url(data: bytes) -> str:
    """Encode like the Gmail API does: base64url without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def attachment_part(filename: str, attachment_id: str, mime_type: str = "application/json") -> dict[str, Any]:
    return {
        "partId": attachment_id,
        "mimeType": mime_type,
        "filename": filename,
        "body": {"attachmentId": attachment_id, "size": 42},
    }


def raw_message(message_id: str, parts: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Raw Gmail API response (format=full) with a text body and the given parts."""
    payload: dict[str, Any] = {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "Subject", "value": f"Report {message_id}"},
            {"name": "From", "value": "reports@example.com"},
            {"name": "Date", "value": "Tue, 15 Apr 2025 10:30:00 +0000"},
        ],
    }
    body_part = {
        "partId": "0",
        "mimeType": "text/plain",
        "filename": "",
        "body": {"size": 5, "data": b64url(b"hello")},
    }
    if parts is not None:
        payload["parts"] = [body_part, *parts]
    return {"id": message_id, "threadId": f"t_{message_id}", "snippet": "hello", "payload": payload}


@pytest.fixture
def tmp_settings(tmp_path: Path) -> GmailAttachmentsSettings:
    """Settings pointing to temporary directories, with OAuth values filled in."""
    return GmailAttachmentsSettings(
        client_id="client-123.apps.googleusercontent.com",
        client_secret="s3cret",
        redirect_uri="http://localhost:3000/oauth2callback",
        token_path=tmp_path / "creds" / "token.json",
        output_dir=tmp_path / "attachments",
        open_browser=False,
        _env_file=None,
    )


@pytest.fixture
def json_and_pdf_detail() -> MessageDetail:
    """Message with two .json attachments, one .pdf attachment and a text body."""
    return MessageDetail(
        message_id="msgA",
        parts=(
            Part(mime_type="text/plain"),
            Part(mime_type="application/json", filename="data.json", attachment_id="att1"),
            Part(mime_type="application/json", filename="MORE.JSON", attachment_id="att2"),
            Part(mime_type="application/pdf", filename="invoice.pdf", attachment_id="att3"),
        ),
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Temporary output directory for tests."""
    output = tmp_path / "output"
    output.mkdir()
    return output
