"""Dataclasses for the Gmail Attachments domain model."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class Credential:
    """OAuth2 credential record as persisted on disk.

    ``expiry`` is a naive UTC datetime, matching google-auth.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    scopes: tuple[str, ...] = field(default_factory=tuple)
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scope": list(self.scopes),
            "token_type": self.token_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        """Build a Credential from its JSON record.

        Raises:
            KeyError: If ``access_token`` is missing.
            ValueError: If ``expiry`` is not ISO-8601.
        """
        expiry_raw = data.get("expiry")
        expiry: datetime | None = None
        if expiry_raw:
            expiry = datetime.fromisoformat(str(expiry_raw).replace("Z", "+00:00"))
            if expiry.tzinfo is not None:
                expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)

        scope = data.get("scope") or data.get("scopes") or []
        if isinstance(scope, str):
            scope = scope.split()

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expiry=expiry,
            scopes=tuple(scope),
            token_type=data.get("token_type") or "Bearer",
        )


@dataclass(frozen=True)
class MessageRef:
    """Lightweight message reference from the Gmail list API."""

    message_id: str


@dataclass(frozen=True)
class MessageHeader:
    name: str
    value: str


@dataclass(frozen=True)
class Part:
    """One MIME part of a message. Attachments carry both filename and attachment_id."""

    mime_type: str = ""
    filename: str | None = None
    attachment_id: str | None = None
    size: int = 0

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename) and bool(self.attachment_id)


@dataclass(frozen=True)
class MessageDetail:
    """A fetched message: headers, snippet and its flattened MIME parts."""

    message_id: str
    headers: tuple[MessageHeader, ...] = field(default_factory=tuple)
    snippet: str = ""
    parts: tuple[Part, ...] = field(default_factory=tuple)

    def header(self, name: str, default: str = "") -> str:
        """Return the first header value matching ``name`` (case-insensitive)."""
        lowered = name.lower()
        for h in self.headers:
            if h.name.lower() == lowered:
                return h.value
        return default


class DestinationPolicy(str, enum.Enum):
    """Where attachments of one message land on disk."""

    FLAT = "flat"
    SUBFOLDER = "subfolder"


@dataclass(frozen=True)
class DownloadTarget:
    directory: Path
    filename: str

    @property
    def path(self) -> Path:
        return self.directory / self.filename


@dataclass
class ProgressCounters:
    """Mutable progress tracker for pipeline status reporting."""

    messages_discovered: int = 0
    processed_messages: int = 0
    matched_messages: int = 0
    downloaded_attachments: int = 0
    total_expected_attachments: int = 0
    failed_messages: int = 0
    failed_attachments: int = 0
    current_stage: str = "idle"


@dataclass(frozen=True)
class UploadedFile:
    """Result of a Drive upload."""

    file_id: str
    name: str
    web_view_link: str = ""
