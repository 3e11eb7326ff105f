"""Attachment predicates over parsed messages. Pure functions, no I/O."""

from __future__ import annotations

from collections.abc import Iterable

from gmail_attachments.core.models import MessageDetail, Part

JSON = frozenset({".json"})
PDF = frozenset({".pdf"})


def normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Lowercase extensions and make sure each starts with a dot."""
    normalized = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        normalized.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(normalized)


def is_attachment(part: Part) -> bool:
    return part.is_attachment


def matches_kind(part: Part, extensions: Iterable[str]) -> bool:
    """True if ``part`` is an attachment whose filename ends with one of ``extensions``."""
    if not part.is_attachment:
        return False
    filename = part.filename.lower()  # type: ignore[union-attr]
    return any(filename.endswith(ext) for ext in normalize_extensions(extensions))


def has_attachments(detail: MessageDetail) -> bool:
    return any(part.is_attachment for part in detail.parts)


def has_attachment_of_kind(detail: MessageDetail, extensions: Iterable[str]) -> bool:
    exts = normalize_extensions(extensions)
    return any(matches_kind(part, exts) for part in detail.parts)


def has_any_of(detail: MessageDetail, extension_sets: Iterable[Iterable[str]]) -> bool:
    return any(has_attachment_of_kind(detail, exts) for exts in extension_sets)


def qualifying_parts(
    detail: MessageDetail, extensions: Iterable[str] | None = None
) -> list[Part]:
    """Attachments of ``detail``, restricted to ``extensions`` when given."""
    if extensions is None:
        return [part for part in detail.parts if part.is_attachment]
    exts = normalize_extensions(extensions)
    return [part for part in detail.parts if matches_kind(part, exts)]
