"""Attachment writer: fetch, decode and place attachments on disk."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path

from gmail_attachments.core.classifier import qualifying_parts
from gmail_attachments.core.exceptions import (
    AttachmentFetchFailed,
    AttachmentWriteFailed,
)
from gmail_attachments.core.gmail_client import GmailClient
from gmail_attachments.core.models import (
    DestinationPolicy,
    DownloadTarget,
    MessageDetail,
    Part,
    ProgressCounters,
)
from gmail_attachments.core.parser import decode_base64url

logger = logging.getLogger(__name__)


def safe_filename(filename: str) -> str:
    """Reduce an attachment filename to a single path component."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    name = name.replace("\x00", "")
    if name in ("", ".", ".."):
        return "attachment"
    return name


def dedupe_filename(filename: str, taken: set[str]) -> str:
    """Return ``filename``, or ``name (n).ext`` if an earlier part already took it.

    Names are compared case-insensitively and the result is added to ``taken``.
    """
    stem, dot, suffix = filename.rpartition(".")
    if not stem:
        stem, dot, suffix = filename, "", ""
    candidate = filename
    n = 1
    while candidate.casefold() in taken:
        candidate = f"{stem} ({n}){dot}{suffix}"
        n += 1
    taken.add(candidate.casefold())
    return candidate


def resolve_target(
    base_dir: Path, message_id: str, filename: str, policy: DestinationPolicy
) -> DownloadTarget:
    """Compute where an attachment goes.

    FLAT:      {base_dir}/{message_id}_{filename}
    SUBFOLDER: {base_dir}/{message_id}/{filename}
    """
    name = safe_filename(filename)
    if policy is DestinationPolicy.SUBFOLDER:
        return DownloadTarget(directory=base_dir / message_id, filename=name)
    return DownloadTarget(directory=base_dir, filename=f"{message_id}_{name}")


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write via a sibling temp file so ``path`` is either complete or absent."""
    tmp_path = path.with_name(f".{path.name}.part")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class AttachmentMaterializer:
    """Save the qualifying attachments of a message under ``base_dir``."""

    def __init__(
        self,
        client: GmailClient,
        base_dir: Path,
        policy: DestinationPolicy = DestinationPolicy.FLAT,
        on_saved: Callable[[Path], None] | None = None,
    ) -> None:
        self._client = client
        self._base_dir = base_dir
        self._policy = policy
        self._on_saved = on_saved

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def materialize(
        self,
        detail: MessageDetail,
        progress: ProgressCounters | None = None,
        extensions: Iterable[str] | None = None,
    ) -> int:
        """Download every qualifying attachment of ``detail``.

        Counters are bumped only after a file is completely written. A
        failing attachment is logged and skipped; its siblings still run.
        A per-message subfolder created here is removed again if nothing
        ended up in it.

        Args:
            detail: Parsed message.
            progress: Shared counters to update, if any.
            extensions: Only attachments with these extensions; None means all.

        Returns:
            Number of attachments written.
        """
        parts = qualifying_parts(detail, extensions)
        if not parts:
            logger.debug("No qualifying attachments in %s", detail.message_id)
            return 0

        created_dir: Path | None = None
        if self._policy is DestinationPolicy.SUBFOLDER:
            message_dir = self._base_dir / detail.message_id
            if not message_dir.exists():
                created_dir = message_dir
        else:
            message_dir = self._base_dir
        message_dir.mkdir(parents=True, exist_ok=True)

        downloaded = 0
        taken: set[str] = set()
        for part in parts:
            try:
                path = self._save_part(detail.message_id, part, taken)
            except (AttachmentFetchFailed, AttachmentWriteFailed) as e:
                logger.error("Skipping attachment %s: %s", part.filename, e)
                if progress is not None:
                    progress.failed_attachments += 1
                continue

            downloaded += 1
            if progress is not None:
                progress.downloaded_attachments += 1
            logger.info("Saved attachment to: %s", path)
            if self._on_saved:
                self._on_saved(path)

        if created_dir is not None and downloaded == 0:
            try:
                created_dir.rmdir()
            except OSError as e:
                logger.warning("Could not remove empty folder %s: %s", created_dir, e)

        return downloaded

    def _save_part(self, message_id: str, part: Part, taken: set[str]) -> Path:
        assert part.filename and part.attachment_id
        filename = dedupe_filename(safe_filename(part.filename), taken)
        target = resolve_target(self._base_dir, message_id, filename, self._policy)
        logger.debug("Downloading attachment: %s", target.filename)

        data = self._client.get_attachment(message_id, part.attachment_id)
        try:
            payload = decode_base64url(data)
        except ValueError as e:
            raise AttachmentFetchFailed(str(e)) from e

        try:
            write_bytes_atomic(target.path, payload)
        except OSError as e:
            raise AttachmentWriteFailed(f"Failed to write {target.path}: {e}") from e
        return target.path
