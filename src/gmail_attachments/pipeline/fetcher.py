"""Pipeline orchestrator: authorize → collect → pre-scan → download."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from google.oauth2.credentials import Credentials

from gmail_attachments.config.settings import GmailAttachmentsSettings
from gmail_attachments.core.auth import (
    AuthorizationFlow,
    build_drive_service,
    build_gmail_service,
)
from gmail_attachments.core.classifier import (
    has_any_of,
    has_attachments,
    normalize_extensions,
    qualifying_parts,
)
from gmail_attachments.core.collector import (
    DateWindowCollector,
    filename_filter,
    month_window,
)
from gmail_attachments.core.drive_client import DriveClient
from gmail_attachments.core.exceptions import GmailApiError
from gmail_attachments.core.gmail_client import GmailClient
from gmail_attachments.core.models import (
    DestinationPolicy,
    MessageDetail,
    ProgressCounters,
    UploadedFile,
)
from gmail_attachments.core.parser import GmailParser
from gmail_attachments.storage.materializer import AttachmentMaterializer

logger = logging.getLogger(__name__)


class AttachmentFetcher:
    """Orchestrates the attachment download pipeline.

    Stage 1 - Collect:   List message ids in the date window (paginated)
    Stage 2 - Pre-scan:  Fetch each message, classify, count qualifying attachments
    Stage 3 - Download:  Save qualifying attachments of matching messages

    The pre-scan fixes ``total_expected_attachments`` before the first
    download is reported. Message details fetched in the pre-scan are reused
    by the download stage; attachment bytes are only fetched once, in stage 3.
    """

    def __init__(
        self,
        settings: GmailAttachmentsSettings | None = None,
        on_progress: Callable[[ProgressCounters], None] | None = None,
        *,
        auth: AuthorizationFlow | None = None,
    ) -> None:
        self._settings = settings or GmailAttachmentsSettings()
        self._on_progress = on_progress
        self._progress = ProgressCounters()
        self._auth = auth or AuthorizationFlow(self._settings)

        # Components initialized lazily
        self._client: GmailClient | None = None
        self._drive: DriveClient | None = None
        self._client_creds: Credentials | None = None
        self._drive_creds: Credentials | None = None
        self._parser = GmailParser()

    @property
    def progress(self) -> ProgressCounters:
        return self._progress

    @property
    def on_progress(self) -> Callable[[ProgressCounters], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[ProgressCounters], None] | None) -> None:
        self._on_progress = callback

    def _ensure_initialized(self) -> GmailClient:
        """Make sure the credential is valid and the Gmail client uses it.

        The client is rebuilt whenever authorization hands back a different
        credential object, e.g. after a re-consent.
        """
        creds = self._auth.ensure_authorized()
        if self._client is None or creds is not self._client_creds:
            self._client = GmailClient(build_gmail_service(creds))
            self._client_creds = creds
        return self._client

    def _ensure_drive(self) -> DriveClient:
        creds = self._auth.ensure_authorized()
        if self._drive is None or creds is not self._drive_creds:
            self._drive = DriveClient(build_drive_service(creds))
            self._drive_creds = creds
        return self._drive

    def authorize(self, reset: bool = False) -> None:
        """Run only the authorization step, optionally discarding the cached token."""
        if reset:
            self._auth.reset()
        self._auth.ensure_authorized()

    def run_month(
        self,
        year: int,
        month: int,
        *,
        extension_sets: Iterable[Iterable[str]] | None = None,
    ) -> ProgressCounters:
        """Download attachments for one calendar month into ``output_dir/YYYY-MM``."""
        start, end = month_window(year, month)
        destination = self._settings.output_dir / f"{year}-{month:02d}"
        return self.run(start, end, destination=destination, extension_sets=extension_sets)

    def run(
        self,
        start: datetime,
        end: datetime,
        *,
        destination: Path | None = None,
        extension_sets: Iterable[Iterable[str]] | None = None,
    ) -> ProgressCounters:
        """Run the full pipeline for messages in ``[start, end)``.

        Args:
            start: Window start (inclusive).
            end: Window end (exclusive).
            destination: Directory for attachments (defaults to settings.output_dir).
            extension_sets: Attachment kinds to keep, e.g. ``[{".json"}, {".pdf"}]``.
                Defaults to one kind per entry of settings.attachment_extensions.
                An empty sequence keeps every attachment.

        Returns:
            ProgressCounters with final counts.
        """
        self._progress = ProgressCounters(current_stage="authorize")
        self._notify()

        kinds = self._resolve_kinds(extension_sets)
        wanted = frozenset().union(*kinds) if kinds else None

        try:
            client = self._ensure_initialized()

            details = self._prescan(client, start, end, kinds, wanted)
            self._download(client, details, destination or self._settings.output_dir, kinds, wanted)

            self._progress.current_stage = "complete"
            self._notify()
        except Exception as e:
            self._progress.current_stage = f"error: {e}"
            self._notify()
            raise

        logger.info(
            "Processed %d messages, %d matched, %d attachments downloaded",
            self._progress.processed_messages,
            self._progress.matched_messages,
            self._progress.downloaded_attachments,
        )
        return self._progress

    def _prescan(
        self,
        client: GmailClient,
        start: datetime,
        end: datetime,
        kinds: list[frozenset[str]],
        wanted: frozenset[str] | None,
    ) -> list[MessageDetail]:
        """Stages 1 and 2: collect ids, fetch details, count expected attachments."""
        self._progress.current_stage = "collect"
        self._notify()

        collector = DateWindowCollector(client, self._settings.max_results_per_page)
        refs = list(collector.collect(start, end, filename_filter(wanted or ())))
        self._progress.messages_discovered = len(refs)
        logger.info("Found %d messages with attachments between %s and %s", len(refs), start, end)

        self._progress.current_stage = "prescan"
        self._notify()

        details: list[MessageDetail] = []
        for ref in refs:
            try:
                detail = self._parser.parse(client.get_message(ref.message_id))
            except GmailApiError as e:
                logger.error("Failed to fetch message %s: %s", ref.message_id, e)
                self._progress.failed_messages += 1
                self._notify()
                continue

            details.append(detail)
            if self._matches(detail, kinds):
                self._progress.total_expected_attachments += len(
                    qualifying_parts(detail, wanted)
                )
                self._notify()

        return details

    def _download(
        self,
        client: GmailClient,
        details: list[MessageDetail],
        destination: Path,
        kinds: list[frozenset[str]],
        wanted: frozenset[str] | None,
    ) -> None:
        """Stage 3: save attachments of matching messages."""
        self._progress.current_stage = "download"
        self._notify()

        policy = (
            DestinationPolicy.SUBFOLDER
            if self._settings.create_subfolders
            else DestinationPolicy.FLAT
        )
        materializer = AttachmentMaterializer(
            client, destination, policy, on_saved=lambda _path: self._notify()
        )

        total = len(details)
        for index, detail in enumerate(details, start=1):
            self._progress.processed_messages += 1
            logger.debug("Processing message %d/%d (%s)", index, total, detail.message_id)

            if self._matches(detail, kinds):
                self._progress.matched_messages += 1
                materializer.materialize(detail, self._progress, wanted)
            self._notify()

    @staticmethod
    def _matches(detail: MessageDetail, kinds: list[frozenset[str]]) -> bool:
        if not kinds:
            return has_attachments(detail)
        return has_any_of(detail, kinds)

    def _resolve_kinds(
        self, extension_sets: Iterable[Iterable[str]] | None
    ) -> list[frozenset[str]]:
        if extension_sets is None:
            extension_sets = [[ext] for ext in self._settings.attachment_extensions]
        kinds = [normalize_extensions(exts) for exts in extension_sets]
        return [k for k in kinds if k]

    def list_recent(self, max_results: int = 10) -> list[dict[str, Any]]:
        """Summaries (id, subject, from, date, snippet) of the newest messages."""
        client = self._ensure_initialized()
        ids, _ = client.list_message_ids(max_results=max_results)

        summaries: list[dict[str, Any]] = []
        for message_id in ids:
            detail = self._parser.parse(client.get_message(message_id))
            summaries.append(
                {
                    "id": detail.message_id,
                    "subject": detail.header("Subject", "No Subject"),
                    "from": detail.header("From", "Unknown Sender"),
                    "date": detail.header("Date", "No Date"),
                    "snippet": detail.snippet,
                }
            )
        return summaries

    def upload(
        self, file_path: Path, name: str | None = None, folder_path: str | None = None
    ) -> UploadedFile:
        """Upload a local file to Drive, optionally inside a ``a/b`` folder path."""
        drive = self._ensure_drive()
        parent_id = drive.ensure_folder_path(folder_path) if folder_path else None
        return drive.upload_file(file_path, name=name, parent_id=parent_id)

    def download(self, file_id: str, dest_path: Path) -> Path:
        """Download a Drive file to a local path."""
        return self._ensure_drive().download_file(file_id, dest_path)

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
