"""Google Drive API client for folder lookup, uploads and downloads."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload

from gmail_attachments.core.exceptions import DriveError
from gmail_attachments.core.models import UploadedFile

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def _quote(value: str) -> str:
    """Escape a literal for a Drive ``q`` expression."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class DriveClient:
    """Thin wrapper around the Drive v3 resource."""

    def __init__(self, service: Resource) -> None:
        self._service = service

    def _execute(self, request: Any, context: str) -> Any:
        try:
            return request.execute()
        except Exception as e:
            raise DriveError(f"Failed to {context}: {e}") from e

    def find_folder(self, name: str, parent_id: str | None = None) -> str | None:
        """Return the id of a non-trashed folder named ``name`` under ``parent_id``."""
        parent = _quote(parent_id) if parent_id else "'root'"
        query = (
            f"name = {_quote(name)} and mimeType = '{FOLDER_MIME_TYPE}' "
            f"and {parent} in parents and trashed = false"
        )
        request = self._service.files().list(
            q=query, fields="files(id, name)", spaces="drive"
        )
        files = self._execute(request, f"look up folder {name!r}").get("files", [])
        return files[0]["id"] if files else None

    def create_or_get_folder(self, name: str, parent_id: str | None = None) -> str:
        """Return the id of folder ``name``, creating it if needed."""
        existing = self.find_folder(name, parent_id)
        if existing:
            logger.info("Found existing folder: %s", name)
            return existing

        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        request = self._service.files().create(body=metadata, fields="id")
        folder = self._execute(request, f"create folder {name!r}")
        logger.info("Created new folder: %s", name)
        return folder["id"]

    def ensure_folder_path(self, folder_path: str, parent_id: str | None = None) -> str | None:
        """Create or reuse each folder of a ``a/b/c`` path; returns the innermost id."""
        for segment in (s for s in folder_path.split("/") if s):
            parent_id = self.create_or_get_folder(segment, parent_id)
        return parent_id

    def upload_file(
        self,
        file_path: Path,
        name: str | None = None,
        parent_id: str | None = None,
        mime_type: str = "application/octet-stream",
    ) -> UploadedFile:
        """Upload a local file.

        Raises:
            FileNotFoundError: If ``file_path`` does not exist.
            DriveError: If the upload fails.
        """
        if not file_path.is_file():
            raise FileNotFoundError(f"Source file not found: {file_path}")

        logger.info("Uploading %s (%d bytes)", file_path, file_path.stat().st_size)
        metadata: dict[str, Any] = {"name": name or file_path.name}
        if parent_id:
            metadata["parents"] = [parent_id]

        media = MediaFileUpload(str(file_path), mimetype=mime_type, resumable=False)
        request = self._service.files().create(
            body=metadata, media_body=media, fields="id, name, webViewLink"
        )
        response = self._execute(request, f"upload {file_path}")

        uploaded = UploadedFile(
            file_id=response["id"],
            name=response.get("name", metadata["name"]),
            web_view_link=response.get("webViewLink", ""),
        )
        logger.info("Upload successful: %s (%s)", uploaded.name, uploaded.file_id)
        return uploaded

    def download_file(self, file_id: str, dest_path: Path) -> Path:
        """Download a file's content to ``dest_path``.

        The bytes go to a temp file first and are moved into place once the
        download completes.
        """
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dest_path.with_name(f".{dest_path.name}.part")
        request = self._service.files().get_media(fileId=file_id)

        try:
            with tmp_path.open("wb") as fh:
                downloader = MediaIoBaseDownload(fh, request)
                done = False
                while not done:
                    status, done = downloader.next_chunk()
                    if status:
                        logger.debug("Download %s: %d%%", file_id, int(status.progress() * 100))
            os.replace(tmp_path, dest_path)
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            raise DriveError(f"Failed to download {file_id}: {e}") from e

        logger.info("File downloaded successfully to: %s", dest_path)
        return dest_path
