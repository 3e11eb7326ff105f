"""Credential persistence: one JSON record, replaced atomically on save."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from gmail_attachments.core.exceptions import CredentialStoreError
from gmail_attachments.core.models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Read and write the cached OAuth credential."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> Credential | None:
        """Load the stored credential.

        Returns None when the file is missing, unreadable, or not a valid
        credential record. Callers treat that the same as never having
        authenticated.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read cached credential %s: %s", self._path, e)
            return None

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("credential record is not a JSON object")
            return Credential.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unparsable credential %s: %s", self._path, e)
            return None

    def save(self, credential: Credential) -> None:
        """Persist the credential via write-temp-then-rename.

        Raises:
            CredentialStoreError: If the record could not be written.
        """
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(credential.to_dict(), indent=2), encoding="utf-8")
            try:
                tmp_path.chmod(0o600)
            except OSError as e:
                logger.debug("Could not restrict permissions on %s: %s", tmp_path, e)
            os.replace(tmp_path, self._path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug("Could not remove %s: %s", tmp_path, cleanup_error)
            raise CredentialStoreError(f"Failed to save credential to {self._path}: {e}") from e

        logger.debug("Credential stored at %s", self._path)

    def clear(self) -> None:
        """Remove the stored credential, if any."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise CredentialStoreError(f"Failed to remove {self._path}: {e}") from e
