"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"

_REQUIRED_OAUTH_FIELDS = ("client_id", "client_secret", "redirect_uri")


class GmailAttachmentsSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth client (all three required)
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""

    # Credential cache
    token_path: Path = Path("credentials/token.json")
    scopes: list[str] = [GMAIL_READONLY_SCOPE, DRIVE_FILE_SCOPE]

    # Interactive flow
    open_browser: bool = True
    auth_timeout_seconds: float | None = None

    # Gmail API settings
    max_results_per_page: int = 100

    # Output
    output_dir: Path = Path("attachments")
    create_subfolders: bool = False
    attachment_extensions: list[str] = [".json"]

    # Logging
    log_level: str = "INFO"

    def missing_oauth_settings(self) -> list[str]:
        """Environment variable names of the required OAuth settings that are unset."""
        prefix = self.model_config.get("env_prefix", "")
        return [
            f"{prefix}{name}".upper()
            for name in _REQUIRED_OAUTH_FIELDS
            if not getattr(self, name).strip()
        ]

    def ensure_directories(self) -> None:
        """Create output and credential directories if they don't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
