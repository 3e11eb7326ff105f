"""Custom exceptions for Gmail Attachments."""


class GmailAttachmentsError(Exception):
    """Base exception for all Gmail Attachments errors."""


class MissingConfiguration(GmailAttachmentsError):
    """Required OAuth settings are absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Missing required environment variables: " + ", ".join(self.missing)
        )


class AuthenticationError(GmailAttachmentsError):
    """Failed to authenticate with Google."""


class AuthorizationDenied(AuthenticationError):
    """The user (or the provider) declined the consent request."""

    def __init__(self, error: str) -> None:
        self.error = error
        super().__init__(f"Authorization denied: {error}")


class TokenExchangeFailed(AuthenticationError):
    """The provider rejected the authorization code."""


class PortInUse(AuthenticationError):
    """The callback listener could not bind its port."""

    def __init__(self, port: int) -> None:
        self.port = port
        super().__init__(
            f"Port {port} is already in use. "
            "Make sure no other authorization flow is running."
        )


class AuthorizationTimeout(AuthenticationError):
    """The consent screen was not completed in time."""


class CredentialInvalid(AuthenticationError):
    """A cached credential failed the validity probe."""


class CredentialStoreError(GmailAttachmentsError):
    """Failed to persist the credential record."""


class GmailApiError(GmailAttachmentsError):
    """A Gmail API call failed."""


class PageFetchFailed(GmailApiError):
    """A message list page could not be fetched."""


class AttachmentFetchFailed(GmailApiError):
    """An attachment payload could not be fetched or decoded."""


class AttachmentWriteFailed(GmailAttachmentsError):
    """An attachment could not be written to disk."""


class DriveError(GmailAttachmentsError):
    """A Google Drive API call failed."""
