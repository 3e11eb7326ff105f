"""OAuth 2.0 authorization-code flow with credential caching and silent refresh."""

from __future__ import annotations

import logging
import threading
import webbrowser
from collections.abc import Callable
from typing import Any

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import Resource, build

from gmail_attachments.config.settings import GmailAttachmentsSettings
from gmail_attachments.core.callback import CallbackListener
from gmail_attachments.core.exceptions import (
    CredentialInvalid,
    CredentialStoreError,
    MissingConfiguration,
)
from gmail_attachments.core.models import Credential
from gmail_attachments.storage.credential_store import CredentialStore

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"


class PersistingCredentials(Credentials):
    """google-auth Credentials that report every refresh.

    The transport refreshes expired access tokens on its own; ``on_refresh``
    is called afterwards with the refreshed credentials so a rotated refresh
    token can be saved.
    """

    on_refresh: Callable[[Credentials], None] | None = None

    def refresh(self, request: Any) -> None:
        previous_refresh_token = self.refresh_token
        super().refresh(request)
        if self.refresh_token != previous_refresh_token:
            logger.info("Provider issued a new refresh token")
        if self.on_refresh is not None:
            self.on_refresh(self)


def build_gmail_service(creds: Credentials) -> Resource:
    """Build a Gmail API service resource."""
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def build_drive_service(creds: Credentials) -> Resource:
    """Build a Drive API service resource."""
    return build("drive", "v3", credentials=creds, cache_discovery=False)


def probe_gmail(creds: Credentials) -> None:
    """Cheapest authenticated call: list a single message id.

    Raises:
        CredentialInvalid: If the call fails for any reason.
    """
    try:
        service = build_gmail_service(creds)
        service.users().messages().list(userId="me", maxResults=1).execute()
    except Exception as e:
        raise CredentialInvalid(str(e)) from e


def credential_from_google(creds: Credentials) -> Credential:
    return Credential(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=creds.expiry,
        scopes=tuple(creds.scopes or ()),
    )


class AuthorizationFlow:
    """Owns the process's single live credential.

    ``ensure_authorized()`` is safe to call before every API operation: a
    cached credential that passes the probe is returned as is, otherwise the
    interactive consent flow runs. Calls are serialized, so at most one
    callback listener is ever bound.
    """

    def __init__(
        self,
        settings: GmailAttachmentsSettings,
        store: CredentialStore | None = None,
        *,
        probe: Callable[[Credentials], None] = probe_gmail,
        open_browser: Callable[[str], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store or CredentialStore(settings.token_path)
        self._probe = probe
        self._open_browser = open_browser or webbrowser.open
        self._lock = threading.Lock()
        self._credentials: PersistingCredentials | None = None

    @property
    def credentials(self) -> PersistingCredentials | None:
        return self._credentials

    def ensure_authorized(self) -> Credentials:
        """Return a working credential, running the consent flow if needed.

        Raises:
            MissingConfiguration: If client id, secret or redirect URI is unset.
            AuthorizationDenied: The user declined consent.
            TokenExchangeFailed: The provider rejected the code.
            PortInUse: The callback port is taken by another flow.
            AuthorizationTimeout: Consent not completed within the timeout.
        """
        missing = self._settings.missing_oauth_settings()
        if missing:
            raise MissingConfiguration(missing)

        with self._lock:
            if self._credentials is not None and self._check(self._credentials):
                return self._credentials

            stored = self._store.load()
            if stored is not None:
                creds = self._to_google(stored)
                if self._check(creds):
                    logger.info("Using saved credentials")
                    self._credentials = creds
                    return creds

            self._credentials = self._run_consent_flow()
            return self._credentials

    def reset(self) -> None:
        """Forget the in-memory and stored credential."""
        with self._lock:
            self._credentials = None
            self._store.clear()

    def _check(self, creds: PersistingCredentials) -> bool:
        try:
            self._probe(creds)
        except Exception as e:
            logger.warning("Saved credentials are invalid, will re-authorize: %s", e)
            return False
        return True

    def _run_consent_flow(self) -> PersistingCredentials:
        flow = Flow.from_client_config(
            self._client_config(),
            scopes=list(self._settings.scopes),
            redirect_uri=self._settings.redirect_uri,
        )
        auth_url, state = flow.authorization_url(access_type="offline", prompt="consent")

        def exchange(code: str) -> PersistingCredentials:
            flow.fetch_token(code=code)
            creds = self._to_google(credential_from_google(flow.credentials))
            # Stored before the listener answers the browser.
            self._persist(creds)
            return creds

        listener = CallbackListener(
            self._settings.redirect_uri, exchange, expected_state=state
        )
        listener.bind()

        logger.info("Opening browser for authentication. If it does not open, visit:\n%s", auth_url)
        if self._settings.open_browser:
            try:
                self._open_browser(auth_url)
            except Exception as e:
                logger.warning("Could not launch browser: %s", e)

        creds: PersistingCredentials = listener.wait(self._settings.auth_timeout_seconds)
        logger.info("Authentication successful")
        return creds

    def _to_google(self, credential: Credential) -> PersistingCredentials:
        creds = PersistingCredentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
            scopes=list(credential.scopes) or list(self._settings.scopes),
            expiry=credential.expiry,
        )
        creds.on_refresh = self._persist
        return creds

    def _persist(self, creds: Credentials) -> None:
        try:
            self._store.save(credential_from_google(creds))
        except CredentialStoreError as e:
            logger.error("%s; credential is only kept in memory for this run", e)

    def _client_config(self) -> dict[str, Any]:
        return {
            "web": {
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self._settings.redirect_uri],
            }
        }
