"""Single-shot local HTTP listener for the OAuth2 redirect.

The listener is a small state machine::

    AWAITING_CALLBACK --(code ok)------> RESOLVED
    AWAITING_CALLBACK --(error/failure)-> FAILED

Settlement happens exactly once. The serve loop stops as soon as the state
leaves AWAITING_CALLBACK and the socket is closed, so later requests are
refused by the OS. A request that sneaks in between settlement and close is
answered with a 410 page and never reaches the code exchange.
"""

from __future__ import annotations

import enum
import errno
import html
import logging
import threading
import time
import wsgiref.simple_server
from collections.abc import Callable, Iterable
from typing import Any
from urllib.parse import parse_qs, urlparse

from gmail_attachments.core.exceptions import (
    AuthenticationError,
    AuthorizationDenied,
    AuthorizationTimeout,
    PortInUse,
    TokenExchangeFailed,
)

logger = logging.getLogger(__name__)

SUCCESS_PAGE = """<html><body>
<h1>Authentication Successful!</h1>
<p>You can close this window now.</p>
</body></html>"""

FAILURE_PAGE = """<html><body>
<h1>Authentication Failed</h1>
<p>{message}</p>
<p>Make sure you accepted all requested permissions and that your account is
allowed on the OAuth consent screen.</p>
<p>You can close this window and try again.</p>
</body></html>"""

ALREADY_HANDLED_PAGE = """<html><body>
<h1>Already handled</h1>
<p>This authorization request has already completed. You can close this window.</p>
</body></html>"""


class ListenerState(str, enum.Enum):
    AWAITING_CALLBACK = "awaiting_callback"
    RESOLVED = "resolved"
    FAILED = "failed"


class _QuietHandler(wsgiref.simple_server.WSGIRequestHandler):
    """Route request logs through logging instead of stderr."""

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("Callback listener: " + format, *args)


class CallbackListener:
    """Accept one OAuth2 redirect and hand the code to ``exchange``.

    Args:
        redirect_uri: The registered redirect URI; host, port and path are
            taken from it.
        expected_state: The ``state`` value sent in the consent URL, or None
            to skip the check.
        exchange: Called with the authorization code. Its return value is the
            result of ``wait()``. Any exception it raises becomes
            TokenExchangeFailed.
    """

    def __init__(
        self,
        redirect_uri: str,
        exchange: Callable[[str], Any],
        expected_state: str | None = None,
    ) -> None:
        parsed = urlparse(redirect_uri)
        self._host = parsed.hostname or "localhost"
        self._port = parsed.port if parsed.port is not None else 80
        self._path = parsed.path or "/"
        self._exchange = exchange
        self._expected_state = expected_state

        self._lock = threading.Lock()
        self._state = ListenerState.AWAITING_CALLBACK
        self._result: Any = None
        self._error: AuthenticationError | None = None
        self._exchange_calls = 0
        self._server: wsgiref.simple_server.WSGIServer | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int:
        """Bound port (differs from the configured one only when it was 0)."""
        if self._server is not None:
            return self._server.server_port
        return self._port

    @property
    def exchange_calls(self) -> int:
        return self._exchange_calls

    def bind(self) -> None:
        """Bind the listening socket.

        Raises:
            PortInUse: If the port is already bound.
            AuthenticationError: On any other bind failure.
        """
        try:
            self._server = wsgiref.simple_server.make_server(
                self._host, self._port, self._app, handler_class=_QuietHandler
            )
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise PortInUse(self._port) from e
            raise AuthenticationError(f"Could not start callback listener: {e}") from e
        logger.debug("Callback listener bound on %s:%d", self._host, self.port)

    def wait(self, timeout: float | None = None) -> Any:
        """Serve requests until the callback settles, then close the socket.

        Returns:
            Whatever ``exchange`` returned for the accepted code.

        Raises:
            AuthorizationDenied, TokenExchangeFailed: As settled by the callback.
            AuthorizationTimeout: If ``timeout`` seconds pass without settlement.
        """
        if self._server is None:
            self.bind()
        server = self._server
        assert server is not None

        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            while self._state is ListenerState.AWAITING_CALLBACK:
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise AuthorizationTimeout(
                            f"No authorization callback within {timeout:g} seconds"
                        )
                    server.timeout = remaining
                server.handle_request()
        finally:
            server.server_close()
            self._server = None

        if self._state is ListenerState.FAILED:
            assert self._error is not None
            raise self._error
        return self._result

    def _settle(self, state: ListenerState, result: Any = None,
                error: AuthenticationError | None = None) -> bool:
        with self._lock:
            if self._state is not ListenerState.AWAITING_CALLBACK:
                return False
            self._result = result
            self._error = error
            self._state = state
            return True

    def _app(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        """WSGI application handling the redirect."""
        if self._state is not ListenerState.AWAITING_CALLBACK:
            return self._respond(start_response, "410 Gone", ALREADY_HANDLED_PAGE)

        if environ.get("PATH_INFO", "/") != self._path:
            return self._respond(start_response, "404 Not Found", "Not found")

        params = parse_qs(environ.get("QUERY_STRING", ""))
        error = params.get("error", [None])[0]
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]

        if error is None and code is None:
            return self._respond(start_response, "404 Not Found", "Not found")

        if self._expected_state is not None and state != self._expected_state:
            error = error or "state_mismatch"

        if error is not None:
            logger.error("Authorization error returned by provider: %s", error)
            if self._settle(ListenerState.FAILED, error=AuthorizationDenied(error)):
                page = FAILURE_PAGE.format(
                    message=html.escape(f"Authentication error: {error}")
                )
                return self._respond(start_response, "400 Bad Request", page)
            return self._respond(start_response, "410 Gone", ALREADY_HANDLED_PAGE)

        # At most one exchange per listener.
        with self._lock:
            if self._exchange_calls:
                return self._respond(start_response, "410 Gone", ALREADY_HANDLED_PAGE)
            self._exchange_calls += 1

        try:
            result = self._exchange(code)
        except Exception as e:
            logger.error("Token exchange failed: %s", e)
            self._settle(
                ListenerState.FAILED,
                error=TokenExchangeFailed(f"Token exchange failed: {e}"),
            )
            page = FAILURE_PAGE.format(message=html.escape(f"Error: {e}"))
            return self._respond(start_response, "500 Internal Server Error", page)

        self._settle(ListenerState.RESOLVED, result=result)
        return self._respond(start_response, "200 OK", SUCCESS_PAGE)

    @staticmethod
    def _respond(
        start_response: Callable[..., Any], status: str, body: str
    ) -> list[bytes]:
        payload = body.encode("utf-8")
        start_response(
            status,
            [
                ("Content-Type", "text/html; charset=utf-8"),
                ("Content-Length", str(len(payload))),
            ],
        )
        return [payload]
