"""OAuth 2.0 Authorization Code flow with PKCE against Bitbucket Cloud.

This module provides :class:`OAuthFlow`, which runs the interactive login
(:rfc:`6749` authorization code grant with :rfc:`7636` PKCE) and the
refresh-token exchange. A login attempt moves through :class:`FlowState`::

    IDLE -> LISTENER_BOUND -> AUTHORIZATION_REQUESTED -> AWAITING_CALLBACK
         -> CODE_RECEIVED -> TOKEN_EXCHANGED -> STORED -> DONE

1. A local HTTP server binds the first free port of
   :data:`PREFERRED_PORTS`. Bitbucket only redirects to pre-registered
   callback URLs, so the ports are fixed rather than ephemeral.
2. The authorization URL (with CSRF ``state`` and S256 code challenge) is
   opened in the browser, or printed if no browser can be opened.
3. Callback requests are handled one at a time. A request whose ``state``
   does not match is answered with 400 and the server keeps waiting; a
   matching request with a ``code`` ends the wait. The wait is bounded by a
   timeout and can be cancelled through a :class:`threading.Event`.
4. The code and PKCE verifier are exchanged for tokens, and the resulting
   :class:`~bitbucket_cli.auth.credentials.OAuthCredential` is stored via
   the :class:`~bitbucket_cli.auth.manager.AuthManager`.

Network failures during the exchange or a refresh are not retried; the
user re-runs the command.
"""

from __future__ import annotations

import base64
import enum
import hashlib
import logging
import secrets
import threading
import time
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from bitbucket_cli.auth.credentials import OAuthCredential
from bitbucket_cli.exceptions import AuthError, PortUnavailableError
from bitbucket_cli.output import info, progress, success

if TYPE_CHECKING:
    from bitbucket_cli.auth.manager import AuthManager

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://bitbucket.org/site/oauth2/authorize"
TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"

PREFERRED_PORTS: tuple[int, ...] = (8080, 3000, 8888, 9000)
"""Callback ports in order of preference; one must match the consumer's callback URL."""

SCOPES: tuple[str, ...] = ("repository", "pullrequest", "issue", "pipeline", "account")

CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_TIMEOUT = 300.0
_POLL_INTERVAL = 0.5
_REQUEST_READ_TIMEOUT = 5.0

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Bitbucket CLI</title></head>
<body style="font-family: system-ui; text-align: center; padding: 50px;">
<h1>Authentication Successful</h1>
<p>You can close this window and return to the terminal.</p>
</body>
</html>"""


class FlowState(str, enum.Enum):
    """Progress of one interactive login attempt."""

    IDLE = "idle"
    LISTENER_BOUND = "listener_bound"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    STORED = "stored"
    DONE = "done"


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from the unreserved set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def generate_state() -> str:
    """Generate a single-use CSRF token for the ``state`` parameter."""
    return secrets.token_urlsafe(32)


@dataclass
class CallbackResult:
    """How one request to the callback server was answered.

    Attributes:
        status: HTTP status sent back to the browser.
        body: Response body (HTML for success, plain text otherwise).
        code: Authorization code, set only for an accepted callback.
        error: Provider error, set only when Bitbucket reported a failure
            for this login attempt.
    """

    status: int
    body: str
    code: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        """True when this request ends the wait, successfully or not."""
        return self.code is not None or self.error is not None


def parse_callback(path: str, expected_state: str) -> CallbackResult:
    """Decide how to answer a request to the callback server.

    Args:
        path: Request target, e.g. ``/callback?code=abc&state=xyz``.
        expected_state: The CSRF token sent with the authorization request.

    Returns:
        A :class:`CallbackResult`. Only a request to :data:`CALLBACK_PATH`
        with the expected ``state`` can carry a code or an error; anything
        else is rejected and the caller keeps waiting.
    """
    parsed = urlparse(path)
    if parsed.path != CALLBACK_PATH:
        return CallbackResult(404, "Not found")

    params = parse_qs(parsed.query)
    state = params.get("state", [""])[0]
    if not state or not secrets.compare_digest(
        state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        return CallbackResult(400, "CSRF token mismatch")

    if "error" in params:
        error = params["error"][0]
        description = params.get("error_description", [""])[0]
        if description:
            error = f"{error} - {description}"
        return CallbackResult(400, f"Authorization failed: {error}", error=error)

    code = params.get("code", [""])[0]
    if not code:
        return CallbackResult(400, "No authorization code received")
    return CallbackResult(200, _SUCCESS_PAGE, code=code)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: CallbackServer

    # A connection that never sends a request line must not stall the wait loop.
    timeout = _REQUEST_READ_TIMEOUT

    def do_GET(self) -> None:
        result = parse_callback(self.path, self.server.expected_state)
        if result.status == 400 and not result.finished:
            logger.warning("Rejected OAuth callback: %s", result.body)

        content_type = "text/html" if result.status == 200 else "text/plain"
        body = result.body.encode("utf-8")
        self.send_response(result.status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

        if result.finished:
            self.server.outcome = result

    def log_message(self, format: str, *args: Any) -> None:
        # Suppress default request logging
        pass


class CallbackServer(HTTPServer):
    """Single-threaded loopback server receiving the OAuth redirect.

    Args:
        port: TCP port on ``127.0.0.1``. ``0`` picks an ephemeral port.

    Raises:
        OSError: If the port cannot be bound.
    """

    def __init__(self, port: int) -> None:
        super().__init__(("127.0.0.1", port), _CallbackHandler)
        self.expected_state = ""
        self.outcome: Optional[CallbackResult] = None

    @property
    def port(self) -> int:
        return self.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://127.0.0.1:{self.port}{CALLBACK_PATH}"

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.debug("Error handling OAuth callback from %s", client_address, exc_info=True)


def bind_callback_server(ports: Sequence[int] = PREFERRED_PORTS) -> CallbackServer:
    """Bind the callback server on the first available port.

    Args:
        ports: Candidate ports in order of preference.

    Raises:
        PortUnavailableError: If none of *ports* can be bound.
    """
    for port in ports:
        try:
            return CallbackServer(port)
        except OSError as exc:
            logger.debug("Callback port %d unavailable: %s", port, exc)

    tried = ", ".join(str(p) for p in ports)
    raise PortUnavailableError(
        f"Could not bind to any preferred port. Tried: {tried}. "
        "Close the application using one of these ports, "
        "or use API key authentication: bitbucket auth login --api-key"
    )


def wait_for_callback(
    server: CallbackServer,
    expected_state: str,
    timeout: Optional[float] = DEFAULT_CALLBACK_TIMEOUT,
    cancel: Optional[threading.Event] = None,
) -> str:
    """Serve callback requests until one carries a valid authorization code.

    Requests with a wrong ``state`` are answered with 400 and ignored.

    Args:
        server: A bound :class:`CallbackServer`.
        expected_state: The CSRF token sent with the authorization request.
        timeout: Seconds to wait in total; ``None`` waits indefinitely.
        cancel: Optional event; setting it aborts the wait.

    Returns:
        The authorization code.

    Raises:
        AuthError: If Bitbucket reports an error, the wait times out or is
            cancelled, or the server socket fails.
    """
    server.expected_state = expected_state
    server.outcome = None
    deadline = time.monotonic() + timeout if timeout is not None else None

    while server.outcome is None:
        if cancel is not None and cancel.is_set():
            raise AuthError("OAuth login cancelled")
        poll = _POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthError(
                    f"Timed out after {timeout:.0f}s waiting for the OAuth callback"
                )
            poll = min(poll, remaining)
        server.timeout = poll
        try:
            server.handle_request()
        except (OSError, ValueError) as exc:
            raise AuthError("Callback server closed unexpectedly") from exc

    outcome = server.outcome
    if outcome.error is not None:
        raise AuthError(f"OAuth authorization failed: {outcome.error}")
    assert outcome.code is not None
    return outcome.code


def credential_from_token_response(
    token_data: dict[str, Any],
    previous_refresh_token: Optional[str] = None,
    now: Optional[float] = None,
) -> OAuthCredential:
    """Build an :class:`OAuthCredential` from a token endpoint response.

    Args:
        token_data: Parsed JSON with ``access_token`` and optionally
            ``refresh_token`` and ``expires_in``.
        previous_refresh_token: Kept when the response has no new refresh
            token (Bitbucket may or may not rotate it).
        now: Current epoch seconds (defaults to :func:`time.time`).
    """
    expires_at: Optional[int] = None
    expires_in = token_data.get("expires_in")
    if expires_in is not None:
        try:
            current = time.time() if now is None else now
            expires_at = int(current + float(expires_in))
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric expires_in: %r", expires_in)

    return OAuthCredential(
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token") or previous_refresh_token,
        expires_at=expires_at,
    )


class OAuthFlow:
    """Interactive OAuth login and token refresh for one OAuth consumer.

    Args:
        client_id: OAuth consumer key.
        client_secret: OAuth consumer secret.
        authorize_url: Authorization endpoint.
        token_url: Token endpoint.
        ports: Candidate callback ports.
        scopes: Scopes requested at authorization.
        http_timeout: Timeout in seconds for token endpoint requests.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        authorize_url: str = AUTHORIZE_URL,
        token_url: str = TOKEN_URL,
        ports: Sequence[int] = PREFERRED_PORTS,
        scopes: Sequence[str] = SCOPES,
        http_timeout: float = 30.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._authorize_url = authorize_url
        self._token_url = token_url
        self._ports = tuple(ports)
        self._scopes = tuple(scopes)
        self._http_timeout = http_timeout
        self.state = FlowState.IDLE

    def _transition(self, state: FlowState) -> None:
        logger.debug("OAuth flow: %s -> %s", self.state.value, state.value)
        self.state = state

    def build_authorization_url(
        self, redirect_uri: str, state: str, code_challenge: str
    ) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self._scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self._authorize_url}?{urlencode(params)}"

    def authenticate(
        self,
        manager: AuthManager,
        open_browser: Callable[[str], bool] = webbrowser.open,
        callback_timeout: Optional[float] = DEFAULT_CALLBACK_TIMEOUT,
        cancel: Optional[threading.Event] = None,
    ) -> OAuthCredential:
        """Run the full interactive login and store the resulting credential.

        Args:
            manager: Where the credential is stored.
            open_browser: Opens a URL; returns False or raises
                :class:`webbrowser.Error` when no browser is available.
            callback_timeout: Seconds to wait for the browser redirect.
            cancel: Optional event that aborts the wait for the redirect.

        Returns:
            The stored credential.

        Raises:
            PortUnavailableError: If no callback port can be bound.
            AuthError: If authorization is denied, times out, or the token
                exchange fails.
        """
        self.state = FlowState.IDLE
        with bind_callback_server(self._ports) as server:
            self._transition(FlowState.LISTENER_BOUND)
            redirect_uri = server.redirect_uri
            info(f"Callback server listening on port {server.port}")
            info(f"Make sure your OAuth consumer callback URL is set to: {redirect_uri}")

            csrf_state = generate_state()
            code_verifier, code_challenge = generate_pkce_pair()
            auth_url = self.build_authorization_url(redirect_uri, csrf_state, code_challenge)
            self._transition(FlowState.AUTHORIZATION_REQUESTED)

            try:
                opened = open_browser(auth_url)
            except webbrowser.Error as exc:
                logger.debug("Could not open browser: %s", exc)
                opened = False
            if opened:
                info("Opening browser for authentication...")
            else:
                info("Could not open browser automatically.")
                info(f"Please open this URL in your browser:\n\n  {auth_url}\n")

            self._transition(FlowState.AWAITING_CALLBACK)
            progress("Waiting for authorization...")
            code = wait_for_callback(server, csrf_state, callback_timeout, cancel)
            self._transition(FlowState.CODE_RECEIVED)

        progress("Authorization received, exchanging for token...")
        token_data = self.exchange_code(code, code_verifier, redirect_uri)
        self._transition(FlowState.TOKEN_EXCHANGED)

        credential = credential_from_token_response(token_data)
        manager.store_credentials(credential)
        self._transition(FlowState.STORED)

        success("Successfully authenticated via OAuth")
        self._transition(FlowState.DONE)
        return credential

    def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> dict[str, Any]:
        """Exchange the authorization code for access and refresh tokens.

        Raises:
            AuthError: On network errors, HTTP errors, or a response
                without ``access_token``.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        return self._post_token(data, "Token exchange")

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Raises:
            AuthError: On network errors, HTTP errors, or a response
                without ``access_token``.
        """
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return self._post_token(data, "Token refresh")

    def refresh_credential(
        self, manager: AuthManager, refresh_token: str
    ) -> OAuthCredential:
        """Refresh the access token and store the new credential.

        The old refresh token is kept when Bitbucket does not issue a new
        one.
        """
        token_data = self.refresh(refresh_token)
        credential = credential_from_token_response(
            token_data, previous_refresh_token=refresh_token
        )
        manager.store_credentials(credential)
        return credential

    def _post_token(self, data: dict[str, str], step: str) -> dict[str, Any]:
        """POST to the token endpoint without following redirects."""
        try:
            response = httpx.post(
                self._token_url,
                data=data,
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
                timeout=self._http_timeout,
                follow_redirects=False,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise AuthError(
                f"{step} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthError(f"{step} failed: {exc}") from exc
        except ValueError as exc:
            raise AuthError(f"{step} failed: response is not valid JSON") from exc

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise AuthError(f"{step} response missing 'access_token' field")
        return token_data
