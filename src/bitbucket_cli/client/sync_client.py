"""Synchronous Bitbucket API client with auth injection and error mapping.

This module provides :class:`BitbucketClient`, a thin layer over
:class:`httpx.Client`:

- **Auth injection** -- every request carries the ``Authorization`` header
  produced by the current credential.
- **OAuth refresh** -- :meth:`BitbucketClient.from_manager` refreshes a
  token that is about to expire, and a request answered with 401 is retried
  once after a refresh when a refresher is available.
- **Error mapping** -- 401 becomes
  :class:`~bitbucket_cli.exceptions.UnauthorizedError`, 403
  :class:`~bitbucket_cli.exceptions.AuthError`, 404 :class:`~bitbucket_cli.exceptions.NotFoundError`, 429
  :class:`~bitbucket_cli.exceptions.RateLimitError`, 5xx
  :class:`~bitbucket_cli.exceptions.ServerError`, network failures
  :class:`~bitbucket_cli.exceptions.ConnectionError_`.

Endpoint helpers beyond :meth:`BitbucketClient.current_user` are
intentionally absent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx

from bitbucket_cli import __version__
from bitbucket_cli.auth.credentials import Credential
from bitbucket_cli.exceptions import (
    AuthError,
    BitbucketCliError,
    ConnectionError_,
    NotAuthenticatedError,
    NotFoundError,
    RateLimitError,
    ServerError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.auth.oauth import OAuthFlow

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.bitbucket.org/2.0"
USER_AGENT = f"bitbucket-cli/{__version__}"

Refresher = Callable[[Credential], Credential]
"""Given the current OAuth credential, return a refreshed (and stored) one."""


class BitbucketClient:
    """Blocking HTTP client for the Bitbucket REST API.

    Must be used as a context manager so that the underlying transport is
    opened and closed.

    Args:
        credential: The credential whose ``auth_header()`` is sent.
        base_url: API root.
        timeout: Request timeout in seconds.
        refresher: Optional callable used to refresh an OAuth credential
            after a 401.
        transport: Optional custom :class:`httpx.BaseTransport` (tests use
            :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        credential: Credential,
        base_url: str = API_BASE_URL,
        timeout: float = 30.0,
        refresher: Optional[Refresher] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._credential = credential
        self._base_url = base_url
        self._timeout = timeout
        self._refresher = refresher
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_manager(
        cls,
        manager: AuthManager,
        flow_factory: Optional[Callable[[], OAuthFlow]] = None,
        **kwargs: Any,
    ) -> BitbucketClient:
        """Create a client from the stored credential.

        An OAuth credential that :meth:`needs_refresh` is refreshed first
        when *flow_factory* is given and the credential has a refresh token.

        Args:
            manager: Source of the stored credential.
            flow_factory: Builds the :class:`~bitbucket_cli.auth.oauth.OAuthFlow`
                used for refreshes. Called lazily.
            **kwargs: Forwarded to the constructor.

        Raises:
            NotAuthenticatedError: If no credential is stored.
        """
        credential = manager.get_credentials()
        if credential is None:
            raise NotAuthenticatedError(
                "Not authenticated. Run 'bitbucket auth login' first."
            )

        refresher: Optional[Refresher] = None
        if flow_factory is not None:
            def refresher(current: Credential) -> Credential:
                if not current.is_oauth or not current.refresh_token:
                    raise AuthError("Credential cannot be refreshed")
                return flow_factory().refresh_credential(manager, current.refresh_token)

        if credential.needs_refresh():
            if refresher is not None and credential.is_oauth and credential.refresh_token:
                logger.debug("Access token expires soon, refreshing")
                credential = refresher(credential)
            else:
                logger.debug("Access token expires soon but cannot be refreshed")

        return cls(credential, refresher=refresher, **kwargs)

    @property
    def credential(self) -> Credential:
        return self._credential

    def __enter__(self) -> BitbucketClient:
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def url(self, path: str) -> str:
        """Return the absolute URL for an API path."""
        return f"{self._base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send a request, refreshing and retrying once on a 401 if possible.

        Raises:
            UnauthorizedError: On 401.
            AuthError: On 403.
            NotFoundError: On 404.
            RateLimitError: On 429.
            ServerError: On 5xx.
            ConnectionError_: On network or timeout errors.
            BitbucketCliError: On any other 4xx.
        """
        response = self._send(method, path, params, json_body)
        if (
            response.status_code == 401
            and self._refresher is not None
            and self._credential.is_oauth
            and self._credential.refresh_token
        ):
            logger.debug("Received 401, refreshing access token and retrying")
            self._credential = self._refresher(self._credential)
            response = self._send(method, path, params, json_body)

        _map_response_error(response)
        return response

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", path, **kwargs)

    def get_json(self, path: str, **kwargs: Any) -> Any:
        """GET *path* and return the decoded JSON body."""
        response = self.get(path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError(f"Failed to parse response JSON from {path}") from exc

    def current_user(self) -> dict[str, Any]:
        """Return the authenticated user (``GET /user``)."""
        return self.get_json("/user")

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]],
        json_body: Optional[Any],
    ) -> httpx.Response:
        assert self._client is not None, "Client not initialised -- use as context manager"
        try:
            return self._client.request(
                method,
                path,
                params=params,
                json=json_body,
                headers={"Authorization": self._credential.auth_header()},
            )
        except httpx.HTTPError as exc:
            raise ConnectionError_(f"Request failed: {exc}") from exc


def _error_message(response: httpx.Response) -> str:
    """Extract ``error.message`` from a Bitbucket error body, if present."""
    try:
        detail = response.json()
    except ValueError:
        return response.text[:200] if response.text else ""
    if isinstance(detail, dict):
        error = detail.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.text[:200] if response.text else ""


def _map_response_error(response: httpx.Response) -> None:
    """Raise a typed exception for error HTTP status codes."""
    status = response.status_code
    if status < 400:
        return

    if status == 401:
        raise UnauthorizedError("Authentication failed. Try running 'bitbucket auth login' again.")
    if status == 403:
        raise AuthError("Access denied. You don't have permission to access this resource.")
    if status == 404:
        raise NotFoundError("Resource not found.")
    if status == 429:
        raise RateLimitError("Rate limit exceeded. Please wait and try again.")

    msg = _error_message(response)
    full_msg = f"API error ({status}): {msg}" if msg else f"API error ({status})"
    if status >= 500:
        raise ServerError(full_msg)
    raise BitbucketCliError(full_msg)
