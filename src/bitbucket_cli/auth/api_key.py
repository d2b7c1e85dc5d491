"""API key login, the non-interactive-friendly alternative to OAuth.

Bitbucket API keys (HTTP access tokens, the successor of app passwords) are
sent with HTTP Basic authentication together with the account username.
:class:`ApiKeyLogin` normalises the key, validates the pair with a
``GET /user`` call and, only if Bitbucket accepts it, stores it through
the :class:`~bitbucket_cli.auth.manager.AuthManager`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional

from bitbucket_cli.auth.credentials import ApiKeyCredential
from bitbucket_cli.client import BitbucketClient
from bitbucket_cli.exceptions import AuthError, UnauthorizedError
from bitbucket_cli.output import progress, warning

if TYPE_CHECKING:
    from bitbucket_cli.auth.manager import AuthManager

EXPECTED_KEY_PREFIXES = ("ATATT", "ATCTT")

_UNAUTHORIZED_HELP = (
    "Authentication failed (401 Unauthorized). Possible causes: incorrect "
    "username, invalid or expired API token, or missing permissions. Check "
    "that the token was copied completely (it should start with 'ATATT' or "
    "'ATCTT') and has at least 'Read' permission."
)


class ApiKeyLogin:
    """Validate and store an API key credential.

    Args:
        manager: Where the credential is stored.
        client_factory: Builds the client used for validation. Defaults to
            :class:`BitbucketClient`; tests pass a factory that injects an
            :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        manager: AuthManager,
        client_factory: Optional[Callable[..., BitbucketClient]] = None,
    ) -> None:
        self._manager = manager
        self._client_factory = client_factory or BitbucketClient

    def authenticate(self, username: str, api_key: str) -> ApiKeyCredential:
        """Validate *username* / *api_key* against Bitbucket and store them.

        Surrounding whitespace is stripped from the key (a common copy-paste
        problem). A key without a known Atlassian prefix only produces a
        warning.

        Returns:
            The stored credential.

        Raises:
            AuthError: If the username or key is empty, or Bitbucket rejects
                the pair.
        """
        username = username.strip()
        api_key = api_key.strip()
        if not username:
            raise AuthError("Username cannot be empty")
        if not api_key:
            raise AuthError("API key cannot be empty")
        if not api_key.startswith(EXPECTED_KEY_PREFIXES):
            warning(
                "Token doesn't start with the expected prefix (ATATT or ATCTT); "
                f"it might not be a valid Bitbucket API token. It starts with: {api_key[:5]}"
            )

        credential = ApiKeyCredential(username=username, api_key=api_key)
        self.validate(credential)
        self._manager.store_credentials(credential)
        return credential

    def validate(self, credential: ApiKeyCredential) -> dict[str, Any]:
        """Call ``GET /user`` with *credential* and return the user record.

        Raises:
            AuthError: On 401 with a list of likely causes; other errors are
                raised as mapped by :class:`BitbucketClient`.
        """
        progress("Validating credentials with Bitbucket API...")
        with self._client_factory(credential) as client:
            try:
                return client.current_user()
            except UnauthorizedError as exc:
                raise AuthError(_UNAUTHORIZED_HELP) from exc
