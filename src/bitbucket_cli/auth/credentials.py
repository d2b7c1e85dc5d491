"""Credential model: a closed union of OAuth and API-key credentials.

A stored credential is exactly one of:

- :class:`OAuthCredential` -- bearer access token with an optional refresh
  token and absolute expiry (epoch seconds).
- :class:`ApiKeyCredential` -- username and API key (formerly "app
  password"), sent with HTTP Basic authentication.

The variants are Pydantic models discriminated by their ``type`` field, so
the stored JSON always names its variant and validation rejects anything
that is not exactly one of them. :func:`dump_credential` and
:func:`load_credential` are the only serialisation entry points used by the
storage backends.

Example::

    cred = ApiKeyCredential(username="alice", api_key="ATATT...")
    text = dump_credential(cred)
    assert load_credential(text) == cred
"""

from __future__ import annotations

import base64
import time
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from bitbucket_cli.exceptions import CredentialCorruptedError

REFRESH_MARGIN_SECONDS = 300
"""An OAuth token expiring within this many seconds is refreshed before use."""


class OAuthCredential(BaseModel):
    """OAuth 2.0 bearer token, the preferred credential type.

    Attributes:
        access_token: The bearer token sent on every API call.
        refresh_token: Token used to obtain a new access token, if issued.
        expires_at: Absolute expiry as epoch seconds. ``None`` means the
            expiry is unknown and the token is assumed to be valid.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["oauth"] = "oauth"
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    @property
    def type_name(self) -> str:
        return "OAuth 2.0"

    @property
    def username(self) -> Optional[str]:
        return None

    @property
    def is_oauth(self) -> bool:
        return True

    @property
    def is_api_key(self) -> bool:
        return False

    def auth_header(self) -> str:
        """Return the ``Authorization`` header value (``Bearer <token>``)."""
        return f"Bearer {self.access_token}"

    def needs_refresh(self, now: Optional[float] = None) -> bool:
        """Return True when the token expires within the refresh margin.

        A token without a known expiry never needs a refresh; callers must
        still handle a late 401 from the API.

        Args:
            now: Current epoch seconds (defaults to :func:`time.time`).
        """
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at < current + REFRESH_MARGIN_SECONDS


class ApiKeyCredential(BaseModel):
    """Username plus API key, for automation and CI."""

    model_config = ConfigDict(frozen=True)

    type: Literal["api_key"] = "api_key"
    username: str = Field(min_length=1)
    api_key: str = Field(min_length=1)

    @property
    def type_name(self) -> str:
        return "API Key"

    @property
    def is_oauth(self) -> bool:
        return False

    @property
    def is_api_key(self) -> bool:
        return True

    def auth_header(self) -> str:
        """Return the ``Authorization`` header value per :rfc:`7617`."""
        raw = f"{self.username}:{self.api_key}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"

    def needs_refresh(self, now: Optional[float] = None) -> bool:
        return False


Credential = Annotated[
    Union[OAuthCredential, ApiKeyCredential], Field(discriminator="type")
]
"""A stored credential: exactly one of :class:`OAuthCredential` or :class:`ApiKeyCredential`."""

_credential_adapter: TypeAdapter[Credential] = TypeAdapter(Credential)


def dump_credential(credential: Union[OAuthCredential, ApiKeyCredential]) -> str:
    """Serialise a credential to its stable JSON form."""
    return credential.model_dump_json()


def load_credential(text: str) -> Union[OAuthCredential, ApiKeyCredential]:
    """Parse a credential from JSON.

    Args:
        text: JSON produced by :func:`dump_credential`.

    Returns:
        The credential variant named by the ``type`` field.

    Raises:
        CredentialCorruptedError: If *text* is not valid JSON or does not
            describe exactly one known credential variant.
    """
    try:
        return _credential_adapter.validate_json(text)
    except ValidationError as exc:
        raise CredentialCorruptedError(
            f"Stored credential is corrupt and cannot be parsed "
            f"({exc.error_count()} validation error(s)). "
            "Run 'bitbucket auth logout' and log in again."
        ) from exc
