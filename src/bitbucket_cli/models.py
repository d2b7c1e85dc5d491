"""Pydantic models for the persisted, non-secret CLI configuration.

The configuration file (``config.json`` in the config directory) is
deserialised into :class:`Config`. It holds display preferences, default
workspace/repository, the username of the last API-key login, and the OAuth
consumer's client id. It never holds a secret: the OAuth client secret is
referenced through a *source descriptor* (``env:VAR``, ``file:/path`` or
``prompt``) that :func:`bitbucket_cli.config.resolve_secret` resolves at the
moment it is needed.

Credentials themselves are modelled in :mod:`bitbucket_cli.auth.credentials`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AuthSettings(BaseModel):
    """Identity details remembered for display after a successful login."""

    username: Optional[str] = Field(
        default=None, description="Username of the last API-key login"
    )


class DefaultsSettings(BaseModel):
    """Defaults applied when a command does not name a workspace or repository."""

    workspace: Optional[str] = None
    repository: Optional[str] = None
    branch: Optional[str] = "main"


class DisplaySettings(BaseModel):
    """Terminal display preferences."""

    color: bool = True
    pager: bool = True
    date_format: str = "%Y-%m-%d %H:%M"


class OAuthSettings(BaseModel):
    """OAuth consumer registration used by ``bitbucket auth login --oauth``.

    The consumer's callback URL must be registered with Bitbucket as
    ``http://127.0.0.1:<port>/callback`` for one of the ports in
    :data:`bitbucket_cli.auth.oauth.PREFERRED_PORTS`.
    """

    client_id: Optional[str] = Field(
        default=None, description="OAuth consumer key"
    )
    client_secret_source: str = Field(
        default="env:BITBUCKET_OAUTH_CLIENT_SECRET",
        description="Where to read the consumer secret: env:VAR, file:/path, prompt",
    )


class Config(BaseModel):
    """Top-level configuration persisted as ``config.json``.

    Example::

        config = Config()
        config.set_username("alice")
        assert config.username == "alice"
    """

    auth: AuthSettings = Field(default_factory=AuthSettings)
    defaults: DefaultsSettings = Field(default_factory=DefaultsSettings)
    display: DisplaySettings = Field(default_factory=DisplaySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)

    @property
    def username(self) -> Optional[str]:
        """The username remembered from the last API-key login."""
        return self.auth.username

    def set_username(self, username: str) -> None:
        self.auth.username = username

    @property
    def default_workspace(self) -> Optional[str]:
        """The workspace used when a command does not specify one."""
        return self.defaults.workspace

    def set_default_workspace(self, workspace: str) -> None:
        self.defaults.workspace = workspace

    def clear_auth(self) -> None:
        """Forget identity details (called on logout)."""
        self.auth.username = None
