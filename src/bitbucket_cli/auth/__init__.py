"""Authentication subsystem for bitbucket-cli.

The main entry points are:

- :class:`AuthManager` -- chooses the credential backend for the process
  and stores, retrieves and clears the single credential.
- :class:`OAuthFlow` -- interactive browser login with PKCE, plus token
  refresh.
- :class:`~bitbucket_cli.auth.api_key.ApiKeyLogin` -- validates and stores a
  username / API key pair. It lives in :mod:`bitbucket_cli.auth.api_key`
  because it depends on :mod:`bitbucket_cli.client`.
- :class:`OAuthCredential` / :class:`ApiKeyCredential` -- the two credential
  variants.

Typical usage::

    from bitbucket_cli.auth import AuthManager

    manager = AuthManager.from_environment()
    credential = manager.get_credentials()
    if credential is not None:
        headers = {"Authorization": credential.auth_header()}
"""

from bitbucket_cli.auth.credentials import (
    ApiKeyCredential,
    Credential,
    OAuthCredential,
    dump_credential,
    load_credential,
)
from bitbucket_cli.auth.manager import AuthManager, probe_keyring
from bitbucket_cli.auth.oauth import OAuthFlow
from bitbucket_cli.auth.platform import PlatformEnvironment
from bitbucket_cli.auth.storage import CredentialBackend, FileBackend, KeyringBackend

__all__ = [
    "ApiKeyCredential",
    "AuthManager",
    "Credential",
    "CredentialBackend",
    "FileBackend",
    "KeyringBackend",
    "OAuthCredential",
    "OAuthFlow",
    "PlatformEnvironment",
    "dump_credential",
    "load_credential",
    "probe_keyring",
]
