"""Auth commands -- log in, log out, and inspect the stored credential.

Provides the ``bitbucket auth`` sub-command group. Exactly one credential
is stored at a time; logging in again replaces it.

Typical workflow::

    bitbucket auth login             # OAuth if a consumer is configured
    bitbucket auth login --api-key   # username + API key, for CI
    bitbucket auth status            # verify against GET /user
    bitbucket auth logout
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, NoReturn, Optional

import typer

from bitbucket_cli.exceptions import BitbucketCliError, InvalidUsageError
from bitbucket_cli.output import (
    error,
    format_response,
    info,
    success,
    suggest,
    warning,
)

if TYPE_CHECKING:
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.auth.oauth import OAuthFlow
    from bitbucket_cli.models import Config


auth_app = typer.Typer(no_args_is_help=True)


def _fail(exc: BitbucketCliError) -> NoReturn:
    error(str(exc))
    raise typer.Exit(code=exc.exit_code)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    oauth: bool = typer.Option(
        False, "--oauth", help="Log in with OAuth 2.0 in the browser."
    ),
    api_key: bool = typer.Option(
        False, "--api-key", help="Log in with a username and API key."
    ),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", help="Bitbucket username (API key login)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth consumer key."
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="OAuth consumer secret."
    ),
    timeout: float = typer.Option(
        300.0, "--timeout", help="Seconds to wait for the browser callback."
    ),
) -> None:
    """Authenticate with Bitbucket.

    OAuth is used when ``--oauth`` is given, or when an OAuth consumer is
    configured and ``--api-key`` is not. Otherwise the username and API key
    are prompted for (the key without echo), validated with ``GET /user``,
    and the username is remembered in the config.

    Args:
        ctx: Typer context carrying the ``force`` flag.
        oauth: Force the OAuth flow.
        api_key: Force API key login.
        username: Username for API key login; prompted if omitted.
        client_id: OAuth consumer key override.
        client_secret: OAuth consumer secret override.
        timeout: Seconds to wait for the OAuth redirect.

    Raises:
        typer.Exit: With code 2 for conflicting flags, 3 if authentication
            fails, 8 if the credential cannot be stored.

    Example::

        bitbucket auth login --oauth --client-id KEY
        bitbucket auth login --api-key -u alice
    """
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.config import has_oauth_client, load_config

    try:
        if oauth and api_key:
            raise InvalidUsageError("--oauth and --api-key are mutually exclusive")

        config = load_config()
        manager = AuthManager.from_environment()

        force = ctx.obj.get("force", False) if ctx.obj else False
        if not force and manager.is_authenticated():
            if not typer.confirm("Already authenticated. Replace the stored credential?"):
                info("Cancelled.")
                raise typer.Exit()

        use_oauth = oauth or (not api_key and (client_id is not None or has_oauth_client(config)))
        if use_oauth:
            _login_oauth(manager, config, client_id, client_secret, timeout)
        else:
            _login_api_key(manager, config, username)
    except BitbucketCliError as exc:
        _fail(exc)


def _login_oauth(
    manager: AuthManager,
    config: Config,
    client_id: Optional[str],
    client_secret: Optional[str],
    timeout: float,
) -> None:
    from bitbucket_cli.auth.oauth import OAuthFlow
    from bitbucket_cli.config import resolve_oauth_client

    resolved_id, resolved_secret = resolve_oauth_client(config, client_id, client_secret)
    flow = OAuthFlow(resolved_id, resolved_secret)
    flow.authenticate(manager, callback_timeout=timeout)


def _login_api_key(manager: AuthManager, config: Config, username: Optional[str]) -> None:
    from bitbucket_cli.auth.api_key import ApiKeyLogin
    from bitbucket_cli.config import save_config

    info("OAuth 2.0 is the preferred authentication method; API keys suit automation and CI.")
    info("Create one under Bitbucket Personal settings > HTTP access tokens.")

    if username is None:
        username = typer.prompt("Bitbucket username")
    key = typer.prompt("API key (HTTP access token)", hide_input=True)

    credential = ApiKeyLogin(manager).authenticate(username, key)

    config.set_username(credential.username)
    save_config(config)
    success(f"Successfully authenticated as {credential.username}")
    suggest("Use 'bitbucket auth login --oauth' for a better experience")


@auth_app.command("logout")
def auth_logout() -> None:
    """Remove stored credentials from every backend.

    Also forgets the username remembered in the config.

    Example::

        bitbucket auth logout
    """
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.config import load_config, save_config

    try:
        AuthManager.from_environment().clear_credentials()
        config = load_config()
        config.clear_auth()
        save_config(config)
    except BitbucketCliError as exc:
        _fail(exc)
    success("Logged out successfully")


@auth_app.command("status")
def auth_status() -> None:
    """Show authentication status.

    Prints the credential type, the storage backend, the username and
    workspace from the config and, for OAuth, the token expiry. When a
    credential is stored it is verified with ``GET /user``; a failed check
    is reported as a warning. Being logged out is not an error.

    Example::

        bitbucket auth status
        bitbucket --json auth status
    """
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.config import load_config

    try:
        config = load_config()
        manager = AuthManager.from_environment()
        credential = manager.get_credentials()
    except BitbucketCliError as exc:
        _fail(exc)

    if credential is None:
        format_response({"authenticated": False})
        suggest("Run 'bitbucket auth login' to authenticate")
        return

    status: dict[str, object] = {
        "authenticated": True,
        "type": credential.type_name,
        "storage": manager.backend_name,
        "username": credential.username or config.username,
        "workspace": config.default_workspace,
    }
    if credential.is_oauth and credential.expires_at is not None:
        expires = datetime.fromtimestamp(credential.expires_at)
        status["expires"] = expires.strftime(config.display.date_format)

    user = _check_credentials(manager, config)
    if user is not None:
        status["display_name"] = user.get("display_name")
    format_response(status)


def _check_credentials(manager: AuthManager, config: Config) -> Optional[dict[str, Any]]:
    """Call ``GET /user``; return the user record or ``None`` after a warning."""
    from bitbucket_cli.client import BitbucketClient

    try:
        with BitbucketClient.from_manager(
            manager, flow_factory=lambda: _flow_from_config(config)
        ) as client:
            return client.current_user()
    except BitbucketCliError as exc:
        warning(f"Credentials may be invalid: {exc}")
        return None


def _flow_from_config(
    config: Config,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
) -> OAuthFlow:
    from bitbucket_cli.auth.oauth import OAuthFlow
    from bitbucket_cli.config import resolve_oauth_client

    return OAuthFlow(*resolve_oauth_client(config, client_id, client_secret))


@auth_app.command("refresh")
def auth_refresh(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth consumer key."
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="OAuth consumer secret."
    ),
) -> None:
    """Exchange the stored OAuth refresh token for a new access token.

    Raises:
        typer.Exit: With code 3 if not logged in with OAuth, the credential
            has no refresh token, or Bitbucket rejects the refresh.

    Example::

        bitbucket auth refresh
    """
    from bitbucket_cli.auth.manager import AuthManager
    from bitbucket_cli.config import load_config
    from bitbucket_cli.exceptions import AuthError, NotAuthenticatedError

    try:
        manager = AuthManager.from_environment()
        credential = manager.get_credentials()
        if credential is None:
            raise NotAuthenticatedError(
                "Not authenticated. Run 'bitbucket auth login' first."
            )
        if not credential.is_oauth:
            raise AuthError("The stored credential is an API key; only OAuth tokens can be refreshed.")
        if not credential.refresh_token:
            raise AuthError("No refresh token stored. Run 'bitbucket auth login --oauth' again.")

        flow = _flow_from_config(load_config(), client_id, client_secret)
        flow.refresh_credential(manager, credential.refresh_token)
    except BitbucketCliError as exc:
        _fail(exc)
    success("Access token refreshed")
