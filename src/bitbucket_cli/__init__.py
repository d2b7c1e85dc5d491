"""bitbucket-cli -- command-line access to Bitbucket Cloud.

This package provides the ``bitbucket`` command and the authentication
subsystem behind it: OAuth 2.0 login with PKCE, API key login, credential
storage in the system keyring with a file fallback, and an HTTP client that
injects and refreshes credentials.

Typical workflow::

    bitbucket auth login        # OAuth in the browser, or --api-key
    bitbucket auth status       # show what is stored and verify it

Modules:
    app: Typer application and CLI entry point.
    auth: Credentials, storage backends, login flows.
    client: Authenticated Bitbucket REST client.
    config: XDG-aware configuration and secret resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
