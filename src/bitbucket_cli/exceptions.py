"""Exception hierarchy for bitbucket-cli.

All exceptions inherit from :class:`BitbucketCliError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`bitbucket_cli.exit_codes`. The top-level error handler in
:func:`bitbucket_cli.app.main` catches ``BitbucketCliError`` and exits with
the appropriate code, while unexpected exceptions produce a crash log and
exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    BitbucketCliError (exit 1)
    +-- InvalidUsageError         (exit 2)
    +-- AuthError                 (exit 3)
    |   +-- NotAuthenticatedError (exit 3)
    |   +-- UnauthorizedError     (exit 3)
    |   +-- PortUnavailableError  (exit 3)
    +-- NotFoundError             (exit 4)
    +-- ServerError               (exit 5)
    |   +-- RateLimitError        (exit 5)
    +-- ConnectionError_          (exit 6)
    +-- CredentialStorageError    (exit 8)
    |   +-- CredentialCorruptedError (exit 8)
    +-- ConfigError               (exit 1)
"""

from bitbucket_cli.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
    EXIT_STORAGE_ERROR,
)


class BitbucketCliError(Exception):
    """Base exception for all bitbucket-cli errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`bitbucket_cli.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(BitbucketCliError):
    """Raised for invalid CLI arguments or missing required options."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(BitbucketCliError):
    """Raised when authentication fails (rejected key, failed token exchange, denied consent)."""

    exit_code = EXIT_AUTH_FAILURE


class NotAuthenticatedError(AuthError):
    """Raised when a command needs a credential and none is stored in any backend."""


class UnauthorizedError(AuthError):
    """Raised when the API answers 401: the credential was rejected."""


class PortUnavailableError(AuthError):
    """Raised when none of the pre-registered OAuth callback ports can be bound."""


class NotFoundError(BitbucketCliError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(BitbucketCliError):
    """Raised when the API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class RateLimitError(ServerError):
    """Raised when the API returns HTTP 429."""


class ConnectionError_(BitbucketCliError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class CredentialStorageError(BitbucketCliError):
    """Raised when a storage backend cannot persist, read, or delete the credential."""

    exit_code = EXIT_STORAGE_ERROR


class CredentialCorruptedError(CredentialStorageError):
    """Raised when a stored credential exists but cannot be parsed.

    Never converted into "not authenticated": an unreadable credential may
    mean the store was tampered with, so it is surfaced to the user.
    """


class ConfigError(BitbucketCliError):
    """Raised for configuration problems (invalid JSON, unknown keys, bad secret sources)."""

    exit_code = EXIT_GENERIC_FAILURE
