"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~bitbucket_cli.exceptions.BitbucketCliError` subclass.
Shell wrappers and CI scripts can inspect the exit code to tell an expired
login apart from a network outage without parsing stderr.

Example::

    $ bitbucket auth status
    $ bitbucket auth refresh
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the refresh token was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required options."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed, or no credential is stored."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""Bitbucket returned an HTTP 5xx error or rate-limited the request."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORAGE_ERROR = 8
"""The credential store could not be read or written, or its content is corrupt."""

EXIT_CANCELLED = 130
"""The user interrupted the command (Ctrl-C)."""
