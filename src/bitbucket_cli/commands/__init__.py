"""Built-in CLI sub-commands for bitbucket-cli.

* :mod:`~bitbucket_cli.commands.auth` -- log in, log out, inspect and
  refresh the stored credential.
* :mod:`~bitbucket_cli.commands.config` -- view and modify settings.

Each module exports a :class:`typer.Typer` sub-application that
:func:`bitbucket_cli.app.main` mounts on the root app.
"""
