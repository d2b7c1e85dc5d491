"""Config commands -- view and modify settings.

Provides the ``bitbucket config`` sub-command group for reading and
updating ``config.json`` (:class:`~bitbucket_cli.models.Config`). Keys use
dot notation matching the file's sections, e.g. ``defaults.workspace`` or
``oauth.client_id``. Secrets are never stored here; the OAuth consumer
secret is referenced through ``oauth.client_secret_source``.
"""

from __future__ import annotations

from typing import Any

import typer

from bitbucket_cli.exceptions import BitbucketCliError
from bitbucket_cli.output import error, format_response, get_output, info, success


config_app = typer.Typer(no_args_is_help=True)


def _lookup(data: dict[str, Any], key: str) -> tuple[dict[str, Any], str]:
    """Return the section holding *key* and the final key segment.

    Raises:
        typer.Exit: With code 2 if the key path does not exist.
    """
    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)
    return target, final_key


@config_app.command("show")
def config_show() -> None:
    """Show the current configuration.

    Example::

        bitbucket config show
        bitbucket --json config show
    """
    from bitbucket_cli.config import config_path, load_config

    try:
        config = load_config()
    except BitbucketCliError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Config file: {config_path()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("get")
def config_get(
    key: str = typer.Argument(help="Config key (dot notation, e.g. 'defaults.workspace')."),
) -> None:
    """Print a single configuration value.

    Unset values print as an empty line.

    Example::

        bitbucket config get defaults.workspace
    """
    from bitbucket_cli.config import load_config

    try:
        config = load_config()
    except BitbucketCliError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    section, final_key = _lookup(config.model_dump(mode="json"), key)
    value = section[final_key]
    if isinstance(value, bool):
        get_output().print_data("true" if value else "false")
    else:
        get_output().print_data("" if value is None else str(value))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key (dot notation, e.g. 'defaults.workspace')."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to match the existing field's type (bool or str),
    and the updated config is validated before saving.

    Args:
        key: Dot-separated config key path.
        value: String value to set.

    Raises:
        typer.Exit: With code 2 if the key path is invalid or validation
            fails.

    Example::

        bitbucket config set defaults.workspace myteam
        bitbucket config set oauth.client_id abc123
        bitbucket config set display.color false
    """
    from bitbucket_cli.config import load_config, save_config
    from bitbucket_cli.models import Config

    try:
        config = load_config()
    except BitbucketCliError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    data = config.model_dump(mode="json")
    target, final_key = _lookup(data, key)

    current = target[final_key]
    coerced: Any
    if isinstance(current, bool):
        lowered = value.lower()
        if lowered in ("true", "1", "yes", "on"):
            coerced = True
        elif lowered in ("false", "0", "no", "off"):
            coerced = False
        else:
            error(f"Expected true or false for {key}, got: {value}")
            raise typer.Exit(code=2)
    else:
        coerced = value

    target[final_key] = coerced

    try:
        new_config = Config.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("path")
def config_path_command() -> None:
    """Print the path of the configuration file.

    Example::

        bitbucket config path
    """
    from bitbucket_cli.config import config_path

    get_output().print_data(str(config_path()))
