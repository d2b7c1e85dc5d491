"""Configuration management with XDG paths, atomic writes, and secret resolution.

This module handles the persistent, non-secret configuration of bitbucket-cli:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.bitbucket/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`. The file-based credential backend
  (:class:`~bitbucket_cli.auth.storage.FileBackend`) keeps its
  ``credentials.json`` in the config directory as well.
* **Config file** -- a single :class:`~bitbucket_cli.models.Config` JSON
  file, read by :func:`load_config` and written by :func:`save_config`.
* **Secret resolution** -- :func:`resolve_secret` reads secrets from env
  vars, files, or interactive prompts, so the config only ever stores a
  source descriptor.
* **OAuth consumer resolution** -- :func:`resolve_oauth_client` merges CLI
  options, environment variables and the config file.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from bitbucket_cli.exceptions import ConfigError
from bitbucket_cli.models import Config

_APP_NAME = "bitbucket"
_CONFIG_FILENAME = "config.json"

ENV_OAUTH_CLIENT_ID = "BITBUCKET_OAUTH_CLIENT_ID"
ENV_OAUTH_CLIENT_SECRET = "BITBUCKET_OAUTH_CLIENT_SECRET"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/bitbucket/`` (default ``~/.config/bitbucket/``).
    On macOS/Windows: ``~/.bitbucket/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/bitbucket/`` (default ``~/.local/share/bitbucket/``).
    On macOS/Windows: ``~/.bitbucket/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given the permissions are applied to the temp file before any content is
    written, so the secret is never readable by others, even momentarily.
    On any failure the temp file is removed and the error re-raised.

    Args:
        path: Destination file.
        data: Text content to write (UTF-8).
        mode: Optional permission bits, e.g. ``0o600``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config file ---


def config_path() -> Path:
    """Path to the config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config() -> Config:
    """Load the configuration from the config directory.

    Returns:
        The deserialised :class:`~bitbucket_cli.models.Config`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = config_path()
    if not path.is_file():
        return Config()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return Config.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config at {path}: {exc}") from exc


def save_config(config: Config) -> None:
    """Persist the configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


# --- Secret resolution ---


def resolve_secret(source: str, prompt_text: str = "Enter secret: ") -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts interactively without echo (requires a TTY)

    Args:
        source: The source descriptor string.
        prompt_text: Prompt shown for the ``prompt`` source.

    Returns:
        The resolved secret.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if not value:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Secret file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read secret file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for secret: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass(prompt_text)

    raise ConfigError(f"Unknown secret source format: {source}")


def resolve_oauth_client(
    config: Config,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
) -> tuple[str, str]:
    """Resolve the OAuth consumer key and secret.

    Precedence (high to low):
        1. Explicit arguments (CLI options)
        2. ``BITBUCKET_OAUTH_CLIENT_ID`` for the key
        3. ``config.oauth.client_id`` for the key and
           ``config.oauth.client_secret_source`` for the secret

    Returns:
        A ``(client_id, client_secret)`` tuple.

    Raises:
        ConfigError: If either value cannot be resolved.
    """
    resolved_id = client_id or os.environ.get(ENV_OAUTH_CLIENT_ID) or config.oauth.client_id
    if not resolved_id:
        raise ConfigError(
            "No OAuth client id configured. Pass --client-id, set "
            f"{ENV_OAUTH_CLIENT_ID}, or run 'bitbucket config set oauth.client_id <key>'"
        )
    resolved_secret = client_secret or resolve_secret(
        config.oauth.client_secret_source, prompt_text="OAuth client secret: "
    )
    return resolved_id, resolved_secret


def has_oauth_client(config: Config) -> bool:
    """Return True if an OAuth client id is available without prompting."""
    return bool(os.environ.get(ENV_OAUTH_CLIENT_ID) or config.oauth.client_id)
