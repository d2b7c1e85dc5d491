"""Shared test fixtures for bitbucket-cli.

Provides isolated config directories, in-memory keyrings, a scriptable
platform environment, output state management, and a CLI runner. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from bitbucket_cli.auth.platform import PlatformEnvironment
from bitbucket_cli.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Keyring stand-ins
# ---------------------------------------------------------------------------


class FakeKeyring:
    """In-memory object with the ``keyring`` password API."""

    def __init__(self) -> None:
        self.entries: dict[tuple[str, str], str] = {}

    def set_password(self, service: str, key: str, value: str) -> None:
        self.entries[(service, key)] = value

    def get_password(self, service: str, key: str) -> Optional[str]:
        return self.entries.get((service, key))

    def delete_password(self, service: str, key: str) -> None:
        try:
            del self.entries[(service, key)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


class DBusError(Exception):
    """Stand-in for a backend library exception outside the keyring hierarchy."""


class FailingKeyring:
    """Keyring whose every call fails, like a Secret Service with no daemon."""

    def __init__(
        self,
        message: str = "Secret Service not available",
        error_type: type[Exception] = KeyringError,
    ) -> None:
        self.message = message
        self.error_type = error_type

    def set_password(self, service: str, key: str, value: str) -> None:
        raise self.error_type(self.message)

    def get_password(self, service: str, key: str) -> Optional[str]:
        raise self.error_type(self.message)

    def delete_password(self, service: str, key: str) -> None:
        raise self.error_type(self.message)


class ForgetfulKeyring(FakeKeyring):
    """Accepts writes without error but never returns them."""

    def set_password(self, service: str, key: str, value: str) -> None:
        pass


class FakePlatform(PlatformEnvironment):
    """Scriptable environment: env vars, readable files and existing paths."""

    def __init__(
        self,
        env: Optional[dict[str, str]] = None,
        files: Optional[dict[str, str]] = None,
        existing: Optional[set[str]] = None,
    ) -> None:
        self.env = env or {}
        self.files = files or {}
        self.existing = existing or set()

    def getenv(self, name: str) -> Optional[str]:
        return self.env.get(name)

    def read_text(self, path: str) -> Optional[str]:
        return self.files.get(path)

    def exists(self, path: str) -> bool:
        return path in self.existing or path in self.files


@pytest.fixture
def fake_keyring() -> FakeKeyring:
    return FakeKeyring()


@pytest.fixture
def failing_keyring() -> FailingKeyring:
    return FailingKeyring()


@pytest.fixture
def dbus_failing_keyring() -> FailingKeyring:
    return FailingKeyring("D-Bus connection lost", error_type=DBusError)


@pytest.fixture
def forgetful_keyring() -> ForgetfulKeyring:
    return ForgetfulKeyring()


@pytest.fixture
def make_platform() -> type[FakePlatform]:
    """The :class:`FakePlatform` class, for tests that script their own environment."""
    return FakePlatform


@pytest.fixture
def desktop_platform() -> FakePlatform:
    """A plain Linux desktop: no override, not WSL, not a container."""
    return FakePlatform(
        files={
            "/proc/version": "Linux version 6.8.0-generic",
            "/proc/1/cgroup": "0::/init.scope",
        }
    )


@pytest.fixture
def credentials_path(tmp_path: Path) -> Path:
    return tmp_path / "creds" / "credentials.json"


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config, forces the file credential
    backend so the real keyring is never used, and clears the OAuth
    consumer environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("bitbucket_cli.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("BITBUCKET_USE_FILE_STORAGE", "1")

    for var in [
        "BITBUCKET_OAUTH_CLIENT_ID",
        "BITBUCKET_OAUTH_CLIENT_SECRET",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def plain_output() -> OutputManager:
    """Install a PLAIN-format, uncoloured OutputManager that still shows info and warnings."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
