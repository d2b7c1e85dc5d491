"""Credential storage backends.

Two interchangeable implementations of :class:`CredentialBackend` persist a
single credential as JSON:

- :class:`KeyringBackend` -- the operating system's secret store (Keychain,
  Secret Service, Windows Credential Manager) through the ``keyring``
  library.
- :class:`FileBackend` -- ``credentials.json`` in the config directory,
  written atomically with ``0o600`` permissions.

Both follow the same contract: :meth:`~CredentialBackend.retrieve` returns
``None`` when nothing is stored, raises
:class:`~bitbucket_cli.exceptions.CredentialCorruptedError` when the stored
value cannot be parsed, and raises
:class:`~bitbucket_cli.exceptions.CredentialStorageError` for every other
failure. :meth:`~CredentialBackend.delete` is idempotent.

Which backend is used is decided once per process by
:class:`~bitbucket_cli.auth.manager.AuthManager`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import PasswordDeleteError

from bitbucket_cli.auth.credentials import Credential, dump_credential, load_credential
from bitbucket_cli.config import atomic_write, get_config_dir
from bitbucket_cli.exceptions import CredentialStorageError

SERVICE_NAME = "bitbucket-cli"
"""Keyring service under which the credential is stored."""

CREDENTIAL_KEY = "credentials"
"""Keyring account name of the credential entry."""

CREDENTIALS_FILENAME = "credentials.json"


class CredentialBackend(ABC):
    """Persist, retrieve and delete one credential blob."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short label shown by ``bitbucket auth status``."""
        ...

    @abstractmethod
    def store(self, credential: Credential) -> None:
        """Serialise *credential* and replace any stored value.

        Raises:
            CredentialStorageError: If the value cannot be written.
        """
        ...

    @abstractmethod
    def retrieve(self) -> Optional[Credential]:
        """Return the stored credential, or ``None`` if nothing is stored.

        Raises:
            CredentialCorruptedError: If the stored value cannot be parsed.
            CredentialStorageError: If the store cannot be read.
        """
        ...

    @abstractmethod
    def delete(self) -> None:
        """Remove the stored credential. Deleting nothing is not an error.

        Raises:
            CredentialStorageError: If an existing value cannot be removed.
        """
        ...


class KeyringBackend(CredentialBackend):
    """Store the credential in the system keyring.

    Args:
        service: Keyring service name.
        key: Keyring account name.
        keyring_module: Object exposing ``get_password``, ``set_password``
            and ``delete_password``. Defaults to the :mod:`keyring` module;
            tests pass an in-memory stand-in.
    """

    def __init__(
        self,
        service: str = SERVICE_NAME,
        key: str = CREDENTIAL_KEY,
        keyring_module: Any = None,
    ) -> None:
        self._service = service
        self._key = key
        self._keyring = keyring_module if keyring_module is not None else keyring

    @property
    def name(self) -> str:
        return "keyring"

    def store(self, credential: Credential) -> None:
        try:
            self._keyring.set_password(self._service, self._key, dump_credential(credential))
        except Exception as exc:  # noqa: BLE001
            raise CredentialStorageError(
                f"Failed to store credential in keyring: {exc}"
            ) from exc

    def retrieve(self) -> Optional[Credential]:
        try:
            text = self._keyring.get_password(self._service, self._key)
        except Exception as exc:  # noqa: BLE001
            raise CredentialStorageError(
                f"Failed to get credential from keyring: {exc}"
            ) from exc
        if text is None:
            return None
        return load_credential(text)

    def delete(self) -> None:
        try:
            self._keyring.delete_password(self._service, self._key)
        except PasswordDeleteError:
            # No entry: already deleted.
            return
        except Exception as exc:  # noqa: BLE001
            raise CredentialStorageError(
                f"Failed to delete credential from keyring: {exc}"
            ) from exc


def default_credentials_path() -> Path:
    """Return ``<config_dir>/credentials.json``."""
    return get_config_dir() / CREDENTIALS_FILENAME


class FileBackend(CredentialBackend):
    """Store the credential as plaintext JSON readable only by the owner.

    The file holds a bearer token or a password-equivalent API key, so it is
    always written with ``0o600`` permissions. Writes are atomic: content
    goes to a temporary file in the same directory which is then renamed
    into place.

    Args:
        path: Credential file location. Defaults to
            :func:`default_credentials_path`.

    Example::

        backend = FileBackend(tmp_path / "credentials.json")
        backend.store(OAuthCredential(access_token="tok"))
        assert backend.retrieve().access_token == "tok"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path if path is not None else default_credentials_path()

    @property
    def name(self) -> str:
        return "file"

    @property
    def path(self) -> Path:
        """The filesystem path of the credential file."""
        return self._path

    def store(self, credential: Credential) -> None:
        try:
            atomic_write(self._path, dump_credential(credential) + "\n", mode=0o600)
        except OSError as exc:
            raise CredentialStorageError(
                f"Failed to write credential file {self._path}: {exc}"
            ) from exc

    def retrieve(self) -> Optional[Credential]:
        if not self._path.is_file():
            return None
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CredentialStorageError(
                f"Failed to read credential file {self._path}: {exc}"
            ) from exc
        return load_credential(text)

    def delete(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise CredentialStorageError(
                f"Failed to delete credential file {self._path}: {exc}"
            ) from exc
