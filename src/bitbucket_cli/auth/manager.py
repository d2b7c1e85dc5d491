"""Auth manager -- owns where credentials live and how failures degrade.

The :class:`AuthManager` is the only component that persists credentials.
It holds exactly one *active* :class:`~bitbucket_cli.auth.storage.CredentialBackend`
and, when the active backend is the keyring, a *standby*
:class:`~bitbucket_cli.auth.storage.FileBackend` that is used only when a
keyring operation fails at runtime.

Backend selection happens once, in :meth:`AuthManager.from_environment`:

1. ``BITBUCKET_USE_FILE_STORAGE`` forces file storage.
2. WSL or a container forces file storage.
3. Otherwise the keyring is probed with a write / read-back / delete round
   trip. Only a fully successful round trip selects the keyring.

A keyring API that exists is not the same as one that works: headless
Linux sessions often expose a Secret Service that errors on every call,
which is what the probe catches. The standby covers failures that start
after the probe, such as the daemon going away mid-session.

The manager does not lock the credential store. Two CLI processes logging
in at the same time race, and the last write wins.

See Also:
    :class:`~bitbucket_cli.auth.oauth.OAuthFlow` -- stores tokens through
    the manager.
    :class:`~bitbucket_cli.client.BitbucketClient` -- reads the current
    credential through the manager.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any, Optional

import keyring

from bitbucket_cli.auth.credentials import Credential
from bitbucket_cli.auth.platform import PlatformEnvironment
from bitbucket_cli.auth.storage import CredentialBackend, FileBackend, KeyringBackend
from bitbucket_cli.exceptions import (
    CredentialCorruptedError,
    CredentialStorageError,
)
from bitbucket_cli.output import warning

logger = logging.getLogger(__name__)

PROBE_SERVICE = "bitbucket-cli-probe"
PROBE_KEY = "probe"


def probe_keyring(keyring_module: Any = None) -> bool:
    """Check that the keyring really persists and returns values.

    Writes a random value under a throw-away entry, reads it back and
    deletes it. Any exception, or a read-back mismatch, means the keyring
    is unusable. Failures are logged at DEBUG level and never raised.

    Args:
        keyring_module: Object with the :mod:`keyring` password API.
            Defaults to the :mod:`keyring` module.

    Returns:
        ``True`` only if the full round trip succeeded.
    """
    kr = keyring_module if keyring_module is not None else keyring
    expected = secrets.token_hex(16)
    try:
        kr.set_password(PROBE_SERVICE, PROBE_KEY, expected)
        actual = kr.get_password(PROBE_SERVICE, PROBE_KEY)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Keyring probe failed: %s", exc)
        return False
    finally:
        try:
            kr.delete_password(PROBE_SERVICE, PROBE_KEY)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Keyring probe cleanup failed: %s", exc)

    if actual != expected:
        logger.debug("Keyring probe read back a different value")
        return False
    return True


class AuthManager:
    """Store, retrieve and clear the credential with runtime fallback.

    Args:
        backend: The active backend.
        fallback: Optional standby file backend, consulted when the active
            backend fails or holds nothing.

    Example::

        manager = AuthManager.from_environment()
        manager.store_credentials(ApiKeyCredential(username="u", api_key="k"))
        assert manager.is_authenticated()
    """

    def __init__(
        self,
        backend: CredentialBackend,
        fallback: Optional[FileBackend] = None,
    ) -> None:
        self._backend = backend
        self._fallback = fallback

    @classmethod
    def from_environment(
        cls,
        platform: Optional[PlatformEnvironment] = None,
        keyring_module: Any = None,
        credentials_path: Optional[Path] = None,
    ) -> AuthManager:
        """Select a backend for this process.

        Args:
            platform: Environment probe. Defaults to the real process
                environment.
            keyring_module: Keyring implementation used for the probe and
                the keyring backend. Defaults to :mod:`keyring`.
            credentials_path: Location of the credential file for the file
                backend (active or standby).

        Returns:
            A manager using the keyring with a file standby, or the file
            backend alone.
        """
        env = platform if platform is not None else PlatformEnvironment()
        file_backend = FileBackend(credentials_path)

        reason = env.file_storage_reason()
        if reason is not None:
            logger.debug("Using file credential storage: %s", reason)
            return cls(file_backend)

        if not probe_keyring(keyring_module):
            logger.debug("Using file credential storage: keyring probe failed")
            return cls(file_backend)

        logger.debug("Using keyring credential storage with file standby")
        return cls(KeyringBackend(keyring_module=keyring_module), fallback=file_backend)

    @property
    def backend_name(self) -> str:
        """Name of the active backend (``"keyring"`` or ``"file"``)."""
        return self._backend.name

    @property
    def has_fallback(self) -> bool:
        """Whether a standby file backend is held."""
        return self._fallback is not None

    def get_credentials(self) -> Optional[Credential]:
        """Return the stored credential, or ``None`` when not authenticated.

        The active backend is read first. If it fails or is empty, the
        standby is read, which recovers credentials written there during
        an earlier degraded session.

        Raises:
            CredentialCorruptedError: If a stored credential cannot be parsed.
            CredentialStorageError: If the active backend fails and there
                is no standby.
        """
        active_error: Optional[CredentialStorageError] = None
        try:
            credential = self._backend.retrieve()
        except CredentialCorruptedError:
            raise
        except CredentialStorageError as exc:
            if self._fallback is None:
                raise
            active_error = exc
            credential = None

        if credential is not None:
            return credential
        if self._fallback is None:
            return None

        credential = self._fallback.retrieve()
        if credential is None and active_error is not None:
            logger.warning("Credential store unavailable: %s", active_error)
        return credential

    def store_credentials(self, credential: Credential) -> None:
        """Persist *credential*, degrading to the standby if needed.

        A standby write succeeds from the caller's point of view but prints
        a warning. After a successful write to the active keyring, any
        standby copy is removed so it cannot resurface later.

        Raises:
            CredentialStorageError: If the active backend fails and there is
                no standby, or the standby fails too.
        """
        try:
            self._backend.store(credential)
        except CredentialStorageError as exc:
            if self._fallback is None:
                raise
            logger.warning("Active credential store failed, using file: %s", exc)
            self._fallback.store(credential)
            warning(
                f"Could not save to the {self._backend.name} ({exc}); "
                f"credential saved to {self._fallback.path} instead."
            )
            return

        if self._fallback is not None:
            try:
                self._fallback.delete()
            except CredentialStorageError as exc:
                logger.debug("Could not remove standby credential file: %s", exc)

    def clear_credentials(self) -> None:
        """Delete the credential from the active backend and the standby.

        Standby failures are logged and ignored. An active failure is
        raised after the standby has been cleared.

        Raises:
            CredentialStorageError: If the active backend cannot delete.
        """
        active_error: Optional[CredentialStorageError] = None
        try:
            self._backend.delete()
        except CredentialStorageError as exc:
            active_error = exc

        if self._fallback is not None:
            try:
                self._fallback.delete()
            except CredentialStorageError as exc:
                logger.debug("Could not remove standby credential file: %s", exc)

        if active_error is not None:
            raise active_error

    def is_authenticated(self) -> bool:
        """Return True if a credential is stored. Any read error counts as False."""
        try:
            return self.get_credentials() is not None
        except CredentialStorageError as exc:
            logger.debug("Treating credential read failure as not authenticated: %s", exc)
            return False
