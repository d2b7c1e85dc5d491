"""Platform environment probing used to choose a credential backend.

Secret-service daemons are frequently missing or broken under WSL and inside
containers, so :class:`~bitbucket_cli.auth.manager.AuthManager` skips the
keyring entirely in those environments. All the reads that decision needs
(environment variables, ``/proc`` files, marker files) go through
:class:`PlatformEnvironment`, so tests can simulate any environment by
passing a subclass or a fake with the same three primitives.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

ENV_USE_FILE_STORAGE = "BITBUCKET_USE_FILE_STORAGE"
"""Set (to any value) to force the file backend."""

_WSL_ENV_VARS = ("WSL_DISTRO_NAME", "WSL_INTEROP")
_CONTAINER_MARKERS = ("/.dockerenv", "/run/.containerenv")
_CGROUP_CONTAINER_HINTS = ("docker", "lxc", "kubepods")


class PlatformEnvironment:
    """Read-only view of the process environment.

    Subclasses override :meth:`getenv`, :meth:`read_text` and
    :meth:`exists`; the derived checks are built only on those.
    """

    def getenv(self, name: str) -> Optional[str]:
        return os.environ.get(name)

    def read_text(self, path: str) -> Optional[str]:
        """Return the file content, or ``None`` if it cannot be read."""
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def force_file_storage(self) -> bool:
        """True when the user explicitly asked for file storage."""
        return self.getenv(ENV_USE_FILE_STORAGE) is not None

    def is_wsl(self) -> bool:
        """True when running under the Windows Subsystem for Linux."""
        version = self.read_text("/proc/version")
        if version is not None:
            lowered = version.lower()
            if "microsoft" in lowered or "wsl" in lowered:
                return True
        return any(self.getenv(var) is not None for var in _WSL_ENV_VARS)

    def is_container(self) -> bool:
        """True when running inside Docker, Podman, LXC or Kubernetes."""
        if any(self.exists(marker) for marker in _CONTAINER_MARKERS):
            return True
        cgroup = self.read_text("/proc/1/cgroup")
        if cgroup is not None:
            return any(hint in cgroup for hint in _CGROUP_CONTAINER_HINTS)
        return False

    def file_storage_reason(self) -> Optional[str]:
        """Return why the keyring must be skipped, or ``None`` to probe it."""
        if self.force_file_storage():
            return f"{ENV_USE_FILE_STORAGE} is set"
        if self.is_wsl():
            return "running under WSL"
        if self.is_container():
            return "running in a container"
        return None
