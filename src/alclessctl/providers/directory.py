"""Read-only access to the macOS local account directory via ``dscl``."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]

ATTRIBUTE_USER_SHELL = "UserShell"
ATTRIBUTE_HOME_DIRECTORY = "NFSHomeDirectory"


class DirectoryError(RuntimeError):
    """Raised when the account directory cannot be queried."""


def _default_runner(command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603, S607
        list(command),
        capture_output=True,
        text=True,
        check=False,
    )


@dataclass(slots=True)
class DirectoryProvider:
    """Query local accounts. Nothing is cached; every call hits the OS."""

    dscl_bin: str = "dscl"
    node: str = "."
    runner: Runner = field(default=_default_runner)

    def list_accounts(self) -> list[str]:
        """Return the names of every local account."""
        result = self._dscl(["-list", "/Users"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def exists(self, account: str) -> bool:
        """Return whether *account* is present in the directory."""
        return account in self.list_accounts()

    def read_attribute(self, account: str, key: str) -> str:
        """Return the value of attribute *key* for *account*."""
        result = self._dscl(["-read", f"/Users/{account}", key])
        value = result.stdout.strip()
        prefix = f"{key}:"
        if value.startswith(prefix):
            value = value[len(prefix) :]
        return value.strip()

    def _dscl(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.dscl_bin, self.node, *args]
        LOGGER.debug("Running command %s", command)
        try:
            result = self.runner(command)
        except FileNotFoundError as exc:
            raise DirectoryError(f"{self.dscl_bin} not found: {exc}") from exc
        except OSError as exc:
            raise DirectoryError(f"failed to run {self.dscl_bin}: {exc}") from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise DirectoryError(
                f"failed to run {' '.join(command)} (exit {result.returncode}): "
                f"stderr={stderr!r}"
            )
        return result


__all__ = [
    "ATTRIBUTE_HOME_DIRECTORY",
    "ATTRIBUTE_USER_SHELL",
    "DirectoryError",
    "DirectoryProvider",
]
