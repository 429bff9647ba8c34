"""Sudoers grants that let the host user act as one instance account."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

# Excludes '.', '~' and every sudoers metacharacter; sudo ignores sudoers.d
# entries containing '.' or ending in '~'.
_SAFE_NAME = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_-]*")


class GrantError(ValueError):
    """Raised when a grant cannot be built for the given names."""


@dataclass(frozen=True, slots=True)
class SudoersGrant:
    """A sudoers drop-in scoped to a single account."""

    account: str
    path: Path
    content: str


def grant_path(account: str, *, sudoers_dir: Path) -> Path:
    """Return the drop-in path belonging to *account*."""
    _check_name(account, "account")
    return sudoers_dir / account


def build_grant(account: str, *, host_user: str, sudoers_dir: Path) -> SudoersGrant:
    """Return the grant letting *host_user* run commands as *account* without a password.

    The run-as list names *account* only, so installing the grant never
    widens what the host user can do as any other account.
    """
    _check_name(host_user, "host user")
    path = grant_path(account, sudoers_dir=sudoers_dir)
    content = f"{host_user} ALL=({account}) NOPASSWD: ALL\n"
    return SudoersGrant(account=account, path=path, content=content)


def _check_name(value: str, label: str) -> None:
    if not value or not _SAFE_NAME.fullmatch(value):
        raise GrantError(f"Refusing to build a sudoers grant for {label} {value!r}.")


__all__ = ["GrantError", "SudoersGrant", "build_grant", "grant_path"]
