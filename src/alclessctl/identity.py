"""Instance identity: name resolution, validation and account naming."""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

DEFAULT_INSTANCE = "default"
TEMPLATE_SCHEME = "template://"
KNOWN_TEMPLATES = {f"{TEMPLATE_SCHEME}default"}
MAX_INSTANCE_NAME_LENGTH = 32

# Dots are excluded because sudo skips sudoers.d files whose names contain one.
_NAME_PATTERN = re.compile(r"[A-Za-z0-9]+(?:[_-][A-Za-z0-9]+)*")


class InstanceNameError(ValueError):
    """Raised when an instance name cannot be resolved or is malformed."""


def resolve_instance_name(positional: str, name_flag: str) -> str:
    """Resolve the positional argument and ``--name`` flag into one name.

    Parameters
    ----------
    positional:
        The ``INSTANCE`` argument, or ``""`` when none was given.
    name_flag:
        Value of ``--name``, or ``""`` when the flag was not set.

    Returns
    -------
    str
        The instance name. Callers must still pass it through
        :func:`validate_instance_name` before touching the OS.
    """
    name = DEFAULT_INSTANCE
    if name_flag:
        if "/" in name_flag:
            raise InstanceNameError("value of --name=... must not contain a slash")
        name = name_flag
    if not positional:
        return name
    if positional.startswith(TEMPLATE_SCHEME):
        if positional in KNOWN_TEMPLATES:
            return name
        raise InstanceNameError(
            f"unknown template: {positional!r} (currently, only template://default is available)"
        )
    if name_flag and positional != name_flag:
        raise InstanceNameError(
            f"instance name {positional!r} and CLI flag --name={name_flag!r} "
            "cannot be specified together"
        )
    return positional


def validate_instance_name(name: str) -> str:
    """Return *name* unchanged if it is a structurally valid instance name."""
    if not name:
        raise InstanceNameError("Instance name must be a non-empty string.")
    if "/" in name:
        raise InstanceNameError(f"Instance name {name!r} must not contain a slash.")
    if len(name) > MAX_INSTANCE_NAME_LENGTH:
        raise InstanceNameError(
            f"Instance name {name!r} is longer than {MAX_INSTANCE_NAME_LENGTH} characters."
        )
    if not _NAME_PATTERN.fullmatch(name):
        raise InstanceNameError(
            f"Instance name {name!r} must be letters and digits, optionally "
            "separated by single '-' or '_' characters."
        )
    return name


def check_batch(names: Sequence[str], name_flag: str) -> None:
    """Reject ``--name`` when more than one instance is requested."""
    if len(names) > 1 and name_flag:
        raise InstanceNameError("flag --name cannot be used with multiple instances")


@dataclass(frozen=True, slots=True)
class AccountNamer:
    """Map instance names to OS account names for one host user."""

    prefix: str
    host_user: str

    @property
    def account_prefix(self) -> str:
        """Return the prefix shared by every account of this host user."""
        return f"{self.prefix}{self.host_user}_"

    def account_for(self, instance: str) -> str:
        """Return the account name backing *instance*."""
        return f"{self.account_prefix}{instance}"

    def instance_for(self, account: str) -> str | None:
        """Return the instance name for *account*, or ``None`` if it is not ours."""
        if not account.startswith(self.account_prefix):
            return None
        instance = account[len(self.account_prefix) :]
        return instance or None


__all__ = [
    "AccountNamer",
    "DEFAULT_INSTANCE",
    "InstanceNameError",
    "MAX_INSTANCE_NAME_LENGTH",
    "check_batch",
    "resolve_instance_name",
    "validate_instance_name",
]
