"""Build ordered command plans for creating and deleting instance accounts."""
from __future__ import annotations

import logging
import secrets
import shlex
import string
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .sudoers import SudoersGrant

LOGGER = logging.getLogger(__name__)

PASSWORD_PROMPT = "-"
REDACTED = "********"
MIN_DIGITS = 10
MIN_SYMBOLS = 10
PASSWORD_SYMBOLS = "~!@#$%^&*()_+-={}[]:<>?,./"

StepKind = Literal[
    "create-user",
    "restrict-home",
    "install-sudoers",
    "delete-user",
    "remove-sudoers",
    "homebrew",
]


@dataclass(slots=True)
class PlanSettings:
    """Host-specific values the plan builder needs."""

    sudo_bin: str = "sudo"
    sysadminctl_bin: str = "sysadminctl"
    users_root: Path = Path("/Users")


@dataclass(frozen=True, slots=True)
class PlanStep:
    """Single privileged command within a plan."""

    kind: StepKind
    description: str
    command: tuple[str, ...]
    sensitive: tuple[str, ...] = ()

    @property
    def command_line(self) -> str:
        """Return the shell-escaped command line."""
        return shlex.join(self.command)

    @property
    def redacted_line(self) -> str:
        """Return the command line with secret arguments masked."""
        return shlex.join(REDACTED if arg in self.sensitive else arg for arg in self.command)


@dataclass(slots=True)
class CommandPlan:
    """Ordered steps that move one account towards the requested state."""

    intent: Literal["create", "delete", "homebrew"]
    account: str
    steps: list[PlanStep] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ExplicitSecret:
    """Password supplied by the operator on the command line."""

    value: str


@dataclass(frozen=True, slots=True)
class InteractivePrompt:
    """Let ``sysadminctl`` prompt for the password on the terminal."""


@dataclass(frozen=True, slots=True)
class GeneratedSecret:
    """Random password generated because no terminal is attached."""

    value: str


PasswordSource = ExplicitSecret | InteractivePrompt | GeneratedSecret


def generate_password(length: int = 64) -> str:
    """Return a random password with letters, digits and symbols."""
    if length < MIN_DIGITS + MIN_SYMBOLS + 2:
        raise ValueError(f"Password length {length} is too short.")
    chars = [secrets.choice(string.digits) for _ in range(MIN_DIGITS)]
    chars.extend(secrets.choice(PASSWORD_SYMBOLS) for _ in range(MIN_SYMBOLS))
    # One of each case guarantees mixed-case letters regardless of chance.
    chars.append(secrets.choice(string.ascii_lowercase))
    chars.append(secrets.choice(string.ascii_uppercase))
    chars.extend(secrets.choice(string.ascii_letters) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def select_password_source(
    *,
    account: str,
    tty: bool,
    explicit: str | None,
    length: int = 64,
    generator: Callable[[int], str] = generate_password,
    logger: logging.Logger = LOGGER,
) -> PasswordSource:
    """Choose where the new account's password comes from.

    A generated password is logged at WARNING level: without a terminal there
    is no other way to hand it to the operator.
    """
    if explicit is not None:
        return ExplicitSecret(explicit)
    if tty:
        return InteractivePrompt()
    password = generator(length)
    logger.warning(
        "Generated a random password, as tty is not available. "
        "THE PASSWORD IS SHOWN IN THIS SCREEN. user=%s password=%s",
        account,
        password,
    )
    return GeneratedSecret(password)


def plan_create(
    account: str,
    password: PasswordSource,
    grant: SudoersGrant,
    *,
    settings: PlanSettings,
) -> CommandPlan:
    """Return the plan that creates *account* and installs its grant."""
    if grant.account != account:
        raise ValueError(f"Grant for {grant.account!r} cannot be installed for {account!r}.")
    if isinstance(password, InteractivePrompt):
        password_arg = PASSWORD_PROMPT
        hidden: tuple[str, ...] = ()
    else:
        password_arg = password.value
        hidden = (password.value,)

    sudo = settings.sudo_bin
    install_script = (
        f"umask 337 && printf '%s\\n' {shlex.quote(grant.content.rstrip())} "
        f"> {shlex.quote(str(grant.path))}"
    )
    plan = CommandPlan(intent="create", account=account)
    plan.steps.append(
        PlanStep(
            kind="create-user",
            description=f"Create user '{account}'.",
            command=(
                sudo,
                settings.sysadminctl_bin,
                "-addUser",
                account,
                "-password",
                password_arg,
            ),
            sensitive=hidden,
        )
    )
    plan.steps.append(
        PlanStep(
            kind="restrict-home",
            description=f"Revoke group/other access to the home of '{account}'.",
            command=(sudo, "chmod", "go-rx", str(settings.users_root / account)),
        )
    )
    plan.steps.append(
        PlanStep(
            kind="install-sudoers",
            description=f"Install sudoers grant {grant.path}.",
            command=(sudo, "sh", "-c", install_script),
        )
    )
    return plan


def plan_delete(account: str, grant_path: Path, *, settings: PlanSettings) -> CommandPlan:
    """Return the plan that deletes *account* and removes its grant."""
    sudo = settings.sudo_bin
    plan = CommandPlan(intent="delete", account=account)
    plan.steps.append(
        PlanStep(
            kind="delete-user",
            description=f"Delete user '{account}'.",
            # What -secure does is undocumented; it is passed through as-is.
            command=(sudo, settings.sysadminctl_bin, "-deleteUser", account, "-secure"),
        )
    )
    plan.steps.append(
        PlanStep(
            kind="remove-sudoers",
            description=f"Remove sudoers grant {grant_path}.",
            command=(sudo, "rm", "-f", str(grant_path)),
        )
    )
    return plan


__all__ = [
    "CommandPlan",
    "ExplicitSecret",
    "GeneratedSecret",
    "InteractivePrompt",
    "PasswordSource",
    "PlanSettings",
    "PlanStep",
    "generate_password",
    "plan_create",
    "plan_delete",
    "select_password_source",
]
