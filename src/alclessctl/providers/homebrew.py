"""Homebrew bootstrap for instance accounts.

Homebrew is installed as an untapped git checkout in the account's home
directory (``~/homebrew`` by default), so no step needs administrator rights
beyond the per-instance sudoers grant that lets the host user run commands
as the instance account.
"""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ..provisioning.plans import PlanStep

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]

PROFILE_FILES = (".zprofile", ".bash_profile")


class HomebrewError(RuntimeError):
    """Raised when Homebrew state cannot be determined."""


def _default_runner(command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603, S607
        list(command),
        capture_output=True,
        text=True,
        check=False,
    )


@dataclass(slots=True)
class HomebrewProvider:
    """Probe for and plan the installation of a per-account Homebrew."""

    sudo_bin: str = "sudo"
    repository: str = "https://github.com/Homebrew/brew"
    prefix: str = "homebrew"
    runner: Runner = field(default=_default_runner)

    @property
    def brew_path(self) -> str:
        """Return the brew executable path relative to ``$HOME``."""
        return f'"$HOME"/{shlex.quote(self.prefix)}/bin/brew'

    def is_installed(self, account: str) -> bool:
        """Return whether ``brew --version`` succeeds as *account*."""
        command = self._as_account(account, f"{self.brew_path} --version")
        LOGGER.debug("Running command %s", shlex.join(command))
        try:
            result = self.runner(command)
        except FileNotFoundError as exc:
            raise HomebrewError(f"{self.sudo_bin} not found: {exc}") from exc
        except OSError as exc:
            raise HomebrewError(f"failed to run {self.sudo_bin}: {exc}") from exc
        if result.returncode != 0:
            LOGGER.debug(
                "Homebrew is not installed for %s: %s",
                account,
                (result.stderr or result.stdout or "").strip() or f"exit {result.returncode}",
            )
            return False
        return True

    def install_commands(self, account: str) -> list[PlanStep]:
        """Return the steps that install Homebrew for *account*."""
        checkout = f'"$HOME"/{shlex.quote(self.prefix)}'
        clone = (
            f"if [ ! -d {checkout} ]; then "
            f"git clone --depth=1 {shlex.quote(self.repository)} {checkout}; fi"
        )
        steps = [
            PlanStep(
                kind="homebrew",
                description=f"Clone Homebrew into ~/{self.prefix}.",
                command=self._as_account(account, clone),
            )
        ]
        shellenv = f"eval \"$({self.brew_path} shellenv)\""
        for profile in PROFILE_FILES:
            script = (
                f'grep -q "brew shellenv" ~/{profile} 2>/dev/null || '
                f"echo {shlex.quote(shellenv)} >> ~/{profile}"
            )
            steps.append(
                PlanStep(
                    kind="homebrew",
                    description=f"Load Homebrew from ~/{profile}.",
                    command=self._as_account(account, script),
                )
            )
        steps.append(
            PlanStep(
                kind="homebrew",
                description="Update Homebrew.",
                command=self._as_account(account, f"{self.brew_path} update"),
            )
        )
        return steps

    def package_install_commands(self, account: str, packages: Sequence[str]) -> list[PlanStep]:
        """Return the step that installs *packages* with the account's Homebrew."""
        if not packages:
            return []
        names = " ".join(shlex.quote(package) for package in packages)
        return [
            PlanStep(
                kind="homebrew",
                description=f"Install {', '.join(packages)} with Homebrew.",
                command=self._as_account(account, f"{self.brew_path} install {names}"),
            )
        ]

    def _as_account(self, account: str, script: str) -> tuple[str, ...]:
        # No login shell (-i): it would expand $HOME before /bin/sh sees the script.
        return (
            self.sudo_bin,
            "-u",
            account,
            "-H",
            "--",
            "/bin/sh",
            "-c",
            f'cd "$HOME" && {script}',
        )


__all__ = ["HomebrewError", "HomebrewProvider", "PROFILE_FILES"]
