"""Run command plans, optionally behind an operator confirmation.

Commands here are potentially destructive, so execution is strictly
sequential and stops at the first failure. Completed steps are never rolled
back; every step is written so that re-running the same lifecycle command
finishes the job.
"""
from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TextIO

from ..logging import OperationScope
from .plans import PlanStep

LOGGER = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


class ExecutionError(RuntimeError):
    """Raised when a plan step fails or cannot be launched."""

    def __init__(self, message: str, step: PlanStep | None = None) -> None:
        """Store the failing *step* alongside the message."""
        super().__init__(message)
        self.step = step


class ConfirmationAborted(ExecutionError):
    """Raised when the operator does not confirm a plan."""


class CredentialError(RuntimeError):
    """Raised when sudo credentials could not be cached."""


def _default_runner(command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    # Output and prompts (sudo, sysadminctl) go straight to the terminal.
    return subprocess.run(list(command), text=True, check=False)  # noqa: S603, S607


@dataclass(slots=True)
class RunOptions:
    """How a plan is presented to the operator."""

    confirm: bool = False
    stdin: TextIO | None = None
    stderr: TextIO | None = None


@dataclass(slots=True)
class PlanExecutor:
    """Execute plan steps in order with abort-on-first-failure semantics."""

    runner: Runner = field(default=_default_runner)
    logger: logging.Logger = field(default=LOGGER)

    def execute(
        self,
        steps: Sequence[PlanStep],
        options: RunOptions | None = None,
        *,
        op: OperationScope | None = None,
    ) -> None:
        """Run *steps*; raise :class:`ExecutionError` at the first failure."""
        if options is None:
            options = RunOptions()
        if not steps:
            return
        if options.confirm:
            self._confirm(steps, options)

        verbose = options.confirm and len(steps) > 1
        for step in steps:
            line = step.command_line
            if verbose:
                self.logger.info("Running command: %s", line)
            else:
                self.logger.debug("Running command: %s", line)
            try:
                result = self.runner(step.command)
            except OSError as exc:
                self._record(op, step, "error", str(exc))
                raise ExecutionError(f"failed to run: {line}: {exc}", step) from exc
            if result.returncode != 0:
                detail = f"exit status {result.returncode}"
                self._record(op, step, "error", detail)
                raise ExecutionError(f"failed to run: {line}: {detail}", step)
            self._record(op, step, "success", None)
            self.logger.debug("Completed command: %s", line)

    def _confirm(self, steps: Sequence[PlanStep], options: RunOptions) -> None:
        stderr = options.stderr if options.stderr is not None else sys.stderr
        stdin = options.stdin if options.stdin is not None else sys.stdin
        print("The following commands will be executed:", file=stderr)
        for step in steps:
            print(step.command_line, file=stderr)
        print("Press return to continue, or Ctrl-C to abort", file=stderr)
        stderr.flush()
        try:
            answer = stdin.readline()
        except (KeyboardInterrupt, OSError, ValueError) as exc:
            raise ConfirmationAborted("aborted by the operator") from exc
        if not answer:
            raise ConfirmationAborted("aborted by the operator (end of input)")
        print("CONTINUE", file=stderr)

    @staticmethod
    def _record(
        op: OperationScope | None,
        step: PlanStep,
        status: str,
        error: str | None,
    ) -> None:
        if op is None:
            return
        detail = step.redacted_line if error is None else f"{step.redacted_line}: {error}"
        op.add_step(step.kind, status=status, detail=detail)


def prewarm_credentials(sudo_bin: str = "sudo", *, runner: Runner = _default_runner) -> None:
    """Ask sudo to cache credentials so later prompts are less likely."""
    LOGGER.debug("Running %s -v to cache credentials", sudo_bin)
    try:
        result = runner([sudo_bin, "-v"])
    except OSError as exc:
        raise CredentialError(f"failed to run {sudo_bin} -v: {exc}") from exc
    if result.returncode != 0:
        raise CredentialError(f"{sudo_bin} -v failed (exit {result.returncode})")


__all__ = [
    "ConfirmationAborted",
    "CredentialError",
    "ExecutionError",
    "PlanExecutor",
    "RunOptions",
    "prewarm_credentials",
]
