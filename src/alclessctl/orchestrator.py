"""Drive instance lifecycles: resolve names, check the OS, plan and execute."""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .identity import AccountNamer, check_batch, resolve_instance_name, validate_instance_name
from .logging import OperationScope
from .providers.directory import ATTRIBUTE_USER_SHELL, DirectoryProvider
from .providers.homebrew import HomebrewError, HomebrewProvider
from .provisioning.executor import CredentialError, PlanExecutor, RunOptions
from .provisioning.plans import (
    PlanSettings,
    PlanStep,
    plan_create,
    plan_delete,
    select_password_source,
)
from .provisioning.sudoers import build_grant, grant_path

LOGGER = logging.getLogger(__name__)

InstanceState = Literal["done", "skipped"]
HomebrewState = Literal["present", "installed", "skipped"]


@dataclass(slots=True)
class InstanceOutcome:
    """What happened to one requested instance."""

    instance: str
    account: str
    state: InstanceState
    homebrew: HomebrewState | None = None


@dataclass(slots=True)
class InstanceSummary:
    """An instance found in the account directory."""

    instance: str
    account: str
    shell: str


@dataclass(slots=True)
class InstanceOrchestrator:
    """Create and delete instance accounts one name at a time.

    Names are processed sequentially and the first error aborts the batch.
    Existence is re-checked right before acting on each name; concurrent
    changes made outside this process between that check and the plan are
    not guarded against.
    """

    namer: AccountNamer
    directory: DirectoryProvider
    homebrew: HomebrewProvider
    executor: PlanExecutor
    settings: PlanSettings
    sudoers_dir: Path
    password_length: int = 64
    prewarm: Callable[[], None] | None = None
    op: OperationScope | None = None
    logger: logging.Logger = field(default=LOGGER)

    def create(
        self,
        names: Sequence[str],
        *,
        run_options: RunOptions,
        name_flag: str = "",
        password: str | None = None,
        tty: bool = False,
        plain: bool = False,
        packages: Sequence[str] = (),
    ) -> list[InstanceOutcome]:
        """Create every instance in *names* (``[""]`` means the default one)."""
        requested = list(names) or [""]
        check_batch(requested, name_flag)
        self._prewarm()

        outcomes: list[InstanceOutcome] = []
        for positional in requested:
            instance = validate_instance_name(resolve_instance_name(positional, name_flag))
            account = self.namer.account_for(instance)
            if self.directory.exists(account):
                self.logger.info("Already exists: instance=%s instUser=%s", instance, account)
                self._step("account.create", "skipped", f"{account} already exists")
                state: InstanceState = "skipped"
            else:
                self.logger.info("Creating an instance: instance=%s instUser=%s", instance, account)
                source = select_password_source(
                    account=account,
                    tty=tty,
                    explicit=password,
                    length=self.password_length,
                    logger=self.logger,
                )
                grant = build_grant(
                    account,
                    host_user=self.namer.host_user,
                    sudoers_dir=self.sudoers_dir,
                )
                plan = plan_create(account, source, grant, settings=self.settings)
                self.executor.execute(plan.steps, run_options, op=self.op)
                state = "done"

            homebrew: HomebrewState = "skipped"
            if not plain:
                homebrew = self._ensure_homebrew(instance, account, run_options)
                self._run(self.homebrew.package_install_commands(account, packages), run_options)
            outcomes.append(
                InstanceOutcome(instance=instance, account=account, state=state, homebrew=homebrew)
            )
        return outcomes

    def delete(self, names: Sequence[str], *, run_options: RunOptions) -> list[InstanceOutcome]:
        """Delete every instance in *names*; missing ones are skipped with a warning."""
        self._prewarm()

        outcomes: list[InstanceOutcome] = []
        for name in names:
            instance = validate_instance_name(name)
            account = self.namer.account_for(instance)
            if not self.directory.exists(account):
                self.logger.warning("No such instance: instance=%s instUser=%s", instance, account)
                self._step("account.delete", "skipped", f"{account} does not exist")
                outcomes.append(InstanceOutcome(instance=instance, account=account, state="skipped"))
                continue
            plan = plan_delete(
                account,
                grant_path(account, sudoers_dir=self.sudoers_dir),
                settings=self.settings,
            )
            self.executor.execute(plan.steps, run_options, op=self.op)
            outcomes.append(InstanceOutcome(instance=instance, account=account, state="done"))
        return outcomes

    def list_instances(self) -> list[InstanceSummary]:
        """Return the instances of this host user found in the directory.

        A failed attribute read raises :class:`DirectoryError` like any other
        directory query.
        """
        summaries: list[InstanceSummary] = []
        for account in sorted(self.directory.list_accounts()):
            instance = self.namer.instance_for(account)
            if instance is None:
                continue
            shell = self.directory.read_attribute(account, ATTRIBUTE_USER_SHELL)
            summaries.append(InstanceSummary(instance=instance, account=account, shell=shell))
        return summaries

    # ------------------------------------------------------------------
    def _ensure_homebrew(
        self,
        instance: str,
        account: str,
        run_options: RunOptions,
    ) -> HomebrewState:
        if self.homebrew.is_installed(account):
            self.logger.info(
                "Homebrew is already installed: instance=%s instUser=%s", instance, account
            )
            self._step("homebrew.check", "skipped", "already installed")
            return "present"
        self.logger.info(
            "Installing Homebrew (If you are seeing an error, do NOT report it to the "
            "upstream Homebrew): instance=%s instUser=%s",
            instance,
            account,
        )
        self._run(self.homebrew.install_commands(account), run_options)
        if not self.homebrew.is_installed(account):
            raise HomebrewError(f"failed to detect Homebrew for {account} after installation")
        return "installed"

    def _run(self, steps: Sequence[PlanStep], run_options: RunOptions) -> None:
        if steps:
            self.executor.execute(steps, run_options, op=self.op)

    def _prewarm(self) -> None:
        if self.prewarm is None:
            return
        try:
            self.prewarm()
        except CredentialError as exc:
            self.logger.warning("failed to run sudo -v: %s", exc)
            self._step("sudo.prewarm", "warning", str(exc))

    def _step(self, name: str, status: str, detail: str) -> None:
        if self.op is not None:
            self.op.add_step(name, status=status, detail=detail)


__all__ = ["InstanceOrchestrator", "InstanceOutcome", "InstanceSummary"]
