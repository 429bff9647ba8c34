"""Typer-powered command line interface for ``alclessctl``.

Each lifecycle command runs inside a structured operation scope so that every
privileged mutation leaves a record in ``operations.jsonl``. Commands map
failures onto :class:`~alclessctl.exit_codes.ExitCode` values.
"""
from __future__ import annotations

import functools
import json
import logging
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import get_version
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .identity import AccountNamer, InstanceNameError
from .logging import OperationScope, StructuredLogger
from .orchestrator import InstanceOrchestrator, InstanceOutcome
from .providers import DirectoryError, DirectoryProvider, HomebrewError, HomebrewProvider
from .provisioning import (
    ConfirmationAborted,
    ExecutionError,
    GrantError,
    PlanExecutor,
    PlanSettings,
    RunOptions,
    prewarm_credentials,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to alclessctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage sandboxed macOS user accounts with their own Homebrew.

        Every instance is a separate local account, reachable from the invoking
        user through a sudoers grant scoped to that account alone.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    namer: AccountNamer
    directory: DirectoryProvider
    homebrew: HomebrewProvider
    executor: PlanExecutor
    settings: PlanSettings
    tty: bool
    plain: bool


def _configure_logging(debug: bool) -> None:
    package_logger = logging.getLogger("alclessctl")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    *,
    tty: bool | None = None,
    plain: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    binaries = config.binaries
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        namer=AccountNamer(prefix=config.account_prefix, host_user=config.host_user),
        directory=DirectoryProvider(dscl_bin=binaries.dscl),
        homebrew=HomebrewProvider(
            sudo_bin=binaries.sudo,
            repository=config.homebrew.repository,
            prefix=config.homebrew.prefix,
        ),
        executor=PlanExecutor(),
        settings=PlanSettings(
            sudo_bin=binaries.sudo,
            sysadminctl_bin=binaries.sysadminctl,
            users_root=config.users_root,
        ),
        tty=sys.stdin.isatty() if tty is None else tty,
        plain=plain,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the alclessctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    tty: bool | None = typer.Option(
        None,
        "--tty/--no-tty",
        help="Confirm commands interactively (default: when stdin is a terminal).",
    ),
    plain: bool = typer.Option(
        False,
        "--plain",
        help="Plain mode: do not install Homebrew into instances.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log every command at debug level.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _configure_logging(debug)
    if version:
        console.print(f"alclessctl {get_version()}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, tty=tty, plain=plain)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    audit_message: str | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]", highlight=False)
    recorded = audit_message or message
    op.error(recorded, errors=[recorded], rc=int(rc))
    raise typer.Exit(code=int(rc))


def _lifecycle_error(op: OperationScope, exc: Exception) -> NoReturn:
    """Map a lifecycle failure onto its exit code."""
    if isinstance(exc, (InstanceNameError, GrantError)):
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    if isinstance(exc, ConfirmationAborted):
        _command_error(op, str(exc), rc=ExitCode.ABORTED)
    if isinstance(exc, ExecutionError):
        message = str(exc)
        audit = message
        if exc.step is not None:
            audit = message.replace(exc.step.command_line, exc.step.redacted_line)
        _command_error(op, message, rc=ExitCode.PROVIDER, audit_message=audit)
    if isinstance(exc, DirectoryError):
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
    _command_error(op, str(exc), rc=ExitCode.PROVIDER)


def _build_orchestrator(runtime: RuntimeContext, op: OperationScope) -> InstanceOrchestrator:
    return InstanceOrchestrator(
        namer=runtime.namer,
        directory=runtime.directory,
        homebrew=runtime.homebrew,
        executor=runtime.executor,
        settings=runtime.settings,
        sudoers_dir=runtime.config.sudoers_dir,
        password_length=runtime.config.password_length,
        prewarm=functools.partial(prewarm_credentials, runtime.config.binaries.sudo),
        op=op,
    )


def _run_options(runtime: RuntimeContext) -> RunOptions:
    return RunOptions(confirm=runtime.tty, stdin=sys.stdin, stderr=sys.stderr)


def _render_outcome(outcome: InstanceOutcome, *, intent: str) -> None:
    label = f"'{outcome.instance}' (account {outcome.account})"
    if intent == "create":
        if outcome.state == "done":
            console.print(f"[green]Created instance {label}.[/green]", highlight=False)
        else:
            console.print(f"[yellow]Instance {label} already exists.[/yellow]", highlight=False)
        if outcome.homebrew == "installed":
            console.print(f"[green]Installed Homebrew for {label}.[/green]", highlight=False)
        return
    if outcome.state == "done":
        console.print(f"[green]Deleted instance {label}.[/green]", highlight=False)
    else:
        console.print(f"[yellow]No such instance {label}.[/yellow]", highlight=False)


@app.command("create")
def instance_create(
    ctx: typer.Context,
    instances: list[str] | None = typer.Argument(
        None,
        metavar="[INSTANCE]...",
        help="Instances to create (default: 'default').",
    ),
    name: str = typer.Option(
        "",
        "--name",
        help="Override the instance name.",
    ),
    user_password: str | None = typer.Option(
        None,
        "--user-password",
        help="User password (default: interactive if TTY, random if not TTY).",
    ),
    packages: list[str] | None = typer.Option(
        None,
        "--package",
        "-p",
        help="Homebrew package to install into each instance (repeatable).",
    ),
) -> None:
    """Create instances, then make sure each one has Homebrew."""
    runtime = _get_runtime(ctx)
    requested = list(instances or [])
    package_list = list(packages or [])
    if package_list and runtime.plain:
        console.print("[yellow]--package is ignored in --plain mode.[/yellow]")

    with runtime.logger.operation(
        "create",
        args={
            "instances": requested,
            "name": name or None,
            "user_password": user_password is not None,
            "packages": package_list,
            "tty": runtime.tty,
            "plain": runtime.plain,
        },
        target={"kind": "instance", "names": requested or [name or "default"]},
    ) as op:
        orchestrator = _build_orchestrator(runtime, op)
        try:
            outcomes = orchestrator.create(
                requested,
                run_options=_run_options(runtime),
                name_flag=name,
                password=user_password,
                tty=runtime.tty,
                plain=runtime.plain,
                packages=package_list,
            )
        except (
            InstanceNameError,
            GrantError,
            DirectoryError,
            ExecutionError,
            HomebrewError,
        ) as exc:
            _lifecycle_error(op, exc)

        for outcome in outcomes:
            _render_outcome(outcome, intent="create")
        created = sum(1 for outcome in outcomes if outcome.state == "done")
        op.success(
            "Instances created.",
            changed=created,
            context={
                "instances": [
                    {"instance": o.instance, "state": o.state, "homebrew": o.homebrew}
                    for o in outcomes
                ]
            },
        )


@app.command("delete")
def instance_delete(
    ctx: typer.Context,
    instances: list[str] = typer.Argument(
        ...,
        metavar="INSTANCE...",
        help="Instances to delete.",
    ),
) -> None:
    """Delete instances together with their sudoers grants."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "delete",
        args={"instances": list(instances), "tty": runtime.tty},
        target={"kind": "instance", "names": list(instances)},
    ) as op:
        orchestrator = _build_orchestrator(runtime, op)
        try:
            outcomes = orchestrator.delete(list(instances), run_options=_run_options(runtime))
        except (InstanceNameError, GrantError, DirectoryError, ExecutionError) as exc:
            _lifecycle_error(op, exc)

        for outcome in outcomes:
            _render_outcome(outcome, intent="delete")
        missing = [o.instance for o in outcomes if o.state == "skipped"]
        deleted = len(outcomes) - len(missing)
        if missing:
            op.warning(
                "Some instances did not exist.",
                warnings=[f"No such instance: {instance}" for instance in missing],
                changed=deleted,
            )
        else:
            op.success("Instances deleted.", changed=deleted)


app.command("remove", hidden=True)(instance_delete)
app.command("rm", hidden=True)(instance_delete)


@app.command("list")
def instance_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the instances that belong to the invoking user."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "directory"},
    ) as op:
        orchestrator = _build_orchestrator(runtime, op)
        try:
            summaries = orchestrator.list_instances()
        except DirectoryError as exc:
            _lifecycle_error(op, exc)

        if json_output:
            console.print_json(
                data={
                    "instances": [
                        {"name": s.instance, "account": s.account, "shell": s.shell}
                        for s in summaries
                    ]
                }
            )
            op.success("Reported instance list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Account")
        table.add_column("Shell")
        if not summaries:
            table.add_row("(none)", "", "")
        for summary in summaries:
            table.add_row(summary.instance, summary.account, summary.shell)
        console.print(table)
        op.success("Reported instance list.", changed=0)


config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
