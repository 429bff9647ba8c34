"""Tests for the alclessctl CLI."""
from __future__ import annotations

import json
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest
from typer.testing import CliRunner

from alclessctl import __version__
from alclessctl.cli import app
from alclessctl.exit_codes import ExitCode

runner = CliRunner()


class FakeMac:
    """Stand-in for dscl, sysadminctl and sudo that tracks account state."""

    def __init__(self, accounts: Sequence[str] = (), brewed: Sequence[str] = ()) -> None:
        self.accounts = ["root", "tester", *accounts]
        self.brewed = set(brewed)
        self.fail_on: str | None = None
        self.calls: list[list[str]] = []

    def run(self, args: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        command = list(args)
        self.calls.append(command)
        if self.fail_on and self.fail_on in command:
            return self._result(command, 1)
        if command[0] == "dscl":
            if "-list" in command:
                return self._result(command, 0, "\n".join(self.accounts) + "\n")
            return self._result(command, 0, "UserShell: /bin/zsh\n")
        if command[1] == "-u":
            account, script = command[2], command[-1]
            if script.endswith("--version"):
                return self._result(command, 0 if account in self.brewed else 1)
            if script.endswith("update"):
                self.brewed.add(account)
            return self._result(command, 0)
        if command[1] == "sysadminctl" and command[2] == "-addUser":
            self.accounts.append(command[3])
        if command[1] == "sysadminctl" and command[2] == "-deleteUser":
            self.accounts.remove(command[3])
        return self._result(command, 0)

    def privileged(self) -> list[list[str]]:
        return [call for call in self.calls if call[0] == "sudo" and call[1] not in ("-v", "-u")]

    @staticmethod
    def _result(command: list[str], rc: int, stdout: str = "") -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(command, rc, stdout=stdout, stderr="")


@pytest.fixture
def fake_mac(monkeypatch: pytest.MonkeyPatch) -> FakeMac:
    """Route every subprocess call through a FakeMac."""
    fake = FakeMac()
    monkeypatch.setattr(subprocess, "run", fake.run)
    return fake


def _prepare_environment(tmp_path: Path) -> dict[str, str]:
    return {
        "ALCLESSCTL_CONFIG_FILE": str(tmp_path / "config.yml"),
        "ALCLESSCTL_LOGS_DIR": str(tmp_path / "logs"),
        "ALCLESSCTL_HOST_USER": "tester",
        "ALCLESSCTL_SUDOERS_DIR": str(tmp_path / "sudoers.d"),
    }


def _operations(tmp_path: Path) -> list[dict[str, object]]:
    path = tmp_path / "logs" / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_flag(tmp_path: Path) -> None:
    """--version prints the package version."""
    result = runner.invoke(app, ["--version"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_no_command_shows_help(tmp_path: Path) -> None:
    """Running without a command prints the help text."""
    result = runner.invoke(app, [], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    assert "create" in result.stdout
    assert "delete" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """config show --json renders the merged configuration."""
    result = runner.invoke(app, ["config", "show", "--json"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["host_user"] == "tester"
    assert data["sudoers_dir"] == str(tmp_path / "sudoers.d")
    assert data["binaries"]["sysadminctl"] == "sysadminctl"


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    """Broken configuration is reported without a traceback."""
    env = _prepare_environment(tmp_path)
    (tmp_path / "config.yml").write_text("unexpected: true\n")

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == ExitCode.VALIDATION
    assert "Unknown configuration keys" in result.output


def test_create_default_instance(tmp_path: Path, fake_mac: FakeMac) -> None:
    """create with no arguments provisions the default instance and Homebrew."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["--no-tty", "create", "--user-password", "hunter2"], env=env)

    assert result.exit_code == 0, result.output
    assert "alcless_tester_default" in fake_mac.accounts
    assert "alcless_tester_default" in fake_mac.brewed
    assert "Created instance 'default'" in result.output
    privileged = fake_mac.privileged()
    assert [call[1:3] for call in privileged] == [
        ["sysadminctl", "-addUser"],
        ["chmod", "go-rx"],
        ["sh", "-c"],
    ]
    assert str(tmp_path / "sudoers.d" / "alcless_tester_default") in privileged[2][-1]

    (record,) = _operations(tmp_path)
    assert record["operation"] == "create"
    assert record["result"]["status"] == "success"
    assert record["args"]["user_password"] is True
    assert "hunter2" not in json.dumps(record)


def test_create_existing_instance_is_skipped(tmp_path: Path, fake_mac: FakeMac) -> None:
    """An existing account is left alone apart from the Homebrew check."""
    fake_mac.accounts.append("alcless_tester_alpha")
    fake_mac.brewed.add("alcless_tester_alpha")

    result = runner.invoke(
        app, ["--no-tty", "create", "alpha"], env=_prepare_environment(tmp_path)
    )

    assert result.exit_code == 0, result.output
    assert "already exists" in result.output
    assert fake_mac.privileged() == []


def test_create_plain_without_tty_generates_password(tmp_path: Path, fake_mac: FakeMac) -> None:
    """Without a terminal the generated password is shown to the operator."""
    result = runner.invoke(
        app, ["--no-tty", "--plain", "create", "beta"], env=_prepare_environment(tmp_path)
    )

    assert result.exit_code == 0, result.output
    add_user = fake_mac.privileged()[0]
    password = add_user[add_user.index("-password") + 1]
    assert len(password) == 64
    assert "THE PASSWORD IS SHOWN IN THIS SCREEN" in result.output
    assert not any(call[1] == "-u" for call in fake_mac.calls)
    assert password not in (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8")


def test_create_with_tty_confirms_and_prompts(tmp_path: Path, fake_mac: FakeMac) -> None:
    """With --tty every plan is confirmed and sysadminctl prompts for the password."""
    result = runner.invoke(
        app,
        ["--tty", "create", "gamma"],
        env=_prepare_environment(tmp_path),
        input="\n\n\n",
    )

    assert result.exit_code == 0, result.output
    assert "The following commands will be executed" in result.output
    assert "CONTINUE" in result.output
    assert fake_mac.privileged()[0][-1] == "-"
    assert "alcless_tester_gamma" in fake_mac.brewed


def test_create_aborted_at_confirmation(tmp_path: Path, fake_mac: FakeMac) -> None:
    """Closing stdin at the confirmation prompt runs nothing."""
    result = runner.invoke(
        app,
        ["--tty", "create", "delta"],
        env=_prepare_environment(tmp_path),
        input="",
    )

    assert result.exit_code == ExitCode.ABORTED
    assert fake_mac.privileged() == []
    (record,) = _operations(tmp_path)
    assert record["result"]["rc"] == ExitCode.ABORTED


def test_create_name_flag_with_multiple_instances(tmp_path: Path, fake_mac: FakeMac) -> None:
    """--name with several instances fails before touching the system."""
    result = runner.invoke(
        app,
        ["--no-tty", "create", "a", "b", "--name", "c"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == ExitCode.VALIDATION
    assert "multiple instances" in result.output
    assert fake_mac.calls == []


def test_create_rejects_unsafe_name(tmp_path: Path, fake_mac: FakeMac) -> None:
    """Instance names with dots are refused."""
    result = runner.invoke(
        app, ["--no-tty", "create", "a.b"], env=_prepare_environment(tmp_path)
    )

    assert result.exit_code == ExitCode.VALIDATION
    assert fake_mac.privileged() == []


def test_create_failure_is_redacted_in_audit_log(tmp_path: Path, fake_mac: FakeMac) -> None:
    """A failing step exits with the provider code without leaking the password."""
    fake_mac.fail_on = "-addUser"

    result = runner.invoke(
        app,
        ["--no-tty", "create", "eps", "--user-password", "hunter2"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == ExitCode.PROVIDER
    assert "failed to run" in result.output
    assert len(fake_mac.privileged()) == 1
    (record,) = _operations(tmp_path)
    assert record["result"]["status"] == "error"
    assert "hunter2" not in json.dumps(record)


def test_create_installs_packages(tmp_path: Path, fake_mac: FakeMac) -> None:
    """--package installs formulae into the instance's Homebrew."""
    fake_mac.accounts.append("alcless_tester_default")
    fake_mac.brewed.add("alcless_tester_default")

    result = runner.invoke(
        app,
        ["--no-tty", "create", "-p", "jq", "-p", "ripgrep"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == 0, result.output
    assert fake_mac.calls[-1][-1].endswith("brew install jq ripgrep")


@pytest.mark.parametrize("verb", ["delete", "remove", "rm"])
def test_delete_aliases(tmp_path: Path, fake_mac: FakeMac, verb: str) -> None:
    """delete, remove and rm all delete the account and its grant."""
    fake_mac.accounts.append("alcless_tester_alpha")

    result = runner.invoke(app, ["--no-tty", verb, "alpha"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    assert "alcless_tester_alpha" not in fake_mac.accounts
    privileged = fake_mac.privileged()
    assert privileged[0] == ["sudo", "sysadminctl", "-deleteUser", "alcless_tester_alpha", "-secure"]
    assert privileged[1] == [
        "sudo",
        "rm",
        "-f",
        str(tmp_path / "sudoers.d" / "alcless_tester_alpha"),
    ]


def test_delete_missing_instance_warns(tmp_path: Path, fake_mac: FakeMac) -> None:
    """Deleting an absent instance succeeds with a warning and runs nothing."""
    result = runner.invoke(app, ["--no-tty", "delete", "ghost"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    assert "No such instance" in result.output
    assert fake_mac.privileged() == []
    (record,) = _operations(tmp_path)
    assert record["result"]["status"] == "warning"


def test_delete_requires_an_instance(tmp_path: Path, fake_mac: FakeMac) -> None:
    """delete without arguments is a usage error."""
    result = runner.invoke(app, ["delete"], env=_prepare_environment(tmp_path))

    assert result.exit_code != 0
    assert fake_mac.calls == []


def test_list_json(tmp_path: Path, fake_mac: FakeMac) -> None:
    """list --json reports only this host user's instances."""
    fake_mac.accounts.extend(["alcless_tester_b", "alcless_other_x", "alcless_tester_a"])

    result = runner.invoke(app, ["list", "--json"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["instances"] == [
        {"name": "a", "account": "alcless_tester_a", "shell": "/bin/zsh"},
        {"name": "b", "account": "alcless_tester_b", "shell": "/bin/zsh"},
    ]


def test_list_table_when_empty(tmp_path: Path, fake_mac: FakeMac) -> None:
    """An empty list still renders a table."""
    result = runner.invoke(app, ["list"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    assert "(none)" in result.stdout


def test_list_reports_directory_failure(tmp_path: Path, fake_mac: FakeMac) -> None:
    """A failing dscl maps to the environment exit code."""
    fake_mac.fail_on = "-list"

    result = runner.invoke(app, ["list"], env=_prepare_environment(tmp_path))

    assert result.exit_code == ExitCode.ENVIRONMENT


def test_list_attribute_read_failure_is_fatal(tmp_path: Path, fake_mac: FakeMac) -> None:
    """A failing dscl -read aborts list with the environment exit code."""
    fake_mac.accounts.append("alcless_tester_x")
    fake_mac.fail_on = "-read"

    result = runner.invoke(app, ["list", "--json"], env=_prepare_environment(tmp_path))

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert "failed to run" in result.output
    (record,) = _operations(tmp_path)
    assert record["result"]["rc"] == ExitCode.ENVIRONMENT
