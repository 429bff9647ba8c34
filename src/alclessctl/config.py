"""Configuration loader for alclessctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.alcless/config.yml`` (or an override path).
3. Environment variables prefixed with ``ALCLESSCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export ALCLESSCTL_BINARIES__SUDO=/usr/bin/sudo
    export ALCLESSCTL_HOMEBREW__PREFIX=brew

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import copy
import getpass
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml


ENV_PREFIX = "ALCLESSCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

MIN_PASSWORD_LENGTH = 64
_PREFIX_PATTERN = re.compile(r"[A-Za-z0-9_-]*")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class BinariesConfig:
    """Paths (or names on ``PATH``) of the privileged OS primitives."""

    sudo: str = "sudo"
    dscl: str = "dscl"
    sysadminctl: str = "sysadminctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"sudo": self.sudo, "dscl": self.dscl, "sysadminctl": self.sysadminctl}


@dataclass(frozen=True)
class HomebrewConfig:
    """Where the per-instance Homebrew checkout comes from and lives."""

    repository: str = "https://github.com/Homebrew/brew"
    prefix: str = "homebrew"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"repository": self.repository, "prefix": self.prefix}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for alclessctl."""

    config_file: Path
    logs_dir: Path
    host_user: str
    account_prefix: str
    users_root: Path
    sudoers_dir: Path
    password_length: int
    binaries: BinariesConfig
    homebrew: HomebrewConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "host_user": self.host_user,
            "account_prefix": self.account_prefix,
            "users_root": str(self.users_root),
            "sudoers_dir": str(self.sudoers_dir),
            "password_length": self.password_length,
            "binaries": self.binaries.to_dict(),
            "homebrew": self.homebrew.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.alcless/config.yml",
    "logs_dir": "~/.alcless/logs",
    "host_user": None,  # derived from the invoking user when absent
    "account_prefix": "alcless_",
    "users_root": "/Users",
    "sudoers_dir": "/etc/sudoers.d",
    "password_length": MIN_PASSWORD_LENGTH,
    "binaries": {
        "sudo": "sudo",
        "dscl": "dscl",
        "sysadminctl": "sysadminctl",
    },
    "homebrew": {
        "repository": "https://github.com/Homebrew/brew",
        "prefix": "homebrew",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_BINARY_KEYS = {"sudo", "dscl", "sysadminctl"}
ALLOWED_HOMEBREW_KEYS = {"repository", "prefix"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    resolved_env = dict(os.environ if env is None else env)
    config_path = _config_path(config_file, resolved_env)

    merged = copy.deepcopy(DEFAULTS)
    for layer in (_read_file(config_path), _env_layer(resolved_env), overrides or {}):
        _merge(merged, layer)
    merged["config_file"] = str(config_path)

    _validate_structure(merged)
    return _build_app_config(merged)


def _config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    raw = cli_override or env.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"])
    return Path(raw).expanduser()


def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _mapping(data, str(path))


def _env_layer(env: Mapping[str, str]) -> dict[str, object]:
    """Turn ``ALCLESSCTL_A__B=value`` entries into ``{"a": {"b": value}}``."""
    layer: dict[str, object] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX) or key in RESERVED_ENV_KEYS:
            continue
        suffix = key[len(ENV_PREFIX) :].lower()
        if not suffix:
            continue
        *parents, leaf = suffix.split("__")
        node = layer
        for segment in parents:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} conflicts with {segment}.")
            node = child
        try:
            node[leaf] = yaml.safe_load(value.strip())
        except yaml.YAMLError:
            node[leaf] = value.strip()
    return layer


def _merge(target: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge(current, value)
        else:
            target[key] = value


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown_keys))}.")

    prefix = raw.get("account_prefix")
    if not isinstance(prefix, str) or not _PREFIX_PATTERN.fullmatch(prefix):
        raise ConfigError("account_prefix may only contain letters, digits, '_' and '-'.")

    for section, allowed in (
        ("binaries", ALLOWED_BINARY_KEYS),
        ("homebrew", ALLOWED_HOMEBREW_KEYS),
    ):
        unknown = set(_mapping(raw.get(section), section)) - allowed
        if unknown:
            raise ConfigError(
                f"Unknown {section} configuration keys: {', '.join(sorted(unknown))}."
            )

    homebrew = _mapping(raw.get("homebrew"), "homebrew")
    brew_prefix = str(homebrew.get("prefix", HomebrewConfig.prefix)).strip()
    if not brew_prefix or brew_prefix.startswith("/"):
        raise ConfigError("homebrew.prefix must be a path relative to the account home.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    host_user = str(raw.get("host_user") or "").strip() or getpass.getuser()
    binaries = _mapping(raw.get("binaries"), "binaries")
    homebrew = _mapping(raw.get("homebrew"), "homebrew")

    return AppConfig(
        config_file=_path(raw, "config_file"),
        logs_dir=_path(raw, "logs_dir"),
        host_user=host_user,
        account_prefix=str(raw["account_prefix"]),
        users_root=_path(raw, "users_root"),
        sudoers_dir=_path(raw, "sudoers_dir"),
        password_length=_password_length(raw.get("password_length")),
        binaries=BinariesConfig(**{key: str(value) for key, value in binaries.items()}),
        homebrew=HomebrewConfig(
            repository=str(homebrew.get("repository", HomebrewConfig.repository)),
            prefix=str(homebrew.get("prefix", HomebrewConfig.prefix)).strip().rstrip("/"),
        ),
    )


def _path(raw: Mapping[str, object], key: str) -> Path:
    value = raw.get(key)
    if not isinstance(value, (str, Path)) or not str(value):
        raise ConfigError(f"{key} must be a filesystem path. Got {value!r}.")
    return Path(value).expanduser()


def _password_length(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        kind = "boolean" if isinstance(value, bool) else type(value).__name__
        raise ConfigError(f"password_length must be an integer. Got {kind} {value!r}.")
    if value < MIN_PASSWORD_LENGTH:
        raise ConfigError(f"password_length must be at least {MIN_PASSWORD_LENGTH}. Got {value}.")
    return value


def _mapping(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping) or not all(isinstance(key, str) for key in value):
        raise ConfigError(f"{label} must be a mapping with string keys. Got {value!r}.")
    return dict(value)


__all__ = [
    "AppConfig",
    "BinariesConfig",
    "ConfigError",
    "HomebrewConfig",
    "MIN_PASSWORD_LENGTH",
    "load_config",
]
