"""Plan building and execution for instance account lifecycles."""
from __future__ import annotations

from .executor import (
    ConfirmationAborted,
    CredentialError,
    ExecutionError,
    PlanExecutor,
    RunOptions,
    prewarm_credentials,
)
from .plans import (
    CommandPlan,
    ExplicitSecret,
    GeneratedSecret,
    InteractivePrompt,
    PasswordSource,
    PlanSettings,
    PlanStep,
    generate_password,
    plan_create,
    plan_delete,
    select_password_source,
)
from .sudoers import GrantError, SudoersGrant, build_grant, grant_path

__all__ = [
    # plan helpers
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
    # sudoers helpers
    "GrantError",
    "SudoersGrant",
    "build_grant",
    "grant_path",
    # execution helpers
    "ConfirmationAborted",
    "CredentialError",
    "ExecutionError",
    "PlanExecutor",
    "RunOptions",
    "prewarm_credentials",
]
