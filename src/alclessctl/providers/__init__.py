"""Provider interfaces for alclessctl."""
from __future__ import annotations

from .directory import (
    ATTRIBUTE_HOME_DIRECTORY,
    ATTRIBUTE_USER_SHELL,
    DirectoryError,
    DirectoryProvider,
)
from .homebrew import HomebrewError, HomebrewProvider

__all__ = [
    "ATTRIBUTE_HOME_DIRECTORY",
    "ATTRIBUTE_USER_SHELL",
    "DirectoryError",
    "DirectoryProvider",
    "HomebrewError",
    "HomebrewProvider",
]
