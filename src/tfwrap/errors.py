"""
Exception hierarchy for tfwrap.

Every fatal condition derives from TFWrapError so the CLI can report it as a
single [ERROR] line and exit non-zero.
"""

from __future__ import annotations

from typing import Iterable, Optional


class TFWrapError(Exception):
    """Base class for all tfwrap failures."""


class ConfigurationError(TFWrapError):
    """Invalid configuration detected at construction or load time."""


class UnknownTaskError(ConfigurationError):
    """A task name that is not present in the registry."""

    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        self.name = name
        self.available = sorted(available)
        message = f"Unknown task: '{name}'"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class EnvironmentValidationError(TFWrapError):
    """One or more required environment variables are missing or empty."""

    def __init__(self, names: list[str]) -> None:
        self.names = list(names)
        super().__init__(f"Missing or empty environment variables: {self.names}")


class CommandFailedError(TFWrapError):
    """A provisioner command failed fatally."""

    def __init__(
        self,
        message: str,
        command: str,
        exit_code: Optional[int],
        reason: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.reason = reason
        self.attempts = attempts
        super().__init__(message)


class VersionError(TFWrapError):
    """The provisioner version could not be detected or is unsupported."""


class StatePropagationError(TFWrapError):
    """Writing stack information to the key-value store failed."""
