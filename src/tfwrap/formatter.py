"""
Optional plan output formatter.

A formatter receives the complete plan output once the command finishes
and renders it to stdout. Its capability is checked when a stack is built,
never at call time.
"""

from __future__ import annotations

import importlib
from typing import Any, Optional, Protocol, TextIO, runtime_checkable

from .errors import ConfigurationError


@runtime_checkable
class OutputFormatter(Protocol):
    def format_output(self, output: str, stream: TextIO) -> None:
        ...


def resolve_formatter(formatter: Any) -> Optional[OutputFormatter]:
    """Return the formatter if it is usable, None if absent."""
    if formatter is None:
        return None
    if not callable(getattr(formatter, 'format_output', None)):
        raise ConfigurationError(
            f"Output formatter {formatter!r} does not provide a callable format_output(output, stream)"
        )
    return formatter


def load_formatter(spec: str) -> OutputFormatter:
    """
    Import a formatter from a "package.module:attribute" reference.

    Classes are instantiated without arguments.
    """
    module_name, sep, attr = spec.partition(':')
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Formatter reference must look like 'module:attribute' (got {spec!r})")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import formatter module '{module_name}': {e}") from e

    target = getattr(module, attr, None)
    if target is None:
        raise ConfigurationError(f"Formatter module '{module_name}' has no attribute '{attr}'")
    if isinstance(target, type):
        target = target()

    return resolve_formatter(target)  # type: ignore[return-value]
