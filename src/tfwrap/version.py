#!/usr/bin/env python3
"""
Provisioner version detection and command dialect selection.

The version is probed once during init. Everything that depends on the
detected version asks dialect_for() instead of comparing versions itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NamedTuple

from . import __version__
from .config_constants import (
    AUTO_APPROVE_VERSION,
    DEFAULT_TOOL,
    DESTROY_FORCE_REMOVED_VERSION,
    MIN_TF_VERSION,
)
from .errors import VersionError
from .helpers import run_cmd_stream_output


class VersionToken(NamedTuple):
    major: int
    minor: int
    patch: int

    @classmethod
    def from_string(cls, text: str) -> "VersionToken":
        parts = text.strip().split('.')
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise VersionError(f"Invalid version string: {text!r}")
        return cls(*(int(p) for p in parts))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class CommandDialect:
    apply_flags: tuple[str, ...]
    destroy_flags: tuple[str, ...]


def dialect_for(version: VersionToken) -> CommandDialect:
    """Pick version-dependent command flags."""
    apply_flags: tuple[str, ...] = ()
    if version >= AUTO_APPROVE_VERSION:
        apply_flags = ('-auto-approve',)

    if version >= DESTROY_FORCE_REMOVED_VERSION:
        destroy_flags: tuple[str, ...] = ('-auto-approve',)
    else:
        destroy_flags = ('-force',)

    return CommandDialect(apply_flags=apply_flags, destroy_flags=destroy_flags)


def _product_name(tool: str) -> str:
    """Display name for a tool given as a bare name or a path."""
    return Path(tool).name.capitalize()


def parse_version(text: str, tool: str = DEFAULT_TOOL) -> VersionToken:
    """
    Extract the version from `<tool> version` output.

    The output looks like "Terraform v0.9.2" or
    "Terraform v0.9.3-dev (<GIT SHA><+CHANGES>)"; anything after the patch
    number is discarded. tool may be a bare name or a path to the binary.
    """
    pattern = re.compile(rf"{re.escape(Path(tool).name)} v(\d+)\.(\d+)\.(\d+)", re.IGNORECASE)
    match = pattern.search(text)
    if not match:
        raise VersionError(
            f"ERROR: could not determine {tool} version from '{tool} -version' output: {text}"
        )
    return VersionToken(*(int(g) for g in match.groups()))


def check_tf_version(
    tf_dir: Path | str,
    tool: str = DEFAULT_TOOL,
    minimum: tuple[int, int, int] = MIN_TF_VERSION,
    stream_runner: Callable[..., tuple[str, int]] = run_cmd_stream_output,
) -> VersionToken:
    """
    Check that the provisioner binary is new enough and return its version.
    """
    all_out_err, exit_status = stream_runner(f"{tool} version", tf_dir, progress="none")
    if exit_status != 0:
        raise VersionError(f"ERROR: '{tool} -version' exited {exit_status}: {all_out_err}")

    all_out_err = all_out_err.strip()
    version = parse_version(all_out_err, tool)

    minimum = VersionToken(*minimum)
    if version < minimum:
        raise VersionError(
            f"ERROR: tfwrap {__version__} is only compatible with {_product_name(tool)} >= {minimum} "
            f"but your {tool} binary reports itself as {version} ({all_out_err})"
        )

    print(f"Running with: {all_out_err}", flush=True)
    return version
