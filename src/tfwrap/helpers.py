#!/usr/bin/env python3
"""
Generic helpers for tfwrap: logging setup, environment validation and the
streaming subprocess primitive.

run_cmd_stream_output() merges STDOUT and STDERR of the child into one pipe
that is drained by a single reader.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from contextlib import contextmanager
from typing import Iterable, Iterator, Mapping, Optional, TextIO

from .config_constants import PROGRESS_MODES
from .errors import ConfigurationError, EnvironmentValidationError


logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True
    )

    logging.getLogger("tfwrap").setLevel(level)
    logger.debug(f"Logging configured: {str(log_level).upper()}")


def check_env_vars(
    required: Iterable[str],
    allow_empty: Iterable[str] = (),
    environ: Optional[Mapping[str, str]] = None
) -> None:
    """
    Ensure that every required environment variable is set and non-empty.

    Names listed in allow_empty must be present but may be empty. All
    offending names are collected before failing so the user sees the full
    list at once.

    Raises:
        EnvironmentValidationError: if any variable is missing or empty
    """
    env = os.environ if environ is None else environ
    may_be_empty = set(allow_empty)
    missing: list[str] = []

    for name in required:
        if name not in env:
            print(f"[ERROR] Environment variable '{name}' must be set.", file=sys.stderr, flush=True)
            missing.append(name)
        elif not str(env[name]).strip() and name not in may_be_empty:
            print(f"[ERROR] Environment variable '{name}' must not be empty.", file=sys.stderr, flush=True)
            missing.append(name)

    if missing:
        raise EnvironmentValidationError(missing)


def validate_progress(progress: Optional[str]) -> str:
    """Normalize a progress mode, rejecting unknown values."""
    if progress is None:
        return "none"
    if progress not in PROGRESS_MODES:
        raise ConfigurationError(
            f"progress option must be one of: {list(PROGRESS_MODES)} (got {progress!r})"
        )
    return progress


@contextmanager
def line_buffered(stream: TextIO) -> Iterator[TextIO]:
    """
    Switch a text stream to line buffering and restore the previous mode.
    """
    reconfigure = getattr(stream, "reconfigure", None)
    previous = getattr(stream, "line_buffering", None)

    if reconfigure is None or previous is None:
        yield stream
        return

    reconfigure(line_buffering=True)
    try:
        yield stream
    finally:
        reconfigure(line_buffering=previous)


def _echo(out: TextIO, line: str, progress: str) -> None:
    if progress == "stream":
        out.write(line if line.endswith("\n") else line + "\n")
    elif progress == "dots":
        out.write(".")
        out.flush()
    elif progress == "lines":
        out.write(".\n")


def run_cmd_stream_output(cmd: str, pwd, progress: Optional[str] = "stream") -> tuple[str, int]:
    """
    Run a shell command, streaming its output while also capturing it.

    STDOUT and STDERR are combined into one stream and returned as one
    string.

    Args:
        cmd: command line to run (through the shell)
        pwd: directory to run the command in
        progress: "stream" echoes every line to STDOUT, "dots" prints a dot
            per line, "lines" prints a dot and newline per line, "none"
            (or None) prints nothing

    Returns:
        (combined output, exit code)
    """
    progress = validate_progress(progress)
    out = sys.stdout
    captured: list[str] = []

    logger.debug(f"Spawning: {cmd} (cwd={pwd}, progress={progress})")

    with line_buffered(out):
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(pwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace"
        )
        with proc:
            try:
                for line in proc.stdout:
                    _echo(out, line, progress)
                    captured.append(line)
            except (OSError, ValueError) as e:
                print(f"[WARN] IOError: {e}", file=sys.stderr, flush=True)
                logger.debug("Output drain interrupted", exc_info=True)
            exit_status = proc.wait()

        if progress == "dots":
            out.write("\n")

    logger.debug(f"Command exited {exit_status}, captured {len(captured)} line(s)")
    return "".join(captured), exit_status
