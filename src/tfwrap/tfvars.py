"""Provisioner variable file: merge, render and write."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .config_constants import DEFAULT_SENSITIVE_VARS


def build_tf_vars(
    vars_from_env: Mapping[str, str],
    extra_vars: Mapping[str, str],
    environ: Optional[Mapping[str, str]] = None
) -> dict:
    """
    Build the variable set.

    vars_from_env maps provisioner variable names to the environment
    variables holding their values; those are read now, not at config load.
    extra_vars wins on key collisions.
    """
    env = os.environ if environ is None else environ
    tf_vars = {tf_name: env.get(env_name) for tf_name, env_name in vars_from_env.items()}
    tf_vars.update(extra_vars)
    return tf_vars


def render_tf_vars_lines(tf_vars: Mapping[str, object], sensitive: Iterable[str] = DEFAULT_SENSITIVE_VARS) -> list[str]:
    """Human-readable `key => value` lines, sorted by key, secrets redacted."""
    hidden = set(sensitive)
    lines = []
    for key in sorted(tf_vars):
        value = '(redacted)' if key in hidden else tf_vars[key]
        lines.append(f"{key} => {value}")
    return lines


def write_tf_vars(
    tf_vars: Mapping[str, object],
    path: Path | str,
    sensitive: Iterable[str] = DEFAULT_SENSITIVE_VARS
) -> Path:
    """Print the variables (redacted) and write them (unredacted) as JSON."""
    path = Path(path)

    print('Terraform vars:', flush=True)
    for line in render_tf_vars_lines(tf_vars, sensitive):
        print(line, flush=True)

    with open(path, 'w') as f:
        f.write(json.dumps(dict(tf_vars), separators=(',', ':')))

    print(f"[INFO] Terraform vars written to: {path}", file=sys.stderr, flush=True)
    return path
