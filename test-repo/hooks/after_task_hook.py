#!/usr/bin/env python3
"""Demo after-task hook: generic run() entry point."""

from __future__ import annotations

import os


def run(task_name: str, tf_dir: str) -> None:
    log_path = os.environ.get("TFWRAP_TEST_HOOK_LOG")
    if log_path:
        with open(log_path, "a") as f:
            f.write(f"after {task_name}\n")
