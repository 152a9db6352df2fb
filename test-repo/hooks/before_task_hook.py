#!/usr/bin/env python3
"""Demo before-task hook: record task names in TFWRAP_TEST_HOOK_LOG."""

from __future__ import annotations

import os


def before_task_hook(task_name: str, tf_dir: str) -> None:
    log_path = os.environ.get("TFWRAP_TEST_HOOK_LOG")
    if log_path:
        with open(log_path, "a") as f:
            f.write(f"before {task_name}\n")
