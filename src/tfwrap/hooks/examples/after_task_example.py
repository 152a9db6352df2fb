#!/usr/bin/env python3
"""
Example after-task hook for tfwrap.

Called as after_task_hook(task_name, tf_dir) once a task body has finished
without raising. It performs no external I/O and is safe to use as a
template.
"""
from __future__ import annotations


def after_task_hook(task_name: str, tf_dir: str) -> None:
    print(f"[SUCCESS] {task_name} completed in {tf_dir}", flush=True)
