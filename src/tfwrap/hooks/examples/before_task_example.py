#!/usr/bin/env python3
"""
Example before-task hook for tfwrap.

Called as before_task_hook(task_name, tf_dir) ahead of every task body.
Returning False skips the task body and its after hook; any other return
value lets the task run. Raising aborts the run.
"""
from __future__ import annotations

import os


def before_task_hook(task_name: str, tf_dir: str) -> bool:
    """Skip destructive tasks unless TFWRAP_ALLOW_DESTROY is set."""
    if task_name.endswith(':destroy') and os.environ.get('TFWRAP_ALLOW_DESTROY') != '1':
        print(f"[WARN] Refusing {task_name} in {tf_dir}; set TFWRAP_ALLOW_DESTROY=1", flush=True)
        return False
    return True
