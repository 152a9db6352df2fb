#!/usr/bin/env python3
"""
tfwrap CLI entry point.

Loads the configuration from the working directory, installs the task set
of every configured stack into one registry and runs the requested tasks.
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import build_stacks, load_config
from .errors import ConfigurationError, TFWrapError
from .helpers import configure_logging
from .tasks import TaskGraph, TaskRegistry


logger = logging.getLogger(__name__)

TASK_SPEC_PATTERN = re.compile(r"^([^\[\]]+)(?:\[(.*)\])?$")


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for tfwrap.

    Supports arguments:
    1. -d, --dir <path> - Directory holding tfwrap.toml(.j2) (default: current directory)
    2. -c, --config <path> - Explicit config file (rendered with Jinja2 if it ends in .j2)
    3. --log-level <level> - Override [tfwrap] log_level
    4. -T, --tasks - List available tasks and exit
    5. -A, --all - With -T, also list tasks that have no description
    6. TASK ... - Tasks to run, e.g. tf:plan or tf:apply[aws_instance.web,module.db]
    """
    parser = argparse.ArgumentParser(
        prog='tfwrap',
        description='tfwrap: Terraform task runner with retries, var files and remote state',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # List tasks for the configuration in the current directory
  %(prog)s -T

  # Plan and apply the default stack
  %(prog)s tf:apply

  # Plan specific targets of a namespaced stack
  %(prog)s network_tf:plan[aws_vpc.main,aws_subnet.a[0]]
        '''
    )

    parser.add_argument(
        '-d', '--dir',
        type=Path,
        default=Path.cwd(),
        metavar='PATH',
        help='Directory containing tfwrap.toml.j2 / tfwrap.toml (default: current directory)'
    )

    parser.add_argument(
        '-c', '--config',
        type=Path,
        default=None,
        metavar='PATH',
        help='Explicit config file, relative to --dir unless absolute'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Log level (default: [tfwrap] log_level or INFO)'
    )

    parser.add_argument(
        '-T', '--tasks',
        action='store_true',
        help='List available tasks and exit'
    )

    parser.add_argument(
        '-A', '--all',
        action='store_true',
        help='List tasks without a description too'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        'task_specs',
        nargs='*',
        metavar='TASK',
        help='Task to run, optionally with targets: NAMESPACE:OP[target,...]'
    )

    return parser.parse_args(argv)


def _split_args(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ''
    for char in text:
        if char == ',' and depth == 0:
            parts.append(current)
            current = ''
            continue
        if char == '[':
            depth += 1
        elif char == ']':
            depth -= 1
        current += char
    parts.append(current)
    return [p.strip() for p in parts if p.strip()]


def parse_task_spec(spec: str) -> tuple[str, list[str]]:
    """
    Split "ns:op[a,b[1]]" into ("ns:op", ["a", "b[1]"]).
    """
    match = TASK_SPEC_PATTERN.match(spec.strip())
    if not match:
        raise ConfigurationError(f"Invalid task specification: {spec!r}")
    name, raw_args = match.groups()
    return name, _split_args(raw_args) if raw_args else []


def print_tasks(registry: TaskRegistry, show_all: bool = False) -> None:
    """Print one line per task; undescribed tasks only with show_all."""
    tasks = [task for task in registry if show_all or task.description]
    width = max((len(task.name) for task in tasks), default=0)
    for task in tasks:
        label = task.name + ('[target,...]' if task.accepts_targets else '')
        if task.description:
            print(f"tfwrap {label.ljust(width + 12)}  # {task.description}")
        else:
            print(f"tfwrap {label}")


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    base_dir = args.dir.resolve()

    try:
        config = load_config(base_dir, args.config)
        configure_logging(args.log_level or config.get('tfwrap', {}).get('log_level', 'INFO'))

        registry = TaskRegistry()
        for stack in build_stacks(config, base_dir):
            stack.install(registry)

        if args.tasks or not args.task_specs:
            print_tasks(registry, show_all=args.all)
            return 0

        requested = [parse_task_spec(spec) for spec in args.task_specs]
        for name, _ in requested:
            registry.get(name)

        graph = TaskGraph(registry)
        for name, task_args in requested:
            target = task_args[0] if task_args else None
            graph.invoke(name, target, task_args[1:])

    except TFWrapError as e:
        print(f"[ERROR] {e}", file=sys.stderr, flush=True)
        logger.debug("Run failed", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    raise SystemExit(main())
