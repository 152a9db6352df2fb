#!/usr/bin/env python3
"""
Task registry and per-run graph executor.

Tasks are registered explicitly into a TaskRegistry (several stacks may
share one registry under different namespaces). A TaskGraph executes tasks
from one registry: prerequisites run first, in declaration order, and every
task runs at most once per graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Sequence

from .errors import ConfigurationError, UnknownTaskError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskArgs:
    target: Optional[str] = None
    extras: tuple[str, ...] = ()

    @property
    def targets(self) -> list[str]:
        """Target followed by extras, in call order."""
        result = [] if self.target is None else [self.target]
        result.extend(self.extras)
        return result


TaskAction = Callable[[str, TaskArgs], None]


@dataclass
class Task:
    name: str
    action: TaskAction
    prerequisites: list[str] = field(default_factory=list)
    accepts_targets: bool = False
    description: str = ''

    def execute(self, args: TaskArgs) -> None:
        self.action(self.name, args if self.accepts_targets else TaskArgs())


class TaskRegistry:
    """Fully qualified task name -> Task."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def add(self, task: Task) -> Task:
        if task.name in self._tasks:
            raise ConfigurationError(f"Task '{task.name}' is already registered")
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name, self._tasks) from None

    def names(self) -> list[str]:
        return list(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)


class TaskGraph:
    """Executes tasks of a registry for one run."""

    def __init__(self, registry: TaskRegistry) -> None:
        self.registry = registry
        self.invoked: list[str] = []

    def invoke(self, name: str, target: Optional[str] = None, extras: Sequence[str] = ()) -> None:
        self._invoke(name, TaskArgs(target, tuple(extras)), ())

    def _invoke(self, name: str, args: TaskArgs, chain: tuple[str, ...]) -> None:
        if name in chain:
            cycle = ' -> '.join(chain + (name,))
            raise ConfigurationError(f"Circular task dependency: {cycle}")

        task = self.registry.get(name)
        if name in self.invoked:
            logger.debug(f"Task {name} already invoked in this run")
            return
        self.invoked.append(name)

        for prereq_name in task.prerequisites:
            prereq = self.registry.get(prereq_name)
            prereq_args = args if (task.accepts_targets and prereq.accepts_targets) else TaskArgs()
            self._invoke(prereq_name, prereq_args, chain + (name,))

        logger.debug(f"Executing task {name} ({args})")
        task.execute(args)
