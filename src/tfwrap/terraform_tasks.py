#!/usr/bin/env python3
"""
Terraform task set.

TerraformTasks registers the init/plan/apply/refresh/destroy/output/
write_tf_vars tasks for one provisioner configuration directory. With a
namespace_prefix, tasks live under "{prefix}_tf:" instead of "tf:" so several
configurations can be driven from the same run.

Hooks:
    before_hook(task_name, tf_dir) runs before each task body. Returning
    False skips the body and the after hook.
    after_hook(task_name, tf_dir) runs after each task body that did not
    raise.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from .config_constants import (
    DEFAULT_SENSITIVE_VARS,
    DEFAULT_TOOL,
    namespace_for,
    var_file_name,
)
from .consul import update_consul_stack_env_vars
from .errors import ConfigurationError
from .formatter import resolve_formatter
from .helpers import check_env_vars, validate_progress
from .runner import RetryPolicy, TerraformRunner
from .tasks import Task, TaskArgs, TaskRegistry
from .tfvars import build_tf_vars, write_tf_vars
from .version import VersionToken, check_tf_version, dialect_for


logger = logging.getLogger(__name__)

Hook = Callable[[str, str], Any]


def _check_hook(option: str, hook: Any) -> Optional[Hook]:
    if hook is not None and not callable(hook):
        raise ConfigurationError(
            f"TerraformTasks option {option} must be callable or None, not {type(hook).__name__}"
        )
    return hook


def cmd_with_targets(cmd_parts: Iterable[str], targets: Iterable[str]) -> str:
    """Append one `-target <t>` pair per target and join into a command line."""
    final = list(cmd_parts)
    for target in targets:
        final.extend(['-target', target])
    return ' '.join(final)


class TerraformTasks:
    """Task set for one provisioner configuration."""

    def __init__(
        self,
        tf_dir: Path | str = '.',
        base_dir: Path | str | None = None,
        namespace_prefix: Optional[str] = None,
        backend_config: Optional[Mapping[str, str]] = None,
        tf_vars_from_env: Optional[Mapping[str, str]] = None,
        tf_extra_vars: Optional[Mapping[str, str]] = None,
        allow_empty_vars: Iterable[str] = (),
        sensitive_vars: Iterable[str] = DEFAULT_SENSITIVE_VARS,
        consul_url: Optional[str] = None,
        consul_env_vars_prefix: Optional[str] = None,
        before_hook: Optional[Hook] = None,
        after_hook: Optional[Hook] = None,
        formatter: Any = None,
        disable_formatter: bool = False,
        formatter_progress: Optional[str] = None,
        tool: str = DEFAULT_TOOL,
        retry_policy: Optional[RetryPolicy] = None,
        runner: Optional[TerraformRunner] = None,
        version_checker: Callable[..., VersionToken] = check_tf_version,
        consul_writer: Callable[..., Any] = update_consul_stack_env_vars,
    ) -> None:
        self.base_dir = Path(base_dir).resolve() if base_dir is not None else Path.cwd().resolve()
        self.tf_dir = (self.base_dir / tf_dir).resolve()
        self.ns_prefix = namespace_prefix or None
        self.backend_config = dict(backend_config or {})
        self.tf_vars_from_env = dict(tf_vars_from_env or {})
        self.tf_extra_vars = dict(tf_extra_vars or {})
        self.allow_empty_vars = list(allow_empty_vars)
        self.sensitive_vars = list(sensitive_vars)
        self.consul_url = consul_url
        self.consul_env_vars_prefix = consul_env_vars_prefix
        self.before_hook = _check_hook('before_hook', before_hook)
        self.after_hook = _check_hook('after_hook', after_hook)
        self.formatter = None if disable_formatter else resolve_formatter(formatter)
        self.formatter_progress = validate_progress(formatter_progress)
        self.tool = tool
        self.runner = runner or TerraformRunner(self.tf_dir, policy=retry_policy)
        self.version_checker = version_checker
        self.consul_writer = consul_writer

        if self.consul_url is None and self.consul_env_vars_prefix is not None:
            raise ConfigurationError('Cannot set env vars in Consul when consul_url option is None.')

        # lowest possible version until init has run
        self.tf_version = VersionToken(0, 0, 0)

    @property
    def nsprefix(self) -> str:
        return namespace_for(self.ns_prefix)

    @property
    def var_file_path(self) -> Path:
        return self.base_dir / var_file_name(self.ns_prefix)

    def task_name(self, operation: str) -> str:
        return f"{self.nsprefix}:{operation}"

    def install(self, registry: Optional[TaskRegistry] = None) -> TaskRegistry:
        """
        Register every task of this stack and return the registry.

        refresh, output and output_json carry no description and are only
        listed by `tfwrap -T -A`.
        """
        registry = registry if registry is not None else TaskRegistry()
        ns = self.task_name
        specs = [
            ('init', self._init, [], False,
             f'Run {self.tool} init with appropriate arguments'),
            ('plan', self._plan, [ns('init'), ns('write_tf_vars')], True,
             'Output the set plan to be executed by apply; specify optional CSV targets'),
            ('apply', self._apply, [ns('init'), ns('write_tf_vars'), ns('plan')], True,
             'Apply a plan that will provision your resources; specify optional CSV targets'),
            ('refresh', self._refresh, [ns('init'), ns('write_tf_vars')], False,
             ''),
            ('destroy', self._destroy, [ns('init'), ns('write_tf_vars')], True,
             'Destroy any live resources that are tracked by your state files; specify optional CSV targets'),
            ('write_tf_vars', self._write_tf_vars, [], False,
             f'Write {self.var_file_path}'),
            ('output', self._output, [ns('init'), ns('refresh')], False,
             ''),
            ('output_json', self._output_json, [ns('init'), ns('refresh')], False,
             ''),
        ]
        for operation, body, prerequisites, accepts_targets, description in specs:
            registry.add(Task(
                name=ns(operation),
                action=self._with_hooks(body),
                prerequisites=prerequisites,
                accepts_targets=accepts_targets,
                description=description,
            ))
        logger.debug(f"Installed {len(specs)} task(s) under {self.nsprefix}:")
        return registry

    def _with_hooks(self, body: Callable[[TaskArgs], None]) -> Callable[[str, TaskArgs], None]:
        def action(task_name: str, args: TaskArgs) -> None:
            if self.before_hook is not None:
                if self.before_hook(task_name, str(self.tf_dir)) is False:
                    print(f"[INFO] before_hook skipped {task_name}", file=sys.stderr, flush=True)
                    return
            body(args)
            if self.after_hook is not None:
                self.after_hook(task_name, str(self.tf_dir))
        return action

    def _init(self, args: TaskArgs) -> None:
        check_env_vars(self.tf_vars_from_env.values(), self.allow_empty_vars)
        self.tf_version = self.version_checker(self.tf_dir, tool=self.tool)
        cmd = [self.tool, 'init', '-input=false']
        for key, value in self.backend_config.items():
            cmd.append(f"-backend-config='{key}={value}'")
        self.runner.run(' '.join(cmd))

    def _plan(self, args: TaskArgs) -> None:
        cmd = cmd_with_targets(
            [self.tool, 'plan', f'-var-file {self.var_file_path}'],
            args.targets
        )
        progress = self.formatter_progress if self.formatter is not None else 'stream'
        out_err = self.runner.run(cmd, progress=progress)
        if self.formatter is not None:
            self._format_plan(out_err)

    def _format_plan(self, output: str) -> None:
        try:
            self.formatter.format_output(output, sys.stdout)
        except Exception as e:
            # raw text is still shown
            print(
                f"[WARN] Exception calling output formatter to reformat output: {type(e).__name__}: {e}",
                file=sys.stderr,
                flush=True
            )
            if self.formatter_progress != 'stream':
                print(output, flush=True)

    def _apply(self, args: TaskArgs) -> None:
        dialect = dialect_for(self.tf_version)
        cmd = cmd_with_targets(
            [self.tool, 'apply', *dialect.apply_flags, f'-var-file {self.var_file_path}'],
            args.targets
        )
        self.runner.run(cmd)
        if self.consul_env_vars_prefix is not None:
            self.consul_writer(
                self.consul_url,
                self.consul_env_vars_prefix,
                self.tf_vars_from_env,
                sensitive=self.sensitive_vars
            )

    def _refresh(self, args: TaskArgs) -> None:
        self.runner.run(f'{self.tool} refresh -var-file {self.var_file_path}')

    def _destroy(self, args: TaskArgs) -> None:
        dialect = dialect_for(self.tf_version)
        cmd = cmd_with_targets(
            [self.tool, 'destroy', *dialect.destroy_flags, f'-var-file {self.var_file_path}'],
            args.targets
        )
        self.runner.run(cmd)

    def _output(self, args: TaskArgs) -> None:
        self.runner.run(f'{self.tool} output')

    def _output_json(self, args: TaskArgs) -> None:
        self.runner.run(f'{self.tool} output -json')

    def _write_tf_vars(self, args: TaskArgs) -> None:
        tf_vars = build_tf_vars(self.tf_vars_from_env, self.tf_extra_vars)
        write_tf_vars(tf_vars, self.var_file_path, self.sensitive_vars)


def install_tasks(tf_dir: Path | str = '.', registry: Optional[TaskRegistry] = None, **options: Any) -> TaskRegistry:
    """Build a TerraformTasks and install it; see TerraformTasks for options."""
    return TerraformTasks(tf_dir, **options).install(registry)
