#!/usr/bin/env python3
"""
tfwrap configuration loading.

Pipeline:
1. Render tfwrap.toml.j2 with Jinja2 (process environment available as `env`)
2. Parse the rendered TOML
3. Write the rendered runtime config (tfwrap.toml) for inspection
4. Build one TerraformTasks per [[stack]] entry

When no template exists, tfwrap.toml is read directly.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Any, Callable, Optional

from .config_constants import CONFIG_RENDERED, CONFIG_TEMPLATE, DEFAULT_SENSITIVE_VARS, DEFAULT_TOOL
from .errors import ConfigurationError
from .formatter import load_formatter
from .runner import RetryPolicy
from .terraform_tasks import TerraformTasks


logger = logging.getLogger(__name__)

STACK_KEYS = {
    'tf_dir',
    'namespace_prefix',
    'backend_config',
    'tf_vars_from_env',
    'tf_extra_vars',
    'allow_empty_vars',
    'sensitive_vars',
    'consul_url',
    'consul_env_vars_prefix',
    'before_hook',
    'after_hook',
    'plan_formatter',
    'formatter_progress',
    'disable_formatter',
}

HOOK_FUNCTIONS = {
    'before': 'before_task_hook',
    'after': 'after_task_hook',
}


def build_template_context() -> dict:
    """
    Build Jinja2 template context with the process environment.
    """
    return {"env": dict(os.environ)}


def render_jinja2(template_path: Path, context: dict) -> str:
    """
    Render a Jinja2 template; undefined names are errors.
    """
    from jinja2 import Environment, StrictUndefined, TemplateError

    logger.debug(f"Rendering Jinja2 template: {template_path}")

    if not template_path.exists():
        raise ConfigurationError(f"Template file not found: {template_path}")

    template_content = template_path.read_text()

    try:
        template = Environment(undefined=StrictUndefined, keep_trailing_newline=True).from_string(template_content)
        return template.render(**context)
    except TemplateError as e:
        raise ConfigurationError(f"Failed to render template {template_path}: {e}") from e


def parse_toml_string(toml_text: str, source: str) -> dict:
    """
    Parse TOML from a string with fail-fast error context.
    """
    try:
        return tomllib.loads(toml_text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            f"Failed to parse TOML from {source}: {e}"
        ) from e


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """
    Write rendered TOML to disk using tomli_w.
    """
    import tomli_w

    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)


def load_config(base_dir: Path, config_file: Optional[Path] = None) -> dict:
    """
    Load the tfwrap configuration for base_dir.

    An explicit config_file ending in .j2 is rendered like the default
    template; anything else is parsed as plain TOML.
    """
    base_dir = Path(base_dir)

    if config_file is not None:
        path = config_file if config_file.is_absolute() else base_dir / config_file
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        if path.suffix == '.j2':
            return _render_config(path, path.with_suffix(''))
        return parse_toml_string(path.read_text(), str(path))

    template_path = base_dir / CONFIG_TEMPLATE
    if template_path.exists():
        return _render_config(template_path, base_dir / CONFIG_RENDERED)

    rendered_path = base_dir / CONFIG_RENDERED
    if rendered_path.exists():
        return parse_toml_string(rendered_path.read_text(), str(rendered_path))

    raise ConfigurationError(
        f"No configuration found in {base_dir} (expected {CONFIG_TEMPLATE} or {CONFIG_RENDERED})"
    )


def _render_config(template_path: Path, output_path: Path) -> dict:
    rendered = render_jinja2(template_path, build_template_context())
    config = parse_toml_string(rendered, str(template_path))
    write_rendered_toml(output_path, config)
    print(f"[INFO] Rendered {template_path.name} -> {output_path}", file=sys.stderr, flush=True)
    return config


def load_hook_module(hook_path: str, hook_dir: Path, kind: str) -> Callable:
    """
    Load a Python hook file and return its hook function.

    Looks for before_task_hook / after_task_hook (by kind), then run.
    """
    if kind not in HOOK_FUNCTIONS:
        raise ValueError(f"Unknown hook kind: {kind}")

    hook_file = Path(hook_path)
    if not hook_file.is_absolute():
        hook_file = hook_dir / hook_file

    if not hook_file.exists():
        raise ConfigurationError(f"Hook file not found: {hook_file}")

    module_name = f"tfwrap_hook_{kind}_{hook_file.stem}"
    spec = importlib.util.spec_from_file_location(module_name, hook_file)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load hook module: {hook_file}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    for func_name in (HOOK_FUNCTIONS[kind], 'run'):
        func = getattr(module, func_name, None)
        if func is not None:
            return func

    raise ConfigurationError(
        f"Hook module {hook_file} does not define {HOOK_FUNCTIONS[kind]} or run function"
    )


def build_retry_policy(config: dict) -> RetryPolicy:
    retry = config.get('tfwrap', {}).get('retry', {})
    try:
        return RetryPolicy(**retry)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [tfwrap.retry] section: {e}") from e


def build_stacks(config: dict, base_dir: Path) -> list[TerraformTasks]:
    """
    Build one TerraformTasks per [[stack]] entry (one default stack if none).
    """
    base_dir = Path(base_dir)
    settings = config.get('tfwrap', {})
    tool = settings.get('tool', DEFAULT_TOOL)
    policy = build_retry_policy(config)

    stack_defs = config.get('stack') or [{}]
    if not isinstance(stack_defs, list):
        raise ConfigurationError("'stack' must be an array of tables ([[stack]])")

    stacks = []
    for idx, stack in enumerate(stack_defs):
        unknown = set(stack) - STACK_KEYS
        if unknown:
            raise ConfigurationError(f"Unknown key(s) in stack #{idx + 1}: {', '.join(sorted(unknown))}")

        hooks: dict[str, Any] = {}
        for kind in HOOK_FUNCTIONS:
            hook_path = stack.get(f'{kind}_hook')
            hooks[f'{kind}_hook'] = load_hook_module(hook_path, base_dir, kind) if hook_path else None

        formatter_ref = stack.get('plan_formatter')
        disable_formatter = bool(stack.get('disable_formatter', False))
        formatter = load_formatter(formatter_ref) if formatter_ref and not disable_formatter else None

        stacks.append(TerraformTasks(
            tf_dir=stack.get('tf_dir', '.'),
            base_dir=base_dir,
            namespace_prefix=stack.get('namespace_prefix'),
            backend_config=stack.get('backend_config', {}),
            tf_vars_from_env=stack.get('tf_vars_from_env', {}),
            tf_extra_vars=stack.get('tf_extra_vars', {}),
            allow_empty_vars=stack.get('allow_empty_vars', []),
            sensitive_vars=stack.get('sensitive_vars', DEFAULT_SENSITIVE_VARS),
            consul_url=stack.get('consul_url'),
            consul_env_vars_prefix=stack.get('consul_env_vars_prefix'),
            formatter=formatter,
            disable_formatter=disable_formatter,
            formatter_progress=stack.get('formatter_progress'),
            tool=tool,
            retry_policy=policy,
            **hooks,
        ))
        logger.debug(f"Stack #{idx + 1}: tf_dir={stacks[-1].tf_dir} namespace={stacks[-1].nsprefix}")

    return stacks
