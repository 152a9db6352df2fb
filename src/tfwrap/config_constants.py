#!/usr/bin/env python3
"""
Configuration constants for tfwrap.

CRITICAL: This is the SINGLE SOURCE OF TRUTH for config filenames, version
thresholds and defaults. Modules MUST import from here instead of
hardcoding strings.

Naming Convention:
- tfwrap.toml.j2 = Jinja2 template (committed)
- tfwrap.toml    = Rendered runtime config (gitignored)
"""

# ============================================================================
# Configuration Filenames (CANONICAL - DO NOT HARDCODE)
# ============================================================================

CONFIG_TEMPLATE = 'tfwrap.toml.j2'
CONFIG_RENDERED = 'tfwrap.toml'

# Variable file handed to the provisioner via -var-file
VAR_FILE_NAME = 'build.tfvars.json'

# ============================================================================
# Provisioner Defaults
# ============================================================================

DEFAULT_TOOL = 'terraform'
DEFAULT_NAMESPACE = 'tf'

# (major, minor, patch)
MIN_TF_VERSION = (0, 9, 0)
AUTO_APPROVE_VERSION = (0, 10, 0)
DESTROY_FORCE_REMOVED_VERSION = (0, 15, 0)

DEFAULT_SENSITIVE_VARS = ('aws_access_key', 'aws_secret_key')

# ============================================================================
# Command Execution
# ============================================================================

PROGRESS_MODES = ('stream', 'dots', 'lines', 'none')

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0

CONSUL_TIMEOUT_SECONDS = 10


def var_file_name(namespace_prefix: str | None) -> str:
    """
    Get the variable file name for a namespace prefix.

    Examples:
        >>> var_file_name(None)
        'build.tfvars.json'
        >>> var_file_name('network')
        'network_build.tfvars.json'
    """
    if not namespace_prefix:
        return VAR_FILE_NAME
    return f'{namespace_prefix}_{VAR_FILE_NAME}'


def namespace_for(namespace_prefix: str | None) -> str:
    """
    Get the task namespace for a namespace prefix.

    Examples:
        >>> namespace_for(None)
        'tf'
        >>> namespace_for('network')
        'network_tf'
    """
    if not namespace_prefix:
        return DEFAULT_NAMESPACE
    return f'{namespace_prefix}_{DEFAULT_NAMESPACE}'
