#!/usr/bin/env python3
"""
Consul KV propagation of stack environment variables.

After a successful apply the environment variables that fed the variable
file are written, unredacted, as one JSON document under a configured key.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Iterable, Mapping, Optional

import requests

from .config_constants import CONSUL_TIMEOUT_SECONDS, DEFAULT_SENSITIVE_VARS
from .errors import StatePropagationError


logger = logging.getLogger(__name__)


class ConsulKV:
    """Minimal client for the Consul HTTP KV API."""

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: float = CONSUL_TIMEOUT_SECONDS,
        token: Optional[str] = None,
    ) -> None:
        self.url = url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token = token if token is not None else os.environ.get('CONSUL_HTTP_TOKEN')

    def put(self, path: str, value: str) -> None:
        url = f"{self.url}/v1/kv/{path.lstrip('/')}"
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['X-Consul-Token'] = self.token

        logger.debug(f"PUT {url} ({len(value)} bytes)")
        try:
            response = self.session.put(url, data=value.encode('utf-8'), headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise StatePropagationError(f"Failed to write Consul key '{path}' at {self.url}: {e}") from e


def update_consul_stack_env_vars(
    consul_url: str,
    prefix: str,
    vars_from_env: Mapping[str, str],
    sensitive: Iterable[str] = DEFAULT_SENSITIVE_VARS,
    environ: Optional[Mapping[str, str]] = None,
    client: Optional[ConsulKV] = None,
) -> dict:
    """
    Write the env vars referenced by vars_from_env to Consul at prefix.

    Values are keyed by environment variable name, not provisioner
    variable name. The printed summary redacts env vars that feed a
    sensitive provisioner variable; the stored document does not.
    """
    env = os.environ if environ is None else environ
    data = {env_name: env.get(env_name) for env_name in vars_from_env.values()}

    hidden = {vars_from_env[name] for name in sensitive if name in vars_from_env}
    summary = {k: '(redacted)' if k in hidden else v for k, v in data.items()}

    client = client or ConsulKV(consul_url)

    print(f"Writing stack information to {consul_url} at: {prefix}", flush=True)
    print(json.dumps(summary, indent=2), flush=True)
    client.put(prefix, json.dumps(data, separators=(',', ':')))
    return data
