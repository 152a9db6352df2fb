"""
tfwrap: Terraform task runner.

__version__ is the distribution version with the UTC build date as local
segment, e.g. "0.1.0+20261019". Release pipelines pin it with
TFWRAP_BUILD_VERSION.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from importlib import metadata
from typing import Mapping, Optional


DIST_NAME = "tfwrap"


def build_version(environ: Optional[Mapping[str, str]] = None, now: Optional[datetime] = None) -> str:
    env = os.environ if environ is None else environ
    pinned = env.get("TFWRAP_BUILD_VERSION")
    if pinned:
        return pinned

    try:
        base = metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        # running from a source checkout
        base = "0.0.0"

    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    return f"{base}+{stamp}"


__version__ = build_version()
