#!/usr/bin/env python3
"""
Retrying provisioner runner.

Cloud APIs behind the provisioner throttle and briefly reject freshly
propagated credentials. Those failures are recognised by text in the
combined command output and retried with exponential backoff; every other
non-zero exit is fatal.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config_constants import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY
from .errors import CommandFailedError, ConfigurationError
from .helpers import run_cmd_stream_output, validate_progress


logger = logging.getLogger(__name__)

StreamRunner = Callable[..., tuple[str, int]]

# Checked in order; the first match names the failure.
FAILURE_CLASSIFIERS: list[tuple[str, str]] = [
    ('hrottling', 'Terraform hit AWS API rate limiting'),
    ('status code: 403', 'Terraform command got 403 error - access denied or credentials not propagated'),
    ('status code: 401', 'Terraform command got 401 error - access denied or credentials not propagated'),
]

TRANSIENT_EXCEPTIONS = (OSError, subprocess.SubprocessError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1 (got {self.max_attempts})")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must not be negative")
        if self.max_delay < self.base_delay:
            raise ConfigurationError(
                f"max_delay ({self.max_delay}) must not be smaller than base_delay ({self.base_delay})"
            )


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Seconds to sleep after failed attempt number `attempt` (1-based)."""
    return min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)


def classify_failure(output: str) -> Optional[str]:
    """Return the retry label for a failed command's output, or None if fatal."""
    for marker, label in FAILURE_CLASSIFIERS:
        if marker in output:
            return label
    return None


class TerraformRunner:
    """Run provisioner commands in a directory, retrying transient failures."""

    def __init__(
        self,
        tf_dir: Path | str,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        stream_runner: StreamRunner = run_cmd_stream_output,
    ) -> None:
        self.tf_dir = tf_dir
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.stream_runner = stream_runner

    def run(self, cmd: str, progress: Optional[str] = "stream") -> str:
        """
        Run a command with retries and return its combined output.

        Raises:
            CommandFailedError: on a non-retryable failure or once the retry
                budget is exhausted
        """
        progress = validate_progress(progress)
        print(f"[INFO] Running command: '{cmd}' (in {self.tf_dir})", file=sys.stderr, flush=True)

        total_delay = 0.0
        status: Optional[int] = None
        label = ''
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                out_err, status = self.stream_runner(cmd, self.tf_dir, progress=progress)
                last_exc = None
            except TRANSIENT_EXCEPTIONS as e:
                status = None
                last_exc = e
                label = f"{type(e).__name__}: {e}"
                logger.debug(f"Attempt {attempt} raised", exc_info=True)
            else:
                if status == 0:
                    print(f"[SUCCESS] Command '{cmd}' finished and exited 0", file=sys.stderr, flush=True)
                    return out_err

                label = classify_failure(out_err)
                if label is None:
                    raise CommandFailedError(
                        f"Errors have occurred executing: '{cmd}' (exited {status})",
                        command=cmd,
                        exit_code=status,
                        attempts=attempt,
                    )

            if attempt == self.policy.max_attempts:
                break

            print(
                f"[WARN] Command failed with {label}; retry attempt {attempt}; "
                f"{total_delay} seconds have passed.",
                file=sys.stderr,
                flush=True
            )
            delay = backoff_delay(attempt, self.policy)
            total_delay += delay
            self.sleep(delay)

        attempts = self.policy.max_attempts
        if status is None:
            message = f"Errors have occurred executing: '{cmd}' (raised {label}) after {attempts} attempt(s)"
        else:
            message = f"Errors have occurred executing: '{cmd}' (exited {status}): {label} after {attempts} attempt(s)"
        raise CommandFailedError(
            message,
            command=cmd,
            exit_code=status,
            reason=label,
            attempts=attempts,
        ) from last_exc
