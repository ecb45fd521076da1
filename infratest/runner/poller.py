# Where: infratest/runner/poller.py
# What: Readiness polling for resources created by an apply.
# Why: Freshly created cloud resources need time before they serve traffic.
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from infratest.runner.errors import ReadinessTimeoutError
from infratest.runner.utils import Deadline, wait_step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollConfig:
    """How to poll one resource.

    Attempts are 1-indexed and the probe runs before any sleep, so the
    worst case waits between max_attempts probes only. With backoff == 1
    that is (max_attempts - 1) * interval seconds plus probe latency;
    otherwise each gap is interval * backoff**(n - 1), capped at max_interval.
    """

    probe: Callable[[str], bool]
    max_attempts: int = 10
    interval: float = 30.0
    backoff: float = 1.0
    max_interval: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0 or self.backoff < 1:
            raise ValueError("interval must be >= 0 and backoff >= 1")

    def delay(self, attempt: int) -> float:
        delay = self.interval * self.backoff ** (attempt - 1)
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    def worst_case_wait(self) -> float:
        return sum(self.delay(attempt) for attempt in range(1, self.max_attempts))


def wait_until_ready(
    resource_ref: str,
    config: PollConfig,
    *,
    deadline: Deadline | None = None,
    cancel: threading.Event | None = None,
    log: Callable[[str], None] | None = None,
) -> int:
    """Probe until ready and return the attempt that succeeded."""
    started = time.monotonic()
    last_error: str | None = None
    for attempt in range(1, config.max_attempts + 1):
        try:
            if config.probe(resource_ref):
                logger.info("%s ready after %d attempt(s)", resource_ref, attempt)
                return attempt
            last_error = None
        except Exception as exc:  # any probe error means "not ready yet"
            last_error = f"{type(exc).__name__}: {exc}"
            logger.debug("Probe for %s raised: %s", resource_ref, last_error)

        if attempt == config.max_attempts:
            break
        delay = config.delay(attempt)
        message = (
            f"Waiting for {resource_ref} ({attempt}/{config.max_attempts}), "
            f"next check in {delay:.1f}s"
        )
        if log:
            log(message)
        wait_step(delay, deadline=deadline, cancel=cancel, what=f"readiness of {resource_ref}")

    raise ReadinessTimeoutError(
        resource_ref,
        attempts=config.max_attempts,
        elapsed=time.monotonic() - started,
        last_error=last_error,
    )
