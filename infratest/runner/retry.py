# Where: infratest/runner/retry.py
# What: Transient-error classification and bounded retry with backoff.
# Why: Keep retry policy (which errors, how often) apart from the commands it wraps.
from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import yaml

from infratest.runner.errors import ProvisioningError
from infratest.runner.models import (
    OUTCOME_PERMANENT,
    OUTCOME_RETRYABLE,
    OUTCOME_SUCCESS,
    AttemptRecord,
)
from infratest.runner.utils import Deadline, wait_step

logger = logging.getLogger(__name__)

RETRYABLE = OUTCOME_RETRYABLE
PERMANENT = OUTCOME_PERMANENT

DEFAULT_PATTERNS_FILE = Path(__file__).resolve().parent / "retryable_errors.yaml"

T = TypeVar("T")


@dataclass(frozen=True)
class Failure:
    """Opaque failure description reported by the provisioning tool."""

    message: str
    code: int | None = None


@dataclass(frozen=True)
class RetryablePattern:
    regex: re.Pattern
    description: str = ""
    codes: frozenset[int] | None = None

    def matches(self, failure: Failure) -> bool:
        if self.codes is not None:
            code = failure.code if isinstance(failure.code, int) else None
            if code not in self.codes:
                return False
        return self.regex.search(failure.message) is not None


class RetryClassifier:
    """Maps a failure to RETRYABLE or PERMANENT. First matching pattern wins."""

    def __init__(self, patterns: Iterable[RetryablePattern] = ()) -> None:
        self._patterns = tuple(patterns)

    @property
    def patterns(self) -> tuple[RetryablePattern, ...]:
        return self._patterns

    def match(self, failure: Failure) -> RetryablePattern | None:
        message = failure.message
        if not isinstance(message, str):
            message = str(message or "")
        normalized = Failure(message=message, code=failure.code)
        for pattern in self._patterns:
            if pattern.matches(normalized):
                return pattern
        return None

    def classify(self, failure: Failure) -> str:
        return RETRYABLE if self.match(failure) is not None else PERMANENT


def load_retryable_patterns(path: Path | str | None = None) -> list[RetryablePattern]:
    path = Path(path) if path else DEFAULT_PATTERNS_FILE
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    entries = data.get("patterns", [])
    if not isinstance(entries, list):
        raise ValueError(f"{path}: 'patterns' must be a list")

    patterns: list[RetryablePattern] = []
    for idx, entry in enumerate(entries):
        if isinstance(entry, str):
            entry = {"pattern": entry}
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: pattern #{idx} must be a string or a map")
        raw = str(entry.get("pattern", "")).strip()
        if not raw:
            raise ValueError(f"{path}: pattern #{idx} requires non-empty 'pattern'")
        try:
            regex = re.compile(raw)
        except re.error as exc:
            raise ValueError(f"{path}: pattern #{idx} is not a valid regex: {exc}") from exc
        codes = entry.get("codes")
        patterns.append(
            RetryablePattern(
                regex=regex,
                description=str(entry.get("description", "")),
                codes=frozenset(int(code) for code in codes) if codes else None,
            )
        )
    return patterns


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    base: float = 5.0
    factor: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base < 0 or self.factor < 1:
            raise ValueError("backoff base must be >= 0 and factor >= 1")

    def delay(self, attempt: int) -> float:
        """Wait after the given (1-indexed) failed attempt."""
        return min(self.base * self.factor ** (attempt - 1), self.max_delay)


class AttemptFailed(Exception):
    """Raised by a retried unit of work to hand its failure to the classifier."""

    def __init__(self, failure: Failure):
        self.failure = failure
        super().__init__(failure.message)


def retry_call(
    fn: Callable[[], T],
    *,
    classifier: RetryClassifier,
    policy: BackoffPolicy,
    what: str,
    error_cls: type[ProvisioningError] = ProvisioningError,
    deadline: Deadline | None = None,
    cancel: threading.Event | None = None,
    log: Callable[[str], None] | None = None,
) -> tuple[T, list[AttemptRecord]]:
    records: list[AttemptRecord] = []
    for attempt in range(1, policy.max_attempts + 1):
        started = time.monotonic()
        try:
            result = fn()
        except AttemptFailed as exc:
            elapsed = time.monotonic() - started
            outcome = classifier.classify(exc.failure)
            records.append(AttemptRecord(attempt, elapsed, outcome, exc.failure.message))
            if outcome == PERMANENT:
                raise error_cls(
                    f"{what} failed: {exc.failure.message}",
                    classification=PERMANENT,
                    attempts=records,
                ) from exc
            if attempt >= policy.max_attempts:
                raise error_cls(
                    f"{what} failed after {attempt} attempts: {exc.failure.message}",
                    classification=RETRYABLE,
                    attempts=records,
                ) from exc
            delay = policy.delay(attempt)
            message = (
                f"{what} attempt {attempt}/{policy.max_attempts} hit a retryable error; "
                f"retrying in {delay:.1f}s"
            )
            logger.warning(message)
            if log:
                log(message)
            wait_step(delay, deadline=deadline, cancel=cancel, what=what)
            continue
        records.append(AttemptRecord(attempt, time.monotonic() - started, OUTCOME_SUCCESS))
        return result, records
    raise AssertionError("unreachable")  # pragma: no cover
