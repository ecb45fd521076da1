import re
import secrets
import string
import threading
import time
from pathlib import Path

from infratest.runner.errors import ScenarioCancelledError, ScenarioTimeoutError

PACKAGE_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT = PACKAGE_ROOT.parent

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_UNIQUE_ALPHABET = string.ascii_lowercase + string.digits


def unique_id(length: int = 6) -> str:
    """Short random id for resource names, safe for most cloud naming rules."""
    return "".join(secrets.choice(_UNIQUE_ALPHABET) for _ in range(length))


def slugify(value: str) -> str:
    cleaned = _SLUG_RE.sub("-", value.strip().lower()).strip("-")
    if not cleaned:
        raise ValueError(f"Cannot build a slug from {value!r}")
    return cleaned


def unique_slugs(names) -> dict[str, str]:
    """Map each name to its slug. Two names with one slug would share a log file."""
    owners: dict[str, str] = {}
    slugs: dict[str, str] = {}
    for name in names:
        slug = slugify(name)
        if slug in owners:
            raise ValueError(
                f"scenario names '{owners[slug]}' and '{name}' both map to '{slug}'"
            )
        owners[slug] = name
        slugs[name] = slug
    return slugs


class Deadline:
    """Wall-clock budget for one scenario, measured on the monotonic clock."""

    def __init__(self, seconds: float | None) -> None:
        self.seconds = seconds
        self._expires = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str) -> None:
        if self.expired():
            raise ScenarioTimeoutError(
                f"Scenario deadline ({self.seconds}s) exceeded during {what}"
            )

    def clamp(self, seconds: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)


def sleep_interruptibly(seconds: float, *, cancel: threading.Event | None = None) -> None:
    if seconds <= 0:
        if cancel is not None and cancel.is_set():
            raise ScenarioCancelledError("Suite cancelled")
        return
    if cancel is None:
        time.sleep(seconds)
        return
    if cancel.wait(seconds):
        raise ScenarioCancelledError("Suite cancelled")


def wait_step(
    seconds: float,
    *,
    deadline: Deadline | None,
    cancel: threading.Event | None,
    what: str,
) -> None:
    """Sleep between attempts without overrunning the scenario deadline."""
    if deadline is not None:
        deadline.check(what)
        seconds = deadline.clamp(seconds)
    sleep_interruptibly(seconds, cancel=cancel)
    if deadline is not None:
        deadline.check(what)
