# Where: infratest/runner/ui.py
# What: Plain reporter for scenario output.
# Why: Keep output deterministic and line-oriented for CI logs.
from __future__ import annotations

import os
import sys
import time

from infratest.runner.events import (
    EVENT_CLEANUP_FAILED,
    EVENT_MESSAGE,
    EVENT_PHASE_END,
    EVENT_PHASE_SKIP,
    EVENT_PHASE_START,
    EVENT_SCENARIO_END,
    EVENT_SCENARIO_START,
    EVENT_SUITE_END,
    EVENT_SUITE_START,
    PHASES,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    Event,
)
from infratest.runner.logging import safe_print

RESET = "\033[0m"
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
ALARM = "\033[1;31m"

SUITE_LABEL = "suite"

# status -> (word, color, icon)
_STATUS_STYLE = {
    STATUS_PASSED: ("ok", GREEN, "✅"),
    STATUS_FAILED: ("failed", RED, "❌"),
    STATUS_SKIPPED: ("skipped", YELLOW, "⏭️"),
}


def _tty_feature(flag: bool | None, opt_out_var: str) -> bool:
    """Explicit flag wins; otherwise enabled on a real terminal unless opted out."""
    if flag is not None:
        return bool(flag)
    if not sys.stdout.isatty():
        return False
    if os.environ.get("TERM", "").lower() == "dumb":
        return False
    return not os.environ.get(opt_out_var)


def format_duration(seconds: float) -> str:
    if seconds >= 60:
        minutes, rest = divmod(int(seconds), 60)
        return f"{minutes}m{rest:02d}s"
    return f"{seconds:.1f}s"


class Reporter:
    """Receives lifecycle events. The base implementation ignores them."""

    def start(self) -> None:
        return None

    def emit(self, event: Event) -> None:
        return None

    def close(self) -> None:
        return None


class PlainReporter(Reporter):
    def __init__(
        self,
        *,
        verbose: bool,
        label_width: int = 0,
        color: bool | None = None,
        emoji: bool | None = None,
    ) -> None:
        self.verbose = verbose
        self.label_width = max(label_width, 0)
        self.use_color = _tty_feature(color, "NO_COLOR")
        self.use_emoji = _tty_feature(emoji, "NO_EMOJI")
        self._phase_width = max(len(phase) for phase in PHASES)
        self._scenario_started: dict[str, float] = {}
        self._handlers = {
            EVENT_MESSAGE: self._on_message,
            EVENT_SUITE_START: self._on_suite_start,
            EVENT_SUITE_END: self._on_suite_end,
            EVENT_SCENARIO_START: self._on_scenario_start,
            EVENT_SCENARIO_END: self._on_scenario_end,
            EVENT_PHASE_START: self._on_phase_start,
            EVENT_PHASE_END: self._on_phase_end,
            EVENT_PHASE_SKIP: self._on_phase_skip,
            EVENT_CLEANUP_FAILED: self._on_cleanup_failed,
        }

    def emit(self, event: Event) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is not None:
            handler(event)

    # formatting helpers

    def _tag(self, label: str) -> str:
        width = self.label_width
        if label == SUITE_LABEL:
            width = max(width, len(SUITE_LABEL))
        return f"[{label.ljust(width)}]"

    def _icon(self, icon: str) -> str:
        return f"{icon} " if self.use_emoji and icon else ""

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{RESET}" if self.use_color else text

    def _phase_label(self, phase: str) -> str:
        return phase.ljust(self._phase_width)

    def _line(self, label: str, text: str, icon: str = "") -> None:
        safe_print(f"{self._tag(label)} {self._icon(icon)}{text}")

    # handlers

    def _on_message(self, event: Event) -> None:
        if event.message:
            self._line(SUITE_LABEL, event.message)

    def _on_suite_start(self, event: Event) -> None:
        self._line(SUITE_LABEL, "started", "🧪")

    def _on_scenario_start(self, event: Event) -> None:
        if not event.scenario:
            return
        self._scenario_started[event.scenario] = time.monotonic()
        self._line(event.scenario, "started", "🚀")

    def _on_scenario_end(self, event: Event) -> None:
        if not event.scenario:
            return
        passed = event.data.get("status") == STATUS_PASSED
        details = list(event.data.get("failed_stages") or [])
        started = self._scenario_started.pop(event.scenario, None)
        if started is not None:
            details.append(format_duration(time.monotonic() - started))
        verdict = self._paint("PASS", GREEN) if passed else self._paint("FAIL", RED)
        suffix = f" ({', '.join(details)})" if details else ""
        self._line(event.scenario, f"done ... {verdict}{suffix}", "🏁")

    def _on_phase_start(self, event: Event) -> None:
        if self.verbose and event.scenario and event.phase:
            self._line(event.scenario, f"{self._phase_label(event.phase)} ... start", "⏳")

    def _on_phase_end(self, event: Event) -> None:
        if not (event.scenario and event.phase):
            return
        status = event.data.get("status", "")
        word, color, icon = _STATUS_STYLE.get(status, (status, "", ""))
        text = f"{self._phase_label(event.phase)} ... {self._paint(word, color) if color else word}"
        duration = event.data.get("duration")
        if duration is not None:
            text = f"{text} ({format_duration(duration)})"
        if status == STATUS_FAILED and event.message:
            text = f"{text}: {event.message}"
        self._line(event.scenario, text, icon)

    def _on_phase_skip(self, event: Event) -> None:
        if event.scenario and event.phase:
            self._line(event.scenario, f"{self._phase_label(event.phase)} ... skipped", "⏭️")

    def _on_cleanup_failed(self, event: Event) -> None:
        if not event.scenario:
            return
        workspace = event.data.get("workspace") or "unknown"
        text = (
            f"{self._tag(event.scenario)} {self._icon('🚨')}CLEANUP FAILED, resources may "
            f"still exist (workspace {workspace}): {event.message}"
        )
        safe_print(self._paint(text, ALARM))

    def _on_suite_end(self, event: Event) -> None:
        leaked = event.data.get("cleanup_failed") or []
        if leaked:
            text = (
                f"{self._tag(SUITE_LABEL)} {self._icon('🚨')}[LEAK] Destroy failed for: "
                f"{', '.join(leaked)}. Clean up these resources manually."
            )
            safe_print(self._paint(text, ALARM))
        if event.data.get("status") == STATUS_PASSED:
            self._line(SUITE_LABEL, "[PASSED] ALL SCENARIOS PASSED!", "✅")
            return
        failed = ", ".join(str(name) for name in event.data.get("failed") or []) or "interrupted"
        self._line(SUITE_LABEL, f"[FAILED] The following scenarios failed: {failed}", "❌")
