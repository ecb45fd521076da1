# Where: infratest/runner/tests/test_ui.py
# What: Unit tests for the plain console reporter.
# Why: Cleanup failures must be impossible to miss in CI logs.
from __future__ import annotations

from infratest.runner.events import (
    EVENT_CLEANUP_FAILED,
    EVENT_PHASE_END,
    EVENT_PHASE_SKIP,
    EVENT_PHASE_START,
    EVENT_SUITE_END,
    STATUS_FAILED,
    STATUS_PASSED,
    Event,
)
from infratest.runner.ui import PlainReporter


def _reporter(**kwargs) -> PlainReporter:
    kwargs.setdefault("verbose", False)
    return PlainReporter(color=False, emoji=False, **kwargs)


def test_phase_end_includes_failure_message(capsys) -> None:
    _reporter().emit(
        Event(
            EVENT_PHASE_END,
            scenario="lb",
            phase="assert",
            message="1 of 2 assertion(s) failed",
            data={"status": STATUS_FAILED, "duration": 1.5},
        )
    )
    assert capsys.readouterr().out == (
        "[lb] assert  ... failed (1.5s): 1 of 2 assertion(s) failed\n"
    )


def test_phase_start_only_when_verbose(capsys) -> None:
    event = Event(EVENT_PHASE_START, scenario="lb", phase="apply")
    _reporter().emit(event)
    assert capsys.readouterr().out == ""
    _reporter(verbose=True).emit(event)
    assert "apply   ... start" in capsys.readouterr().out


def test_skip_and_long_duration(capsys) -> None:
    reporter = _reporter(label_width=4)
    reporter.emit(Event(EVENT_PHASE_SKIP, scenario="lb", phase="poll"))
    reporter.emit(
        Event(
            EVENT_PHASE_END,
            scenario="lb",
            phase="destroy",
            data={"status": STATUS_PASSED, "duration": 125},
        )
    )
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["[lb  ] poll    ... skipped", "[lb  ] destroy ... ok (2m05s)"]


def test_cleanup_failure_is_loud(capsys) -> None:
    _reporter().emit(
        Event(
            EVENT_CLEANUP_FAILED,
            scenario="lb",
            message="destroy failed",
            data={"workspace": "lb-abc123"},
        )
    )
    out = capsys.readouterr().out
    assert "CLEANUP FAILED" in out
    assert "lb-abc123" in out


def test_suite_end_lists_leaks_and_failures(capsys) -> None:
    _reporter().emit(
        Event(
            EVENT_SUITE_END,
            data={"status": STATUS_FAILED, "failed": ["lb", "nlb"], "cleanup_failed": ["nlb"]},
        )
    )
    out = capsys.readouterr().out
    assert "[LEAK] Destroy failed for: nlb" in out
    assert "[FAILED] The following scenarios failed: lb, nlb" in out


def test_suite_end_passed(capsys) -> None:
    _reporter().emit(Event(EVENT_SUITE_END, data={"status": STATUS_PASSED}))
    assert "[PASSED] ALL SCENARIOS PASSED!" in capsys.readouterr().out
