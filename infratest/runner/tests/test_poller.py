# Where: infratest/runner/tests/test_poller.py
# What: Unit tests for readiness polling.
# Why: Polling must stop at its attempt bound and never sleep after the last probe.
from __future__ import annotations

import threading

import pytest

from infratest.runner import poller
from infratest.runner.errors import ReadinessTimeoutError, ScenarioCancelledError
from infratest.runner.poller import PollConfig, wait_until_ready


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    recorded: list[float] = []

    def fake_wait_step(seconds, *, deadline, cancel, what) -> None:
        recorded.append(seconds)

    monkeypatch.setattr(poller, "wait_step", fake_wait_step)
    return recorded


def _probe(results):
    calls = {"count": 0}

    def probe(ref: str) -> bool:
        index = calls["count"]
        calls["count"] += 1
        value = results[index] if index < len(results) else results[-1]
        if isinstance(value, Exception):
            raise value
        return value

    probe.calls = calls
    return probe


def test_ready_on_third_attempt(sleeps) -> None:
    probe = _probe([False, False, True])
    attempt = wait_until_ready("lb-1", PollConfig(probe=probe, max_attempts=10, interval=30))
    assert attempt == 3
    assert sleeps == [30, 30]


def test_timeout_after_max_attempts(sleeps) -> None:
    probe = _probe([False])
    with pytest.raises(ReadinessTimeoutError) as excinfo:
        wait_until_ready("lb-1", PollConfig(probe=probe, max_attempts=10, interval=30))
    assert probe.calls["count"] == 10
    assert len(sleeps) == 9
    assert excinfo.value.attempts == 10
    assert excinfo.value.last_error is None


def test_probe_errors_count_as_not_ready(sleeps) -> None:
    probe = _probe([RuntimeError("throttled"), True])
    assert wait_until_ready("lb-1", PollConfig(probe=probe, max_attempts=3, interval=1)) == 2


def test_timeout_reports_last_probe_error(sleeps) -> None:
    probe = _probe([RuntimeError("AccessDenied")])
    with pytest.raises(ReadinessTimeoutError) as excinfo:
        wait_until_ready("lb-1", PollConfig(probe=probe, max_attempts=2, interval=1))
    assert excinfo.value.last_error == "RuntimeError: AccessDenied"
    assert "AccessDenied" in str(excinfo.value)


def test_single_attempt_never_sleeps(sleeps) -> None:
    with pytest.raises(ReadinessTimeoutError):
        wait_until_ready("lb-1", PollConfig(probe=_probe([False]), max_attempts=1, interval=30))
    assert sleeps == []


def test_backoff_intervals_are_capped(sleeps) -> None:
    config = PollConfig(
        probe=_probe([False]), max_attempts=5, interval=10, backoff=2, max_interval=30
    )
    with pytest.raises(ReadinessTimeoutError):
        wait_until_ready("lb-1", config)
    assert sleeps == [10, 20, 30, 30]
    assert config.worst_case_wait() == 90


def test_worst_case_wait_with_fixed_interval() -> None:
    config = PollConfig(probe=_probe([False]), max_attempts=10, interval=30)
    assert config.worst_case_wait() == 270


def test_progress_is_logged(sleeps) -> None:
    lines: list[str] = []
    config = PollConfig(probe=_probe([False, True]), max_attempts=3, interval=5)
    wait_until_ready("lb-1", config, log=lines.append)
    assert lines == ["Waiting for lb-1 (1/3), next check in 5.0s"]


def test_cancel_interrupts_wait() -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScenarioCancelledError):
        wait_until_ready(
            "lb-1", PollConfig(probe=_probe([False]), max_attempts=3, interval=30), cancel=cancel
        )


@pytest.mark.parametrize(
    "kwargs", [{"max_attempts": 0}, {"interval": -1}, {"backoff": 0.5}]
)
def test_config_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        PollConfig(probe=_probe([True]), **kwargs)
