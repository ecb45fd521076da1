# Where: infratest/runner/tests/test_utils.py
# What: Unit tests for deadlines, interruptible waits and naming helpers.
# Why: Waits must honour both the scenario deadline and suite cancellation.
from __future__ import annotations

import threading

import pytest

from infratest.runner.errors import ScenarioCancelledError, ScenarioTimeoutError
from infratest.runner.utils import Deadline, slugify, unique_id, wait_step


def test_unique_id_is_short_and_lowercase() -> None:
    value = unique_id()
    assert len(value) == 6
    assert value == value.lower()
    assert value.isalnum()


def test_slugify() -> None:
    assert slugify("Load Balancer / Network") == "load-balancer-network"
    with pytest.raises(ValueError):
        slugify("!!!")


def test_deadline_without_limit_never_expires() -> None:
    deadline = Deadline(None)
    assert deadline.remaining() is None
    assert not deadline.expired()
    assert deadline.clamp(30) == 30


def test_expired_deadline_raises_on_check() -> None:
    deadline = Deadline(0)
    assert deadline.expired()
    with pytest.raises(ScenarioTimeoutError, match="during apply"):
        deadline.check("apply")


def test_deadline_clamps_waits() -> None:
    assert Deadline(5).clamp(30) <= 5


def test_wait_step_stops_at_deadline() -> None:
    with pytest.raises(ScenarioTimeoutError):
        wait_step(30, deadline=Deadline(0.05), cancel=None, what="poll")


def test_wait_step_stops_on_cancel() -> None:
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()
    with pytest.raises(ScenarioCancelledError):
        wait_step(30, deadline=None, cancel=cancel, what="poll")
