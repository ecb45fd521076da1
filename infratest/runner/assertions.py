# Where: infratest/runner/assertions.py
# What: Output assertions and their total evaluation against an OutputStore.
# Why: Report every failing expectation of a scenario, not only the first.
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from infratest.runner.errors import InfraTestError
from infratest.runner.outputs import MapOutput, OutputStore, OutputValue, render_scalar

logger = logging.getLogger(__name__)

ASSERT_EQUALS = "equals"
ASSERT_NOT_EQUALS = "not_equals"
ASSERT_NOT_EMPTY = "not_empty"
ASSERT_MATCHES = "matches"
ASSERT_CONTAINS_KEY = "contains_key"
ASSERT_ABSENT = "absent"
ASSERT_PREDICATE = "predicate"

KINDS = (
    ASSERT_EQUALS,
    ASSERT_NOT_EQUALS,
    ASSERT_NOT_EMPTY,
    ASSERT_MATCHES,
    ASSERT_CONTAINS_KEY,
    ASSERT_ABSENT,
)


@dataclass(frozen=True)
class Assertion:
    output: str
    kind: str
    expected: Any = None
    predicate: Callable[[OutputValue | None], bool] | None = None
    label: str | None = None

    def describe(self) -> str:
        if self.label:
            return self.label
        if self.kind in (ASSERT_NOT_EMPTY, ASSERT_ABSENT):
            return f"{self.output} {self.kind}"
        if self.kind == ASSERT_PREDICATE:
            name = getattr(self.predicate, "__name__", "predicate")
            return f"{self.output} satisfies {name}"
        return f"{self.output} {self.kind} {self.expected!r}"


@dataclass(frozen=True)
class AssertionOutcome:
    description: str
    output: str
    passed: bool
    message: str = ""


def equals(output: str, expected: Any) -> Assertion:
    return Assertion(output, ASSERT_EQUALS, expected)


def not_equals(output: str, expected: Any) -> Assertion:
    return Assertion(output, ASSERT_NOT_EQUALS, expected)


def not_empty(output: str) -> Assertion:
    return Assertion(output, ASSERT_NOT_EMPTY)


def matches(output: str, pattern: str) -> Assertion:
    return Assertion(output, ASSERT_MATCHES, pattern)


def contains_key(output: str, key: str) -> Assertion:
    return Assertion(output, ASSERT_CONTAINS_KEY, key)


def absent(output: str) -> Assertion:
    return Assertion(output, ASSERT_ABSENT)


def satisfies(
    output: str,
    predicate: Callable[[OutputValue | None], bool],
    label: str | None = None,
) -> Assertion:
    return Assertion(output, ASSERT_PREDICATE, predicate=predicate, label=label)


def evaluate(store: OutputStore, assertion: Assertion) -> AssertionOutcome:
    description = assertion.describe()
    try:
        message = _check(store, assertion)
    except InfraTestError as exc:
        message = str(exc)
    except Exception as exc:  # predicates are caller code
        logger.exception("Assertion %s raised", description)
        message = f"{type(exc).__name__}: {exc}"
    return AssertionOutcome(
        description=description,
        output=assertion.output,
        passed=message is None,
        message=message or "",
    )


def evaluate_all(store: OutputStore, assertions) -> list[AssertionOutcome]:
    return [evaluate(store, assertion) for assertion in assertions]


def _check(store: OutputStore, assertion: Assertion) -> str | None:
    """Return None on success or a mismatch message."""
    kind = assertion.kind
    name = assertion.output

    if kind == ASSERT_ABSENT:
        if name in store:
            return f"expected output {name} to be absent"
        return None

    if kind == ASSERT_PREDICATE:
        if assertion.predicate is None:
            return "no predicate configured"
        if assertion.predicate(store.find(name)):
            return None
        return f"predicate rejected {store.find(name)!r}"

    if kind == ASSERT_CONTAINS_KEY:
        values = store.get_map(name)
        if str(assertion.expected) in values:
            return None
        return f"expected key {assertion.expected!r} in {sorted(values)}"

    value = store.raw(name)

    if kind == ASSERT_NOT_EMPTY:
        content = value.values if isinstance(value, MapOutput) else value.value
        return None if content else f"expected output {name} to be non-empty"

    if kind in (ASSERT_EQUALS, ASSERT_NOT_EQUALS):
        if isinstance(value, MapOutput):
            if not isinstance(assertion.expected, dict):
                return f"output {name} is a map, expected value is {assertion.expected!r}"
            actual: Any = dict(value.values)
            expected: Any = {str(k): render_scalar(v) for k, v in assertion.expected.items()}
        else:
            actual = value.value
            expected = render_scalar(assertion.expected)
        if kind == ASSERT_EQUALS:
            return None if actual == expected else f"expected {expected!r}, got {actual!r}"
        return None if actual != expected else f"expected anything but {expected!r}"

    if kind == ASSERT_MATCHES:
        actual = store.get(name)
        if re.search(str(assertion.expected), actual):
            return None
        return f"{actual!r} does not match {assertion.expected!r}"

    return f"unknown assertion kind {kind!r}"
