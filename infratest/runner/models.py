# Where: infratest/runner/models.py
# What: Dataclasses for scenarios, provisioning inputs and run results.
# Why: Keep execution inputs explicit and avoid implicit global state.
from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from infratest.runner.assertions import Assertion, AssertionOutcome
from infratest.runner.events import (
    PHASE_APPLY,
    PHASE_ASSERT,
    PHASE_DESTROY,
    PHASE_POLL,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
)

if TYPE_CHECKING:
    from infratest.runner.logging import LogSink
    from infratest.runner.utils import Deadline
    from infratest.runner.workspace import Workspace

OUTCOME_SUCCESS = "success"
OUTCOME_RETRYABLE = "retryable"
OUTCOME_PERMANENT = "permanent"

KIND_PROVISIONING = "provisioning"
KIND_READINESS_TIMEOUT = "readiness_timeout"
KIND_ASSERTION = "assertion"
KIND_CLEANUP = "cleanup"
KIND_TIMEOUT = "timeout"
KIND_CANCELLED = "cancelled"
KIND_ERROR = "error"


@dataclass(frozen=True)
class ProvisioningOptions:
    terraform_dir: str
    module_root: Path
    variables: Mapping[str, Any] = field(default_factory=dict)
    no_color: bool = True
    env_vars: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReadinessCheck:
    output: str
    probe: str = "elbv2_active"
    max_attempts: int = 10
    interval: float = 30.0
    backoff: float = 1.0
    max_interval: float | None = None


@dataclass(frozen=True)
class Scenario:
    name: str
    options: ProvisioningOptions
    assertions: tuple[Assertion, ...] = ()
    readiness: ReadinessCheck | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    elapsed: float
    outcome: str
    message: str = ""


@dataclass
class StageOutcome:
    stage: str
    status: str = STATUS_SKIPPED
    kind: str | None = None
    message: str = ""
    duration: float = 0.0
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == STATUS_PASSED

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED


@dataclass
class ScenarioResult:
    scenario: str
    workspace: str | None = None
    apply: StageOutcome = field(default_factory=lambda: StageOutcome(PHASE_APPLY))
    poll: StageOutcome = field(default_factory=lambda: StageOutcome(PHASE_POLL))
    assertions: StageOutcome = field(default_factory=lambda: StageOutcome(PHASE_ASSERT))
    destroy: StageOutcome = field(default_factory=lambda: StageOutcome(PHASE_DESTROY))
    assertion_outcomes: list[AssertionOutcome] = field(default_factory=list)

    def stages(self) -> list[StageOutcome]:
        return [self.apply, self.poll, self.assertions, self.destroy]

    @property
    def failed_stages(self) -> list[str]:
        return [stage.stage for stage in self.stages() if stage.failed]

    @property
    def passed(self) -> bool:
        # Destroy is skipped only when apply was never attempted, which is
        # itself a failure of the apply stage.
        return self.apply.passed and not self.failed_stages

    @property
    def cleanup_failed(self) -> bool:
        return self.destroy.failed

    def summary(self) -> str:
        if self.passed:
            return f"{self.scenario}: passed"
        lines = [f"{self.scenario}: failed ({', '.join(self.failed_stages) or 'apply'})"]
        for stage in self.stages():
            if stage.failed:
                lines.append(f"  [{stage.stage}] {stage.kind}: {stage.message}")
        for outcome in self.assertion_outcomes:
            if not outcome.passed:
                lines.append(f"  [assert] {outcome.description}: {outcome.message}")
        return "\n".join(lines)


@dataclass
class RunContext:
    scenario: Scenario
    workspace: Workspace
    log: LogSink
    deadline: Deadline
    printer: Callable[[str], None] | None = None
    cancel: threading.Event | None = None
