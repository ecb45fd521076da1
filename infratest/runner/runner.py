# Where: infratest/runner/runner.py
# What: Orchestrates scenario lifecycles, one by one or in parallel.
# Why: Guarantee destroy on every exit path while keeping phases reportable.
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable

from infratest.runner.assertions import evaluate_all
from infratest.runner.aws import build_probe
from infratest.runner.errors import (
    CleanupError,
    ProvisioningError,
    ReadinessTimeoutError,
    ScenarioCancelledError,
    ScenarioTimeoutError,
    SuiteInterrupted,
)
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
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    Event,
)
from infratest.runner.logging import LogSink, emit, make_prefix_printer
from infratest.runner.models import (
    KIND_ASSERTION,
    KIND_CANCELLED,
    KIND_CLEANUP,
    KIND_ERROR,
    KIND_PROVISIONING,
    KIND_READINESS_TIMEOUT,
    KIND_TIMEOUT,
    ReadinessCheck,
    RunContext,
    Scenario,
    ScenarioResult,
    StageOutcome,
)
from infratest.runner.outputs import OutputStore
from infratest.runner.poller import PollConfig, wait_until_ready
from infratest.runner.settings import RunnerSettings
from infratest.runner.terraform import TerraformDriver
from infratest.runner.ui import Reporter
from infratest.runner.utils import Deadline, slugify, unique_slugs
from infratest.runner.workspace import acquire_workspace

logger = logging.getLogger(__name__)

ProbeFactory = Callable[[str, str], Callable[[str], bool]]


class ScenarioRunner:
    """Runs scenarios: workspace, apply, poll, assert, then always destroy.

    One instance may run many scenarios concurrently. Per-run state lives in
    the RunContext; the instance only holds read-only collaborators and the
    suite-wide cancel event.
    """

    def __init__(
        self,
        *,
        driver: TerraformDriver,
        settings: RunnerSettings,
        reporter: Reporter | None = None,
        probe_factory: ProbeFactory = build_probe,
        verbose: bool = False,
        label_width: int = 0,
    ) -> None:
        self.driver = driver
        self.settings = settings
        self.reporter = reporter or Reporter()
        self.probe_factory = probe_factory
        self.verbose = verbose
        self.label_width = label_width
        self.cancel = threading.Event()

    def run(self, scenario: Scenario) -> ScenarioResult:
        result = ScenarioResult(scenario.name)
        self.reporter.emit(Event(EVENT_SCENARIO_START, scenario=scenario.name))
        log = LogSink(self.settings.LOG_DIR / f"{slugify(scenario.name)}.log")
        log.open()
        printer = (
            make_prefix_printer(scenario.name, width=self.label_width) if self.verbose else None
        )
        try:
            if self.cancel.is_set():
                _fail(result.apply, KIND_CANCELLED, "Suite cancelled before start")
            else:
                self._run_lifecycle(scenario, result, log, printer)
        except Exception as exc:
            # Workspace acquisition failed; nothing was applied.
            log.write_line(f"[ERROR] {exc}")
            logger.exception("Scenario %s could not start", scenario.name)
            _fail(result.apply, KIND_ERROR, f"{type(exc).__name__}: {exc}")
        finally:
            log.close()

        if result.cleanup_failed:
            self.reporter.emit(
                Event(
                    EVENT_CLEANUP_FAILED,
                    scenario=scenario.name,
                    message=result.destroy.message,
                    data={"workspace": result.workspace},
                )
            )
        self.reporter.emit(
            Event(
                EVENT_SCENARIO_END,
                scenario=scenario.name,
                data={
                    "status": STATUS_PASSED if result.passed else STATUS_FAILED,
                    "failed_stages": result.failed_stages,
                },
            )
        )
        return result

    def run_all(
        self,
        scenarios: dict[str, Scenario],
        *,
        parallel: bool = True,
        max_workers: int | None = None,
    ) -> dict[str, ScenarioResult]:
        """Run every scenario and return results keyed by name.

        Ctrl-C cancels the suite: queued scenarios never start, running ones
        abandon apply or their current wait and destroy, then SuiteInterrupted
        is raised.
        """
        unique_slugs(scenario.name for scenario in scenarios.values())
        self.reporter.start()
        self.reporter.emit(Event(EVENT_SUITE_START))
        results: dict[str, ScenarioResult] = {}
        try:
            if not scenarios:
                return results
            workers = (max_workers or len(scenarios)) if parallel else 1
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="scenario"
            ) as executor:
                future_to_name = {
                    executor.submit(self.run, scenario): name
                    for name, scenario in scenarios.items()
                }
                try:
                    for future in as_completed(future_to_name):
                        name = future_to_name[future]
                        results[name] = _collect(future, scenarios[name])
                except KeyboardInterrupt as exc:
                    self.cancel.set()
                    self.reporter.emit(
                        Event(
                            EVENT_MESSAGE,
                            message="Interrupted: waiting for running scenarios to destroy "
                            "their resources...",
                        )
                    )
                    for future, name in future_to_name.items():
                        if future.cancel():
                            continue
                        results[name] = _collect(future, scenarios[name])
                    raise SuiteInterrupted(results) from exc
            return results
        finally:
            failed = [name for name, result in results.items() if not result.passed]
            leaked = [name for name, result in results.items() if result.cleanup_failed]
            suite_failed = bool(failed) or self.cancel.is_set()
            self.reporter.emit(
                Event(
                    EVENT_SUITE_END,
                    data={
                        "status": STATUS_FAILED if suite_failed else STATUS_PASSED,
                        "failed": failed,
                        "cleanup_failed": leaked,
                    },
                )
            )
            self.reporter.close()

    def _run_lifecycle(
        self,
        scenario: Scenario,
        result: ScenarioResult,
        log: LogSink,
        printer: Callable[[str], None] | None,
    ) -> None:
        deadline = Deadline(scenario.timeout or self.settings.SCENARIO_TIMEOUT)
        with acquire_workspace(
            scenario, self.settings.WORKSPACE_ROOT, keep=self.settings.KEEP_WORKSPACES
        ) as workspace:
            result.workspace = workspace.name
            emit(log, printer, f"Workspace {workspace.name}: {workspace.path}")
            ctx = RunContext(
                scenario=scenario,
                workspace=workspace,
                log=log,
                deadline=deadline,
                printer=printer,
                cancel=self.cancel,
            )
            try:
                outputs = self._phase(ctx, result.apply, lambda: self._apply(ctx, result))
                if outputs is None:
                    self._skip(ctx, result.poll)
                    self._skip(ctx, result.assertions)
                    return
                if scenario.readiness is None:
                    self._skip(ctx, result.poll)
                elif self._phase(
                    ctx, result.poll, lambda: self._poll(ctx, outputs, scenario.readiness)
                ) is None:
                    self._skip(ctx, result.assertions)
                    return
                self._phase(
                    ctx, result.assertions, lambda: self._assert(ctx, result, outputs)
                )
            finally:
                self._phase(ctx, result.destroy, lambda: self._destroy(ctx, result))

    def _apply(self, ctx: RunContext, result: ScenarioResult) -> OutputStore:
        outputs, attempts = self.driver.apply(ctx)
        result.apply.attempts = attempts
        result.apply.message = f"applied after {len(attempts)} attempt(s)"
        return outputs

    def _poll(self, ctx: RunContext, outputs: OutputStore, check: ReadinessCheck) -> int:
        ref = outputs.get(check.output)
        if not ref:
            raise ValueError(f"Output {check.output} is empty; nothing to poll")
        config = PollConfig(
            probe=self.probe_factory(check.probe, self.settings.AWS_REGION),
            max_attempts=check.max_attempts,
            interval=check.interval,
            backoff=check.backoff,
            max_interval=check.max_interval,
        )
        attempt = wait_until_ready(
            ref, config, deadline=ctx.deadline, cancel=ctx.cancel, log=ctx.log.write_line
        )
        emit(ctx.log, ctx.printer, f"{ref} ready on attempt {attempt}")
        return attempt

    def _assert(self, ctx: RunContext, result: ScenarioResult, outputs: OutputStore) -> int:
        ctx.deadline.check("assertions")
        outcomes = evaluate_all(outputs, ctx.scenario.assertions)
        result.assertion_outcomes = outcomes
        for outcome in outcomes:
            status = "ok" if outcome.passed else f"FAILED: {outcome.message}"
            emit(ctx.log, ctx.printer, f"assert {outcome.description} ... {status}")
        failures = [outcome for outcome in outcomes if not outcome.passed]
        if failures:
            raise _AssertionsFailed(len(failures), len(outcomes))
        return len(outcomes)

    def _destroy(self, ctx: RunContext, result: ScenarioResult) -> bool:
        attempts = self.driver.destroy(ctx)
        result.destroy.attempts = attempts
        if not attempts:
            result.destroy.message = "nothing to destroy"
        return True

    def _phase(
        self,
        ctx: RunContext,
        outcome: StageOutcome,
        fn: Callable[[], Any],
    ) -> Any:
        """Run one stage and record it. Returns None when the stage failed."""
        name = ctx.scenario.name
        self.reporter.emit(Event(EVENT_PHASE_START, scenario=name, phase=outcome.stage))
        started = time.monotonic()
        value = None
        try:
            value = fn()
            outcome.status = STATUS_PASSED
        except _AssertionsFailed as exc:
            _fail(outcome, KIND_ASSERTION, str(exc))
        except CleanupError as exc:
            outcome.attempts = exc.attempts
            _fail(outcome, KIND_CLEANUP, str(exc))
            logger.critical(
                "Destroy failed for %s; resources may be leaking (workspace %s): %s",
                name,
                ctx.workspace.path,
                exc,
            )
        except ProvisioningError as exc:
            outcome.attempts = exc.attempts
            _fail(outcome, KIND_PROVISIONING, str(exc))
        except ReadinessTimeoutError as exc:
            _fail(outcome, KIND_READINESS_TIMEOUT, str(exc))
        except ScenarioTimeoutError as exc:
            _fail(outcome, KIND_TIMEOUT, str(exc))
        except ScenarioCancelledError as exc:
            _fail(outcome, KIND_CANCELLED, str(exc))
        except Exception as exc:
            logger.exception("Stage %s of %s raised", outcome.stage, name)
            _fail(outcome, KIND_ERROR, f"{type(exc).__name__}: {exc}")
        outcome.duration = time.monotonic() - started
        if outcome.failed:
            ctx.log.write_line(f"[ERROR] {outcome.stage}: {outcome.message}")
        self.reporter.emit(
            Event(
                EVENT_PHASE_END,
                scenario=name,
                phase=outcome.stage,
                message=outcome.message if outcome.failed else None,
                data={"status": outcome.status, "duration": outcome.duration},
            )
        )
        return value if outcome.passed else None

    def _skip(self, ctx: RunContext, outcome: StageOutcome) -> None:
        outcome.status = STATUS_SKIPPED
        self.reporter.emit(
            Event(EVENT_PHASE_SKIP, scenario=ctx.scenario.name, phase=outcome.stage)
        )


class _AssertionsFailed(Exception):
    def __init__(self, failed: int, total: int):
        super().__init__(f"{failed} of {total} assertion(s) failed")


def _fail(outcome: StageOutcome, kind: str, message: str) -> None:
    outcome.status = STATUS_FAILED
    outcome.kind = kind
    outcome.message = message


def _collect(future, scenario: Scenario) -> ScenarioResult:
    try:
        return future.result()
    except Exception as exc:
        logger.exception("Scenario %s crashed", scenario.name)
        result = ScenarioResult(scenario.name)
        _fail(result.apply, KIND_ERROR, f"{type(exc).__name__}: {exc}")
        return result
