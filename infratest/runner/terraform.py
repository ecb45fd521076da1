# Where: infratest/runner/terraform.py
# What: Terraform init/apply/output/destroy with retry on transient errors.
# Why: Keep the CLI mechanics out of the scenario lifecycle.
from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections.abc import Mapping

from infratest.runner.errors import (
    CleanupError,
    ProvisioningError,
    ScenarioCancelledError,
    ScenarioTimeoutError,
)
from infratest.runner.logging import CommandResult, emit, run_and_stream
from infratest.runner.models import AttemptRecord, RunContext
from infratest.runner.outputs import OutputStore, OutputValue, parse_terraform_outputs
from infratest.runner.retry import (
    AttemptFailed,
    BackoffPolicy,
    Failure,
    RetryClassifier,
    retry_call,
)
from infratest.runner.workspace import VAR_FILE_NAME

logger = logging.getLogger(__name__)

_AUTOMATION_ENV = {
    "TF_IN_AUTOMATION": "1",
    "TF_INPUT": "0",
}


class TerraformDriver:
    def __init__(
        self,
        *,
        classifier: RetryClassifier,
        policy: BackoffPolicy,
        binary: str = "terraform",
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.classifier = classifier
        self.policy = policy
        self.binary = binary
        self.base_env = dict(base_env or {})

    def apply(self, ctx: RunContext) -> tuple[OutputStore, list[AttemptRecord]]:
        """Run init + apply + output as one retried unit.

        Raises ProvisioningError when the failure is permanent or the
        attempts are exhausted. Partial infrastructure may exist then, so
        the caller must still call destroy.
        """
        workspace = ctx.workspace
        workspace.write_var_file()

        def _once() -> dict[str, OutputValue]:
            ctx.deadline.check("apply")
            self._run(
                ctx,
                ["init", "-input=false"],
                timeout=ctx.deadline.remaining(),
                cancel=ctx.cancel,
            )
            workspace.apply_attempted = True
            self._run(
                ctx,
                ["apply", "-input=false", "-auto-approve", f"-var-file={VAR_FILE_NAME}"],
                timeout=ctx.deadline.remaining(),
                cancel=ctx.cancel,
            )
            return self._read_outputs(ctx)

        outputs, attempts = retry_call(
            _once,
            classifier=self.classifier,
            policy=self.policy,
            what="apply",
            error_cls=ProvisioningError,
            deadline=ctx.deadline,
            cancel=ctx.cancel,
            log=ctx.log.write_line,
        )
        return OutputStore(outputs), attempts

    def destroy(self, ctx: RunContext) -> list[AttemptRecord]:
        """Destroy whatever apply created. Safe to call any number of times.

        Waits here ignore the scenario deadline and suite cancellation:
        giving up on destroy leaks resources.
        """
        workspace = ctx.workspace
        if not workspace.apply_attempted:
            emit(ctx.log, ctx.printer, "Nothing to destroy: apply never ran.")
            return []
        if workspace.destroyed:
            emit(ctx.log, ctx.printer, "Nothing to destroy: already destroyed.")
            return []
        workspace.destroy_attempted = True

        def _once() -> None:
            self._run(
                ctx,
                ["destroy", "-input=false", "-auto-approve", f"-var-file={VAR_FILE_NAME}"],
                timeout=None,
            )

        _, attempts = retry_call(
            _once,
            classifier=self.classifier,
            policy=self.policy,
            what="destroy",
            error_cls=CleanupError,
            log=ctx.log.write_line,
        )
        workspace.destroyed = True
        return attempts

    def _env(self, ctx: RunContext) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.base_env)
        env.update(_AUTOMATION_ENV)
        env.update(ctx.workspace.options.env_vars)
        return env

    def _cmd(self, ctx: RunContext, args: list[str]) -> list[str]:
        cmd = [self.binary, *args]
        if ctx.workspace.options.no_color:
            cmd.append("-no-color")
        return cmd

    def _run(
        self,
        ctx: RunContext,
        args: list[str],
        *,
        timeout: float | None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        cmd = self._cmd(ctx, args)
        try:
            result = run_and_stream(
                cmd,
                cwd=ctx.workspace.terraform_dir,
                env=self._env(ctx),
                log=ctx.log,
                printer=ctx.printer,
                timeout=timeout,
                cancel=cancel,
            )
        except OSError as exc:
            raise AttemptFailed(Failure(f"Failed to run {self.binary}: {exc}")) from exc
        if result.cancelled:
            raise ScenarioCancelledError(f"{self.binary} {args[0]} terminated: suite cancelled")
        if result.timed_out:
            raise ScenarioTimeoutError(
                f"{self.binary} {args[0]} terminated: scenario deadline exceeded"
            )
        if result.returncode != 0:
            raise AttemptFailed(Failure(result.output, code=result.returncode))
        return result

    def _read_outputs(self, ctx: RunContext) -> dict[str, OutputValue]:
        cmd = self._cmd(ctx, ["output", "-json"])
        try:
            result = subprocess.run(
                cmd,
                cwd=str(ctx.workspace.terraform_dir),
                env=self._env(ctx),
                capture_output=True,
                text=True,
                check=False,
                timeout=ctx.deadline.remaining(),
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as exc:
            raise ScenarioTimeoutError(
                f"{self.binary} output terminated: scenario deadline exceeded"
            ) from exc
        except OSError as exc:
            raise AttemptFailed(Failure(f"Failed to run {self.binary}: {exc}")) from exc
        if result.returncode != 0:
            raise AttemptFailed(Failure(result.stderr.strip(), code=result.returncode))
        try:
            outputs = parse_terraform_outputs(result.stdout)
        except ValueError as exc:
            raise AttemptFailed(Failure(f"Unreadable terraform output: {exc}")) from exc
        ctx.log.write_line(f"Outputs: {', '.join(sorted(outputs)) or '(none)'}")
        return outputs
