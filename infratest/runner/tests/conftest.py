# Where: infratest/runner/tests/conftest.py
# What: Shared fixtures for runner unit tests.
# Why: Build throwaway module trees and settings without touching the real environment.
from __future__ import annotations

from pathlib import Path

import pytest

from infratest.runner.logging import LogSink
from infratest.runner.models import ProvisioningOptions, Scenario
from infratest.runner.settings import RunnerSettings


@pytest.fixture
def module_root(tmp_path: Path) -> Path:
    root = tmp_path / "module"
    example = root / "examples" / "simple"
    example.mkdir(parents=True)
    (example / "main.tf").write_text('variable "name" {}\n', encoding="utf-8")
    (example / ".terraform").mkdir()
    (example / ".terraform" / "providers.lock").write_text("cached", encoding="utf-8")
    (example / "terraform.tfstate").write_text("{}", encoding="utf-8")
    (root / "main.tf").write_text("# module\n", encoding="utf-8")
    return root


@pytest.fixture
def make_scenario(module_root: Path):
    def _make(name: str = "lb-basic", **kwargs) -> Scenario:
        options = ProvisioningOptions(
            terraform_dir=kwargs.pop("terraform_dir", "examples/simple"),
            module_root=module_root,
            variables=kwargs.pop("variables", {"name": "lb-${unique_id}"}),
            no_color=kwargs.pop("no_color", True),
            env_vars=kwargs.pop("env_vars", {}),
        )
        return Scenario(name=name, options=options, **kwargs)

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> RunnerSettings:
    return RunnerSettings(
        LOG_DIR=tmp_path / "logs",
        WORKSPACE_ROOT=tmp_path / "workspaces",
        SCENARIO_TIMEOUT=60,
        MAX_ATTEMPTS=3,
        RETRY_BACKOFF=0,
        AWS_REGION="eu-west-1",
    )


@pytest.fixture
def log_sink(tmp_path: Path):
    with LogSink(tmp_path / "logs" / "test.log") as sink:
        yield sink
