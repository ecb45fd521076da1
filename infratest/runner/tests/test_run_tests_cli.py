# Where: infratest/runner/tests/test_run_tests_cli.py
# What: Unit tests for the command-line entry point.
# Why: Exit codes must tell CI apart a failed suite from leaked resources.
from __future__ import annotations

import pytest

from infratest import run_tests
from infratest.runner.cli import parse_args
from infratest.runner.errors import SuiteInterrupted
from infratest.runner.events import STATUS_FAILED, STATUS_PASSED
from infratest.runner.models import KIND_CLEANUP, ScenarioResult


def _result(name: str, *, apply=STATUS_PASSED, destroy=STATUS_PASSED) -> ScenarioResult:
    result = ScenarioResult(name)
    result.assertions.status = STATUS_PASSED
    result.apply.status = apply
    result.destroy.status = destroy
    if destroy == STATUS_FAILED:
        result.destroy.kind = KIND_CLEANUP
        result.destroy.message = "destroy failed"
    return result


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("INFRATEST_LOG_DIR", str(tmp_path / "logs"))


def test_parse_args_collects_scenarios() -> None:
    args = parse_args(["--scenario", "a", "--scenario", "b", "--parallel", "--no-color"])
    assert args.scenarios == ["a", "b"]
    assert args.parallel
    assert args.color is False
    assert args.emoji is None


def test_exit_code_mapping() -> None:
    ok = _result("ok")
    failed = _result("failed", apply=STATUS_FAILED)
    leaked = _result("leaked", destroy=STATUS_FAILED)
    assert run_tests.exit_code({"ok": ok}) == run_tests.EXIT_OK
    assert run_tests.exit_code({"ok": ok, "failed": failed}) == run_tests.EXIT_FAILED
    both = {"failed": failed, "leaked": leaked}
    assert run_tests.exit_code(both) == run_tests.EXIT_CLEANUP_FAILED


def test_resolve_label_width() -> None:
    assert run_tests.resolve_label_width(["a", "abcd"]) == 4
    assert run_tests.resolve_label_width([]) == 0


def test_list_prints_bundled_scenarios(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--list", "--scenario", "load-balancer-network"])
    assert excinfo.value.code == run_tests.EXIT_OK
    assert capsys.readouterr().out == "load-balancer-network\texamples/network\n"


def test_unknown_scenario_fails_fast(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--scenario", "nope"])
    assert excinfo.value.code == run_tests.EXIT_FAILED
    assert "unknown scenario" in capsys.readouterr().out


def test_missing_binary_fails_fast(monkeypatch, capsys) -> None:
    monkeypatch.setattr(run_tests.shutil, "which", lambda name: None)
    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--scenario", "lb-basic-example"])
    assert excinfo.value.code == run_tests.EXIT_FAILED
    assert "binary not found" in capsys.readouterr().out


def test_main_exits_with_cleanup_code(monkeypatch, tmp_path, capsys) -> None:
    captured: dict[str, object] = {}

    class FakeRunner:
        def run_all(self, scenarios, *, parallel, max_workers):
            captured["names"] = list(scenarios)
            captured["parallel"] = parallel
            return {name: _result(name, destroy=STATUS_FAILED) for name in scenarios}

    monkeypatch.setattr(run_tests.shutil, "which", lambda name: "/usr/bin/terraform")
    monkeypatch.setattr(run_tests, "build_runner", lambda settings, **kwargs: FakeRunner())
    (tmp_path / "logs").mkdir()
    (tmp_path / "logs" / "lb-basic-example.log").write_text("last line\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--scenario", "lb-basic-example", "--parallel"])

    assert excinfo.value.code == run_tests.EXIT_CLEANUP_FAILED
    assert captured == {"names": ["lb-basic-example"], "parallel": False}
    out = capsys.readouterr().out
    assert "lb-basic-example: failed (destroy)" in out
    assert "last line" in out


def test_interrupt_exits_130(monkeypatch) -> None:
    class InterruptedRunner:
        def run_all(self, scenarios, **kwargs):
            raise KeyboardInterrupt

    monkeypatch.setattr(run_tests.shutil, "which", lambda name: "/usr/bin/terraform")
    monkeypatch.setattr(run_tests, "build_runner", lambda settings, **kwargs: InterruptedRunner())
    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--scenario", "lb-basic-example"])
    assert excinfo.value.code == run_tests.EXIT_INTERRUPTED


def test_interrupt_with_leak_exits_with_cleanup_code(monkeypatch, capsys) -> None:
    class LeakingRunner:
        def run_all(self, scenarios, **kwargs):
            leaked = {name: _result(name, destroy=STATUS_FAILED) for name in scenarios}
            raise SuiteInterrupted(leaked)

    monkeypatch.setattr(run_tests.shutil, "which", lambda name: "/usr/bin/terraform")
    monkeypatch.setattr(run_tests, "build_runner", lambda settings, **kwargs: LeakingRunner())
    with pytest.raises(SystemExit) as excinfo:
        run_tests.main(["--scenario", "lb-basic-example"])
    assert excinfo.value.code == run_tests.EXIT_CLEANUP_FAILED
    assert "lb-basic-example: failed (destroy)" in capsys.readouterr().out
