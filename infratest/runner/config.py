# Where: infratest/runner/config.py
# What: Load scenario suites from YAML and normalize them into Scenario objects.
# Why: Reject malformed suites before anything is provisioned.
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from infratest.runner.assertions import (
    ASSERT_ABSENT,
    ASSERT_MATCHES,
    ASSERT_NOT_EMPTY,
    KINDS,
    Assertion,
)
from infratest.runner.aws import probe_names
from infratest.runner.models import ProvisioningOptions, ReadinessCheck, Scenario
from infratest.runner.utils import PACKAGE_ROOT, unique_slugs

DEFAULT_SUITE = PACKAGE_ROOT / "scenarios" / "load_balancer.yaml"

_SCENARIO_KEYS = {
    "name",
    "terraform_dir",
    "variables",
    "env_vars",
    "no_color",
    "timeout",
    "readiness",
    "assertions",
}
_FLAG_KINDS = (ASSERT_NOT_EMPTY, ASSERT_ABSENT)


def load_suite(path: Path | str | None = None) -> dict:
    suite_file = Path(path) if path else DEFAULT_SUITE
    if not suite_file.exists():
        raise FileNotFoundError(f"Suite file not found: {suite_file}")
    with open(suite_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{suite_file}: suite must be a map")
    data.setdefault("_base_dir", str(suite_file.resolve().parent))
    return data


def build_scenarios(
    suite: dict,
    *,
    only: list[str] | None = None,
    module_root: Path | None = None,
) -> dict[str, Scenario]:
    base_dir = Path(suite.get("_base_dir") or ".")
    root = module_root or _resolve_path(base_dir, suite.get("module_root") or ".")
    default_timeout = _optional_positive(suite, "timeout", "suite")

    entries = suite.get("scenarios")
    if not isinstance(entries, list) or not entries:
        raise ValueError("suite field 'scenarios' must be a non-empty list")

    scenarios: dict[str, Scenario] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"scenario entry must be a map: {entry!r}")
        scenario = _to_scenario(entry, root, default_timeout)
        if scenario.name in scenarios:
            raise ValueError(f"duplicate scenario name: {scenario.name}")
        scenarios[scenario.name] = scenario
    # Logs are named after the slug.
    unique_slugs(scenarios)

    if only:
        unknown = [name for name in only if name not in scenarios]
        if unknown:
            raise ValueError(
                f"unknown scenario(s): {', '.join(unknown)}; "
                f"available: {', '.join(scenarios)}"
            )
        scenarios = {name: scenarios[name] for name in only}
    return scenarios


def _to_scenario(entry: dict, module_root: Path, default_timeout: float | None) -> Scenario:
    name = _require_non_empty_field(entry, "name", "scenario")
    unknown_keys = sorted(set(entry) - _SCENARIO_KEYS)
    if unknown_keys:
        raise ValueError(f"scenario '{name}' has unknown field(s): {', '.join(unknown_keys)}")

    terraform_dir = _normalize_relative_path(
        _require_non_empty_field(entry, "terraform_dir", f"scenario '{name}'")
    )
    if Path(terraform_dir).is_absolute() or ".." in Path(terraform_dir).parts:
        raise ValueError(
            f"scenario '{name}': 'terraform_dir' must be relative to module_root without '..'"
        )

    variables = _optional_map(entry, "variables", name)
    env_vars = {str(k): str(v) for k, v in _optional_map(entry, "env_vars", name).items()}
    no_color = entry.get("no_color", True)
    if not isinstance(no_color, bool):
        raise ValueError(f"scenario '{name}': 'no_color' must be a boolean")

    options = ProvisioningOptions(
        terraform_dir=terraform_dir,
        module_root=module_root,
        variables=variables,
        no_color=no_color,
        env_vars=env_vars,
    )
    return Scenario(
        name=name,
        options=options,
        assertions=tuple(_to_assertion(raw, name) for raw in entry.get("assertions") or []),
        readiness=_to_readiness(entry.get("readiness"), name),
        timeout=_optional_positive(entry, "timeout", f"scenario '{name}'") or default_timeout,
    )


def _to_readiness(raw: Any, scenario: str) -> ReadinessCheck | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"scenario '{scenario}': 'readiness' must be a map")
    where = f"scenario '{scenario}' readiness"
    output = _require_non_empty_field(raw, "output", where)
    probe = str(raw.get("probe", "elbv2_active"))
    if probe not in probe_names():
        raise ValueError(f"{where}: unknown probe '{probe}'")
    check = ReadinessCheck(
        output=output,
        probe=probe,
        max_attempts=_number(raw, "attempts", where, 10, int),
        interval=_number(raw, "interval", where, 30),
        backoff=_number(raw, "backoff", where, 1.0),
        max_interval=(
            _number(raw, "max_interval", where, None)
            if raw.get("max_interval") is not None
            else None
        ),
    )
    if check.max_attempts < 1:
        raise ValueError(f"{where}: 'attempts' must be at least 1")
    if check.interval < 0 or check.backoff < 1:
        raise ValueError(f"{where}: 'interval' must be >= 0 and 'backoff' >= 1")
    return check


def _to_assertion(raw: Any, scenario: str) -> Assertion:
    if not isinstance(raw, dict):
        raise ValueError(f"scenario '{scenario}': assertion must be a map: {raw!r}")
    output = _require_non_empty_field(raw, "output", f"scenario '{scenario}' assertion")
    kinds = [key for key in raw if key in KINDS]
    extra = sorted(set(raw) - set(KINDS) - {"output", "label"})
    if len(kinds) != 1 or extra:
        raise ValueError(
            f"scenario '{scenario}': assertion on '{output}' needs exactly one of "
            f"{', '.join(KINDS)}"
        )
    kind = kinds[0]
    expected = raw[kind]
    if kind in _FLAG_KINDS:
        if expected is not True:
            raise ValueError(f"scenario '{scenario}': '{kind}' takes 'true'")
        expected = None
    if kind == ASSERT_MATCHES:
        try:
            re.compile(str(expected))
        except re.error as exc:
            raise ValueError(
                f"scenario '{scenario}': assertion on '{output}' has an invalid regex: {exc}"
            ) from None
    label = raw.get("label")
    return Assertion(output=output, kind=kind, expected=expected, label=label)


def _require_non_empty_field(entry: dict, field: str, where: str) -> str:
    value = entry.get(field)
    if value is None:
        raise ValueError(f"{where}: field '{field}' is required")
    normalized = str(value).strip()
    if normalized == "":
        raise ValueError(f"{where}: field '{field}' must be non-empty")
    return normalized


def _optional_map(entry: dict, field: str, scenario: str) -> dict:
    value = entry.get(field)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"scenario '{scenario}': '{field}' must be a map")
    return dict(value)


def _number(raw: dict, field: str, where: str, default: Any, cast=float):
    value = raw.get(field, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"{where}: '{field}' must be a number, got {value!r}") from None


def _optional_positive(entry: dict, field: str, where: str) -> float | None:
    value = entry.get(field)
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{where}: '{field}' must be a number") from None
    if number <= 0:
        raise ValueError(f"{where}: '{field}' must be positive")
    return number


def _normalize_relative_path(path: str) -> str:
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return str(Path(normalized).as_posix())


def _resolve_path(base_dir: Path, raw: str) -> Path:
    path = Path(str(raw))
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()
