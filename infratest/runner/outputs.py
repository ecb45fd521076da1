# Where: infratest/runner/outputs.py
# What: Tagged output values and the read-only store assertions read from.
# Why: Assertions should fail on a type mismatch instead of comparing a map to a string.
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Union

from infratest.runner.errors import OutputNotFoundError, OutputTypeError


@dataclass(frozen=True)
class ScalarOutput:
    value: str

    kind = "scalar"


@dataclass(frozen=True)
class MapOutput:
    values: Mapping[str, str]

    kind = "map"


OutputValue = Union[ScalarOutput, MapOutput]


def render_scalar(value: Any) -> str:
    """Render a Terraform value the way `terraform output -raw` would."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def to_output_value(value: Any) -> OutputValue:
    if isinstance(value, dict):
        return MapOutput(MappingProxyType({str(k): render_scalar(v) for k, v in value.items()}))
    return ScalarOutput(render_scalar(value))


def parse_terraform_outputs(raw: str) -> dict[str, OutputValue]:
    """Parse `terraform output -json` into tagged values."""
    data = json.loads(raw or "{}")
    if not isinstance(data, dict):
        raise ValueError("terraform output -json did not return an object")
    outputs: dict[str, OutputValue] = {}
    for name, entry in data.items():
        if isinstance(entry, dict) and "value" in entry:
            outputs[name] = to_output_value(entry["value"])
        else:
            outputs[name] = to_output_value(entry)
    return outputs


class OutputStore:
    def __init__(self, outputs: Mapping[str, OutputValue]) -> None:
        self._outputs = MappingProxyType(dict(outputs))

    def __contains__(self, name: object) -> bool:
        return name in self._outputs

    def __len__(self) -> int:
        return len(self._outputs)

    def names(self) -> list[str]:
        return sorted(self._outputs)

    def raw(self, name: str) -> OutputValue:
        try:
            return self._outputs[name]
        except KeyError:
            raise OutputNotFoundError(name) from None

    def find(self, name: str) -> OutputValue | None:
        return self._outputs.get(name)

    def get(self, name: str) -> str:
        value = self.raw(name)
        if not isinstance(value, ScalarOutput):
            raise OutputTypeError(name, ScalarOutput.kind, value.kind)
        return value.value

    def get_map(self, name: str) -> Mapping[str, str]:
        value = self.raw(name)
        if not isinstance(value, MapOutput):
            raise OutputTypeError(name, MapOutput.kind, value.kind)
        return value.values
