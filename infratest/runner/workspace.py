# Where: infratest/runner/workspace.py
# What: Private, uniquely named working copies of a Terraform module tree.
# Why: Parallel scenarios must never share .terraform directories or state files.
from __future__ import annotations

import json
import logging
import shutil
import string
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterator

from infratest.runner.models import ProvisioningOptions, Scenario
from infratest.runner.utils import slugify, unique_id

logger = logging.getLogger(__name__)

VAR_FILE_NAME = "infratest.tfvars.json"
_COPY_IGNORE = shutil.ignore_patterns(
    ".terraform",
    "*.tfstate",
    "*.tfstate.backup",
    ".terraform.tfstate.lock.info",
    ".git",
    ".infratest",
    "__pycache__",
)


@dataclass
class Workspace:
    name: str
    path: Path
    options: ProvisioningOptions
    unique_id: str
    apply_attempted: bool = False
    destroy_attempted: bool = False
    destroyed: bool = False

    @property
    def terraform_dir(self) -> Path:
        return self.path / self.options.terraform_dir

    @property
    def var_file(self) -> Path:
        return self.terraform_dir / VAR_FILE_NAME

    @property
    def leaked(self) -> bool:
        return self.apply_attempted and not self.destroyed

    def write_var_file(self) -> Path:
        self.var_file.write_text(
            json.dumps(dict(self.options.variables), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        return self.var_file


def resolve_variables(value: Any, substitutions: dict[str, str]) -> Any:
    """Expand ${unique_id}-style placeholders in every string of a variable tree."""
    if isinstance(value, str):
        return string.Template(value).safe_substitute(substitutions)
    if isinstance(value, dict):
        return {key: resolve_variables(item, substitutions) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_variables(item, substitutions) for item in value]
    return value


@contextmanager
def acquire_workspace(
    scenario: Scenario,
    root: Path,
    *,
    keep: bool = False,
) -> Iterator[Workspace]:
    """Copy the module tree into a fresh directory and remove it afterwards.

    A workspace whose resources were not destroyed is always kept, because
    its state file is what an operator needs to clean up by hand.
    """
    module_root = scenario.options.module_root.resolve()
    root = root.resolve()
    if root == module_root or module_root in root.parents:
        raise ValueError(f"Workspace root {root} must be outside module root {module_root}")

    uid = unique_id()
    name = f"{slugify(scenario.name)}-{uid}"
    path = root / name
    root.mkdir(parents=True, exist_ok=True)
    shutil.copytree(module_root, path, ignore=_COPY_IGNORE, symlinks=True)

    substitutions = {"unique_id": uid, "scenario": slugify(scenario.name), "workspace": name}
    options = replace(
        scenario.options,
        module_root=module_root,
        variables=resolve_variables(dict(scenario.options.variables), substitutions),
    )
    workspace = Workspace(name=name, path=path, options=options, unique_id=uid)
    if not workspace.terraform_dir.is_dir():
        shutil.rmtree(path, ignore_errors=True)
        raise FileNotFoundError(
            f"Terraform directory not found: {module_root / scenario.options.terraform_dir}"
        )

    logger.debug("Acquired workspace %s at %s", name, path)
    try:
        yield workspace
    finally:
        if workspace.leaked:
            logger.critical(
                "Workspace %s may still own cloud resources; state kept at %s",
                name,
                workspace.terraform_dir,
            )
        elif keep:
            logger.info("Keeping workspace %s at %s", name, path)
        else:
            shutil.rmtree(path, ignore_errors=True)
