"""
Runner Settings

Resolved once at process start and passed explicitly to the driver, the
classifier and the runner. Nothing reads the environment mid-scenario.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infratest.runner.retry import BackoffPolicy, RetryClassifier, load_retryable_patterns

DEFAULT_REGION = "us-east-1"


def _default_region() -> str:
    for key in ("AWS_REGION", "AWS_DEFAULT_REGION"):
        value = os.environ.get(key, "").strip()
        if value:
            return value
    return DEFAULT_REGION


class RunnerSettings(BaseSettings):
    """
    Engine settings, read from INFRATEST_* environment variables or .env.
    """

    TERRAFORM_BIN: str = Field(default="terraform", description="terraform or tofu executable")
    MAX_ATTEMPTS: int = Field(
        default=3, ge=1, description="Total attempts for apply and destroy, including the first"
    )
    RETRY_BACKOFF: float = Field(default=5.0, ge=0, description="Wait after the first failure")
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, ge=1, description="Backoff multiplier")
    RETRY_BACKOFF_MAX: float = Field(default=60.0, ge=0, description="Upper bound for one wait")
    SCENARIO_TIMEOUT: float = Field(
        default=3600.0, gt=0, description="Overall deadline per scenario in seconds"
    )
    AWS_REGION: str = Field(default_factory=_default_region, description="Region for probes")
    WORKSPACE_ROOT: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "infratest",
        description="Parent directory of per-scenario workspaces",
    )
    LOG_DIR: Path = Field(
        default=Path(".infratest") / "logs", description="Per-scenario command logs"
    )
    RETRYABLE_ERRORS_FILE: Optional[Path] = Field(
        default=None, description="YAML list of retryable error patterns"
    )
    KEEP_WORKSPACES: bool = Field(
        default=False, description="Keep workspace directories after a clean destroy"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Log level")

    model_config = SettingsConfigDict(
        env_prefix="INFRATEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.MAX_ATTEMPTS,
            base=self.RETRY_BACKOFF,
            factor=self.RETRY_BACKOFF_FACTOR,
            max_delay=self.RETRY_BACKOFF_MAX,
        )

    def build_classifier(self) -> RetryClassifier:
        return RetryClassifier(load_retryable_patterns(self.RETRYABLE_ERRORS_FILE))
