"""
Shared fixtures for live scenario runs.
"""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env.test (credentials, region, INFRATEST_* overrides) without clobbering the shell.
env_file = Path(__file__).parent / ".env.test"
if env_file.exists():
    load_dotenv(env_file, override=False)

from infratest.run_tests import build_runner  # noqa: E402
from infratest.runner.settings import RunnerSettings  # noqa: E402


@pytest.fixture(scope="session")
def settings():
    return RunnerSettings()


@pytest.fixture(scope="session")
def scenario_runner(settings):
    """Runner without a console reporter; results are asserted by the tests."""
    return build_runner(settings)
