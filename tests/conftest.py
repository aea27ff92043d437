import sys
from pathlib import Path

import pytest

from observability.sink import SessionLogSink


FIXTURES = Path(__file__).parent / "fixtures"
FAKE_WORKER = FIXTURES / "fake_worker.py"

# Long enough to pass every credential format check
LIFX_KEY = "c" * 64
LLM_KEY = "sk-" + "x" * 40


def fake_worker_command(mode: str = "echo"):
    return [sys.executable, str(FAKE_WORKER), mode]


@pytest.fixture
def log_sink():
    return SessionLogSink()


@pytest.fixture
def worker_command():
    """Factory: argv for the fake worker in a given mode."""
    return fake_worker_command
