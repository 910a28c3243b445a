"""
Shared fixtures for the test suite.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from agent_telemetry.storage.repository import initialize_schema


class FakeClock:
    """Controllable replacement for datetime.now."""

    def __init__(
        self, start: datetime = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)
    ):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by CLI tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path():
    """Path to a freshly initialized database in a temporary directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        yield path
