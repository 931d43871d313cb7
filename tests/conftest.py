"""Pytest configuration and shared fixtures."""

import logfire
import pytest

from famtasks.core.config import settings


@pytest.fixture(scope="session", autouse=True)
def _quiet_logfire():
    """Keep Logfire local during tests: spans are created but never exported."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def _scheduler_scope(monkeypatch):
    """Scan every family in tests regardless of the environment."""
    monkeypatch.setattr(settings, "scheduler_family_id", None)
