"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports the settings module so
tests never depend on a developer's local .env files.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def clock() -> Mock:
    """Deterministic millisecond clock; tests move time by setting return_value."""
    return Mock(return_value=1_000_000)
