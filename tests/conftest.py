"""
Pytest configuration and fixtures for keep-streaming.

Provides FIFO fixtures, isolated write-lock registries and fast retry
strategies so tests do not sit through the production backoff curves.
"""

import os

import pytest

from keep_streaming import WriteLockRegistry
from keep_streaming.settings import get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached per process; make env changes visible per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def registry():
    """Write-lock registry private to one test."""
    return WriteLockRegistry()


@pytest.fixture
def make_fifo(tmp_path):
    """Factory creating named pipes under tmp_path."""
    if not hasattr(os, "mkfifo"):
        pytest.skip("os.mkfifo not available on this platform")

    def _make(name: str = "test-fifo") -> str:
        path = tmp_path / name
        os.mkfifo(path)
        return str(path)

    return _make


@pytest.fixture
def fifo_path(make_fifo):
    return make_fifo()


@pytest.fixture
def fast_retry():
    """Retry strategy: 5 ms between attempts, gives up on attempt 3."""

    def strategy(error, attempt, path):
        if attempt >= 3:
            raise error
        return 5

    return strategy


@pytest.fixture
def give_up():
    """Retry strategy that never retries."""

    def strategy(error, attempt, path):
        raise error

    return strategy
