"""Shared fixtures for tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mailarchiver.config import Config


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def live_config() -> Config:
    return Config(retention_days=14, simulate=False)


@pytest.fixture
def simulate_config() -> Config:
    return Config(retention_days=14, simulate=True)
