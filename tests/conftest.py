"""Shared test fixtures."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from ecgsim.config import get_settings
from ecgsim.gamification.config_service import reset_config_provider
from ecgsim.gamification.schemas import GamificationConfig
from tests.fakes import InMemoryGamificationStore


@pytest.fixture(autouse=True)
def _fresh_process_state() -> Iterator[None]:
    """Settings and the config provider are process-wide; isolate tests from each other."""
    get_settings.cache_clear()
    reset_config_provider()
    yield
    get_settings.cache_clear()
    reset_config_provider()


@pytest.fixture
def config() -> GamificationConfig:
    """Default game parameters."""
    return GamificationConfig()


@pytest.fixture
def store() -> InMemoryGamificationStore:
    return InMemoryGamificationStore()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def now() -> datetime:
    """A Wednesday afternoon, UTC."""
    return datetime(2026, 3, 11, 14, 0, tzinfo=timezone.utc)
