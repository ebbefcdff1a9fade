"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides test settings, a controllable clock and the FastAPI application.
"""

from typing import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from community_chat.api.main import create_app
from community_chat.api.sse.dedup import DedupCache
from community_chat.config.settings import Settings

from tests.utils.helpers import FakeClock


def make_test_settings(**overrides) -> Settings:
    """Settings without stream pacing, suitable for fast tests."""
    values = {
        "environment": "testing",
        "debug": True,
        "log_level": "DEBUG",
        "stream_start_delay": 0.0,
        "stream_token_delay": 0.0,
        "chat_endpoint": "http://testserver/api/v1/chat/stream",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    """Test settings fixture."""
    return make_test_settings()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock that only moves when a test advances it."""
    return FakeClock()


@pytest.fixture
def dedup_cache(test_settings: Settings, fake_clock: FakeClock) -> DedupCache:
    """Dedup cache driven by the fake clock."""
    return DedupCache(
        window_seconds=test_settings.dedup_window_seconds,
        max_entries=test_settings.dedup_max_entries,
        clock=fake_clock,
    )


@pytest.fixture
def app(test_settings: Settings, dedup_cache: DedupCache) -> FastAPI:
    """Application using the default rule-based generator."""
    return create_app(settings=test_settings, dedup_cache=dedup_cache)


@pytest.fixture
def fastapi_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """FastAPI test client."""
    with TestClient(app) as client:
        yield client
