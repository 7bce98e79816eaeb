"""
Pytest configuration and fixtures for API tests.
"""

import pytest
from fastapi.testclient import TestClient

from sprintlock.api.main import create_app
from sprintlock.checkpoint_store import CheckpointStore
from sprintlock.context_cache import ContextCacheManager


@pytest.fixture
def cache(settings):
    return ContextCacheManager(settings.cache)


@pytest.fixture
def store(settings):
    return CheckpointStore.from_settings(settings.checkpoint)


@pytest.fixture
def api_client(settings, cache, store):
    """Test client around an isolated cache and checkpoint store."""
    with TestClient(create_app(settings, cache, store)) as client:
        yield client


@pytest.fixture
def example_payload():
    return {
        "tasks": [
            {"id": "A", "writes": ["f1"]},
            {"id": "B", "writes": ["f1"]},
            {"id": "C", "reads": ["f1"]},
            {"id": "D", "writes": ["d.txt"]},
            {"id": "E", "writes": ["e.txt"]},
        ]
    }
