"""
Shared fixtures for GuildREL tests
"""

import pytest

from guildrel.affinity import AffinityService
from guildrel.config import ScoringConfig
from guildrel.store import MemoryStore
from tests.helpers import NOW


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_service(store):
    """Factory: service over the shared MemoryStore with a fixed clock."""
    def _make(**overrides):
        scoring = ScoringConfig(**overrides)
        return AffinityService(store, scoring=scoring, max_workers=2, clock=lambda: NOW)
    return _make


@pytest.fixture
def service(make_service):
    return make_service()
