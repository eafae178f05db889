"""
Tests for the Flask API
"""

from unittest.mock import MagicMock

import pytest

from guildrel.affinity import AffinityService
from guildrel.api import create_app
from guildrel.config import ScoringConfig
from guildrel.exceptions import StorageUnavailableError
from guildrel.models import User
from guildrel.store import InteractionStore
from tests.helpers import GUILD, NOW, event, session


@pytest.fixture
def client(service, store):
    store.upsert_user(User("alice", GUILD, "alice", "Alice"))
    store.interactions.extend([event("alice", "bob", "mention") for _ in range(2)])
    store.sessions.extend([
        session("alice", "general", 0, 100),
        session("carol", "general", 50, 100),
    ])
    app = create_app(service)
    app.testing = True
    return app.test_client()


def test_health(client):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_affinity(client):
    resp = client.get(f"/api/affinity/{GUILD}/alice/bob")
    data = resp.get_json()

    assert resp.status_code == 200
    assert data["found"] is True
    assert data["total_score"] == pytest.approx(4.0)
    assert data["breakdown"]["mentions"] == pytest.approx(4.0)


def test_affinity_not_found(client):
    data = client.get(f"/api/affinity/{GUILD}/bob/alice").get_json()

    assert data["found"] is False
    assert data["rank"] == 1


def test_relationship(client):
    data = client.get(f"/api/relationship/{GUILD}/alice/carol").get_json()

    assert data["found"] is True
    assert data["affinity"]["vc_details"]["relative_score"] == pytest.approx(50.0)
    assert data["relationship_type"] == "strong"
    assert data["user1"]["display_name"] == "Alice"
    assert data["user2"] is None


def test_top(client):
    data = client.get(f"/api/top/{GUILD}/alice?limit=5").get_json()

    assert data["found"] is True
    assert [r["to_user"] for r in data["relationships"]] == ["carol", "bob"]
    assert data["summary"]["total_relationships"] == 2


@pytest.mark.parametrize("limit", ["abc", "0", "101"])
def test_top_bad_limit(client, limit):
    resp = client.get(f"/api/top/{GUILD}/alice?limit={limit}")

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "bad_request"


def test_storage_unavailable_is_503():
    store = MagicMock(spec=InteractionStore)
    store.fetch_interactions.side_effect = StorageUnavailableError("db down")
    service = AffinityService(store, scoring=ScoringConfig(), max_workers=2, clock=lambda: NOW)
    app = create_app(service)
    app.testing = True

    resp = app.test_client().get(f"/api/affinity/{GUILD}/alice/bob")

    assert resp.status_code == 503
    assert resp.get_json()["error"] == "storage_unavailable"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
