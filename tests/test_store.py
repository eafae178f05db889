"""
Tests for the SQLite and in-memory stores
"""

import sqlite3
from dataclasses import replace
from datetime import timedelta, timezone
from unittest.mock import patch

import pytest

from guildrel.exceptions import StorageUnavailableError
from guildrel.models import InteractionEvent, User
from guildrel.store import MemoryStore, SQLiteStore, as_utc, from_epoch, to_epoch
from tests.helpers import GUILD, NOW, at, event, session


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteStore(tmp_path / "guildrel.db")


@pytest.fixture(params=["sqlite", "memory"])
def any_store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteStore(tmp_path / "guildrel.db")
    return MemoryStore()


def _load(store, events=(), sessions=()):
    for e in events:
        store.record_interaction(e)
    for s in sessions:
        store.create_voice_session(s)


def test_epoch_roundtrip_is_utc():
    assert from_epoch(to_epoch(NOW)) == NOW
    assert to_epoch(NOW.replace(tzinfo=None)) == to_epoch(NOW)


def test_as_utc():
    assert as_utc(NOW.replace(tzinfo=None)) == NOW
    assert as_utc(NOW.replace(tzinfo=None)).tzinfo is timezone.utc
    assert as_utc(NOW.astimezone(timezone(timedelta(hours=2)))).tzinfo is timezone.utc


def test_memory_store_returns_utc_records():
    store = MemoryStore()
    store.sessions.append(replace(session("alice", "general", 0, 10), joined_at=at(0).replace(tzinfo=None)))

    row = store.fetch_voice_sessions("alice", GUILD, limit=5)[0]

    assert row.joined_at == at(0)
    assert row.joined_at.tzinfo is timezone.utc


# ============================================================================
# READS (both backends)
# ============================================================================

def test_fetch_interactions_pair_filtered_newest_first(any_store):
    _load(any_store, events=[
        event("alice", "bob", "reply", days_ago=3),
        event("alice", "bob", "mention", days_ago=1),
        event("bob", "alice", "reaction"),
        event("alice", "bob", "reply", guild="other-guild"),
    ])

    rows = any_store.fetch_interactions("alice", "bob", GUILD, limit=10)

    assert [r.kind for r in rows] == ["mention", "reply"]
    assert rows[0].timestamp == NOW - timedelta(days=1)

    oldest = any_store.fetch_interactions("alice", "bob", GUILD, limit=1, newest_first=False)
    assert [r.kind for r in oldest] == ["reply"]


def test_fetch_voice_sessions_limit(any_store):
    _load(any_store, sessions=[
        session("alice", "general", 0, 10),
        session("alice", "music", 20, 30),
        session("alice", "general", 40),
    ])

    rows = any_store.fetch_voice_sessions("alice", GUILD, limit=2)

    assert len(rows) == 2
    assert rows[0].is_open
    assert rows[0].joined_at == at(40)
    assert rows[1].left_at == at(30)


def test_total_voice_minutes(any_store):
    _load(any_store, sessions=[
        session("alice", "general", 0, 30),
        session("alice", "music", 60, 100),
        session("alice", "general", 200, 150),  # malformed, ignored
        session("bob", "general", 0, 500),
    ])

    assert any_store.fetch_total_voice_minutes("alice", GUILD, NOW) == pytest.approx(70.0)
    assert any_store.fetch_total_voice_minutes("nobody", GUILD, NOW) == 0.0


def test_total_voice_minutes_open_session(any_store):
    _load(any_store, sessions=[session("alice", "general", 24 * 60 - 30)])

    assert any_store.fetch_total_voice_minutes("alice", GUILD, NOW) == pytest.approx(30.0)


def test_top_interaction_partners(any_store):
    _load(any_store, events=[
        event("alice", "bob", "reply"),
        event("alice", "bob", "reaction"),
        event("alice", "carol", "mention"),
        event("alice", "dave", "mention", days_ago=200),  # outside window
        event("alice", "alice", "vc_time"),
        event("carol", "alice", "reply"),
    ])

    partners = any_store.fetch_top_interaction_partners("alice", GUILD, 90, None, NOW)

    assert partners == [("bob", 2), ("carol", 1)]
    assert any_store.fetch_top_interaction_partners("alice", GUILD, 90, 1, NOW) == [("bob", 2)]


def test_top_voice_partners(any_store):
    _load(any_store, sessions=[
        session("alice", "general", 0, 60),
        session("alice", "general", 100, 160),
        session("bob", "general", 30, 120),
        session("carol", "general", 150),
        session("dave", "music", 0, 60),
        session("erin", "general", 60, 100),  # touches, no overlap
    ])

    partners = any_store.fetch_top_voice_partners("alice", GUILD, None, NOW)

    assert partners == [("bob", 2), ("carol", 1)]


def test_fetch_user(any_store):
    any_store.upsert_user(User("alice", GUILD, "alice_1", "Alice"))
    any_store.upsert_user(User("alice", GUILD, "alice_1", "Alice A."))

    user = any_store.fetch_user("alice", GUILD)

    assert user.display_name == "Alice A."
    assert any_store.fetch_user("alice", "other-guild") is None


# ============================================================================
# WRITES
# ============================================================================

def test_close_voice_session(any_store):
    _load(any_store, sessions=[session("alice", "general", 0), session("alice", "music", 10)])

    updated = any_store.close_voice_session("alice", GUILD, at(20), joined_before=at(10))

    assert updated == 1
    open_rows = any_store.fetch_open_sessions(GUILD)
    assert [s.channel_id for s in open_rows] == ["music"]


def test_interaction_metadata_roundtrip(sqlite_store):
    sqlite_store.record_interaction(InteractionEvent(
        "alice", "alice", GUILD, "vc_time", at(0),
        channel_id="general", metadata={"action": "joined"},
    ))

    row = sqlite_store.fetch_interactions("alice", "alice", GUILD, limit=5)[0]

    assert row.metadata == {"action": "joined"}
    assert row.channel_id == "general"
    assert row.message_id is None


# ============================================================================
# FAILURES
# ============================================================================

def test_unreachable_database(tmp_path):
    with pytest.raises(StorageUnavailableError):
        SQLiteStore(tmp_path / "missing-dir" / "guildrel.db")


def test_query_failure_is_storage_error(sqlite_store):
    with patch("guildrel.store.sqlite3.connect", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(StorageUnavailableError):
            sqlite_store.fetch_interactions("alice", "bob", GUILD, limit=10)


def test_broken_schema_is_storage_error(sqlite_store):
    conn = sqlite3.connect(sqlite_store.db_path)
    conn.execute("DROP TABLE interactions")
    conn.commit()
    conn.close()

    with pytest.raises(StorageUnavailableError):
        sqlite_store.fetch_top_interaction_partners("alice", GUILD, 90, None, NOW)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
