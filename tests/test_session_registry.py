"""
Tests for the open voice-session registry
"""

from unittest.mock import MagicMock, patch

import pytest

from guildrel.exceptions import DuplicateSessionError, MalformedRecordError, StorageUnavailableError
from guildrel.models import VC_TIME_KIND
from guildrel.session_registry import VoiceSessionRegistry
from guildrel.store import SQLiteStore
from tests.helpers import GUILD, NOW, at, session


@pytest.fixture
def registry(store):
    return VoiceSessionRegistry(store)


def test_open_and_close(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))

    assert len(registry) == 1
    assert registry.get("alice", GUILD).channel_id == "general"
    assert store.sessions[0].is_open

    closed = registry.close("alice", GUILD, at=at(30))

    assert closed.duration_minutes(NOW) == pytest.approx(30.0)
    assert len(registry) == 0
    assert store.sessions[0].left_at == at(30)


def test_join_and_leave_are_audited(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.close("alice", GUILD, at=at(5))

    audit = [e for e in store.interactions if e.kind == VC_TIME_KIND]

    assert [e.metadata["action"] for e in audit] == ["joined", "left"]
    assert all(e.from_user == e.to_user == "alice" for e in audit)


def test_duplicate_open_rejected(registry):
    registry.open("alice", GUILD, "general", "#general", at=at(0))

    with pytest.raises(DuplicateSessionError):
        registry.open("alice", GUILD, "music", "#music", at=at(10))

    assert registry.get("alice", GUILD).channel_id == "general"


def test_duplicate_open_with_replace(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.open("alice", GUILD, "music", "#music", at=at(10), replace=True)

    assert registry.get("alice", GUILD).channel_id == "music"
    assert store.sessions[0].left_at == at(10)
    assert store.sessions[1].is_open


def test_same_user_in_two_guilds(registry):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.open("alice", "guild-2", "lobby", "#lobby", at=at(0))

    assert len(registry) == 2


def test_close_without_open(registry):
    assert registry.close("alice", GUILD, at=at(5)) is None


def test_leave_before_join_is_malformed(registry):
    registry.open("alice", GUILD, "general", "#general", at=at(30))

    with pytest.raises(MalformedRecordError):
        registry.close("alice", GUILD, at=at(10))

    assert registry.get("alice", GUILD) is not None


def test_switch(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.switch("alice", GUILD, "music", "#music", at=at(20))

    assert registry.get("alice", GUILD).channel_id == "music"
    assert store.sessions[0].left_at == at(20)
    assert store.sessions[1].joined_at == at(20)


def test_switch_without_open_session(registry, store):
    registry.switch("alice", GUILD, "music", "#music", at=at(20))

    assert registry.get("alice", GUILD).channel_id == "music"
    assert len(store.sessions) == 1


def test_flush(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.open("bob", GUILD, "general", "#general", at=at(5))

    closed = registry.flush(at=at(60))

    assert {s.user for s in closed} == {"alice", "bob"}
    assert len(registry) == 0
    assert not any(s.is_open for s in store.sessions)


def test_recover_keeps_latest_open_row(tmp_path):
    store = SQLiteStore(tmp_path / "guildrel.db")
    store.create_voice_session(session("alice", "general", 0))
    store.create_voice_session(session("alice", "music", 30))
    store.create_voice_session(session("bob", "general", 10))
    store.create_voice_session(session("carol", "general", 0, 20))

    registry = VoiceSessionRegistry(store)
    recovered = registry.recover(GUILD)

    assert recovered == 2
    assert registry.get("alice", GUILD).channel_id == "music"
    assert registry.get("bob", GUILD) is not None
    assert registry.get("carol", GUILD) is None

    alice_rows = store.fetch_voice_sessions("alice", GUILD, limit=10, newest_first=False)
    assert alice_rows[0].left_at == at(30)
    assert alice_rows[1].is_open


def test_flush_skips_malformed_and_closes_the_rest(registry, store, caplog):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry.open("bob", GUILD, "general", "#general", at=at(100))
    registry.open("carol", GUILD, "music", "#music", at=at(0))

    with caplog.at_level("WARNING", logger="guildrel.session_registry"):
        closed = registry.flush(at=at(50))

    assert {s.user for s in closed} == {"alice", "carol"}
    assert registry.get("bob", GUILD) is not None
    assert [s.user for s in store.fetch_open_sessions(GUILD)] == ["bob"]
    assert "Skipping session during flush" in caplog.text


def test_store_failure_keeps_session_open(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0))

    with patch.object(store, "close_voice_session", side_effect=StorageUnavailableError("db down")):
        with pytest.raises(StorageUnavailableError):
            registry.close("alice", GUILD, at=at(30))

    assert registry.get("alice", GUILD) is not None

    closed = registry.close("alice", GUILD, at=at(30))
    assert closed.left_at == at(30)
    assert store.fetch_open_sessions(GUILD) == []


def test_naive_times_are_utc(registry, store):
    registry.open("alice", GUILD, "general", "#general", at=at(0).replace(tzinfo=None))
    closed = registry.close("alice", GUILD, at=at(30))

    assert closed.joined_at == at(0)
    assert closed.duration_minutes(NOW) == pytest.approx(30.0)


def test_reads_take_the_lock(registry):
    registry.open("alice", GUILD, "general", "#general", at=at(0))
    registry._lock = MagicMock()

    registry.get("alice", GUILD)
    len(registry)

    assert registry._lock.__enter__.call_count == 2


def test_snapshot_is_a_copy(registry):
    registry.open("alice", GUILD, "general", "#general", at=at(0))

    snap = registry.snapshot()
    snap.clear()

    assert len(registry) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
