"""
Interaction / voice-session store for GuildREL

The scoring engine only reads bounded, pair-filtered slices through the
InteractionStore interface. SQLiteStore is the reference backend; MemoryStore
keeps everything in lists and is meant for tests and small scripts.

Any backend failure must surface as StorageUnavailableError so callers never
mistake "could not read" for "no relationship".
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Any, Iterator, List, Optional, Tuple, Union

import pandas as pd

from . import config
from .exceptions import StorageUnavailableError
from .models import INTERACTION_KINDS, InteractionEvent, User, VoiceSession

logger = logging.getLogger(__name__)

PartnerCounts = List[Tuple[str, int]]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch(value: datetime) -> float:
    """Datetime -> epoch seconds. Naive datetimes are taken as UTC."""
    return as_utc(value).timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InteractionStore(ABC):
    """Read interface the engine consumes."""

    @abstractmethod
    def fetch_interactions(
        self,
        from_user: str,
        to_user: str,
        guild: str,
        limit: int,
        newest_first: bool = True,
    ) -> List[InteractionEvent]:
        ...

    @abstractmethod
    def fetch_voice_sessions(
        self,
        user: str,
        guild: str,
        limit: int,
        newest_first: bool = True,
    ) -> List[VoiceSession]:
        ...

    @abstractmethod
    def fetch_total_voice_minutes(self, user: str, guild: str, now: datetime) -> float:
        """Sum over all of ``user``'s sessions, open sessions counted to ``now``."""
        ...

    @abstractmethod
    def fetch_top_interaction_partners(
        self,
        user: str,
        guild: str,
        window_days: int,
        limit: Optional[int],
        now: datetime,
    ) -> PartnerCounts:
        """(partner, count) for text interactions in the window, count descending."""
        ...

    @abstractmethod
    def fetch_top_voice_partners(
        self,
        user: str,
        guild: str,
        limit: Optional[int],
        now: datetime,
    ) -> PartnerCounts:
        """(partner, overlapping same-channel session pairs), count descending."""
        ...

    @abstractmethod
    def fetch_user(self, user_id: str, guild: str) -> Optional[User]:
        ...


# ============================================================================
# SQLITE
# ============================================================================

class SQLiteStore(InteractionStore):
    """SQLite-backed store. One short-lived connection per query (thread-safe)."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = str(db_path or config.DB_PATH)
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open store at {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            conn.rollback()
            raise StorageUnavailableError(f"Store query failed: {e}") from e
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT NOT NULL,
                    guild TEXT NOT NULL,
                    username TEXT NOT NULL DEFAULT '',
                    display_name TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (user_id, guild)
                );
                CREATE TABLE IF NOT EXISTS interactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_user TEXT NOT NULL,
                    to_user TEXT NOT NULL,
                    guild TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    message_id TEXT,
                    channel_id TEXT,
                    metadata TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_interactions_pair
                    ON interactions(from_user, to_user, guild, timestamp);
                CREATE INDEX IF NOT EXISTS idx_interactions_from
                    ON interactions(from_user, guild, timestamp);
                CREATE TABLE IF NOT EXISTS voice_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    guild TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    channel_name TEXT NOT NULL DEFAULT '',
                    joined_at REAL NOT NULL,
                    left_at REAL
                );
                CREATE INDEX IF NOT EXISTS idx_sessions_user
                    ON voice_sessions(user_id, guild, joined_at);
                CREATE INDEX IF NOT EXISTS idx_sessions_channel
                    ON voice_sessions(guild, channel_id, joined_at);
            """)
        logger.debug(f"Store initialized at {self.db_path}")

    def _query(self, sql: str, params: Dict[str, Any]) -> pd.DataFrame:
        with self._connection() as conn:
            return pd.read_sql_query(sql, conn, params=params)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_interactions(self, from_user, to_user, guild, limit, newest_first=True):
        order = "DESC" if newest_first else "ASC"
        df = self._query(
            f"""
            SELECT from_user, to_user, guild, kind, timestamp, message_id, channel_id, metadata
            FROM interactions
            WHERE from_user = :from_user AND to_user = :to_user AND guild = :guild
            ORDER BY timestamp {order}, id {order}
            LIMIT :limit
            """,
            {"from_user": from_user, "to_user": to_user, "guild": guild, "limit": int(limit)},
        )
        return [
            InteractionEvent(
                from_user=row.from_user,
                to_user=row.to_user,
                guild=row.guild,
                kind=row.kind,
                timestamp=from_epoch(row.timestamp),
                message_id=None if pd.isna(row.message_id) else row.message_id,
                channel_id=None if pd.isna(row.channel_id) else row.channel_id,
                metadata=json.loads(row.metadata) if isinstance(row.metadata, str) else None,
            )
            for row in df.itertuples(index=False)
        ]

    def fetch_voice_sessions(self, user, guild, limit, newest_first=True):
        order = "DESC" if newest_first else "ASC"
        df = self._query(
            f"""
            SELECT user_id, guild, channel_id, channel_name, joined_at, left_at
            FROM voice_sessions
            WHERE user_id = :user AND guild = :guild
            ORDER BY joined_at {order}, id {order}
            LIMIT :limit
            """,
            {"user": user, "guild": guild, "limit": int(limit)},
        )
        return [self._row_to_session(row) for row in df.itertuples(index=False)]

    def fetch_open_sessions(self, guild: str) -> List[VoiceSession]:
        df = self._query(
            """
            SELECT user_id, guild, channel_id, channel_name, joined_at, left_at
            FROM voice_sessions
            WHERE guild = :guild AND left_at IS NULL
            ORDER BY joined_at ASC, id ASC
            """,
            {"guild": guild},
        )
        return [self._row_to_session(row) for row in df.itertuples(index=False)]

    def fetch_total_voice_minutes(self, user, guild, now):
        df = self._query(
            """
            SELECT COALESCE(SUM(COALESCE(left_at, :now) - joined_at), 0) / 60.0 AS total_minutes
            FROM voice_sessions
            WHERE user_id = :user AND guild = :guild
              AND joined_at <= :now
              AND (left_at IS NULL OR left_at >= joined_at)
            """,
            {"user": user, "guild": guild, "now": to_epoch(now)},
        )
        return float(df["total_minutes"].iloc[0]) if len(df) else 0.0

    def fetch_top_interaction_partners(self, user, guild, window_days, limit, now):
        cutoff = to_epoch(now - timedelta(days=window_days))
        kinds = ", ".join(f"'{k}'" for k in INTERACTION_KINDS)
        df = self._query(
            f"""
            SELECT to_user AS partner, COUNT(*) AS n
            FROM interactions
            WHERE from_user = :user AND guild = :guild
              AND to_user != from_user
              AND kind IN ({kinds})
              AND timestamp >= :cutoff
            GROUP BY to_user
            ORDER BY n DESC, partner ASC
            LIMIT :limit
            """,
            {"user": user, "guild": guild, "cutoff": cutoff, "limit": -1 if limit is None else int(limit)},
        )
        return [(row.partner, int(row.n)) for row in df.itertuples(index=False)]

    def fetch_top_voice_partners(self, user, guild, limit, now):
        df = self._query(
            """
            SELECT b.user_id AS partner, COUNT(*) AS n
            FROM voice_sessions a
            JOIN voice_sessions b
              ON b.guild = a.guild
             AND b.channel_id = a.channel_id
             AND b.user_id != a.user_id
             AND b.joined_at < COALESCE(a.left_at, :now)
             AND a.joined_at < COALESCE(b.left_at, :now)
            WHERE a.user_id = :user AND a.guild = :guild
            GROUP BY b.user_id
            ORDER BY n DESC, partner ASC
            LIMIT :limit
            """,
            {"user": user, "guild": guild, "now": to_epoch(now), "limit": -1 if limit is None else int(limit)},
        )
        return [(row.partner, int(row.n)) for row in df.itertuples(index=False)]

    def fetch_user(self, user_id, guild):
        df = self._query(
            "SELECT user_id, guild, username, display_name FROM users WHERE user_id = :user_id AND guild = :guild",
            {"user_id": user_id, "guild": guild},
        )
        if len(df) == 0:
            return None
        row = df.iloc[0]
        return User(row["user_id"], row["guild"], row["username"], row["display_name"])

    @staticmethod
    def _row_to_session(row) -> VoiceSession:
        return VoiceSession(
            user=row.user_id,
            guild=row.guild,
            channel_id=row.channel_id,
            channel_name=row.channel_name,
            joined_at=from_epoch(row.joined_at),
            left_at=None if pd.isna(row.left_at) else from_epoch(row.left_at),
        )

    # ------------------------------------------------------------------
    # Writes (ingestion side, used by the session registry and tests)
    # ------------------------------------------------------------------

    def upsert_user(self, user: User) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO users (user_id, guild, username, display_name)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, guild) DO UPDATE SET
                    username = excluded.username,
                    display_name = excluded.display_name
                """,
                (user.user_id, user.guild, user.username, user.display_name),
            )

    def record_interaction(self, event: InteractionEvent) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO interactions
                    (from_user, to_user, guild, kind, timestamp, message_id, channel_id, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.from_user, event.to_user, event.guild, event.kind,
                    to_epoch(event.timestamp), event.message_id, event.channel_id,
                    json.dumps(event.metadata) if event.metadata is not None else None,
                ),
            )

    def create_voice_session(self, session: VoiceSession) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO voice_sessions (user_id, guild, channel_id, channel_name, joined_at, left_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.user, session.guild, session.channel_id, session.channel_name,
                    to_epoch(session.joined_at),
                    to_epoch(session.left_at) if session.left_at is not None else None,
                ),
            )

    def close_voice_session(
        self,
        user: str,
        guild: str,
        left_at: datetime,
        joined_before: Optional[datetime] = None,
    ) -> int:
        """
        Set left_at on the user's open session(s). Returns rows updated.

        With ``joined_before``, only sessions that started strictly earlier are closed.
        """
        cutoff = to_epoch(joined_before) if joined_before is not None else None
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE voice_sessions SET left_at = :left_at
                WHERE user_id = :user AND guild = :guild AND left_at IS NULL
                  AND (:cutoff IS NULL OR joined_at < :cutoff)
                """,
                {"left_at": to_epoch(left_at), "user": user, "guild": guild, "cutoff": cutoff},
            )
            return cursor.rowcount


# ============================================================================
# IN-MEMORY
# ============================================================================

class MemoryStore(InteractionStore):
    """List-backed store with the same semantics as SQLiteStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self.users: Dict[Tuple[str, str], User] = {}
        self.interactions: List[InteractionEvent] = []
        self.sessions: List[VoiceSession] = []

    def fetch_interactions(self, from_user, to_user, guild, limit, newest_first=True):
        with self._lock:
            rows = [
                _utc_event(e) for e in self.interactions
                if e.from_user == from_user and e.to_user == to_user and e.guild == guild
            ]
        rows.sort(key=lambda e: to_epoch(e.timestamp), reverse=newest_first)
        return rows[:limit]

    def fetch_voice_sessions(self, user, guild, limit, newest_first=True):
        with self._lock:
            rows = [_utc_session(s) for s in self.sessions if s.user == user and s.guild == guild]
        rows.sort(key=lambda s: to_epoch(s.joined_at), reverse=newest_first)
        return rows[:limit]

    def fetch_open_sessions(self, guild: str) -> List[VoiceSession]:
        with self._lock:
            rows = [_utc_session(s) for s in self.sessions if s.guild == guild and s.is_open]
        return sorted(rows, key=lambda s: to_epoch(s.joined_at))

    def fetch_total_voice_minutes(self, user, guild, now):
        now_ts = to_epoch(now)
        total = 0.0
        for s in self.fetch_voice_sessions(user, guild, len(self.sessions) or 1):
            start = to_epoch(s.joined_at)
            end = to_epoch(s.left_at) if s.left_at is not None else now_ts
            if start <= now_ts and end >= start:
                total += end - start
        return total / 60.0

    def fetch_top_interaction_partners(self, user, guild, window_days, limit, now):
        cutoff = to_epoch(now - timedelta(days=window_days))
        with self._lock:
            partners = [
                e.to_user for e in self.interactions
                if e.from_user == user and e.guild == guild and e.to_user != user
                and e.kind in INTERACTION_KINDS and to_epoch(e.timestamp) >= cutoff
            ]
        return _ranked_counts(partners, limit)

    def fetch_top_voice_partners(self, user, guild, limit, now):
        now_ts = to_epoch(now)
        with self._lock:
            mine = [s for s in self.sessions if s.user == user and s.guild == guild]
            others = [s for s in self.sessions if s.user != user and s.guild == guild]
        partners = []
        for a in mine:
            a_end = to_epoch(a.left_at) if a.left_at is not None else now_ts
            for b in others:
                b_end = to_epoch(b.left_at) if b.left_at is not None else now_ts
                if (b.channel_id == a.channel_id
                        and to_epoch(b.joined_at) < a_end
                        and to_epoch(a.joined_at) < b_end):
                    partners.append(b.user)
        return _ranked_counts(partners, limit)

    def fetch_user(self, user_id, guild):
        return self.users.get((user_id, guild))

    def upsert_user(self, user: User) -> None:
        with self._lock:
            self.users[(user.user_id, user.guild)] = user

    def record_interaction(self, event: InteractionEvent) -> None:
        with self._lock:
            self.interactions.append(event)

    def create_voice_session(self, session: VoiceSession) -> None:
        with self._lock:
            self.sessions.append(session)

    def close_voice_session(self, user, guild, left_at, joined_before=None):
        updated = 0
        with self._lock:
            for i, s in enumerate(self.sessions):
                if s.user == user and s.guild == guild and s.is_open and (
                    joined_before is None or to_epoch(s.joined_at) < to_epoch(joined_before)
                ):
                    self.sessions[i] = VoiceSession(
                        s.user, s.guild, s.channel_id, s.channel_name, s.joined_at, left_at
                    )
                    updated += 1
        return updated


def _utc_event(event: InteractionEvent) -> InteractionEvent:
    return replace(event, timestamp=as_utc(event.timestamp))


def _utc_session(session: VoiceSession) -> VoiceSession:
    return replace(
        session,
        joined_at=as_utc(session.joined_at),
        left_at=as_utc(session.left_at) if session.left_at is not None else None,
    )


def _ranked_counts(keys: List[str], limit: Optional[int]) -> PartnerCounts:
    if not keys:
        return []
    counts = pd.Series(keys).value_counts()
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [(partner, int(count)) for partner, count in ranked]
