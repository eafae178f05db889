"""
Registry of currently-open voice sessions.

Keyed by (guild, user). Lifecycle:

    open    -> join a channel (duplicate open is an error unless replaced)
    close   -> leave
    switch  -> close the current session and open one in the new channel
    flush   -> force-close everything (shutdown)
    recover -> rebuild from sessions the store still has open (after a crash)

Every transition is written through to the store. Joins and leaves also
append a self-directed ``vc_time`` audit interaction.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .exceptions import DuplicateSessionError, MalformedRecordError
from .models import VC_TIME_KIND, InteractionEvent, VoiceSession
from .store import as_utc, utcnow

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class VoiceSessionRegistry:
    """Explicit (guild, user) -> open session map backed by a writable store."""

    def __init__(self, store):
        """
        Args:
            store: Store providing create_voice_session, close_voice_session,
                record_interaction and fetch_open_sessions
        """
        self.store = store
        self._open: Dict[SessionKey, VoiceSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._open)

    def get(self, user: str, guild: str) -> Optional[VoiceSession]:
        with self._lock:
            return self._open.get((guild, user))

    def snapshot(self) -> Dict[SessionKey, VoiceSession]:
        """Copy of the open-session map (for debugging / status output)."""
        with self._lock:
            return dict(self._open)

    def open(
        self,
        user: str,
        guild: str,
        channel_id: str,
        channel_name: str,
        at: Optional[datetime] = None,
        replace: bool = False,
    ) -> VoiceSession:
        """
        Record a join.

        Raises:
            DuplicateSessionError: user already has an open session in this
                guild and ``replace`` is False
        """
        at = as_utc(at) if at is not None else utcnow()
        with self._lock:
            existing = self._open.get((guild, user))
            if existing is not None:
                if not replace:
                    raise DuplicateSessionError(
                        f"{user} already has an open session in {existing.channel_id} (guild {guild})"
                    )
                logger.warning(f"Replacing open session for {user} in {existing.channel_id}")
                self._close_locked(user, guild, at)

            session = VoiceSession(user, guild, channel_id, channel_name, at)
            self.store.create_voice_session(session)
            self._open[(guild, user)] = session

        self._audit(user, guild, channel_id, channel_name, "joined", at)
        logger.info(f"{user} joined voice channel {channel_name} ({channel_id})")
        return session

    def close(self, user: str, guild: str, at: Optional[datetime] = None) -> Optional[VoiceSession]:
        """Record a leave. Returns the closed session, or None if none was open."""
        at = as_utc(at) if at is not None else utcnow()
        with self._lock:
            closed = self._close_locked(user, guild, at)

        if closed is None:
            logger.debug(f"Leave for {user} in guild {guild} with no open session")
            return None

        self._audit(user, guild, closed.channel_id, closed.channel_name, "left", at)
        logger.info(f"{user} left voice channel {closed.channel_name}")
        return closed

    def switch(
        self,
        user: str,
        guild: str,
        channel_id: str,
        channel_name: str,
        at: Optional[datetime] = None,
    ) -> VoiceSession:
        """Move an open session to another channel (or open one if none was open)."""
        at = as_utc(at) if at is not None else utcnow()
        with self._lock:
            self._close_locked(user, guild, at)
            session = VoiceSession(user, guild, channel_id, channel_name, at)
            self.store.create_voice_session(session)
            self._open[(guild, user)] = session

        logger.info(f"{user} switched to voice channel {channel_name} ({channel_id})")
        return session

    def flush(self, at: Optional[datetime] = None) -> List[VoiceSession]:
        """
        Force-close every open session. Call on shutdown.

        A session that cannot be closed at ``at`` (joined later) is logged
        and left open; the rest are still closed.
        """
        at = as_utc(at) if at is not None else utcnow()
        closed = []
        with self._lock:
            for guild, user in list(self._open):
                try:
                    session = self._close_locked(user, guild, at)
                except MalformedRecordError as e:
                    logger.warning(f"Skipping session during flush: {e}")
                    continue
                if session is not None:
                    closed.append(session)

        if closed:
            logger.info(f"Flushed {len(closed)} open voice session(s)")
        return closed

    def recover(self, guild: str) -> int:
        """
        Load sessions the store still has open for ``guild``.

        A user with several open rows keeps the most recent one; the older
        ones are closed at the newer session's join time.
        """
        recovered = 0
        with self._lock:
            for session in self.store.fetch_open_sessions(guild):
                key = (session.guild, session.user)
                previous = self._open.get(key)
                if previous is not None:
                    logger.warning(
                        f"Duplicate open sessions for {session.user} in guild {guild}; "
                        f"closing the one from {previous.joined_at.isoformat()}"
                    )
                    self.store.close_voice_session(
                        session.user, session.guild, session.joined_at, joined_before=session.joined_at
                    )
                else:
                    recovered += 1
                self._open[key] = session

        logger.info(f"Recovered {recovered} open voice session(s) for guild {guild}")
        return recovered

    def _close_locked(self, user: str, guild: str, at: datetime) -> Optional[VoiceSession]:
        session = self._open.get((guild, user))
        if session is None:
            return None
        if at < session.joined_at:
            raise MalformedRecordError(
                f"Leave at {at.isoformat()} precedes join at {session.joined_at.isoformat()} for {user}"
            )

        # Forget the session only once the store has closed it
        self.store.close_voice_session(user, guild, at)
        del self._open[(guild, user)]
        return VoiceSession(session.user, session.guild, session.channel_id, session.channel_name,
                            session.joined_at, at)

    def _audit(self, user, guild, channel_id, channel_name, action, at):
        self.store.record_interaction(InteractionEvent(
            from_user=user,
            to_user=user,
            guild=guild,
            kind=VC_TIME_KIND,
            timestamp=at,
            channel_id=channel_id,
            metadata={"action": action, "channel_name": channel_name},
        ))
