"""
Record builders shared across GuildREL tests
"""

from datetime import datetime, timedelta, timezone

from guildrel.models import InteractionEvent, VoiceSession

GUILD = "guild-1"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
# Voice sessions are laid out in minutes from this point
BASE = NOW - timedelta(days=1)


def event(from_user, to_user, kind, days_ago=1.0, guild=GUILD):
    """Interaction ``days_ago`` days before NOW."""
    return InteractionEvent(from_user, to_user, guild, kind, NOW - timedelta(days=days_ago))


def session(user, channel, start_min, end_min=None, guild=GUILD, name=None):
    """Voice session from BASE+start_min to BASE+end_min (None = still open)."""
    left = BASE + timedelta(minutes=end_min) if end_min is not None else None
    return VoiceSession(
        user, guild, channel, name or f"#{channel}", BASE + timedelta(minutes=start_min), left
    )


def at(minutes):
    """BASE + minutes."""
    return BASE + timedelta(minutes=minutes)
