"""
Shared record and result types for GuildREL.

Input records (InteractionEvent, VoiceSession, User) are read-only snapshots
of what the external store holds. Result types (OverlapInterval,
AffinityScore, AffinityAnalysis) are derived views and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional

INTERACTION_KINDS = ("reaction", "mention", "reply")
# Audit-only kind written by the session tracker; not weighted
VC_TIME_KIND = "vc_time"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class User:
    user_id: str
    guild: str
    username: str = ""
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "guild": self.guild,
            "username": self.username,
            "display_name": self.display_name,
        }


@dataclass(frozen=True)
class InteractionEvent:
    """Directional signal from one user toward another."""

    from_user: str
    to_user: str
    guild: str
    kind: str
    timestamp: datetime
    message_id: Optional[str] = None
    channel_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class VoiceSession:
    """One stay in a voice channel. ``left_at is None`` means still connected."""

    user: str
    guild: str
    channel_id: str
    channel_name: str
    joined_at: datetime
    left_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.left_at is None

    def effective_end(self, now: datetime) -> datetime:
        """End of the session as seen at evaluation time ``now``."""
        return self.left_at if self.left_at is not None else now

    def duration_minutes(self, now: datetime) -> float:
        return (self.effective_end(now) - self.joined_at).total_seconds() / 60.0


@dataclass(frozen=True)
class OverlapInterval:
    channel_id: str
    channel_name: str
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> float:
        return max(0.0, (self.end - self.start).total_seconds() / 60.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "duration_minutes": round(self.duration_minutes, 2),
        }


@dataclass
class TimeRange:
    first: Optional[datetime] = None
    last: Optional[datetime] = None
    days_active: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first": _iso(self.first),
            "last": _iso(self.last),
            "days_active": self.days_active,
        }


@dataclass
class VCDetails:
    total_minutes: float = 0.0
    session_count: int = 0
    average_session_length: float = 0.0
    relative_score: float = 0.0  # % of from-user's total VC time spent together
    top_channels: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_minutes": round(self.total_minutes, 2),
            "session_count": self.session_count,
            "average_session_length": round(self.average_session_length, 2),
            "relative_score": round(self.relative_score, 2),
            "top_channels": [
                {"channel_name": c["channel_name"], "minutes": round(c["minutes"], 2)}
                for c in self.top_channels
            ],
        }


@dataclass
class AffinityScore:
    """Directional affinity from ``from_user`` toward ``to_user``."""

    from_user: str
    to_user: str
    guild: str
    total_score: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=lambda: {
        "reactions": 0.0, "mentions": 0.0, "replies": 0.0, "vc_relative": 0.0,
    })
    counts: Dict[str, int] = field(default_factory=lambda: {
        "reactions": 0, "mentions": 0, "replies": 0, "vc_sessions": 0,
    })
    time_range: TimeRange = field(default_factory=TimeRange)
    relative_score: float = 0.0
    rank: int = 1
    vc_details: VCDetails = field(default_factory=VCDetails)

    @property
    def text_interaction_count(self) -> int:
        return self.counts["reactions"] + self.counts["mentions"] + self.counts["replies"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_user": self.from_user,
            "to_user": self.to_user,
            "guild": self.guild,
            "total_score": round(self.total_score, 4),
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.items()},
            "counts": dict(self.counts),
            "time_range": self.time_range.to_dict(),
            "relative_score": round(self.relative_score, 2),
            "rank": self.rank,
            "vc_details": self.vc_details.to_dict(),
        }


@dataclass
class AffinityAnalysis:
    """Bidirectional view of a user pair."""

    user1: Optional[User]
    user2: Optional[User]
    affinity: AffinityScore
    reverse_affinity: AffinityScore
    mutual_score: float
    relationship_type: str
    insights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user1": self.user1.to_dict() if self.user1 else None,
            "user2": self.user2.to_dict() if self.user2 else None,
            "affinity": self.affinity.to_dict(),
            "reverse_affinity": self.reverse_affinity.to_dict(),
            "mutual_score": round(self.mutual_score, 4),
            "relationship_type": self.relationship_type,
            "insights": list(self.insights),
        }
