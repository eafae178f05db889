"""
Interval overlap engine for voice co-presence.

Two ways to get the same answer:

- pairwise: intersect every same-channel session pair of the two users, then
  merge the raw overlaps per channel (O(M^2) + O(M log M)).
- sweep: bucket both users' sessions by channel and walk the sorted
  join/leave boundaries once, emitting spans where both are connected
  (O(M log M)).

Open sessions end at the caller-supplied ``now``. Capture it once per
computation so every duration in that computation agrees.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

import pandas as pd

from .exceptions import MalformedRecordError
from .models import OverlapInterval, VoiceSession

logger = logging.getLogger(__name__)

TOP_CHANNELS_LIMIT = 5


# ============================================================================
# VALIDATION
# ============================================================================

def check_session(session: VoiceSession, now: datetime) -> None:
    """Raise MalformedRecordError if the session cannot be placed on the timeline."""
    if session.left_at is not None and session.left_at < session.joined_at:
        raise MalformedRecordError(
            f"Session for {session.user} in {session.channel_id} ends before it starts "
            f"({session.left_at.isoformat()} < {session.joined_at.isoformat()})"
        )
    if session.joined_at > now:
        raise MalformedRecordError(
            f"Session for {session.user} in {session.channel_id} starts after evaluation time"
        )


def valid_sessions(sessions: Iterable[VoiceSession], now: datetime) -> List[VoiceSession]:
    """Drop malformed sessions, logging each one."""
    kept = []
    for session in sessions:
        try:
            check_session(session, now)
        except MalformedRecordError as e:
            logger.warning(f"Skipping malformed voice session: {e}")
            continue
        kept.append(session)
    return kept


def total_session_minutes(sessions: Iterable[VoiceSession], now: datetime) -> float:
    """Sum of session lengths, open sessions counted up to ``now``."""
    return sum(s.duration_minutes(now) for s in valid_sessions(sessions, now))


# ============================================================================
# PAIRWISE
# ============================================================================

def intersect(a: VoiceSession, b: VoiceSession, now: datetime) -> Optional[OverlapInterval]:
    """Same-channel intersection of two sessions, or None."""
    if a.user == b.user or a.channel_id != b.channel_id:
        return None

    start = max(a.joined_at, b.joined_at)
    end = min(a.effective_end(now), b.effective_end(now))
    if start >= end:
        return None

    return OverlapInterval(a.channel_id, a.channel_name, start, end)


def find_overlaps(
    sessions_a: List[VoiceSession],
    sessions_b: List[VoiceSession],
    now: datetime,
) -> List[OverlapInterval]:
    """Raw pairwise overlaps. May contain duplicate coverage; see merge_intervals."""
    overlaps = []
    for a in sessions_a:
        for b in sessions_b:
            interval = intersect(a, b, now)
            if interval is not None:
                overlaps.append(interval)
    return overlaps


def merge_intervals(intervals: Iterable[OverlapInterval]) -> List[OverlapInterval]:
    """
    Merge overlapping or touching intervals within each channel.

    Channels never merge with each other. Output is sorted by channel, then
    start, and is pairwise non-overlapping per channel. Idempotent.
    """
    by_channel: Dict[str, List[OverlapInterval]] = defaultdict(list)
    for interval in intervals:
        by_channel[interval.channel_id].append(interval)

    merged = []
    for channel_id in sorted(by_channel):
        ordered = sorted(by_channel[channel_id], key=lambda i: (i.start, i.end))
        current = ordered[0]
        for interval in ordered[1:]:
            if interval.start <= current.end:
                if interval.end > current.end:
                    current = OverlapInterval(
                        current.channel_id, current.channel_name, current.start, interval.end
                    )
            else:
                merged.append(current)
                current = interval
        merged.append(current)

    return merged


# ============================================================================
# SWEEP
# ============================================================================

def sweep_overlaps(
    sessions_a: List[VoiceSession],
    sessions_b: List[VoiceSession],
    now: datetime,
) -> List[OverlapInterval]:
    """Merged co-presence via one boundary sweep per channel."""
    users_a = {s.user for s in sessions_a}
    sessions_b = [s for s in sessions_b if s.user not in users_a]

    # channel -> list of (time, side, delta)
    boundaries: Dict[str, List[tuple]] = defaultdict(list)
    names: Dict[str, str] = {}
    for side, sessions in ((0, sessions_a), (1, sessions_b)):
        for s in sessions:
            end = s.effective_end(now)
            if end <= s.joined_at:
                continue
            boundaries[s.channel_id].append((s.joined_at, side, 1))
            boundaries[s.channel_id].append((end, side, -1))
            names.setdefault(s.channel_id, s.channel_name)

    intervals = []
    for channel_id, events in boundaries.items():
        events.sort(key=lambda e: e[0])
        active = [0, 0]
        span_start = None
        i = 0
        while i < len(events):
            t = events[i][0]
            # Apply every boundary at this instant before judging presence
            while i < len(events) and events[i][0] == t:
                _, side, delta = events[i]
                active[side] += delta
                i += 1

            together = active[0] > 0 and active[1] > 0
            if together and span_start is None:
                span_start = t
            elif not together and span_start is not None:
                intervals.append(OverlapInterval(channel_id, names[channel_id], span_start, t))
                span_start = None

    return merge_intervals(intervals)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def co_presence(
    sessions_a: List[VoiceSession],
    sessions_b: List[VoiceSession],
    now: datetime,
    strategy: str = "pairwise",
) -> List[OverlapInterval]:
    """
    Merged, non-overlapping intervals during which both users shared a channel.

    Malformed sessions on either side are skipped.
    """
    sessions_a = valid_sessions(sessions_a, now)
    sessions_b = valid_sessions(sessions_b, now)

    if strategy == "sweep":
        return sweep_overlaps(sessions_a, sessions_b, now)
    if strategy == "pairwise":
        return merge_intervals(find_overlaps(sessions_a, sessions_b, now))
    raise ValueError(f"Unknown overlap strategy: {strategy}")


def summarize_overlaps(intervals: List[OverlapInterval]) -> Dict[str, Any]:
    """
    Roll merged intervals up into totals.

    Returns:
        {
            "total_minutes": float,
            "session_count": int,
            "average_session_length": float,
            "top_channels": [{"channel_name": str, "minutes": float}, ...],
        }
    """
    if not intervals:
        return {
            "total_minutes": 0.0,
            "session_count": 0,
            "average_session_length": 0.0,
            "top_channels": [],
        }

    df = pd.DataFrame({
        "channel_name": [i.channel_name for i in intervals],
        "minutes": [i.duration_minutes for i in intervals],
    })
    total = float(df["minutes"].sum())
    per_channel = (
        df.groupby("channel_name", sort=False)["minutes"].sum()
        .sort_values(ascending=False, kind="stable")
        .head(TOP_CHANNELS_LIMIT)
    )

    return {
        "total_minutes": total,
        "session_count": len(intervals),
        "average_session_length": total / len(intervals),
        "top_channels": [
            {"channel_name": name, "minutes": float(minutes)}
            for name, minutes in per_channel.items()
        ],
    }
