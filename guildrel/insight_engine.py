"""
GuildREL Insight Engine
Turns a pair of directional affinity scores into short observations

Each check is independent and appended in a fixed priority order, so the
same inputs always produce the same list.
"""

from datetime import datetime
from typing import List, Optional

from .decay import age_in_days
from .models import AffinityScore, User

# Thresholds
REPLY_SHARE_MIN = 0.4
MENTION_SHARE_MIN = 0.3
VC_MINUTES_EXTENSIVE = 60
VC_MINUTES_MODERATE = 10
VC_SHARE_HIGH = 10.0
VC_SHARE_MODERATE = 2.0
LONG_SESSION_MINUTES = 30
LONG_TERM_DAYS = 30
STALE_DAYS = 7
VERY_RECENT_DAYS = 1
TOP_RANK_CALLOUT = 3

TEMPLATES = {
    "initiates_more": "{initiator} initiates more interactions with {other}",
    "initiates_equal": "Both users initiate interactions equally",
    "reply_heavy": "High level of direct conversation (many replies)",
    "mention_heavy": "Frequent mentions suggest close relationship",
    "vc_extensive": "Extensive voice chat time together ({minutes} minutes)",
    "vc_moderate": "Moderate voice chat time together ({minutes} minutes)",
    "vc_share_high": "High VC affinity - {share:.1f}% of total VC time spent together",
    "vc_share_moderate": "Moderate VC affinity - {share:.1f}% of total VC time spent together",
    "top_channel": 'Most time spent in "{channel}" ({minutes} minutes)',
    "long_sessions": "Long average VC sessions ({minutes} minutes)",
    "long_term": "Long-term relationship (30+ days)",
    "stale": "No recent interactions (7+ days)",
    "very_recent": "Very recent interaction",
    "top_rank": "Top {rank} relationship for {user}",
}


def _name(user: Optional[User], fallback: str) -> str:
    return user.label if user is not None else fallback


def generate_insights(
    score_ab: AffinityScore,
    score_ba: AffinityScore,
    user_a: Optional[User],
    user_b: Optional[User],
    now: datetime,
) -> List[str]:
    """
    Generate ordered observations about the A -> B relationship.

    Args:
        score_ab: Affinity from A toward B
        score_ba: Affinity from B toward A
        user_a: Display metadata for A (may be None)
        user_b: Display metadata for B (may be None)
        now: Evaluation time used for recency checks

    Returns:
        List of insight strings (possibly empty)
    """
    name_a = _name(user_a, "User 1")
    name_b = _name(user_b, "User 2")
    insights = []

    insights.extend(_initiation(score_ab, score_ba, name_a, name_b))
    insights.extend(_interaction_mix(score_ab))
    insights.extend(_voice(score_ab))
    insights.extend(_timing(score_ab, now))

    # rank defaults to 1 with no distribution; only call out real relationships
    if score_ab.total_score > 0 and score_ab.rank <= TOP_RANK_CALLOUT:
        insights.append(TEMPLATES["top_rank"].format(rank=score_ab.rank, user=name_a))

    return insights


def _initiation(score_ab: AffinityScore, score_ba: AffinityScore, name_a: str, name_b: str) -> List[str]:
    if score_ab.total_score > score_ba.total_score:
        return [TEMPLATES["initiates_more"].format(initiator=name_a, other=name_b)]
    if score_ba.total_score > score_ab.total_score:
        return [TEMPLATES["initiates_more"].format(initiator=name_b, other=name_a)]
    if score_ab.total_score > 0:
        return [TEMPLATES["initiates_equal"]]
    return []


def _interaction_mix(score: AffinityScore) -> List[str]:
    """Reply- and mention-heavy patterns."""
    total = score.text_interaction_count
    if total == 0:
        return []

    lines = []
    if score.counts["replies"] > total * REPLY_SHARE_MIN:
        lines.append(TEMPLATES["reply_heavy"])
    if score.counts["mentions"] > total * MENTION_SHARE_MIN:
        lines.append(TEMPLATES["mention_heavy"])
    return lines


def _voice(score: AffinityScore) -> List[str]:
    """Co-presence magnitude, share, top channel and session length."""
    vc = score.vc_details
    lines = []

    if vc.total_minutes > VC_MINUTES_EXTENSIVE:
        lines.append(TEMPLATES["vc_extensive"].format(minutes=round(vc.total_minutes)))
    elif vc.total_minutes > VC_MINUTES_MODERATE:
        lines.append(TEMPLATES["vc_moderate"].format(minutes=round(vc.total_minutes)))

    if vc.relative_score > VC_SHARE_HIGH:
        lines.append(TEMPLATES["vc_share_high"].format(share=vc.relative_score))
    elif vc.relative_score > VC_SHARE_MODERATE:
        lines.append(TEMPLATES["vc_share_moderate"].format(share=vc.relative_score))

    if vc.top_channels:
        top = vc.top_channels[0]
        lines.append(TEMPLATES["top_channel"].format(
            channel=top["channel_name"], minutes=round(top["minutes"])
        ))

    if vc.average_session_length > LONG_SESSION_MINUTES:
        lines.append(TEMPLATES["long_sessions"].format(minutes=round(vc.average_session_length)))

    return lines


def _timing(score: AffinityScore, now: datetime) -> List[str]:
    """Longevity and recency."""
    lines = []
    if score.time_range.days_active > LONG_TERM_DAYS:
        lines.append(TEMPLATES["long_term"])

    last = score.time_range.last
    if last is not None:
        days_since = age_in_days(last, now)
        if days_since > STALE_DAYS:
            lines.append(TEMPLATES["stale"])
        elif days_since < VERY_RECENT_DAYS:
            lines.append(TEMPLATES["very_recent"])

    return lines
