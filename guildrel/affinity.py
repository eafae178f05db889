"""
Affinity scoring service for GuildREL

Computes directional affinity between two guild members from stored history:

    total = reactions + mentions + replies + vc_points

    reactions/mentions/replies = sum(kind_weight * decay(age)) per kind
    vc_relative (%)            = co-presence minutes / from-user's total VC minutes * 100
    vc_points                  = vc_relative * vc_weight / 100   (optionally capped)

Scores are recomputed on demand and never written back. Missing data gives
zeros; storage failures propagate as StorageUnavailableError.
"""

import concurrent.futures
import logging
import math
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional, Tuple

import numpy as np

from . import config
from .classifier import classify
from .config import ScoringConfig
from .decay import SECONDS_PER_DAY, age_in_days, decay_weights
from .insight_engine import generate_insights
from .models import (
    AffinityAnalysis,
    AffinityScore,
    InteractionEvent,
    TimeRange,
    VCDetails,
)
from .overlap import co_presence, summarize_overlaps
from .ranking import Ranker
from .store import InteractionStore, as_utc, utcnow

logger = logging.getLogger(__name__)

# interaction kind -> breakdown / counts key
KIND_BUCKETS = {
    "reaction": "reactions",
    "mention": "mentions",
    "reply": "replies",
}


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safe division with default fallback."""
    if denominator == 0 or np.isnan(denominator) or np.isnan(numerator):
        return default
    return numerator / denominator


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ============================================================================
# SCORING FUNCTIONS
# ============================================================================

def score_interactions(
    events: List[InteractionEvent],
    now: datetime,
    scoring: ScoringConfig,
) -> Tuple[Dict[str, float], Dict[str, int], List[InteractionEvent]]:
    """
    Decay-weighted per-kind scores.

    Events of unweighted kinds (e.g. vc_time audit rows) are ignored; events
    dated after ``now`` are malformed and skipped.

    Returns:
        (breakdown, counts, accepted_events)
    """
    breakdown = {bucket: 0.0 for bucket in KIND_BUCKETS.values()}
    counts = {bucket: 0 for bucket in KIND_BUCKETS.values()}

    known = [e for e in events if e.kind in KIND_BUCKETS]
    weights = decay_weights(
        [age_in_days(e.timestamp, now) for e in known],
        scoring.decay_window_days,
        scoring.decay_tau_days,
    )

    accepted = []
    for event, weight in zip(known, weights):
        if np.isnan(weight):
            logger.warning(
                f"Skipping malformed interaction {event.from_user}->{event.to_user} "
                f"({event.kind}) dated after evaluation time: {event.timestamp.isoformat()}"
            )
            continue
        bucket = KIND_BUCKETS[event.kind]
        breakdown[bucket] += scoring.kind_weights.get(event.kind, 0.0) * float(weight)
        counts[bucket] += 1
        accepted.append(event)

    return breakdown, counts, accepted


def compute_time_range(events: List[InteractionEvent]) -> TimeRange:
    """First/last interaction and the rounded number of days between them."""
    if not events:
        return TimeRange()

    first = min(e.timestamp for e in events)
    last = max(e.timestamp for e in events)
    days = (last - first).total_seconds() / SECONDS_PER_DAY
    return TimeRange(first=first, last=last, days_active=_round_half_up(days))


def vc_points(vc_relative: float, scoring: ScoringConfig) -> float:
    """Points contributed by a relative VC share (percent)."""
    points = vc_relative * scoring.vc_weight / 100.0
    if scoring.vc_cap_points is not None:
        points = min(points, scoring.vc_cap_points)
    return points


# ============================================================================
# SERVICE
# ============================================================================

class AffinityService:
    """Calculate, analyze and rank affinity between guild members."""

    def __init__(
        self,
        store: InteractionStore,
        scoring: Optional[ScoringConfig] = None,
        max_workers: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Interaction / voice-session store
            scoring: Weighting scheme (default from config)
            max_workers: Parallel fetches per computation (default from config)
            clock: Evaluation clock, read once per public call (naive times are UTC)
        """
        self.store = store
        self.scoring = scoring or ScoringConfig.from_env()
        self.max_workers = max_workers or config.FETCH_CONCURRENCY
        self.clock = clock
        self.ranker = Ranker(store, self.scoring)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate_affinity(
        self,
        from_user: str,
        to_user: str,
        guild: str,
        now: Optional[datetime] = None,
    ) -> AffinityScore:
        """Directional affinity from ``from_user`` toward ``to_user``, ranked."""
        now = as_utc(now or self.clock())
        return self._ranked(from_user, to_user, guild, now, cache={})

    def analyze_relationship(
        self,
        user1: str,
        user2: str,
        guild: str,
        now: Optional[datetime] = None,
    ) -> AffinityAnalysis:
        """Both directions, mutual score, relationship type and insights."""
        now = as_utc(now or self.clock())
        logger.info(f"Analyzing relationship {user1} <-> {user2} in guild {guild}")

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            forward = executor.submit(self._ranked, user1, user2, guild, now, {})
            reverse = executor.submit(self._ranked, user2, user1, guild, now, {})
            affinity = forward.result()
            reverse_affinity = reverse.result()

        profile1 = self.store.fetch_user(user1, guild)
        profile2 = self.store.fetch_user(user2, guild)

        mutual = affinity.total_score + reverse_affinity.total_score
        relationship_type = classify(mutual, self.scoring.classifier_thresholds)
        insights = generate_insights(affinity, reverse_affinity, profile1, profile2, now)

        return AffinityAnalysis(
            user1=profile1,
            user2=profile2,
            affinity=affinity,
            reverse_affinity=reverse_affinity,
            mutual_score=mutual,
            relationship_type=relationship_type,
            insights=insights,
        )

    def get_top_relationships(
        self,
        user: str,
        guild: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[AffinityScore]:
        """
        Strongest outgoing relationships for ``user``.

        Candidates are the top text-interaction partners plus the top voice
        co-presence partners, deduplicated; each is fully scored and only
        positive scores are kept.
        """
        now = as_utc(now or self.clock())
        candidate_limit = self.scoring.top_candidate_limit

        text_partners = self.store.fetch_top_interaction_partners(
            user, guild, self.scoring.rank_window_days, candidate_limit, now
        )
        voice_partners = self.store.fetch_top_voice_partners(user, guild, candidate_limit, now)

        candidates = []
        seen = {user}
        for partner, _ in text_partners + voice_partners:
            if partner not in seen:
                seen.add(partner)
                candidates.append(partner)

        logger.info(
            f"Scoring {len(candidates)} candidate relationships for {user} in guild {guild} "
            f"({len(text_partners)} text, {len(voice_partners)} voice)"
        )

        cache: Dict[str, AffinityScore] = {}
        relationships = [
            score for score in (self._ranked(user, c, guild, now, cache) for c in candidates)
            if score.total_score > 0
        ]
        relationships.sort(key=lambda s: (-s.total_score, s.to_user))
        return relationships[:limit]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ranked(
        self,
        from_user: str,
        to_user: str,
        guild: str,
        now: datetime,
        cache: Dict[str, AffinityScore],
    ) -> AffinityScore:
        score = self._unranked(from_user, to_user, guild, now, cache)

        result = self.ranker.rank(
            from_user,
            guild,
            score.total_score,
            now,
            score_partner=lambda partner: self._unranked(from_user, partner, guild, now, cache).total_score,
        )
        score.relative_score = result.relative_score
        score.rank = result.rank
        return score

    def _unranked(
        self,
        from_user: str,
        to_user: str,
        guild: str,
        now: datetime,
        cache: Dict[str, AffinityScore],
    ) -> AffinityScore:
        """Score without ranking, memoized per public call."""
        if to_user not in cache:
            cache[to_user] = self._compute(from_user, to_user, guild, now)
        return cache[to_user]

    def _fetch(self, from_user: str, to_user: str, guild: str, now: datetime) -> Dict[str, Any]:
        """Independent reads, joined before scoring. Store errors propagate."""
        scoring = self.scoring
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                "interactions": executor.submit(
                    self.store.fetch_interactions, from_user, to_user, guild, scoring.interaction_limit, True
                ),
                "from_sessions": executor.submit(
                    self.store.fetch_voice_sessions, from_user, guild, scoring.session_limit, True
                ),
                "to_sessions": executor.submit(
                    self.store.fetch_voice_sessions, to_user, guild, scoring.session_limit, True
                ),
                "total_vc_minutes": executor.submit(
                    self.store.fetch_total_voice_minutes, from_user, guild, now
                ),
            }
            return {name: future.result() for name, future in futures.items()}

    def _compute(self, from_user: str, to_user: str, guild: str, now: datetime) -> AffinityScore:
        data = self._fetch(from_user, to_user, guild, now)

        breakdown, counts, accepted = score_interactions(data["interactions"], now, self.scoring)

        intervals = co_presence(
            data["from_sessions"], data["to_sessions"], now, self.scoring.overlap_strategy
        )
        overlap = summarize_overlaps(intervals)
        vc_relative = safe_divide(overlap["total_minutes"], data["total_vc_minutes"]) * 100.0

        breakdown["vc_relative"] = vc_points(vc_relative, self.scoring)
        counts["vc_sessions"] = overlap["session_count"]

        score = AffinityScore(
            from_user=from_user,
            to_user=to_user,
            guild=guild,
            total_score=sum(breakdown.values()),
            breakdown=breakdown,
            counts=counts,
            time_range=compute_time_range(accepted),
            vc_details=VCDetails(
                total_minutes=overlap["total_minutes"],
                session_count=overlap["session_count"],
                average_session_length=overlap["average_session_length"],
                relative_score=vc_relative,
                top_channels=overlap["top_channels"],
            ),
        )

        logger.debug(
            f"Affinity {from_user}->{to_user} in {guild}: total={score.total_score:.2f} "
            f"(reactions={breakdown['reactions']:.2f}, mentions={breakdown['mentions']:.2f}, "
            f"replies={breakdown['replies']:.2f}, vc={breakdown['vc_relative']:.2f}, "
            f"vc_share={vc_relative:.1f}%)"
        )
        return score
