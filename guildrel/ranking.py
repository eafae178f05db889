"""
Relative ranking of a relationship within a user's own distribution.

Two modes, selected by ScoringConfig.rank_mode:

- "counts": compare the composite score against the user's raw per-partner
  interaction counts in the ranking window. Units are mixed (weighted score
  vs counts); kept because existing reports were calibrated on it.
- "composite": compare against the composite affinity score of every
  partner in the window, so both sides are in the same units.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

import numpy as np

from .config import ScoringConfig
from .store import InteractionStore

logger = logging.getLogger(__name__)

# partner -> composite score (unranked)
PartnerScorer = Callable[[str], float]


@dataclass(frozen=True)
class RankResult:
    relative_score: float
    rank: int


NO_DISTRIBUTION = RankResult(relative_score=0.0, rank=1)


def rank_against(distribution: Sequence[float], current_score: float) -> RankResult:
    """
    Position ``current_score`` within ``distribution``.

    rank = 1 + index of the first value <= current_score after sorting
    descending (len(distribution) when every value is larger), and
    relative_score = rank / len * 100 capped at 100.
    """
    if len(distribution) == 0:
        return NO_DISTRIBUTION

    ordered = np.sort(np.asarray(distribution, dtype=float))[::-1]
    not_above = np.flatnonzero(ordered <= current_score)
    position = int(not_above[0]) if not_above.size else len(ordered)

    rank = position + 1
    relative = min(rank / len(ordered) * 100.0, 100.0)
    return RankResult(relative_score=relative, rank=rank)


class Ranker:
    """Ranks a directional score among the user's other relationships."""

    def __init__(self, store: InteractionStore, scoring: Optional[ScoringConfig] = None):
        self.store = store
        self.scoring = scoring or ScoringConfig.from_env()

    def partner_counts(self, user: str, guild: str, now: datetime) -> List[tuple]:
        return self.store.fetch_top_interaction_partners(
            user, guild, self.scoring.rank_window_days, None, now
        )

    def rank(
        self,
        user: str,
        guild: str,
        current_score: float,
        now: datetime,
        score_partner: Optional[PartnerScorer] = None,
    ) -> RankResult:
        """
        Args:
            user: Owner of the distribution
            guild: Guild scope
            current_score: Composite score being ranked
            now: Evaluation time (window end)
            score_partner: Required in "composite" mode; returns the unranked
                composite score toward a partner

        Returns:
            RankResult(relative_score in [0, 100], rank >= 1)
        """
        partners = self.partner_counts(user, guild, now)
        if not partners:
            return NO_DISTRIBUTION

        if self.scoring.rank_mode == "composite":
            if score_partner is None:
                raise ValueError("composite rank mode needs a partner scorer")
            distribution = [score_partner(partner) for partner, _ in partners]
        else:
            distribution = [count for _, count in partners]

        result = rank_against(distribution, current_score)
        logger.debug(
            f"Ranked {current_score:.2f} for {user} in {guild} ({self.scoring.rank_mode}): "
            f"rank={result.rank}/{len(distribution)} relative={result.relative_score:.1f}"
        )
        return result
