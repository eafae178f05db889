"""
Relationship classification from mutual affinity score.
"""

import logging
from typing import Optional, Sequence, Tuple

from .config import ScoringConfig

logger = logging.getLogger(__name__)

NO_RELATIONSHIP = "none"

Thresholds = Sequence[Tuple[str, float]]


def classify(mutual_score: float, thresholds: Optional[Thresholds] = None) -> str:
    """
    Map a mutual score to a relationship type.

    ``thresholds`` is ordered high -> low as (label, lower bound); a score
    exactly on a bound lands in that (higher) band. Anything below the last
    bound is "none".
    """
    if thresholds is None:
        thresholds = ScoringConfig.from_env().classifier_thresholds

    for label, lower_bound in thresholds:
        if mutual_score >= lower_bound:
            return label
    return NO_RELATIONSHIP


def classify_directional(score: float, thresholds: Optional[Thresholds] = None) -> str:
    """
    Band for a single directional score in top-N listings.

    Listed relationships all have a positive score, so anything under the
    lowest bound still reads as "weak" rather than "none".
    """
    label = classify(score, thresholds)
    if label == NO_RELATIONSHIP and score > 0:
        return "weak"
    return label
