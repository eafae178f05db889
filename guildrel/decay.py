"""
Time decay for interaction signals.

weight(age) = 1.0                                   if age <= window
            = max(floor, exp(-(age - window) / tau)) otherwise

Continuous at the window boundary, monotone non-increasing, never below the
floor so very old signals still count for something.
"""

import math
from datetime import datetime
from typing import Sequence

import numpy as np

from . import config
from .exceptions import MalformedRecordError

SECONDS_PER_DAY = 86400.0


def age_in_days(timestamp: datetime, now: datetime) -> float:
    """Age of ``timestamp`` relative to ``now`` in fractional days."""
    return (now - timestamp).total_seconds() / SECONDS_PER_DAY


def time_decay(
    age_days: float,
    window_days: float = config.DECAY_WINDOW_DAYS,
    tau_days: float = config.DECAY_TAU_DAYS,
    floor: float = config.DECAY_FLOOR,
) -> float:
    """
    Weight in [floor, 1.0] for a signal ``age_days`` old.

    Raises:
        MalformedRecordError: if ``age_days`` is negative (event in the future)
    """
    if age_days < 0 or math.isnan(age_days):
        raise MalformedRecordError(f"Decay age must be non-negative, got {age_days}")

    if age_days <= window_days:
        return 1.0

    return max(floor, math.exp(-(age_days - window_days) / tau_days))


def decay_weights(
    ages_days: Sequence[float],
    window_days: float = config.DECAY_WINDOW_DAYS,
    tau_days: float = config.DECAY_TAU_DAYS,
    floor: float = config.DECAY_FLOOR,
) -> np.ndarray:
    """
    Vectorized ``time_decay``. Negative ages map to NaN so callers can drop
    them as malformed.
    """
    ages = np.asarray(ages_days, dtype=float)
    if ages.size == 0:
        return ages

    excess = np.clip(ages - window_days, 0.0, None)
    weights = np.maximum(floor, np.exp(-excess / tau_days))
    weights = np.where(ages <= window_days, 1.0, weights)
    return np.where(ages < 0, np.nan, weights)
