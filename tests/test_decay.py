"""
Tests for time decay
"""

import math
from datetime import timedelta

import numpy as np
import pytest

from guildrel.decay import age_in_days, decay_weights, time_decay
from guildrel.exceptions import MalformedRecordError
from tests.helpers import NOW


def test_full_weight_inside_window():
    """Signals up to the window edge keep full weight."""
    for age in [0, 1, 45.5, 89.999, 90]:
        assert time_decay(age) == 1.0


def test_exponential_after_window():
    """One tau past the window -> e^-1."""
    assert time_decay(120) == pytest.approx(math.exp(-1))
    assert time_decay(150) == pytest.approx(math.exp(-2))


def test_floor():
    """Very old signals never drop below 0.1."""
    assert time_decay(10_000) == 0.1
    assert time_decay(90 + 30 * math.log(10)) == pytest.approx(0.1)


def test_monotone_non_increasing():
    """decay(a1) >= decay(a2) for a1 < a2."""
    ages = np.linspace(0, 500, 2001)
    weights = [time_decay(a) for a in ages]
    assert all(w1 >= w2 for w1, w2 in zip(weights, weights[1:]))
    assert min(weights) >= 0.1


def test_continuous_at_boundary():
    """Just past the window the weight is just under 1.0."""
    assert time_decay(90.0001) == pytest.approx(1.0, abs=1e-4)
    assert time_decay(90.0001) < 1.0


def test_negative_age_is_malformed():
    """An event in the future cannot be weighted."""
    with pytest.raises(MalformedRecordError):
        time_decay(-0.5)


def test_custom_window_and_tau():
    """Window and tau are parameters, not constants."""
    assert time_decay(10, window_days=7, tau_days=3) == pytest.approx(math.exp(-1))
    assert time_decay(7, window_days=7, tau_days=3) == 1.0


def test_vectorized_matches_scalar():
    """decay_weights agrees with time_decay and marks negatives as NaN."""
    ages = [0, 90, 100, 120, 300, -1]
    weights = decay_weights(ages)

    for age, weight in zip(ages[:-1], weights[:-1]):
        assert weight == pytest.approx(time_decay(age))
    assert np.isnan(weights[-1])
    assert decay_weights([]).size == 0


def test_age_in_days():
    """Age is fractional days between timestamp and evaluation time."""
    assert age_in_days(NOW - timedelta(hours=36), NOW) == pytest.approx(1.5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
