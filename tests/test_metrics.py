from __future__ import annotations

import numpy as np

from processing.metrics import RANGES, DerivedMetrics, PlaceholderIntervalEstimator


def test_values_stay_inside_fixed_ranges(seeded_estimator):
    for sample in np.linspace(-2.0, 2.0, 500):
        m = seeded_estimator.estimate(float(sample))
        assert isinstance(m, DerivedMetrics)
        for key, (lo, hi) in RANGES.items():
            assert lo <= getattr(m, key) < hi


def test_ranges_match_placeholder_contract():
    assert RANGES == {
        "pr_interval_ms": (0.0, 200.0),
        "qt_interval_ms": (0.0, 400.0),
        "qrs_duration_ms": (0.0, 100.0),
        "st_segment_mv": (0.0, 50.0),
    }


def test_input_sample_is_ignored():
    a = PlaceholderIntervalEstimator(rng=np.random.default_rng(7))
    b = PlaceholderIntervalEstimator(rng=np.random.default_rng(7))
    assert a.estimate(0.0) == b.estimate(123.0)


def test_each_call_draws_new_values(seeded_estimator):
    first = seeded_estimator.estimate(0.5)
    second = seeded_estimator.estimate(0.5)
    assert first != second
