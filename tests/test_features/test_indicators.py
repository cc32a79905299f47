"""
Tests for etf_rotator/features/indicators.py.

What we test
------------
rsi():
  - Empty result when the series is shorter than period + 1.
  - One value per close after the warm-up period.
  - 100 when the window has no losses, 0 when it has no gains.
  - Every value stays inside [0, 100] for a mixed series.

weighted_linear_regression():
  - Exact slope/intercept and r_squared == 1 on a perfect line.
  - Degenerate inputs (n < 2, constant series) give r_squared 0.
  - Mismatched weights length raises ValueError.

annualized_return() / short_annualized_return():
  - exp(slope * 250) - 1 on an exponential price path.
  - Point-to-point compounding; None when too short.

volume_ratio() / has_recent_drop() / sma().
"""

from __future__ import annotations

import math

import pytest

from etf_rotator.features.indicators import (
    TRADING_DAYS_PER_YEAR,
    annualized_return,
    has_recent_drop,
    momentum_regression,
    rsi,
    short_annualized_return,
    sma,
    volume_ratio,
    weighted_linear_regression,
)


class TestRsi:
    def test_too_short_is_empty(self):
        assert rsi([1.0, 2.0, 3.0], period=6) == []

    def test_length(self):
        closes = [float(i) for i in range(1, 21)]
        assert len(rsi(closes, period=6)) == len(closes) - 6

    def test_all_gains_is_100(self):
        values = rsi([1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0], period=6)
        assert values == [100.0]

    def test_all_losses_is_0(self):
        values = rsi([7.0, 6.0, 5.0, 4.0, 3.0, 2.0, 1.0], period=6)
        assert values == [pytest.approx(0.0)]

    def test_mixed_series_bounded(self):
        closes = [10.0, 10.4, 10.1, 10.6, 10.2, 10.9, 10.5, 11.0, 10.7, 10.3, 10.8, 10.6]
        values = rsi(closes, period=6)
        assert values
        assert all(0.0 <= v <= 100.0 for v in values)

    def test_wilder_smoothing_after_seed(self):
        # Seed: six +1 deltas -> avg_gain 1, avg_loss 0. Then one -3 delta.
        closes = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 4.0]
        values = rsi(closes, period=6)
        avg_gain = 5.0 / 6.0
        avg_loss = 3.0 / 6.0
        assert values[-1] == pytest.approx(100.0 - 100.0 / (1.0 + avg_gain / avg_loss))


class TestRegression:
    def test_perfect_line(self):
        values = [2.0 + 0.5 * i for i in range(10)]
        weights = [1.0 + i / 9 for i in range(10)]
        reg = weighted_linear_regression(values, weights)
        assert reg.slope == pytest.approx(0.5)
        assert reg.intercept == pytest.approx(2.0)
        assert reg.r_squared == pytest.approx(1.0)

    def test_single_point_is_zero(self):
        reg = weighted_linear_regression([5.0])
        assert reg == (0.0, 0.0, 0.0)

    def test_constant_series_has_zero_r_squared(self):
        reg = weighted_linear_regression([3.0] * 8)
        assert reg.slope == pytest.approx(0.0)
        assert reg.r_squared == 0.0

    def test_weights_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            weighted_linear_regression([1.0, 2.0, 3.0], [1.0, 1.0])

    def test_momentum_regression_uses_lookback_window(self):
        # Only the last lookback + 1 points matter; the noisy head is ignored.
        closes = [50.0, 7.0, 90.0] + [10.0 * math.exp(0.01 * i) for i in range(11)]
        reg = momentum_regression(closes, lookback_days=10)
        assert reg.slope == pytest.approx(0.01)
        assert reg.r_squared == pytest.approx(1.0)


class TestReturns:
    def test_annualized_return_exponential_path(self):
        closes = [10.0 * math.exp(0.001 * i) for i in range(26)]
        expected = math.exp(0.001 * TRADING_DAYS_PER_YEAR) - 1.0
        assert annualized_return(closes, lookback_days=25) == pytest.approx(expected)

    def test_annualized_return_too_short(self):
        assert annualized_return([10.0], lookback_days=25) == 0.0

    def test_short_annualized_return(self):
        closes = [100.0] * 10 + [110.0]
        assert short_annualized_return(closes, 10) == pytest.approx(1.1 ** 25 - 1.0)

    def test_short_annualized_return_negative(self):
        closes = [100.0] * 10 + [95.0]
        value = short_annualized_return(closes, 10)
        assert value is not None and value < 0

    def test_short_annualized_return_too_short(self):
        assert short_annualized_return([1.0] * 10, 10) is None


class TestVolumeAndDrops:
    def test_volume_ratio(self):
        assert volume_ratio(300.0, [100.0, 100.0, 100.0]) == pytest.approx(3.0)

    def test_volume_ratio_empty_history(self):
        assert volume_ratio(300.0, []) == 0.0

    def test_volume_ratio_zero_mean(self):
        assert volume_ratio(300.0, [0.0, 0.0]) == 0.0

    def test_recent_drop_detected(self):
        assert has_recent_drop([100.0, 100.0, 100.0, 96.0], days=3, threshold=0.97)

    def test_small_drop_ignored(self):
        assert not has_recent_drop([100.0, 100.0, 100.0, 97.5], days=3, threshold=0.97)

    def test_drop_outside_window_ignored(self):
        closes = [100.0, 90.0, 90.0, 90.0, 90.0]
        assert not has_recent_drop(closes, days=3, threshold=0.97)

    def test_short_series_never_triggers(self):
        assert not has_recent_drop([100.0, 50.0], days=3)

    def test_sma(self):
        assert sma([1.0, 2.0, 3.0, 4.0, 5.0, 6.0], 5) == pytest.approx(4.0)
        assert sma([1.0, 2.0], 5) is None
