"""
Tests for etf_rotator/engine/filters.py.

What we test
------------
ScoringContext:
  - score == annualized_return * r_squared; exact on an exponential path.

Individual steps, each on a price path built to trip exactly that step:
  - volume_spike only fires when the trend is already hot.
  - rsi_overbought needs both a high RSI and a close under its 5-day SMA.
  - short_momentum, stop_loss, score_range.

evaluate_filters():
  - Steps run in order and the first rejection is reported.
  - Disabled steps are skipped.
"""

from __future__ import annotations

import math

import pytest

from etf_rotator.config import StrategyParams
from etf_rotator.engine.filters import (
    POST_SCORE_FILTERS,
    PRE_SCORE_FILTERS,
    ScoringContext,
    evaluate_filters,
    rsi_overbought,
    volume_spike,
)


def _linear(first: float, last: float, n: int = 26) -> list[float]:
    step = (last - first) / (n - 1)
    return [first + step * i for i in range(n)]


def _exponential(rate: float, n: int = 26) -> list[float]:
    return [10.0 * math.exp(rate * i) for i in range(n)]


@pytest.fixture
def ctx_for(make_bars):
    def _make(closes, amounts=None, **params):
        return ScoringContext(
            bars=make_bars(closes, amounts=amounts),
            params=StrategyParams(**params),
        )

    return _make


class TestScoringContext:
    def test_exact_score_on_exponential_path(self, ctx_for):
        ctx = ctx_for(_exponential(0.004))
        assert ctx.r_squared == pytest.approx(1.0)
        assert ctx.annualized_return == pytest.approx(math.e - 1.0)
        assert ctx.score == pytest.approx(math.e - 1.0)

    def test_linear_rise_scores_positive(self, ctx_for):
        ctx = ctx_for(_linear(10.0, 12.0))
        assert ctx.score > 0
        assert ctx.current_price == pytest.approx(12.0)


class TestSteps:
    def test_clean_uptrend_passes_everything(self, ctx_for):
        ctx = ctx_for(_linear(10.0, 12.0))
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) is None
        assert evaluate_filters(ctx, POST_SCORE_FILTERS) is None

    def test_volume_spike_on_hot_trend(self, ctx_for):
        amounts = [1_000_000.0] * 25 + [10_000_000.0]
        ctx = ctx_for(_linear(10.0, 12.0), amounts=amounts)
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) == "volume_spike"

    def test_volume_spike_ignored_on_slow_trend(self, ctx_for):
        amounts = [1_000_000.0] * 25 + [10_000_000.0]
        ctx = ctx_for(_linear(10.0, 10.05), amounts=amounts)
        assert not volume_spike(ctx)

    def test_rsi_overbought_needs_close_under_sma(self, ctx_for):
        closes = _linear(10.0, 12.0) + [11.85]
        assert evaluate_filters(ctx_for(closes, rsi_lookback_days=3), PRE_SCORE_FILTERS) == (
            "rsi_overbought"
        )
        # Looking at the last RSI value only, the dip has already cooled it.
        assert not rsi_overbought(ctx_for(closes, rsi_lookback_days=1))

    def test_high_rsi_above_sma_not_rejected(self, ctx_for):
        assert not rsi_overbought(ctx_for(_linear(10.0, 12.0), rsi_lookback_days=3))

    def test_short_momentum_rejects_downtrend(self, ctx_for):
        ctx = ctx_for(_linear(12.0, 10.0))
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) == "short_momentum"

    def test_stop_loss_after_sharp_drop(self, ctx_for):
        ctx = ctx_for(_linear(10.0, 12.0) + [11.4])
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) is None
        assert evaluate_filters(ctx, POST_SCORE_FILTERS) == "stop_loss"

    def test_score_range_upper_bound(self, ctx_for):
        ctx = ctx_for(_linear(10.0, 12.0), max_score_threshold=1.0)
        assert evaluate_filters(ctx, POST_SCORE_FILTERS) == "score_range"


class TestEvaluateFilters:
    def test_earliest_rejection_wins(self, ctx_for):
        # Downtrend with a final 5% drop: short_momentum and stop_loss both apply.
        ctx = ctx_for(_linear(12.0, 10.0) + [9.5])
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS + POST_SCORE_FILTERS) == "short_momentum"

    def test_disabled_step_skipped(self, ctx_for):
        amounts = [1_000_000.0] * 25 + [10_000_000.0]
        ctx = ctx_for(_linear(10.0, 12.0), amounts=amounts, enable_volume_check=False)
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) is None

    def test_all_pre_filters_disabled(self, ctx_for):
        ctx = ctx_for(
            _linear(12.0, 10.0),
            enable_volume_check=False,
            use_rsi_filter=False,
            use_short_momentum_filter=False,
        )
        assert evaluate_filters(ctx, PRE_SCORE_FILTERS) is None
