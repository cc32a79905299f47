"""
Candidate filter chain.

Each filter is a named ``FilterStep`` over a shared ``ScoringContext``. Steps
run in list order and the first one that rejects short-circuits the rest, so
the rejection reason of an instrument is always the *earliest* failing check.

Order:
  pre-score   volume_spike      today's turnover spike on an already-hot trend
              rsi_overbought    RSI above threshold and price under its 5-day SMA
              short_momentum    short-window annualized return below threshold
  (score computed)
  post-score  stop_loss         any single-day drop past the stop-loss ratio
              score_range       score outside (min_score, max_score)

The three pre-score steps are switched on/off by ``StrategyParams``; the
post-score steps always run.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Optional, Sequence

from etf_rotator.config import StrategyParams
from etf_rotator.features import indicators
from etf_rotator.models.market import DailyBar

logger = logging.getLogger(__name__)

SMA_CONFIRM_PERIOD = 5


@dataclass
class ScoringContext:
    """Everything the filters need for one instrument, computed at most once."""

    bars: list[DailyBar]
    params: StrategyParams
    closes: list[float] = field(init=False)
    amounts: list[float] = field(init=False)

    def __post_init__(self) -> None:
        self.closes = [b.close for b in self.bars]
        self.amounts = [b.amount for b in self.bars]

    @property
    def current_price(self) -> float:
        return self.closes[-1]

    @cached_property
    def regression(self) -> indicators.Regression:
        return indicators.momentum_regression(self.closes, self.params.lookback_days)

    @property
    def annualized_return(self) -> float:
        return math.exp(self.regression.slope * indicators.TRADING_DAYS_PER_YEAR) - 1.0

    @property
    def r_squared(self) -> float:
        return self.regression.r_squared

    @property
    def score(self) -> float:
        """Confidence-weighted momentum: ``annualized_return * r_squared``."""
        return self.annualized_return * self.r_squared


@dataclass(frozen=True)
class FilterStep:
    """One named rejection predicate.

    Attributes:
        name:    Reported as the rejection reason.
        rejects: Returns ``True`` when the instrument must be dropped.
        enabled: Config gate; a disabled step is skipped entirely.
    """

    name: str
    rejects: Callable[[ScoringContext], bool]
    enabled: Callable[[StrategyParams], bool] = lambda params: True


# ── Predicates ────────────────────────────────────────────────────────────────

def volume_spike(ctx: ScoringContext) -> bool:
    p = ctx.params
    if len(ctx.amounts) <= p.volume_lookback + 1:
        return False
    history = ctx.amounts[-(p.volume_lookback + 1):-1]
    ratio = indicators.volume_ratio(ctx.amounts[-1], history)
    if ratio <= p.volume_threshold:
        return False
    return ctx.annualized_return > p.volume_return_limit


def rsi_overbought(ctx: ScoringContext) -> bool:
    p = ctx.params
    values = indicators.rsi(ctx.closes, p.rsi_period)
    if len(values) < p.rsi_lookback_days:
        return False
    overbought = any(v > p.rsi_threshold for v in values[-p.rsi_lookback_days:])
    ma5 = indicators.sma(ctx.closes, SMA_CONFIRM_PERIOD)
    if ma5 is None:
        ma5 = ctx.current_price
    return overbought and ctx.current_price < ma5


def short_momentum(ctx: ScoringContext) -> bool:
    p = ctx.params
    value = indicators.short_annualized_return(ctx.closes, p.short_lookback_days)
    if value is None:
        return False
    return value < p.short_momentum_threshold


def stop_loss(ctx: ScoringContext) -> bool:
    p = ctx.params
    return indicators.has_recent_drop(ctx.closes, p.stop_loss_days, p.stop_loss_ratio)


def score_range(ctx: ScoringContext) -> bool:
    p = ctx.params
    return not (p.min_score_threshold < ctx.score < p.max_score_threshold)


PRE_SCORE_FILTERS: tuple[FilterStep, ...] = (
    FilterStep("volume_spike", volume_spike, lambda p: p.enable_volume_check),
    FilterStep("rsi_overbought", rsi_overbought, lambda p: p.use_rsi_filter),
    FilterStep("short_momentum", short_momentum, lambda p: p.use_short_momentum_filter),
)

POST_SCORE_FILTERS: tuple[FilterStep, ...] = (
    FilterStep("stop_loss", stop_loss),
    FilterStep("score_range", score_range),
)


def evaluate_filters(ctx: ScoringContext, steps: Sequence[FilterStep]) -> Optional[str]:
    """Run ``steps`` in order; return the name of the first rejecting step or ``None``."""
    for step in steps:
        if not step.enabled(ctx.params):
            continue
        if step.rejects(ctx):
            return step.name
    return None
