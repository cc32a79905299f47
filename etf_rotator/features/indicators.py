"""
Technical indicator library: pure functions, no state, no I/O.

Every function takes plain ``list[float]`` series ordered oldest → newest and
degrades to an empty/neutral result on insufficient data rather than raising:

  rsi                         - Wilder-smoothed RSI series
  sma                         - simple moving average of the trailing window
  weighted_linear_regression  - WLS fit of values against index 0..n-1
  annualized_return           - exp(slope * 250) - 1 on weighted log prices
  short_annualized_return     - point-to-point return compounded to a year
  volume_ratio                - today / mean(history)
  has_recent_drop             - any single-day close ratio below a threshold

Annualization uses 250 trading days per year.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional, Sequence

TRADING_DAYS_PER_YEAR = 250


class Regression(NamedTuple):
    slope: float
    intercept: float
    r_squared: float


def rsi(closes: Sequence[float], period: int = 6) -> list[float]:
    """Relative strength index with Wilder smoothing.

    The first value averages gains/losses over the first ``period`` deltas;
    each later delta updates ``avg = (avg * (period - 1) + value) / period``.
    RSI is 100 whenever the average loss is exactly zero.

    Returns:
        ``len(closes) - period`` values, or ``[]`` when
        ``len(closes) < period + 1``.
    """
    if period < 1 or len(closes) < period + 1:
        return []

    deltas = [b - a for a, b in zip(closes, closes[1:])]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    result = [_rsi_value(avg_gain, avg_loss)]
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result.append(_rsi_value(avg_gain, avg_loss))
    return result


def sma(closes: Sequence[float], period: int) -> Optional[float]:
    """Arithmetic mean of the last ``period`` closes; ``None`` if too short."""
    if period < 1 or len(closes) < period:
        return None
    return sum(closes[-period:]) / period


def weighted_linear_regression(
    values: Sequence[float],
    weights: Optional[Sequence[float]] = None,
) -> Regression:
    """Weighted least squares of ``values`` against ``x = 0..n-1``.

    ``r_squared = 1 - SSres_w / SStot_w``; defined as 0 when ``n < 2`` or the
    weighted total sum of squares is 0. A degenerate design (zero
    determinant) returns ``(0, 0, 0)``.
    """
    n = len(values)
    if n < 2:
        return Regression(0.0, 0.0, 0.0)

    w = list(weights) if weights is not None else [1.0] * n
    if len(w) != n:
        raise ValueError(f"weights length {len(w)} does not match values length {n}.")
    x = range(n)

    sum_w = sum(w)
    sum_wx = sum(wi * xi for wi, xi in zip(w, x))
    sum_wy = sum(wi * yi for wi, yi in zip(w, values))
    sum_wxx = sum(wi * xi * xi for wi, xi in zip(w, x))
    sum_wxy = sum(wi * xi * yi for wi, xi, yi in zip(w, x, values))

    denom = sum_w * sum_wxx - sum_wx * sum_wx
    if denom == 0:
        return Regression(0.0, 0.0, 0.0)

    slope = (sum_w * sum_wxy - sum_wx * sum_wy) / denom
    intercept = (sum_wy - slope * sum_wx) / sum_w

    mean_y = sum_wy / sum_w
    ss_res = sum(wi * (yi - (slope * xi + intercept)) ** 2 for wi, xi, yi in zip(w, x, values))
    ss_tot = sum(wi * (yi - mean_y) ** 2 for wi, yi in zip(w, values))
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    return Regression(slope, intercept, r_squared)


def momentum_regression(closes: Sequence[float], lookback_days: int) -> Regression:
    """Regress log closes over the trailing ``lookback_days + 1`` points.

    Weights rise linearly from 1 (oldest) to 2 (newest):
    ``weight[i] = 1 + i / (n - 1)``.
    """
    recent = list(closes[-(lookback_days + 1):])
    n = len(recent)
    if n < 2:
        return Regression(0.0, 0.0, 0.0)
    log_prices = [math.log(p) for p in recent]
    weights = [1.0 + i / (n - 1) for i in range(n)]
    return weighted_linear_regression(log_prices, weights)


def annualized_return(closes: Sequence[float], lookback_days: int) -> float:
    """Annualized growth rate implied by the weighted log-price trend."""
    if len(closes[-(lookback_days + 1):]) < 2:
        return 0.0
    reg = momentum_regression(closes, lookback_days)
    return math.exp(reg.slope * TRADING_DAYS_PER_YEAR) - 1.0


def short_annualized_return(closes: Sequence[float], days: int) -> Optional[float]:
    """Point-to-point return over ``days`` compounded to a year.

    ``(close[-1] / close[-1 - days]) ** (250 / days) - 1``; ``None`` when
    fewer than ``days + 1`` closes are available.
    """
    if days < 1 or len(closes) < days + 1:
        return None
    period_return = closes[-1] / closes[-1 - days] - 1.0
    return (1.0 + period_return) ** (TRADING_DAYS_PER_YEAR / days) - 1.0


def volume_ratio(today_value: float, history: Sequence[float]) -> float:
    """``today_value / mean(history)``; 0 for empty history or non-positive mean."""
    if not history:
        return 0.0
    avg = sum(history) / len(history)
    if avg <= 0:
        return 0.0
    return today_value / avg


def has_recent_drop(closes: Sequence[float], days: int = 3, threshold: float = 0.97) -> bool:
    """True if any of the last ``days`` daily close ratios is below ``threshold``.

    ``threshold=0.97`` means "any single day down more than 3%". Needs at least
    ``days + 1`` closes; shorter series never trigger.
    """
    if len(closes) < days + 1:
        return False
    tail = closes[-(days + 1):]
    return any(b / a < threshold for a, b in zip(tail, tail[1:]))


# ── Helper ────────────────────────────────────────────────────────────────────

def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
