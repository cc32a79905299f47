"""
Portfolio reconciler: maps real holdings onto the latest signal.

Pure functions over already-loaded data; nothing here raises, locks or
performs I/O. Missing or degenerate inputs fail open (no action) instead.

Matching is by instrument *display name*: user-entered and imported holdings
carry only a name.

Decisions compare *value shares of total capital*, not share counts, so a
price move alone does not flip a holding out of ``match``:

  ratio_deviation = |current_value / total_capital - strategy_percent|

  deviation <  RATIO_TOLERANCE                        → match
  below target, cash < CASH_SHORTFALL_FRACTION * gap  → match (cannot afford)
  below target                                        → add
  above target                                        → reduce

A second pass trims the discretionary (free-play) sub-account when its value
exceeds ``free_play_budget * FREE_PLAY_TOLERANCE``.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from etf_rotator.models.portfolio import (
    LOT_SIZE,
    Advice,
    ClassifiedHolding,
    Holding,
    HoldingAction,
    HoldingCategory,
    Portfolio,
)
from etf_rotator.models.signal import Signal, SignalHolding

logger = logging.getLogger(__name__)

RATIO_TOLERANCE = 0.03
CASH_SHORTFALL_FRACTION = 0.10
FREE_PLAY_TOLERANCE = 1.05


def target_shares(
    total_capital: float,
    strategy_percent: float,
    price: float,
    lot_size: int = LOT_SIZE,
) -> int:
    """Whole lots of ``price`` that fit in the strategy budget; 0 for a non-positive price."""
    if price <= 0 or total_capital <= 0:
        return 0
    budget = total_capital * strategy_percent
    return int(math.floor(budget / price / lot_size)) * lot_size


def ratio_decision(
    current_value: float,
    total_capital: float,
    strategy_percent: float,
    cash_balance: float,
) -> tuple[HoldingAction, float, str]:
    """Decide match/add/reduce for a strategy holding.

    Returns:
        ``(action, ratio_deviation, reason)``. With no capital recorded the
        holding is left alone (``match`` with deviation 0).
    """
    if total_capital <= 0:
        return HoldingAction.MATCH, 0.0, "Total capital not set; no rebalance suggested."

    current_ratio = current_value / total_capital
    deviation = abs(current_ratio - strategy_percent)
    target_value = total_capital * strategy_percent

    if deviation < RATIO_TOLERANCE:
        return (
            HoldingAction.MATCH,
            deviation,
            f"Allocation on target ({current_ratio:.1%} vs {strategy_percent:.1%}).",
        )

    if current_value < target_value:
        shortfall = target_value - current_value
        if cash_balance < shortfall * CASH_SHORTFALL_FRACTION:
            return (
                HoldingAction.MATCH,
                deviation,
                f"Below target by {shortfall:,.0f} but cash {cash_balance:,.0f} is insufficient.",
            )
        return (
            HoldingAction.ADD,
            deviation,
            f"Below target ({current_ratio:.1%} vs {strategy_percent:.1%}); add.",
        )

    return (
        HoldingAction.REDUCE,
        deviation,
        f"Above target ({current_ratio:.1%} vs {strategy_percent:.1%}); reduce.",
    )


def classify_holdings(portfolio: Portfolio, signal: Optional[Signal]) -> list[ClassifiedHolding]:
    """Split every holding into strategy / free-play shares and assign actions.

    Without a signal every holding is free-play with no action.
    """
    if signal is None:
        return [_free_play(h) for h in portfolio.holdings]

    targets = _targets_by_name(signal)
    strategy_percent = portfolio.strategy_config.strategy_percent
    result: list[ClassifiedHolding] = []

    for holding in portfolio.holdings:
        target = targets.get(holding.name)
        if target is not None:
            if target.current_price is None or target.current_price <= 0:
                logger.debug("Target %s has no price; treating holding as free-play.", holding.name)
                result.append(_free_play(holding))
                continue

            wanted = target_shares(portfolio.total_capital, strategy_percent, target.current_price)
            strategy_shares = min(holding.shares, wanted)
            free_play_shares = max(0, holding.shares - wanted)
            current_value = holding.shares * (
                holding.current_price if holding.current_price is not None else target.current_price
            )
            action, _, _ = ratio_decision(
                current_value, portfolio.total_capital, strategy_percent, portfolio.cash_balance
            )
            result.append(
                ClassifiedHolding(
                    holding=holding,
                    category=HoldingCategory.MIXED if free_play_shares > 0 else HoldingCategory.STRATEGY,
                    strategy_shares=strategy_shares,
                    free_play_shares=free_play_shares,
                    action=action,
                )
            )
        elif signal.defensive_instrument is not None and holding.name == signal.defensive_instrument:
            result.append(
                ClassifiedHolding(
                    holding=holding,
                    category=HoldingCategory.STRATEGY,
                    strategy_shares=holding.shares,
                    free_play_shares=0,
                    action=HoldingAction.HOLD,
                )
            )
        else:
            result.append(_free_play(holding))

    rebalance_free_play(result, portfolio.free_play_budget)
    return result


def rebalance_free_play(
    classified: list[ClassifiedHolding],
    free_play_budget: float,
    lot_size: int = LOT_SIZE,
) -> float:
    """Mark free-play holdings ``adjust`` when the sub-account overflows its budget.

    The excess over budget is spread over free-play holdings in proportion to
    their display market value and rounded down to whole lots per holding.

    Returns:
        The excess value (0 when within tolerance).
    """
    free_play = [c for c in classified if c.category == HoldingCategory.FREE_PLAY]
    actual = sum(c.holding.display_market_value for c in free_play)

    if actual <= 0 or actual <= free_play_budget * FREE_PLAY_TOLERANCE:
        return 0.0

    excess = actual - free_play_budget
    logger.info(
        "Free-play value %.2f exceeds budget %.2f by %.2f.", actual, free_play_budget, excess
    )

    for item in free_play:
        holding = item.holding
        price = holding.current_price if holding.current_price is not None else holding.cost_price
        if price <= 0:
            continue
        share_of_excess = excess * holding.display_market_value / actual
        reduce_shares = int(math.floor(share_of_excess / price / lot_size)) * lot_size
        if reduce_shares > 0:
            item.action = HoldingAction.ADJUST
            item.suggested_reduce_shares = reduce_shares

    return excess


def compare_with_signal(
    portfolio: Portfolio,
    signal: Signal,
    classified: Optional[list[ClassifiedHolding]] = None,
) -> list[Advice]:
    """Compact buy/sell/add/reduce/match list, one entry per instrument.

    Order: target instruments in signal order, then sells in holding order.
    Holdings classified as free-play are never told to sell. Pass
    ``classified`` to judge holdings against an earlier classification, e.g.
    the one made for the previous signal.
    """
    if classified is None:
        classified = classify_holdings(portfolio, signal)

    strategy_percent = portfolio.strategy_config.strategy_percent
    current: dict[str, Holding] = {}
    for h in portfolio.holdings:
        current[h.name] = h

    advice: list[Advice] = []
    for target in signal.target_holdings:
        price = target.current_price
        if price is None or price <= 0:
            current.pop(target.name, None)
            continue

        wanted = target_shares(portfolio.total_capital, strategy_percent, price)
        target_value = wanted * price
        holding = current.pop(target.name, None)

        if holding is None:
            advice.append(
                Advice(
                    instrument_name=target.name,
                    action=HoldingAction.BUY,
                    current_shares=0,
                    target_shares=wanted,
                    current_value=0.0,
                    target_value=target_value,
                    reason="Recommended by strategy; buy.",
                )
            )
            continue

        current_value = holding.shares * (
            holding.current_price if holding.current_price is not None else price
        )
        action, _, reason = ratio_decision(
            current_value, portfolio.total_capital, strategy_percent, portfolio.cash_balance
        )
        if action == HoldingAction.ADD:
            reason = f"{reason} Buy {max(wanted - holding.shares, 0)} more shares."
        elif action == HoldingAction.REDUCE:
            reason = f"{reason} Sell {max(holding.shares - wanted, 0)} shares."
        advice.append(
            Advice(
                instrument_name=target.name,
                action=action,
                current_shares=holding.shares,
                target_shares=wanted,
                current_value=holding.total_cost,
                target_value=target_value,
                reason=reason,
            )
        )

    exempt = {c.holding.name for c in classified if c.category == HoldingCategory.FREE_PLAY}

    for name, holding in current.items():
        if name == signal.defensive_instrument or name in exempt:
            continue
        advice.append(
            Advice(
                instrument_name=name,
                action=HoldingAction.SELL,
                current_shares=holding.shares,
                target_shares=0,
                current_value=holding.total_cost,
                target_value=0.0,
                reason="Not in the strategy's targets; sell.",
            )
        )

    return advice


def portfolio_breakdown(classified: list[ClassifiedHolding]) -> tuple[float, float]:
    """``(strategy_value, free_play_value)`` valued at cost price."""
    strategy_value = sum(c.strategy_shares * c.holding.cost_price for c in classified)
    free_play_value = sum(c.free_play_shares * c.holding.cost_price for c in classified)
    return strategy_value, free_play_value


# ── Helpers ───────────────────────────────────────────────────────────────────

def _targets_by_name(signal: Signal) -> dict[str, SignalHolding]:
    return {t.name: t for t in signal.target_holdings}


def _free_play(holding: Holding) -> ClassifiedHolding:
    return ClassifiedHolding(
        holding=holding,
        category=HoldingCategory.FREE_PLAY,
        strategy_shares=0,
        free_play_shares=holding.shares,
    )
