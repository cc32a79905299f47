"""
Tests for etf_rotator/reconcile/reconciler.py.

What we test
------------
target_shares() / ratio_decision():
  - Whole-lot sizing; zero for non-positive price or capital.
  - match inside tolerance, add when affordable, match when cash is short,
    reduce when above target.

classify_holdings():
  - On-target holding is a strategy holding with action match.
  - Oversized holding splits into strategy + free-play shares (mixed).
  - strategy_shares + free_play_shares == shares for every holding.
  - Defensive holding is held; unknown holdings are free-play.
  - No signal: everything free-play, no actions.
  - A priceless target is treated as free-play.
  - Free-play overflow marks holdings adjust with lot-rounded reductions.

compare_with_signal():
  - Buy with current_shares 0 for a target not held.
  - Free-play holdings are never sold, whatever the allocation.
  - Sell for a strategy holding that left the targets.
  - Defensive instrument and priceless targets are never sold.
  - Targets come first, sells after.

portfolio_breakdown():
  - Strategy and free-play values at cost.
"""

from __future__ import annotations

from datetime import date

import pytest

from etf_rotator.models.portfolio import (
    Holding,
    HoldingAction,
    HoldingCategory,
    Portfolio,
    StrategyConfig,
)
from etf_rotator.models.signal import Signal, SignalHolding
from etf_rotator.reconcile.reconciler import (
    classify_holdings,
    compare_with_signal,
    portfolio_breakdown,
    ratio_decision,
    target_shares,
)

_DEFENSIVE = "银华日利"


# ── Helpers ────────────────────────────────────────────────────────────────────

def _signal(*targets: tuple[str, float | None]) -> Signal:
    if not targets:
        return Signal(
            date=date(2026, 2, 19),
            status="defensive",
            defensive_instrument=_DEFENSIVE,
            message=f"hold {_DEFENSIVE}",
        )
    return Signal(
        date=date(2026, 2, 19),
        status="rotation",
        target_holdings=[SignalHolding(name=n, current_price=p) for n, p in targets],
        defensive_instrument=_DEFENSIVE,
    )


def _holding(name: str, shares: int, price: float, cost: float | None = None) -> Holding:
    return Holding(
        name=name,
        shares=shares,
        cost_price=cost if cost is not None else price,
        current_price=price,
        market_value=shares * price,
    )


def _portfolio(
    *holdings: Holding,
    total_capital: float = 100_000.0,
    cash: float = 5_000.0,
    allocation: StrategyConfig | None = None,
) -> Portfolio:
    return Portfolio(
        holdings=list(holdings),
        total_capital=total_capital,
        cash_balance=cash,
        strategy_config=allocation or StrategyConfig(),
    )


def _by_name(classified):
    return {c.holding.name: c for c in classified}


# ── Sizing and ratio decision ─────────────────────────────────────────────────

class TestSizing:
    def test_whole_lots(self):
        assert target_shares(100_000.0, 0.8, 10.0) == 8000
        assert target_shares(100_000.0, 0.8, 3.3) == 24200

    @pytest.mark.parametrize("capital,price", [(100_000.0, 0.0), (0.0, 10.0), (-5.0, 10.0)])
    def test_degenerate_inputs_give_zero(self, capital, price):
        assert target_shares(capital, 0.8, price) == 0

    def test_match_within_tolerance(self):
        action, deviation, _ = ratio_decision(81_000.0, 100_000.0, 0.8, 0.0)
        assert action == HoldingAction.MATCH
        assert deviation == pytest.approx(0.01)

    def test_add_when_cash_covers_gap(self):
        action, _, _ = ratio_decision(60_000.0, 100_000.0, 0.8, 5_000.0)
        assert action == HoldingAction.ADD

    def test_match_when_cash_too_small(self):
        action, _, reason = ratio_decision(60_000.0, 100_000.0, 0.8, 1_000.0)
        assert action == HoldingAction.MATCH
        assert "insufficient" in reason

    def test_reduce_above_target(self):
        action, deviation, _ = ratio_decision(90_000.0, 100_000.0, 0.8, 0.0)
        assert action == HoldingAction.REDUCE
        assert deviation == pytest.approx(0.1)

    def test_no_capital_is_match(self):
        action, deviation, _ = ratio_decision(50_000.0, 0.0, 0.8, 0.0)
        assert action == HoldingAction.MATCH
        assert deviation == 0.0


# ── Classification ────────────────────────────────────────────────────────────

class TestClassify:
    def test_on_target_holding_matches(self):
        portfolio = _portfolio(_holding("黄金ETF", 8000, 10.0, cost=9.5))
        [item] = classify_holdings(portfolio, _signal(("黄金ETF", 10.0)))
        assert item.category == HoldingCategory.STRATEGY
        assert item.strategy_shares == 8000
        assert item.free_play_shares == 0
        assert item.action == HoldingAction.MATCH

    def test_oversized_holding_is_mixed(self):
        portfolio = _portfolio(_holding("黄金ETF", 9000, 10.0))
        [item] = classify_holdings(portfolio, _signal(("黄金ETF", 10.0)))
        assert item.category == HoldingCategory.MIXED
        assert item.strategy_shares == 8000
        assert item.free_play_shares == 1000
        assert item.action == HoldingAction.REDUCE

    def test_shares_always_partitioned(self):
        portfolio = _portfolio(
            _holding("黄金ETF", 9000, 10.0),
            _holding("纳指ETF", 300, 1.5),
            _holding(_DEFENSIVE, 100, 100.0),
            _holding("豆粕ETF", 700, 2.0),
        )
        signal = _signal(("黄金ETF", 10.0), ("纳指ETF", 1.5))
        for item in classify_holdings(portfolio, signal):
            assert item.strategy_shares + item.free_play_shares == item.holding.shares

    def test_defensive_and_unknown_holdings(self):
        portfolio = _portfolio(_holding(_DEFENSIVE, 100, 100.0), _holding("豆粕ETF", 700, 2.0))
        items = _by_name(classify_holdings(portfolio, _signal()))
        assert items[_DEFENSIVE].category == HoldingCategory.STRATEGY
        assert items[_DEFENSIVE].action == HoldingAction.HOLD
        assert items["豆粕ETF"].category == HoldingCategory.FREE_PLAY
        # No free-play budget: the whole discretionary position is over budget.
        assert items["豆粕ETF"].action == HoldingAction.ADJUST
        assert items["豆粕ETF"].suggested_reduce_shares == 700

    def test_no_signal_means_all_free_play(self):
        portfolio = _portfolio(_holding("黄金ETF", 8000, 10.0), _holding("豆粕ETF", 50_000, 2.0))
        items = classify_holdings(portfolio, None)
        assert all(c.category == HoldingCategory.FREE_PLAY for c in items)
        assert all(c.action is None for c in items)
        assert all(c.free_play_shares == c.holding.shares for c in items)

    def test_priceless_target_is_free_play(self):
        portfolio = _portfolio(_holding("黄金ETF", 8000, 10.0))
        [item] = classify_holdings(portfolio, _signal(("黄金ETF", None)))
        assert item.category == HoldingCategory.FREE_PLAY
        assert item.free_play_shares == 8000

    def test_free_play_overflow_marks_adjust(self):
        allocation = StrategyConfig(strategy_percent=0.6, free_play_percent=0.2, cash_percent=0.2)
        portfolio = _portfolio(
            _holding("白银LOF", 2200, 5.0, cost=4.0),
            _holding("豆粕ETF", 5500, 2.0),
            allocation=allocation,
        )
        items = _by_name(classify_holdings(portfolio, _signal(("纳指ETF", 1.5))))
        assert items["白银LOF"].action == HoldingAction.ADJUST
        assert items["白银LOF"].suggested_reduce_shares == 200
        assert items["豆粕ETF"].action == HoldingAction.ADJUST
        assert items["豆粕ETF"].suggested_reduce_shares == 500

    def test_free_play_within_tolerance_untouched(self):
        allocation = StrategyConfig(strategy_percent=0.6, free_play_percent=0.2, cash_percent=0.2)
        portfolio = _portfolio(_holding("豆粕ETF", 10_000, 2.05), allocation=allocation)
        [item] = classify_holdings(portfolio, _signal(("纳指ETF", 1.5)))
        assert item.action is None
        assert item.suggested_reduce_shares is None


# ── Advice ────────────────────────────────────────────────────────────────────

class TestCompare:
    def test_buy_for_target_not_held(self):
        portfolio = _portfolio()
        [advice] = compare_with_signal(portfolio, _signal(("黄金ETF", 10.0)))
        assert advice.action == HoldingAction.BUY
        assert advice.current_shares == 0
        assert advice.target_shares == 8000
        assert advice.target_value == pytest.approx(80_000.0)

    def test_match_and_add_reasons(self):
        held = _portfolio(_holding("黄金ETF", 8000, 10.0))
        [advice] = compare_with_signal(held, _signal(("黄金ETF", 10.0)))
        assert advice.action == HoldingAction.MATCH

        short = _portfolio(_holding("黄金ETF", 6000, 10.0))
        [advice] = compare_with_signal(short, _signal(("黄金ETF", 10.0)))
        assert advice.action == HoldingAction.ADD
        assert "2000" in advice.reason

    def test_free_play_holding_not_sold_with_default_allocation(self):
        portfolio = _portfolio(_holding("豆粕ETF", 700, 2.0))
        signal = _signal(("黄金ETF", 10.0))
        assert _by_name(classify_holdings(portfolio, signal))["豆粕ETF"].category == (
            HoldingCategory.FREE_PLAY
        )
        advice = compare_with_signal(portfolio, signal)
        assert [(a.instrument_name, a.action) for a in advice] == [("黄金ETF", HoldingAction.BUY)]

    def test_free_play_holdings_exempt_when_allocated(self):
        allocation = StrategyConfig(strategy_percent=0.6, free_play_percent=0.2, cash_percent=0.2)
        portfolio = _portfolio(_holding("豆粕ETF", 700, 2.0), allocation=allocation)
        advice = compare_with_signal(portfolio, _signal(("黄金ETF", 10.0)))
        assert [a.instrument_name for a in advice] == ["黄金ETF"]

    def test_strategy_holding_dropped_from_targets_is_sold(self):
        portfolio = _portfolio(_holding("黄金ETF", 8000, 10.0))
        previous = classify_holdings(portfolio, _signal(("黄金ETF", 10.0)))
        assert previous[0].category == HoldingCategory.STRATEGY

        advice = compare_with_signal(portfolio, _signal(("纳指ETF", 5.0)), classified=previous)
        assert [(a.instrument_name, a.action) for a in advice] == [
            ("纳指ETF", HoldingAction.BUY),
            ("黄金ETF", HoldingAction.SELL),
        ]
        assert advice[1].target_shares == 0

    def test_defensive_never_sold(self):
        portfolio = _portfolio(_holding(_DEFENSIVE, 100, 100.0), _holding("黄金ETF", 8000, 10.0))
        previous = classify_holdings(portfolio, _signal(("黄金ETF", 10.0)))
        advice = compare_with_signal(portfolio, _signal(), classified=previous)
        assert [(a.instrument_name, a.action) for a in advice] == [("黄金ETF", HoldingAction.SELL)]

    def test_priceless_target_neither_advised_nor_sold(self):
        portfolio = _portfolio(_holding("黄金ETF", 8000, 10.0))
        assert compare_with_signal(portfolio, _signal(("黄金ETF", None))) == []


def test_portfolio_breakdown_at_cost():
    portfolio = _portfolio(_holding("黄金ETF", 9000, 10.0, cost=8.0), _holding("豆粕ETF", 500, 2.0))
    classified = classify_holdings(portfolio, _signal(("黄金ETF", 10.0)))
    strategy_value, free_play_value = portfolio_breakdown(classified)
    assert strategy_value == pytest.approx(8000 * 8.0)
    assert free_play_value == pytest.approx(1000 * 8.0 + 500 * 2.0)
