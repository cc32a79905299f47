"""
ASCII terminal formatters for CLI output.

Every formatter returns a plain multi-line string suitable for
``typer.echo()``. No third-party dependencies (no ``rich``).
"""

from __future__ import annotations

from typing import Optional

from etf_rotator.engine.signal_engine import RunDiagnostics
from etf_rotator.models.portfolio import Advice, ClassifiedHolding, Portfolio
from etf_rotator.models.signal import Signal


# ── Signal ───────────────────────────────────────────────────────────────────


def format_signal(
    signal: Signal,
    source: Optional[str] = None,
    errors: Optional[dict[str, str]] = None,
) -> str:
    """Render a signal, the tier that produced it and any tiers that failed first.

    Example::

        === Signal 2026-02-19 [ROTATION] ===
          Source: local
            (remote failed: HTTP 503)
          Rank  Instrument        Code           Price      Score
          ---------------------------------------------------------
             1  黄金ETF            518880.SH      5.312     1.8423
          Defensive: 银华日利
    """
    lines: list[str] = ["", f"=== Signal {signal.date.isoformat()} [{signal.status.upper()}] ==="]

    if source:
        lines.append(f"  Source: {source}")
    for tier, msg in (errors or {}).items():
        lines.append(f"    ({tier} failed: {msg})")

    if signal.target_holdings:
        lines.append(
            f"  {'Rank':>4}  {'Instrument':<16}  {'Code':<12}  {'Price':>9}  {'Score':>9}"
        )
        lines.append("  " + "-" * 57)
        for rank, t in enumerate(signal.target_holdings, start=1):
            price = f"{t.current_price:.3f}" if t.current_price is not None else "-"
            score = f"{t.score:.4f}" if t.score is not None else "-"
            lines.append(
                f"  {rank:>4}  {t.name:<16}  {t.code or '-':<12}  {price:>9}  {score:>9}"
            )

    if signal.defensive_instrument:
        lines.append(f"  Defensive: {signal.defensive_instrument}")
    if signal.message:
        lines.append(f"  Note: {signal.message}")
    return "\n".join(lines)


def format_run_diagnostics(diagnostics: RunDiagnostics) -> str:
    """Explain a local engine run: scores, exclusions and stale instruments."""
    lines: list[str] = ["", f"=== Engine run {diagnostics.today.isoformat()} ==="]
    for s in diagnostics.scores:
        lines.append(
            f"  scored    {s.code:<12} score={s.score:.4f} "
            f"ann_return={s.annualized_return:.2%} r2={s.r_squared:.3f}"
        )
    for code, reason in sorted(diagnostics.excluded.items()):
        lines.append(f"  excluded  {code:<12} {reason}")
    for code, reason in sorted(diagnostics.stale.items()):
        lines.append(f"  stale     {code:<12} {reason}")
    return "\n".join(lines)


# ── Portfolio ─────────────────────────────────────────────────────────────────


def format_portfolio(portfolio: Portfolio) -> str:
    """Holdings table plus account totals and allocation budgets."""
    cfg = portfolio.strategy_config
    lines: list[str] = [
        "",
        "=== Portfolio ===",
        f"  Total capital: {portfolio.total_capital:>14,.2f}",
        f"  Cash balance:  {portfolio.cash_balance:>14,.2f}",
        (
            f"  Allocation:    strategy {cfg.strategy_percent:.0%} "
            f"({portfolio.strategy_budget:,.0f}) | free-play {cfg.free_play_percent:.0%} "
            f"({portfolio.free_play_budget:,.0f}) | cash {cfg.cash_percent:.0%}"
        ),
        f"  Last updated:  {portfolio.last_updated.isoformat() if portfolio.last_updated else '-'}",
    ]

    if not portfolio.holdings:
        lines.append("")
        lines.append("  (no holdings recorded)")
        return "\n".join(lines)

    lines.append("")
    lines.append(
        f"  {'Id':<8}  {'Name':<16}  {'Shares':>8}  {'Cost':>9}  {'Price':>9}  {'Value':>12}"
    )
    lines.append("  " + "-" * 72)
    for h in portfolio.holdings:
        price = f"{h.current_price:.3f}" if h.current_price is not None else "-"
        lines.append(
            f"  {h.id[:8]:<8}  {h.name:<16}  {h.shares:>8}  {h.cost_price:>9.3f}  "
            f"{price:>9}  {h.display_market_value:>12,.2f}"
        )
    return "\n".join(lines)


def format_classified(
    classified: list[ClassifiedHolding],
    breakdown: Optional[tuple[float, float]] = None,
) -> str:
    """One row per holding with its strategy/free-play split and action."""
    lines: list[str] = ["", "=== Holdings vs Signal ==="]
    if not classified:
        lines.append("  (no holdings recorded)")
        return "\n".join(lines)

    lines.append(
        f"  {'Name':<16}  {'Category':<10}  {'Strategy':>8}  {'FreePlay':>8}  {'Action':<8}  Reduce"
    )
    lines.append("  " + "-" * 68)
    for c in classified:
        action = c.action.value if c.action else "-"
        reduce = str(c.suggested_reduce_shares) if c.suggested_reduce_shares else ""
        lines.append(
            f"  {c.holding.name:<16}  {c.category.value:<10}  {c.strategy_shares:>8}  "
            f"{c.free_play_shares:>8}  {action:<8}  {reduce}"
        )

    if breakdown is not None:
        strategy_value, free_play_value = breakdown
        lines.append("")
        lines.append(f"  Strategy value (cost):  {strategy_value:>14,.2f}")
        lines.append(f"  Free-play value (cost): {free_play_value:>14,.2f}")
    return "\n".join(lines)


def format_advice(advice: list[Advice]) -> str:
    lines: list[str] = ["", "=== Advice ==="]
    if not advice:
        lines.append("  (nothing to do)")
        return "\n".join(lines)

    lines.append(
        f"  {'Action':<7}  {'Instrument':<16}  {'Current':>8}  {'Target':>8}  "
        f"{'Cur.Value':>12}  {'Tgt.Value':>12}  Reason"
    )
    lines.append("  " + "-" * 90)
    for a in advice:
        lines.append(
            f"  {a.action.value.upper():<7}  {a.instrument_name:<16}  {a.current_shares:>8}  "
            f"{a.target_shares:>8}  {a.current_value:>12,.2f}  {a.target_value:>12,.2f}  {a.reason}"
        )
    return "\n".join(lines)
