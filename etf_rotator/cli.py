"""
ETF Rotator: CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Execute the action (signal resolution, reconciliation, portfolio edit).
  4. Report the result to stdout.

Install and run::

    pip install -e .
    etf-rotator --help
    etf-rotator init-db
    etf-rotator signal
    etf-rotator signal --local-only --explain
    etf-rotator holdings add 黄金ETF 1000 5.12
    etf-rotator set-capital 100000
    etf-rotator advise
    etf-rotator import-holdings --file scan.json
    etf-rotator snapshot
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="etf-rotator",
    help="ETF momentum rotation signal and portfolio reconciliation CLI.",
    add_completion=False,
)
holdings_app = typer.Typer(help="List, add and remove holdings.", add_completion=False)
app.add_typer(holdings_app, name="holdings")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from etf_rotator.config import load_config
    from etf_rotator.errors import InvalidConfiguration

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except InvalidConfiguration as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from etf_rotator.utils.logging import configure_logging
    configure_logging(config.logging)


def _portfolio_store(config):
    from etf_rotator.storage.portfolio_store import JsonPortfolioRepository, PortfolioStore

    repo = JsonPortfolioRepository(
        config.storage.portfolio_path, mirror_path=config.storage.mirror_path
    )
    return PortfolioStore(repo)


def _build_engine(config):
    from etf_rotator.engine.signal_engine import SignalEngine
    from etf_rotator.ingestion.tushare_client import TushareClient
    from etf_rotator.storage.bar_cache import JsonBarCacheRepository

    return SignalEngine(
        config=config,
        data_source=TushareClient(config.data_source),
        cache_repository=JsonBarCacheRepository(config.storage.bar_cache_path),
    )


def _run_signal_stage(config, total_capital: Optional[float], local_only: bool):
    """Resolve the signal through the fallback chain; exits 1 if every tier fails."""
    from etf_rotator.errors import RotatorError
    from etf_rotator.pipeline.signal_chain import SqliteSignalHistory
    from etf_rotator.pipeline.stages import SignalStage, default_providers

    engine = _build_engine(config)
    history = SqliteSignalHistory(config.storage.db_path)
    providers = default_providers(
        config, engine, history, total_capital=total_capital, local_only=local_only
    )
    stage = SignalStage(config=config, providers=providers)
    try:
        stage.run()
    except RotatorError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    return stage, engine


# ── Config & database ─────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml)."
    ),
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Validate the configuration file and print the parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Candidate pool:   {', '.join(i.code for i in config.universe.pool)}")
    typer.echo(f"  Defensive:        {config.universe.defensive.code} {config.universe.defensive.name}")
    typer.echo(f"  Lookback days:    {config.strategy.lookback_days}")
    typer.echo(f"  Holdings num:     {config.strategy.holdings_num}")
    typer.echo(f"  Data dir:         {config.storage.data_dir}")
    typer.echo(f"  Remote signal:    {'enabled' if config.remote_signal.enabled else 'disabled'}")
    typer.echo(f"  Log level:        {config.logging.level}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(mode="json"), indent=2, ensure_ascii=False))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Create the SQLite database for the run log and signal history.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    """
    from etf_rotator.db.connection import get_connection
    from etf_rotator.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.storage.db_path
    typer.echo(f"Initializing database at: {target_path}")
    with get_connection(target_path) as conn:
        apply_schema(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


# ── Signal & advice ───────────────────────────────────────────────────────────

@app.command("signal")
def signal_cmd(
    local_only: bool = typer.Option(
        False, "--local-only", help="Skip the remote and persisted tiers; compute locally."
    ),
    explain: bool = typer.Option(
        False, "--explain", help="Show per-instrument scores and exclusions of a local run."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Resolve today's rotation signal (remote → persisted → local)."""
    from etf_rotator.reporting.formatters import format_run_diagnostics, format_signal

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = _portfolio_store(config)
    stage, engine = _run_signal_stage(config, store.portfolio.total_capital, local_only)
    resolution = stage.resolution

    typer.echo(format_signal(resolution.signal, resolution.source, resolution.errors))
    if explain and engine.last_run is not None:
        typer.echo(format_run_diagnostics(engine.last_run))
    typer.echo("")
    typer.echo("[OK] Signal resolved.")


@app.command("advise")
def advise(
    local_only: bool = typer.Option(
        False, "--local-only", help="Compute the signal locally instead of using the chain."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Compare current holdings with today's signal and print advice."""
    from etf_rotator.errors import RotatorError
    from etf_rotator.pipeline.stages import AdviseStage
    from etf_rotator.reconcile.reconciler import portfolio_breakdown
    from etf_rotator.reporting.formatters import format_advice, format_classified, format_signal

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = _portfolio_store(config)
    portfolio = store.portfolio
    if portfolio.total_capital <= 0:
        typer.echo("[WARN] Total capital is not set; run 'etf-rotator set-capital' first.")

    signal_stage, _ = _run_signal_stage(config, portfolio.total_capital, local_only)
    resolution = signal_stage.resolution

    stage = AdviseStage(config=config, portfolio=portfolio, signal=resolution.signal)
    try:
        stage.run()
    except RotatorError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(format_signal(resolution.signal, resolution.source, resolution.errors))
    typer.echo(format_classified(stage.classified, portfolio_breakdown(stage.classified)))
    typer.echo(format_advice(stage.advice))
    typer.echo("")
    typer.echo("[OK] Advice generated.")


# ── Portfolio edits ───────────────────────────────────────────────────────────

@holdings_app.command("list")
def holdings_list(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show recorded holdings and account totals."""
    from etf_rotator.reporting.formatters import format_portfolio

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    store = _portfolio_store(config)
    typer.echo(format_portfolio(store.portfolio))
    if not store.is_updated_today():
        typer.echo("")
        typer.echo("  Holdings have not been updated today.")


@holdings_app.command("add")
def holdings_add(
    name: str = typer.Argument(..., help="Instrument display name, e.g. 黄金ETF."),
    shares: int = typer.Argument(..., help="Share count."),
    cost_price: float = typer.Argument(..., help="Average cost per share."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Add a holding; an existing same-name holding is merged at average cost."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    store = _portfolio_store(config)
    try:
        holding = store.add_holding(name, shares, cost_price)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] {holding.name}: {holding.shares} share(s) @ {holding.cost_price:.4f}")


@holdings_app.command("remove")
def holdings_remove(
    id_or_name: str = typer.Argument(..., help="Holding id (or unique prefix) or exact name."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Remove a holding by id, id prefix or name."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    store = _portfolio_store(config)

    holding = store.find_holding(id_or_name)
    if holding is None:
        matches = [h for h in store.portfolio.holdings if h.id.startswith(id_or_name)]
        if len(matches) == 1:
            holding = matches[0]
    if holding is None:
        typer.echo(f"[ERROR] No unique holding matches '{id_or_name}'.", err=True)
        raise typer.Exit(code=1)

    store.remove_holding(holding.id)
    typer.echo(f"[OK] Removed {holding.name}.")


@app.command("set-capital")
def set_capital(
    amount: float = typer.Argument(..., help="Total capital."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Set the account's total capital."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    _portfolio_store(config).set_total_capital(amount)
    typer.echo(f"[OK] Total capital set to {amount:,.2f}.")


@app.command("set-cash")
def set_cash(
    amount: float = typer.Argument(..., help="Available cash."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Set the account's available cash balance."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    _portfolio_store(config).set_cash_balance(amount)
    typer.echo(f"[OK] Cash balance set to {amount:,.2f}.")


@app.command("set-allocation")
def set_allocation(
    strategy: float = typer.Option(..., "--strategy", help="Strategy fraction, e.g. 0.8."),
    free_play: float = typer.Option(0.0, "--free-play", help="Discretionary fraction."),
    cash: float = typer.Option(..., "--cash", help="Cash reserve fraction."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Set the strategy / free-play / cash split (must sum to 1.0)."""
    from pydantic import ValidationError

    from etf_rotator.models.portfolio import MIN_STRATEGY_PERCENT, StrategyConfig

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        allocation = StrategyConfig(
            strategy_percent=strategy, free_play_percent=free_play, cash_percent=cash
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid allocation: {exc}", err=True)
        raise typer.Exit(code=1)

    if allocation.strategy_percent < MIN_STRATEGY_PERCENT:
        typer.echo(
            f"[WARN] Strategy allocation below the recommended {MIN_STRATEGY_PERCENT:.0%}."
        )
    _portfolio_store(config).update_strategy_config(allocation)
    typer.echo(
        f"[OK] Allocation: strategy {strategy:.0%}, free-play {free_play:.0%}, cash {cash:.0%}."
    )


@app.command("import-holdings")
def import_holdings(
    file: str = typer.Option(..., "--file", "-f", help="Import document (JSON)."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Replace all holdings from an import document.

    \b
    Document shape:
      {"holdings": [{"name", "shares", "cost_price", "current_price"?, "market_value"?}],
       "summary": {"total_assets"?, "cash_balance"?}}
    """
    from etf_rotator.errors import DecodeFailure
    from etf_rotator.ingestion.importer import load_import_file

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    path = Path(file)
    if not path.exists():
        typer.echo(f"[ERROR] Import file not found: {path}", err=True)
        raise typer.Exit(code=1)

    try:
        holdings, summary = load_import_file(path)
    except DecodeFailure as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    _portfolio_store(config).import_holdings(holdings, summary)
    typer.echo(f"[OK] Imported {len(holdings)} holding(s) from {path}.")


@app.command("snapshot")
def snapshot(
    on_date: Optional[str] = typer.Option(
        None, "--date", help="Snapshot date (YYYY-MM-DD or YYYYMMDD); default today."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Record today's holdings; a snapshot for the same day is replaced.

    Close prices come from the holdings' last imported prices.
    """
    from etf_rotator.utils.time_utils import parse_trade_date

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        day: Optional[date] = parse_trade_date(on_date) if on_date else None
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid --date: {exc}", err=True)
        raise typer.Exit(code=1)

    store = _portfolio_store(config)
    prices = {
        h.name: h.current_price for h in store.portfolio.holdings if h.current_price is not None
    }
    snap = store.take_snapshot(day, prices)
    typer.echo(
        f"[OK] Snapshot {snap.date.isoformat()}: {len(snap.holdings)} holding(s), "
        f"total assets {snap.total_assets:,.2f}."
    )


if __name__ == "__main__":
    app()
