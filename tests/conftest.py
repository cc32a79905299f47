"""
Shared pytest fixtures for the ETF rotator test suite.

Provides:
  - ``make_bars``: factory turning a close series into consecutive daily bars.
  - ``FakeDataSource`` / ``fake_source``: in-memory data source with
    per-code failures and a call log.
  - ``make_config``: ``AppConfig`` factory with a small pool and no
    rate-limit delay.
  - ``in_memory_db``: fresh SQLite connection with the schema applied.
"""

from __future__ import annotations

import sqlite3
from datetime import date, timedelta
from typing import Callable, Generator, Optional

import pytest

from etf_rotator.config import AppConfig, StrategyParams, UniverseConfig
from etf_rotator.db.schema import apply_schema
from etf_rotator.errors import NoData
from etf_rotator.models.market import DailyBar, Instrument

START_DATE = date(2026, 1, 5)

GOLD = Instrument(code="518880.SH", name="黄金ETF")
NASDAQ = Instrument(code="513100.SH", name="纳指ETF")
DEFENSIVE = Instrument(code="511880.SH", name="银华日利")



def build_bars(
    closes: list[float],
    start: date = START_DATE,
    amounts: Optional[list[float]] = None,
) -> list[DailyBar]:
    amounts = amounts or [1_000_000.0] * len(closes)
    return [
        DailyBar(
            trade_date=start + timedelta(days=i),
            open=c,
            high=c,
            low=c,
            close=c,
            volume=10_000.0,
            amount=a,
        )
        for i, (c, a) in enumerate(zip(closes, amounts))
    ]


class FakeDataSource:
    """Serves bars from a dict; raises configured errors per code.

    Attributes:
        bars: code → full bar history available "upstream".
        failures: code → exception to raise on fetch.
        calls: ``(code, start, end)`` for every fetch, in order.
        on_fetch: Optional hook called with the code before serving.
    """

    def __init__(
        self,
        bars: Optional[dict[str, list[DailyBar]]] = None,
        failures: Optional[dict[str, Exception]] = None,
    ) -> None:
        self.bars = bars or {}
        self.failures = failures or {}
        self.calls: list[tuple[str, date, date]] = []
        self.on_fetch: Optional[Callable[[str], None]] = None

    def fetch_daily_bars(self, code: str, start: date, end: date) -> list[DailyBar]:
        self.calls.append((code, start, end))
        if self.on_fetch is not None:
            self.on_fetch(code)
        if code in self.failures:
            raise self.failures[code]
        rows = [b for b in self.bars.get(code, []) if start <= b.trade_date <= end]
        if not rows:
            raise NoData(f"no bars for {code}", code=code)
        return rows


@pytest.fixture
def make_bars() -> Callable[..., list[DailyBar]]:
    return build_bars


@pytest.fixture
def fake_source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    """Factory: ``make_config(pool=[...], **strategy_overrides)``."""

    def _make(
        pool: Optional[list[Instrument]] = None,
        defensive: Instrument = DEFENSIVE,
        **strategy: object,
    ) -> AppConfig:
        strategy.setdefault("request_delay_seconds", 0.0)
        return AppConfig(
            universe=UniverseConfig(pool=pool or [GOLD, NASDAQ], defensive=defensive),
            strategy=StrategyParams(**strategy),
        )

    return _make


@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Fresh in-memory SQLite connection with the schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    apply_schema(conn)
    yield conn
    conn.close()
