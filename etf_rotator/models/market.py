"""
Market data models: instruments and daily bars.

Both models are frozen (immutable) after construction. A ``DailyBar`` carries
no intraday precision: ``trade_date`` is the exchange-local calendar day.

Within one instrument's series, dates are unique and strictly increasing; that
invariant is enforced by ``InstrumentCache.merge()``, not here.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, field_validator

from etf_rotator.utils.time_utils import parse_trade_date


class Instrument(BaseModel):
    """Stable identity of a tradable instrument."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str


class DailyBar(BaseModel):
    """One trading day of OHLCV data for one instrument.

    Attributes:
        trade_date: Exchange-local calendar day.
        open, high, low, close: Prices in the instrument's quote currency.
        volume: Units traded.
        amount: Turnover (value traded); the volume-spike filter reads this.
    """

    model_config = ConfigDict(frozen=True)

    trade_date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    amount: float = 0.0

    @field_validator("trade_date", mode="before")
    @classmethod
    def parse_date(cls, v: object) -> date:
        if isinstance(v, (str, date)):
            return parse_trade_date(v)
        raise ValueError(f"Unsupported trade_date value: {v!r}")

    @field_validator("close")
    @classmethod
    def validate_close_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"close must be positive, got {v}.")
        return v
