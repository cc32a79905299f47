"""
Portfolio models: holdings, allocation config, reconciliation results.

``Holding`` and ``Portfolio`` are the user's persisted state and are mutable
(edited through ``PortfolioStore``). Everything the reconciler produces
(``ClassifiedHolding``, ``Advice``) is ephemeral and recomputed per call.

Holdings are keyed by display name, not by instrument code: manually entered
and scanned holdings only carry a name, so signals are matched on
``SignalHolding.name``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from etf_rotator.utils.time_utils import utcnow

LOT_SIZE = 100
MIN_STRATEGY_PERCENT = 0.5


class HoldingAction(str, Enum):
    """Per-holding advice label."""

    HOLD = "hold"
    BUY = "buy"
    SELL = "sell"
    ADD = "add"
    REDUCE = "reduce"
    MATCH = "match"
    ADJUST = "adjust"


class HoldingCategory(str, Enum):
    """Which sub-account a holding belongs to."""

    STRATEGY = "strategy"
    FREE_PLAY = "free_play"
    MIXED = "mixed"


class StrategyConfig(BaseModel):
    """User allocation between strategy, discretionary and cash sub-accounts.

    The three percentages must sum to 1.0. ``MIN_STRATEGY_PERCENT`` is a
    recommendation shown to the user, not a hard constraint.
    """

    model_config = ConfigDict(frozen=True)

    strategy_percent: float = 0.8
    free_play_percent: float = 0.0
    cash_percent: float = 0.2

    @field_validator("strategy_percent", "free_play_percent", "cash_percent")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Allocation percentages must be in [0.0, 1.0], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_sum(self) -> "StrategyConfig":
        total = self.strategy_percent + self.free_play_percent + self.cash_percent
        if abs(total - 1.0) > 1e-6:
            raise ValueError(
                f"strategy + free_play + cash percentages must sum to 1.0, got {total:.4f}."
            )
        return self


class Holding(BaseModel):
    """One position as entered by the user or imported from a scan.

    Attributes:
        id:            Stable identifier (uuid4 hex).
        name:          Instrument display name.
        shares:        Share count; lot-aligned in practice but not enforced.
        cost_price:    Average cost per share.
        current_price: Latest price from an import, if known.
        market_value:  Market value from an import, if known.
        added_at:      When the holding was first recorded (UTC).
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    shares: int
    cost_price: float
    current_price: Optional[float] = None
    market_value: Optional[float] = None
    added_at: dt.datetime = Field(default_factory=utcnow)

    @field_validator("shares")
    @classmethod
    def validate_shares(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"shares must be non-negative, got {v}.")
        return v

    @property
    def total_cost(self) -> float:
        return self.shares * self.cost_price

    @property
    def display_market_value(self) -> float:
        """Imported market value when available, otherwise cost basis."""
        return self.market_value if self.market_value is not None else self.total_cost


class HoldingSnapshot(BaseModel):
    """One holding frozen into a daily snapshot."""

    name: str
    shares: int
    cost_price: float
    close_price: Optional[float] = None

    @property
    def market_value(self) -> float:
        """Close-price value; cost basis while the day has no close yet."""
        price = self.close_price if self.close_price is not None else self.cost_price
        return self.shares * price

    @property
    def profit_loss(self) -> Optional[float]:
        if self.close_price is None:
            return None
        return self.shares * (self.close_price - self.cost_price)

    @property
    def profit_loss_percent(self) -> Optional[float]:
        if self.close_price is None or self.cost_price <= 0:
            return None
        return (self.close_price - self.cost_price) / self.cost_price


class DailySnapshot(BaseModel):
    """End-of-day record of all holdings and account totals."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    date: dt.date
    holdings: list[HoldingSnapshot] = []
    total_capital: float
    cash_balance: float

    @property
    def total_market_value(self) -> float:
        return sum(h.market_value for h in self.holdings)

    @property
    def total_assets(self) -> float:
        return self.total_market_value + self.cash_balance


class Portfolio(BaseModel):
    """Everything the user has told us about their account."""

    holdings: list[Holding] = []
    total_capital: float = 0.0
    cash_balance: float = 0.0
    snapshots: list[DailySnapshot] = []
    strategy_config: StrategyConfig = StrategyConfig()
    last_updated: Optional[dt.datetime] = None

    @property
    def strategy_budget(self) -> float:
        return self.total_capital * self.strategy_config.strategy_percent

    @property
    def free_play_budget(self) -> float:
        return self.total_capital * self.strategy_config.free_play_percent

    @property
    def cash_budget(self) -> float:
        return self.total_capital * self.strategy_config.cash_percent


class ImportedHolding(BaseModel):
    """One row of a bulk holdings import (e.g. produced by a screenshot scan)."""

    model_config = ConfigDict(frozen=True)

    name: str
    shares: int
    cost_price: float
    current_price: Optional[float] = None
    market_value: Optional[float] = None


class ImportSummary(BaseModel):
    """Optional account totals accompanying a bulk import."""

    model_config = ConfigDict(frozen=True)

    total_assets: Optional[float] = None
    cash_balance: Optional[float] = None


# ── Reconciliation results ────────────────────────────────────────────────────

@dataclass
class ClassifiedHolding:
    """A holding split between the strategy and discretionary sub-accounts.

    Invariant: ``strategy_shares + free_play_shares == holding.shares``.
    ``suggested_reduce_shares`` is only set when ``action`` is ``ADJUST``.
    """

    holding: Holding
    category: HoldingCategory
    strategy_shares: int
    free_play_shares: int
    action: Optional[HoldingAction] = None
    suggested_reduce_shares: Optional[int] = None


@dataclass(frozen=True)
class Advice:
    """Compact per-instrument recommendation produced by ``compare_with_signal``."""

    instrument_name: str
    action: HoldingAction
    current_shares: int
    target_shares: int
    current_value: float
    target_value: float
    reason: str
