"""
Strategy signal models.

``Score`` is the engine's per-instrument result; it is recomputed every run
and never persisted.

``Signal`` is the engine's output and also the shape served by the remote
precomputed-signal endpoint. The remote wire format predates this package and
uses different key names (``target_holdings``, ``defensive_etf``, ``etf``,
``etf_name``) and ``status="signal"`` for a rotation; both spellings are
accepted on decode and the canonical field names are emitted on dump.

Invariant: ``target_holdings`` is empty iff ``status == "defensive"``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from etf_rotator.utils.time_utils import parse_trade_date

SignalStatus = Literal["rotation", "defensive"]

_STATUS_ALIASES: dict[str, str] = {
    "rotation": "rotation",
    "signal": "rotation",
    "defensive": "defensive",
}


@dataclass(frozen=True)
class Score:
    """Momentum score for one candidate that survived every filter.

    Attributes:
        code:              Instrument code.
        name:              Instrument display name.
        score:             ``annualized_return * r_squared``.
        annualized_return: ``exp(slope * 250) - 1`` of the weighted log-price fit.
        r_squared:         Weighted coefficient of determination of the fit.
        current_price:     Latest close.
    """

    code: str
    name: str
    score: float
    annualized_return: float
    r_squared: float
    current_price: float


class SignalHolding(BaseModel):
    """One target instrument inside a rotation signal."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: Optional[str] = Field(default=None, validation_alias=AliasChoices("code", "etf"))
    name: str = Field(validation_alias=AliasChoices("name", "etf_name"))
    current_price: Optional[float] = None
    score: Optional[float] = None


class Signal(BaseModel):
    """Daily rotation recommendation.

    Attributes:
        date:                 Trading day the signal applies to.
        status:               ``"rotation"`` or ``"defensive"``.
        target_holdings:      Ranked target instruments (empty when defensive).
        defensive_instrument: Name of the fallback instrument.
        generated_at:         Producer timestamp; set by the remote service only,
                              locally computed signals leave it ``None`` so that
                              identical inputs yield identical signals.
        message:              Human-readable note (always set when defensive).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: dt.date
    status: SignalStatus
    target_holdings: list[SignalHolding] = []
    defensive_instrument: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("defensive_instrument", "defensive_etf"),
    )
    generated_at: Optional[str] = None
    message: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: object) -> dt.date:
        if isinstance(v, (str, dt.date)):
            return parse_trade_date(v)
        raise ValueError(f"Unsupported signal date: {v!r}")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: object) -> str:
        status = _STATUS_ALIASES.get(str(v).lower())
        if status is None:
            raise ValueError(f"Unknown signal status '{v}'.")
        return status

    @model_validator(mode="after")
    def validate_targets_match_status(self) -> "Signal":
        if self.status == "defensive" and self.target_holdings:
            raise ValueError("A defensive signal must not carry target holdings.")
        if self.status == "rotation" and not self.target_holdings:
            raise ValueError("A rotation signal must carry at least one target holding.")
        return self

    @property
    def target_names(self) -> list[str]:
        return [t.name for t in self.target_holdings]
