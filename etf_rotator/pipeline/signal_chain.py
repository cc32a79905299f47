"""
Signal fallback chain.

Providers are tried strictly in list order; a provider is consulted only if
every earlier one raised. The default order is:

  1. remote     - precomputed signal service; a success is recorded in the
                  signal history
  2. persisted  - newest row of the signal history, however old
  3. local      - the ``SignalEngine`` computing from cached/fetched bars

``resolve_signal`` returns the first success together with the errors of the
tiers that failed before it, and raises ``SignalUnavailable`` only when all
of them failed.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Protocol, Sequence

from etf_rotator.db.connection import get_connection
from etf_rotator.db.repositories.signal_repo import SignalHistoryRepository
from etf_rotator.db.schema import apply_schema
from etf_rotator.engine.signal_engine import SignalEngine
from etf_rotator.errors import RotatorError, SignalUnavailable
from etf_rotator.ingestion.remote_signal import RemoteSignalClient
from etf_rotator.models.signal import Signal

logger = logging.getLogger(__name__)


class SignalProvider(Protocol):
    name: str

    def get_signal(self) -> Signal: ...


@dataclass(frozen=True)
class SignalResolution:
    """The signal that won and how we got there."""

    signal: Signal
    source: str
    errors: dict[str, str] = field(default_factory=dict)


# ── Signal history ────────────────────────────────────────────────────────────

class SqliteSignalHistory:
    """``signal_history`` table access with the schema applied on first use."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._schema_ready = False

    def record(self, signal: Signal, source: str) -> None:
        with get_connection(self.db_path) as conn:
            self._ensure_schema(conn)
            SignalHistoryRepository(conn).insert_signal(signal, source)

    def latest(self) -> Optional[Signal]:
        with get_connection(self.db_path) as conn:
            self._ensure_schema(conn)
            return SignalHistoryRepository(conn).latest()

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if not self._schema_ready:
            apply_schema(conn)
            self._schema_ready = True


# ── Providers ─────────────────────────────────────────────────────────────────

class RemoteSignalProvider:
    name = "remote"

    def __init__(
        self,
        client: RemoteSignalClient,
        history: Optional[SqliteSignalHistory] = None,
        enabled: bool = True,
        total_capital: Optional[float] = None,
    ) -> None:
        self.client = client
        self.history = history
        self.enabled = enabled
        self.total_capital = total_capital

    def get_signal(self) -> Signal:
        if not self.enabled:
            raise RotatorError("Remote signal service is disabled in configuration.")

        capital = self.total_capital if self.total_capital and self.total_capital > 0 else None
        signal = self.client.fetch_latest_signal(total_capital=capital)

        if self.history is not None:
            try:
                self.history.record(signal, self.name)
            except (sqlite3.Error, OSError) as exc:
                logger.warning("Could not record remote signal in history: %s", exc)
        return signal


class PersistedSignalProvider:
    name = "persisted"

    def __init__(self, history: SqliteSignalHistory) -> None:
        self.history = history

    def get_signal(self) -> Signal:
        signal = self.history.latest()
        if signal is None:
            raise RotatorError("No persisted signal available.")
        logger.info("Using persisted signal from %s.", signal.date)
        return signal


class LocalComputeProvider:
    name = "local"

    def __init__(self, engine: SignalEngine, today: Optional[date] = None) -> None:
        self.engine = engine
        self.today = today

    def get_signal(self) -> Signal:
        return self.engine.compute_signal(today=self.today)


# ── Resolution ────────────────────────────────────────────────────────────────

def resolve_signal(providers: Sequence[SignalProvider]) -> SignalResolution:
    """Return the first provider's signal that does not raise.

    Raises:
        SignalUnavailable: Every provider raised; carries each one's message.
    """
    errors: dict[str, str] = {}
    for provider in providers:
        try:
            signal = provider.get_signal()
        except Exception as exc:
            logger.warning("Signal provider '%s' failed: %s", provider.name, exc)
            errors[provider.name] = str(exc) or exc.__class__.__name__
            continue
        logger.info("Signal resolved by provider '%s'.", provider.name)
        return SignalResolution(signal=signal, source=provider.name, errors=errors)

    raise SignalUnavailable(errors)
