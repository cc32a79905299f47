"""
Portfolio persistence and user edit operations.

``PortfolioStore`` owns the in-memory ``Portfolio`` and writes it through a
``PortfolioRepository`` after every edit. Each edit is applied to a deep copy
and only swapped in once the save succeeded, so a failed write leaves both the
document on disk and the in-memory state unchanged.

``JsonPortfolioRepository`` keeps one JSON document locally and, when a
mirror directory is configured (a synced folder), a second copy there. Reads
prefer the mirror and fall back to the local file.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from etf_rotator.models.portfolio import (
    DailySnapshot,
    Holding,
    HoldingSnapshot,
    ImportedHolding,
    ImportSummary,
    Portfolio,
    StrategyConfig,
)
from etf_rotator.storage.atomic import read_json, write_json_atomic
from etf_rotator.utils.time_utils import MARKET_TZ, market_today, utcnow

logger = logging.getLogger(__name__)


class PortfolioRepository(Protocol):
    def load(self) -> Portfolio: ...

    def save(self, portfolio: Portfolio) -> None: ...


class JsonPortfolioRepository:
    """Local JSON document with an optional mirrored copy.

    Attributes:
        path: Local document path (always written).
        mirror_path: Synced copy; written first and preferred on read.
    """

    def __init__(self, path: Path, mirror_path: Optional[Path] = None) -> None:
        self.path = Path(path)
        self.mirror_path = Path(mirror_path) if mirror_path else None

    def load(self) -> Portfolio:
        for candidate in self._read_order():
            if not candidate.exists():
                continue
            try:
                return Portfolio.model_validate(read_json(candidate))
            except (ValueError, ValidationError) as exc:
                logger.warning("Portfolio document %s is unreadable: %s", candidate, exc)
        return Portfolio()

    def save(self, portfolio: Portfolio) -> None:
        payload = portfolio.model_dump(mode="json")
        if self.mirror_path is not None:
            try:
                write_json_atomic(self.mirror_path, payload)
            except OSError as exc:
                logger.warning("Could not write portfolio mirror %s: %s", self.mirror_path, exc)
        write_json_atomic(self.path, payload)

    def _read_order(self) -> list[Path]:
        if self.mirror_path is not None:
            return [self.mirror_path, self.path]
        return [self.path]


class InMemoryPortfolioRepository:
    """Test double storing a deep copy of the last saved portfolio."""

    def __init__(self, initial: Optional[Portfolio] = None) -> None:
        self._state = initial.model_copy(deep=True) if initial else Portfolio()
        self.save_count = 0

    def load(self) -> Portfolio:
        return self._state.model_copy(deep=True)

    def save(self, portfolio: Portfolio) -> None:
        self.save_count += 1
        self._state = portfolio.model_copy(deep=True)


class PortfolioStore:
    """User-facing portfolio edits, each persisted immediately.

    Args:
        repository: Where the portfolio document lives.
        now_fn: UTC clock; injectable for tests.
        today_fn: Exchange-local date; injectable for tests.
    """

    def __init__(
        self,
        repository: PortfolioRepository,
        now_fn: Callable[[], datetime] = utcnow,
        today_fn: Callable[[], date] = market_today,
    ) -> None:
        self.repository = repository
        self._now_fn = now_fn
        self._today_fn = today_fn
        self.portfolio = repository.load()

    # ── Holdings ───────────────────────────────────────────────────────────────

    def add_holding(self, name: str, shares: int, cost_price: float) -> Holding:
        """Add a holding, merging into an existing same-name holding.

        A merge keeps the existing id and recomputes the cost as the
        share-weighted average of both lots.
        """
        _check_position(shares, cost_price)
        draft = self._draft()
        existing = next((h for h in draft.holdings if h.name == name), None)
        if existing is not None:
            total_shares = existing.shares + shares
            if total_shares > 0:
                existing.cost_price = (existing.total_cost + shares * cost_price) / total_shares
            existing.shares = total_shares
            holding = existing
        else:
            holding = Holding(name=name, shares=shares, cost_price=cost_price, added_at=self._now_fn())
            draft.holdings.append(holding)
        self._commit(draft)
        logger.info("Holding %s now %d share(s) @ %.4f", name, holding.shares, holding.cost_price)
        return holding

    def update_holding(self, holding_id: str, shares: int, cost_price: float) -> bool:
        """Overwrite shares and cost of one holding; ``False`` if the id is unknown."""
        _check_position(shares, cost_price)
        draft = self._draft()
        holding = next((h for h in draft.holdings if h.id == holding_id), None)
        if holding is None:
            return False
        holding.shares = shares
        holding.cost_price = cost_price
        self._commit(draft)
        return True

    def remove_holding(self, holding_id: str) -> bool:
        draft = self._draft()
        before = len(draft.holdings)
        draft.holdings = [h for h in draft.holdings if h.id != holding_id]
        if len(draft.holdings) == before:
            return False
        self._commit(draft)
        return True

    def find_holding(self, id_or_name: str) -> Optional[Holding]:
        """Look a holding up by id, then by exact name."""
        for h in self.portfolio.holdings:
            if h.id == id_or_name:
                return h
        return next((h for h in self.portfolio.holdings if h.name == id_or_name), None)

    def import_holdings(
        self,
        holdings: list[ImportedHolding],
        summary: Optional[ImportSummary] = None,
    ) -> None:
        """Replace *all* holdings in one write and stamp ``last_updated``.

        Summary totals, when present, overwrite total capital and cash.
        """
        draft = self._draft()
        now = self._now_fn()
        draft.holdings = [
            Holding(
                name=item.name,
                shares=item.shares,
                cost_price=item.cost_price,
                current_price=item.current_price,
                market_value=item.market_value,
                added_at=now,
            )
            for item in holdings
        ]
        if summary is not None:
            if summary.total_assets is not None:
                draft.total_capital = summary.total_assets
            if summary.cash_balance is not None:
                draft.cash_balance = summary.cash_balance
        draft.last_updated = now
        self._commit(draft)
        logger.info("Imported %d holding(s).", len(holdings))

    # ── Account totals & allocation ───────────────────────────────────────────

    def set_total_capital(self, amount: float) -> None:
        draft = self._draft()
        draft.total_capital = amount
        self._commit(draft)

    def set_cash_balance(self, amount: float) -> None:
        draft = self._draft()
        draft.cash_balance = amount
        self._commit(draft)

    def update_strategy_config(self, config: StrategyConfig) -> None:
        draft = self._draft()
        draft.strategy_config = config
        self._commit(draft)

    def mark_updated(self) -> None:
        draft = self._draft()
        draft.last_updated = self._now_fn()
        self._commit(draft)

    def is_updated_today(self) -> bool:
        """True if ``last_updated`` falls on today's exchange-local date."""
        last = self.portfolio.last_updated
        if last is None:
            return False
        if last.tzinfo is None:
            last = last.replace(tzinfo=MARKET_TZ)
        return last.astimezone(MARKET_TZ).date() == self._today_fn()

    # ── Snapshots ──────────────────────────────────────────────────────────────

    def take_snapshot(
        self,
        day: Optional[date] = None,
        close_prices: Optional[dict[str, float]] = None,
    ) -> DailySnapshot:
        """Record today's holdings; an existing snapshot for ``day`` is replaced.

        Snapshots stay sorted newest first.
        """
        day = day or self._today_fn()
        prices = close_prices or {}
        snapshot = DailySnapshot(
            date=day,
            holdings=[
                HoldingSnapshot(
                    name=h.name,
                    shares=h.shares,
                    cost_price=h.cost_price,
                    close_price=prices.get(h.name),
                )
                for h in self.portfolio.holdings
            ],
            total_capital=self.portfolio.total_capital,
            cash_balance=self.portfolio.cash_balance,
        )

        draft = self._draft()
        draft.snapshots = [s for s in draft.snapshots if s.date != day] + [snapshot]
        draft.snapshots.sort(key=lambda s: s.date, reverse=True)
        self._commit(draft)
        return snapshot

    # ── Internals ──────────────────────────────────────────────────────────────

    def _draft(self) -> Portfolio:
        return self.portfolio.model_copy(deep=True)

    def _commit(self, draft: Portfolio) -> None:
        self.repository.save(draft)
        self.portfolio = draft


def _check_position(shares: int, cost_price: float) -> None:
    if shares < 0:
        raise ValueError(f"shares must be non-negative, got {shares}.")
    if cost_price < 0:
        raise ValueError(f"cost_price must be non-negative, got {cost_price}.")
