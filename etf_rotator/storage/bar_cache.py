"""
Bar cache: per-instrument, windowed, deduplicated daily bar history.

``InstrumentCache`` holds one instrument's bars in strictly increasing date
order and never more than ``window_size`` of them; ``merge()`` is the only
mutation path.

Refresh policy (``refresh_start_date``):
  - empty cache          → request ``window_size`` calendar days back
  - last bar is today    → re-request today (the intraday bar may have moved)
  - otherwise            → re-request from the last cached day (inclusive)

In both non-empty cases the request starts at the last cached day, so that
day's cached bar is replaced by the fresh copy (``replace_day``).

The whole map ``code -> InstrumentCache`` is persisted as one document by a
``BarCacheRepository``. ``JsonBarCacheRepository`` writes atomically;
``InMemoryBarCacheRepository`` is the test double.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from etf_rotator.models.market import DailyBar
from etf_rotator.storage.atomic import read_json, write_json_atomic
from etf_rotator.utils.time_utils import days_ago

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 50


class InstrumentCache:
    """Ordered, window-capped bar list for one instrument."""

    def __init__(self, bars: Optional[list[DailyBar]] = None) -> None:
        self._bars: list[DailyBar] = []
        if bars:
            self.merge(bars, window_size=max(len(bars), 1))

    @property
    def bars(self) -> list[DailyBar]:
        return list(self._bars)

    @property
    def last_date(self) -> Optional[date]:
        return self._bars[-1].trade_date if self._bars else None

    @property
    def closes(self) -> list[float]:
        return [b.close for b in self._bars]

    def __len__(self) -> int:
        return len(self._bars)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InstrumentCache):
            return NotImplemented
        return self._bars == other._bars

    def __repr__(self) -> str:
        return f"InstrumentCache(n={len(self._bars)}, last={self.last_date})"

    def merge(self, new_bars: list[DailyBar], window_size: int = DEFAULT_WINDOW_SIZE) -> None:
        """Add ``new_bars`` whose dates are not cached yet, then trim to the window.

        Existing dates win over incoming ones; duplicate dates inside
        ``new_bars`` keep the first occurrence. Idempotent.
        """
        known = {b.trade_date for b in self._bars}
        for bar in new_bars:
            if bar.trade_date not in known:
                self._bars.append(bar)
                known.add(bar.trade_date)

        self._bars.sort(key=lambda b: b.trade_date)
        if len(self._bars) > window_size:
            self._bars = self._bars[-window_size:]

    def replace_day(
        self, new_bars: list[DailyBar], day: date, window_size: int = DEFAULT_WINDOW_SIZE
    ) -> None:
        """Merge ``new_bars`` letting their bar for ``day`` overwrite the cached one.

        The cached bar is only dropped when ``new_bars`` carries a replacement.
        """
        if any(b.trade_date == day for b in new_bars):
            self._bars = [b for b in self._bars if b.trade_date != day]
        self.merge(new_bars, window_size)


def refresh_start_date(last_date: Optional[date], today: date, window_size: int) -> date:
    """First day to request from the data source (inclusive)."""
    if last_date is None:
        return days_ago(today, window_size)
    if last_date >= today:
        return today
    return last_date


# ── Repositories ──────────────────────────────────────────────────────────────

class BarCacheRepository(Protocol):
    """Load/save the full cache map. Injected into the signal engine."""

    def load(self) -> dict[str, InstrumentCache]: ...

    def save(self, cache: dict[str, InstrumentCache]) -> None: ...


class JsonBarCacheRepository:
    """Single JSON document ``{code: [bar, ...]}`` on local disk.

    A missing file is an empty cache. A corrupt file is logged at WARNING
    and also treated as empty; the next successful save overwrites it.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, InstrumentCache]:
        if not self.path.exists():
            return {}
        try:
            raw = read_json(self.path)
            return {
                code: InstrumentCache([DailyBar.model_validate(b) for b in bars])
                for code, bars in raw.items()
            }
        except (ValueError, TypeError, AttributeError, ValidationError) as exc:
            logger.warning("Bar cache at %s is unreadable, starting empty: %s", self.path, exc)
            return {}

    def save(self, cache: dict[str, InstrumentCache]) -> None:
        payload = {
            code: [b.model_dump(mode="json") for b in inst.bars]
            for code, inst in sorted(cache.items())
        }
        write_json_atomic(self.path, payload)
        logger.info("Saved bar cache: %d instrument(s) -> %s", len(payload), self.path)


class InMemoryBarCacheRepository:
    """Test double; ``load`` and ``save`` copy bar lists so callers never share state."""

    def __init__(self, initial: Optional[dict[str, InstrumentCache]] = None) -> None:
        self._state: dict[str, list[DailyBar]] = {
            code: inst.bars for code, inst in (initial or {}).items()
        }
        self.save_count = 0
        self.load_count = 0

    def load(self) -> dict[str, InstrumentCache]:
        self.load_count += 1
        return {code: InstrumentCache(bars) for code, bars in self._state.items()}

    def save(self, cache: dict[str, InstrumentCache]) -> None:
        self.save_count += 1
        self._state = {code: inst.bars for code, inst in cache.items()}
