"""
Signal engine: incremental refresh, filter/score, rank, emit.

One run is a single sequential pipeline:

  1. load the bar cache (once per engine instance, lazily)
  2. fetch missing bars per instrument, one at a time, sleeping
     ``request_delay_seconds`` between requests
  3. score every pool instrument through the filter chain
  4. rank by score descending, then code ascending
  5. build a rotation or defensive ``Signal``
  6. persist the cache (one atomic write)

Failure isolation: a failed fetch for an instrument that already has cached
bars is logged and the stale cache is used; with no cache the instrument is
excluded (``DataUnavailable``) and the run continues. If *no* pool instrument
has any bars, the run raises ``AllSourcesFailed``.

Concurrency: ``compute_signal`` is single-flight. A caller arriving while a run
is in progress does not start a second run; it blocks and receives the
in-flight run's Signal (or its exception).

Determinism: the Signal carries no wall-clock data, so the same cache and the
same ``today`` always yield an equal Signal.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from etf_rotator.config import AppConfig
from etf_rotator.models.market import Instrument
from etf_rotator.engine.filters import (
    POST_SCORE_FILTERS,
    PRE_SCORE_FILTERS,
    FilterStep,
    ScoringContext,
    evaluate_filters,
)
from etf_rotator.errors import (
    AllSourcesFailed,
    DataSourceError,
    DataUnavailable,
    RunCancelled,
)
from etf_rotator.ingestion.base import DataSource
from etf_rotator.models.market import DailyBar
from etf_rotator.models.signal import Score, Signal, SignalHolding
from etf_rotator.storage.bar_cache import BarCacheRepository, InstrumentCache, refresh_start_date
from etf_rotator.utils.time_utils import market_today

logger = logging.getLogger(__name__)

INSUFFICIENT_HISTORY = "insufficient_history"


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one instrument: exactly one of ``score``/``rejected_by`` is set."""

    code: str
    name: str
    score: Optional[Score] = None
    rejected_by: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.score is not None


@dataclass
class RunDiagnostics:
    """Explains the last run: what was refreshed, what was excluded and why."""

    today: date
    refreshed: list[str] = field(default_factory=list)
    stale: dict[str, str] = field(default_factory=dict)
    excluded: dict[str, str] = field(default_factory=dict)
    scores: list[Score] = field(default_factory=list)


class SignalEngine:
    """Computes the daily rotation signal.

    Args:
        config: Universe and strategy parameters are read from here.
        data_source: Daily bar provider.
        cache_repository: Durable store for the bar cache.
        today_fn: Returns the exchange-local "today"; injectable for tests.
        sleep_fn: Rate-limit sleeper; tests pass a no-op.
        pre_filters / post_filters: Filter chains around score computation.
    """

    def __init__(
        self,
        config: AppConfig,
        data_source: DataSource,
        cache_repository: BarCacheRepository,
        today_fn: Callable[[], date] = market_today,
        sleep_fn: Callable[[float], None] = time.sleep,
        pre_filters: tuple[FilterStep, ...] = PRE_SCORE_FILTERS,
        post_filters: tuple[FilterStep, ...] = POST_SCORE_FILTERS,
    ) -> None:
        self.config = config
        self.params = config.strategy
        self.data_source = data_source
        self.cache_repository = cache_repository
        self.pre_filters = pre_filters
        self.post_filters = post_filters
        self._today_fn = today_fn
        self._sleep_fn = sleep_fn

        self._cache: Optional[dict[str, InstrumentCache]] = None
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self.last_run: Optional[RunDiagnostics] = None

    # ── Public API ─────────────────────────────────────────────────────────────

    def compute_signal(
        self,
        today: Optional[date] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Signal:
        """Run the full pipeline, or join the run already in flight.

        Args:
            today: Exchange-local trading day; defaults to ``today_fn()``.
            cancel_event: When set between two instrument fetches, the run
                persists what it has merged and raises ``RunCancelled``.

        Raises:
            AllSourcesFailed: No pool instrument has usable data.
            RunCancelled: ``cancel_event`` was set mid-fetch.
        """
        with self._lock:
            inflight = self._inflight
            if inflight is None:
                inflight = Future()
                self._inflight = inflight
                owner = True
            else:
                owner = False

        if not owner:
            logger.info("Signal run already in flight; waiting for its result.")
            return inflight.result()

        try:
            signal = self._run(today or self._today_fn(), cancel_event)
        except BaseException as exc:
            inflight.set_exception(exc)
            raise
        else:
            inflight.set_result(signal)
            return signal
        finally:
            with self._lock:
                self._inflight = None

    def score_instrument(self, instrument: Instrument, bars: list[DailyBar]) -> ScoreResult:
        """Apply the filter chain and scoring to one instrument's bars."""
        if len(bars) < self.params.lookback_days:
            logger.debug(
                "%s excluded: %d bar(s), need %d.",
                instrument.code, len(bars), self.params.lookback_days,
            )
            return ScoreResult(instrument.code, instrument.name, rejected_by=INSUFFICIENT_HISTORY)

        ctx = ScoringContext(bars=list(bars), params=self.params)

        rejected = evaluate_filters(ctx, self.pre_filters)
        if rejected is None:
            score = ctx.score
            rejected = evaluate_filters(ctx, self.post_filters)
        if rejected is not None:
            logger.debug("%s rejected by filter '%s'.", instrument.code, rejected)
            return ScoreResult(instrument.code, instrument.name, rejected_by=rejected)

        return ScoreResult(
            instrument.code,
            instrument.name,
            score=Score(
                code=instrument.code,
                name=instrument.name,
                score=score,
                annualized_return=ctx.annualized_return,
                r_squared=ctx.r_squared,
                current_price=ctx.current_price,
            ),
        )

    @staticmethod
    def rank(scores: list[Score]) -> list[Score]:
        """Sort by score descending; equal scores fall back to code ascending."""
        return sorted(scores, key=lambda s: (-s.score, s.code))

    def build_signal(self, ranked: list[Score], today: date) -> Signal:
        """Turn ranked scores into a rotation or defensive signal."""
        defensive = self.config.universe.defensive
        selected = [
            s for s in ranked[: self.params.holdings_num]
            if s.score > self.params.min_score_threshold
        ]

        if not selected:
            return Signal(
                date=today,
                status="defensive",
                target_holdings=[],
                defensive_instrument=defensive.name,
                message=f"No instrument passed all filters; hold {defensive.name}.",
            )

        return Signal(
            date=today,
            status="rotation",
            target_holdings=[
                SignalHolding(
                    code=s.code, name=s.name, current_price=s.current_price, score=s.score
                )
                for s in selected
            ],
            defensive_instrument=defensive.name,
        )

    # ── Pipeline ───────────────────────────────────────────────────────────────

    def _run(self, today: date, cancel_event: Optional[threading.Event]) -> Signal:
        if self._cache is None:
            self._cache = self.cache_repository.load()
            logger.info("Loaded bar cache: %d instrument(s).", len(self._cache))

        diagnostics = RunDiagnostics(today=today)
        self.last_run = diagnostics

        self._refresh_all(today, diagnostics, cancel_event)

        pool = self.config.universe.pool
        usable = [i for i in pool if i.code not in diagnostics.excluded]
        if not usable:
            raise AllSourcesFailed(dict(diagnostics.excluded))

        for instrument in usable:
            cache = self._cache.get(instrument.code)
            result = self.score_instrument(instrument, cache.bars if cache else [])
            if result.score is not None:
                diagnostics.scores.append(result.score)
            else:
                diagnostics.excluded[instrument.code] = result.rejected_by or "rejected"

        ranked = self.rank(diagnostics.scores)
        signal = self.build_signal(ranked, today)

        self.cache_repository.save(self._cache)
        logger.info(
            "Signal %s for %s: targets=%s excluded=%s",
            signal.status, today, signal.target_names, sorted(diagnostics.excluded),
        )
        return signal

    def _instruments_to_refresh(self) -> list[Instrument]:
        instruments = list(self.config.universe.pool)
        defensive = self.config.universe.defensive
        if defensive.code not in {i.code for i in instruments}:
            instruments.append(defensive)
        return instruments

    def _refresh_all(
        self,
        today: date,
        diagnostics: RunDiagnostics,
        cancel_event: Optional[threading.Event],
    ) -> None:
        completed: list[str] = []
        for index, instrument in enumerate(self._instruments_to_refresh()):
            if cancel_event is not None and cancel_event.is_set():
                assert self._cache is not None
                self.cache_repository.save(self._cache)
                logger.warning("Signal run cancelled after %d instrument(s).", len(completed))
                raise RunCancelled(completed)

            if index > 0 and self.params.request_delay_seconds > 0:
                self._sleep_fn(self.params.request_delay_seconds)

            try:
                self._refresh_instrument(instrument, today, diagnostics)
            except DataUnavailable as exc:
                logger.warning("%s excluded: %s", instrument.code, exc.cause)
                diagnostics.excluded[instrument.code] = f"data_unavailable: {exc.cause}"
            completed.append(instrument.code)

    def _refresh_instrument(
        self, instrument: Instrument, today: date, diagnostics: RunDiagnostics
    ) -> None:
        assert self._cache is not None
        window = self.params.cache_window_days
        existing = self._cache.get(instrument.code)
        last_date = existing.last_date if existing is not None else None
        start = refresh_start_date(last_date, today, window)

        try:
            bars = self.data_source.fetch_daily_bars(instrument.code, start, today)
        except DataSourceError as exc:
            if existing is not None and len(existing) > 0:
                logger.warning(
                    "Fetch failed for %s, using %d cached bar(s): %s",
                    instrument.code, len(existing), exc,
                )
                diagnostics.stale[instrument.code] = str(exc)
                return
            raise DataUnavailable(instrument.code, exc) from exc

        if existing is None:
            existing = InstrumentCache()
            self._cache[instrument.code] = existing

        if last_date is not None and start == last_date:
            existing.replace_day(bars, last_date, window)
        else:
            existing.merge(bars, window)
        diagnostics.refreshed.append(instrument.code)
