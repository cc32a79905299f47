"""
Concrete pipeline stages.

  SignalStage  - resolves today's signal through the provider chain
  AdviseStage  - classifies holdings and builds the advice list for a signal

Stage results are kept on the stage instance (``resolution``, ``classified``,
``advice``) so the CLI can render them after ``run()`` returns.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from etf_rotator.config import AppConfig
from etf_rotator.engine.signal_engine import SignalEngine
from etf_rotator.ingestion.remote_signal import RemoteSignalClient
from etf_rotator.models.meta import RunMetadata
from etf_rotator.models.portfolio import Advice, ClassifiedHolding, Portfolio
from etf_rotator.models.signal import Signal
from etf_rotator.pipeline.base import PipelineStage
from etf_rotator.pipeline.signal_chain import (
    LocalComputeProvider,
    PersistedSignalProvider,
    RemoteSignalProvider,
    SignalProvider,
    SignalResolution,
    SqliteSignalHistory,
    resolve_signal,
)
from etf_rotator.reconcile.reconciler import classify_holdings, compare_with_signal

logger = logging.getLogger(__name__)


def default_providers(
    config: AppConfig,
    engine: SignalEngine,
    history: SqliteSignalHistory,
    total_capital: Optional[float] = None,
    remote_client: Optional[RemoteSignalClient] = None,
    local_only: bool = False,
) -> list[SignalProvider]:
    """Build the remote → persisted → local chain (just local with ``local_only``)."""
    local = LocalComputeProvider(engine)
    if local_only:
        return [local]
    client = remote_client or RemoteSignalClient(config.remote_signal)
    return [
        RemoteSignalProvider(
            client,
            history=history,
            enabled=config.remote_signal.enabled,
            total_capital=total_capital,
        ),
        PersistedSignalProvider(history),
        local,
    ]


class SignalStage(PipelineStage):
    """Resolve the day's signal; ``rows_processed`` is the number of targets."""

    stage_name = "signal"

    def __init__(
        self,
        config: AppConfig,
        providers: Sequence[SignalProvider],
        db_path: str | None = None,
    ) -> None:
        super().__init__(config, db_path)
        self.providers = list(providers)
        self.resolution: Optional[SignalResolution] = None

    def _execute(self, run: RunMetadata, **kwargs) -> int:
        self.resolution = resolve_signal(self.providers)
        failed = ",".join(self.resolution.errors) or "none"
        run.detail = f"source={self.resolution.source} failed_tiers={failed}"
        return len(self.resolution.signal.target_holdings)


class AdviseStage(PipelineStage):
    """Reconcile the portfolio against a signal; ``rows_processed`` is the advice count."""

    stage_name = "advise"

    def __init__(
        self,
        config: AppConfig,
        portfolio: Portfolio,
        signal: Signal,
        db_path: str | None = None,
    ) -> None:
        super().__init__(config, db_path)
        self.portfolio = portfolio
        self.signal = signal
        self.classified: list[ClassifiedHolding] = []
        self.advice: list[Advice] = []

    def _execute(self, run: RunMetadata, **kwargs) -> int:
        self.classified = classify_holdings(self.portfolio, self.signal)
        self.advice = compare_with_signal(self.portfolio, self.signal, self.classified)
        run.detail = f"signal_date={self.signal.date} status={self.signal.status}"
        logger.info(
            "Advice for %d holding(s): %d recommendation(s).",
            len(self.portfolio.holdings), len(self.advice),
        )
        return len(self.advice)
