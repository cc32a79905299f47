"""
Abstract base class for pipeline stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` at construction.
  2. ``run(**kwargs)`` is the sole public API.
  3. ``run()`` creates a ``RunMetadata`` record, calls ``_execute()``,
     and persists the run record with its final status.
  4. ``_execute()`` is the stage-specific implementation.

Stages never swallow exceptions: a failure is recorded as ``status='failed'``
and re-raised. Failing to write the audit row is logged and never masks the
stage's own outcome.

Usage::

    class MyStage(PipelineStage):
        stage_name = "signal"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            return 1

    run = MyStage(config=app_config).run()
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from uuid import uuid4

from etf_rotator.config import AppConfig
from etf_rotator.models.meta import RunMetadata
from etf_rotator.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Abstract base for all pipeline stages.

    Attributes:
        stage_name: Identifier matching a valid ``RunMetadata.pipeline_stage``.
        config: The application configuration for this run.
        db_path: SQLite path for the audit log (defaults to ``config.storage.db_path``).
    """

    stage_name: str

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        self.config = config
        self.db_path = db_path or config.storage.db_path

    def run(self, **kwargs) -> RunMetadata:
        """Execute this stage and return its finalized run record.

        Raises:
            Exception: Re-raises anything from ``_execute()`` after recording
                ``status='failed'``.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(mode="json"),
            started_at=utcnow(),
        )
        context = {"run_slug": run.run_slug, "stage": self.stage_name}
        logger.info(
            "Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug, extra=context
        )

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s", self.stage_name, exc, run.run_slug,
                extra=context,
            )
            self._persist_run(run)
            raise

        run.status = "success"
        run.rows_processed = rows
        run.finished_at = utcnow()
        logger.info(
            "Stage [%s] completed | rows=%d | run_slug=%s",
            self.stage_name, rows, run.run_slug, extra=context,
        )
        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Stage-specific work; returns the count of records produced."""
        ...

    def _persist_run(self, run: RunMetadata) -> None:
        """Write or update the run row; errors are logged, never raised."""
        from etf_rotator.db.connection import get_connection
        from etf_rotator.db.repositories.run_repo import RunMetadataRepository
        from etf_rotator.db.schema import apply_schema

        try:
            with get_connection(self.db_path) as conn:
                apply_schema(conn)
                repo = RunMetadataRepository(conn)
                if run.run_id is None:
                    run.run_id = repo.insert_run(run)
                else:
                    repo.update_run(run)
        except (sqlite3.Error, OSError) as exc:
            logger.error(
                "Failed to persist RunMetadata for run_slug=%s: %s", run.run_slug, exc
            )
