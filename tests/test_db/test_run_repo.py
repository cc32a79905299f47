"""
Tests for etf_rotator/db/schema.py and the repositories in db/repositories/.

What we test
------------
  - apply_schema() creates every table and is idempotent.
  - RunMetadataRepository insert → update → read round trip.
  - get_recent_runs() filters by stage and orders newest first.
  - SignalHistoryRepository.latest() picks the newest signal date, then the
    newest insert for the same date.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from etf_rotator.db.repositories.run_repo import RunMetadataRepository
from etf_rotator.db.repositories.signal_repo import SignalHistoryRepository
from etf_rotator.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables
from etf_rotator.models.meta import RunMetadata
from etf_rotator.models.signal import Signal, SignalHolding

_T0 = datetime(2026, 2, 19, 7, 0, tzinfo=timezone.utc)


def _run(stage: str = "signal", slug: str = "run-1", started: datetime = _T0) -> RunMetadata:
    return RunMetadata(
        run_slug=slug,
        pipeline_stage=stage,
        config_snapshot={"strategy": {"lookback_days": 25}},
        started_at=started,
    )


def _signal(day: date, name: str) -> Signal:
    return Signal(
        date=day,
        status="rotation",
        target_holdings=[SignalHolding(name=name, current_price=1.0)],
        defensive_instrument="银华日利",
    )


class TestSchema:
    def test_all_tables_created(self, in_memory_db):
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_idempotent(self, in_memory_db):
        apply_schema(in_memory_db)
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))


class TestRunMetadataRepository:
    def test_insert_update_round_trip(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        run = _run()
        run.run_id = repo.insert_run(run)

        run.status = "success"
        run.rows_processed = 3
        run.detail = "source=remote failed_tiers=none"
        run.finished_at = _T0 + timedelta(seconds=5)
        repo.update_run(run)

        stored = repo.get_run_by_slug("run-1")
        assert stored is not None
        assert stored.run_id == run.run_id
        assert stored.status == "success"
        assert stored.rows_processed == 3
        assert stored.detail == run.detail
        assert stored.config_snapshot == {"strategy": {"lookback_days": 25}}
        assert stored.started_at == _T0
        assert stored.finished_at == _T0 + timedelta(seconds=5)

    def test_update_without_id_raises(self, in_memory_db):
        with pytest.raises(ValueError):
            RunMetadataRepository(in_memory_db).update_run(_run())

    def test_unknown_slug(self, in_memory_db):
        assert RunMetadataRepository(in_memory_db).get_run_by_slug("missing") is None

    def test_recent_runs_filtered_and_ordered(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        repo.insert_run(_run("signal", "a", _T0))
        repo.insert_run(_run("advise", "b", _T0 + timedelta(minutes=1)))
        repo.insert_run(_run("signal", "c", _T0 + timedelta(minutes=2)))

        assert [r.run_slug for r in repo.get_recent_runs("signal")] == ["c", "a"]
        assert [r.run_slug for r in repo.get_recent_runs(limit=2)] == ["c", "b"]

    def test_invalid_stage_rejected(self):
        with pytest.raises(ValueError):
            _run(stage="train")


class TestSignalHistoryRepository:
    def test_empty(self, in_memory_db):
        repo = SignalHistoryRepository(in_memory_db)
        assert repo.latest() is None
        assert repo.count() == 0

    def test_latest_by_date_then_insert_order(self, in_memory_db):
        repo = SignalHistoryRepository(in_memory_db)
        repo.insert_signal(_signal(date(2026, 2, 18), "late-insert-old-day"), "remote")
        repo.insert_signal(_signal(date(2026, 2, 19), "first"), "remote")
        repo.insert_signal(_signal(date(2026, 2, 19), "second"), "remote")
        repo.insert_signal(_signal(date(2026, 2, 17), "oldest"), "remote")

        assert repo.count() == 4
        assert repo.latest().target_names == ["second"]
