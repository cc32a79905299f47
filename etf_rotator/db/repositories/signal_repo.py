"""
Repository for ``signal_history``, the "last persisted signal" store.

Signals are stored as their canonical JSON dump so the payload survives
model evolution; ``latest()`` re-validates it through ``Signal``.
"""

from __future__ import annotations

import logging
from typing import Optional

from etf_rotator.db.repositories.base import BaseRepository
from etf_rotator.models.signal import Signal

logger = logging.getLogger(__name__)


class SignalHistoryRepository(BaseRepository):
    """Append-only history of accepted signals."""

    def insert_signal(self, signal: Signal, source: str) -> int:
        """Store ``signal`` and return its row id.

        Args:
            signal: The signal to persist.
            source: Name of the provider that produced it (e.g. ``"remote"``).
        """
        self.execute(
            """
            INSERT INTO signal_history (signal_date, status, source, payload)
            VALUES (?, ?, ?, ?);
            """,
            (
                signal.date.isoformat(),
                signal.status,
                source,
                signal.model_dump_json(),
            ),
        )
        return self.last_insert_rowid()

    def latest(self) -> Optional[Signal]:
        """Most recently stored signal regardless of its date, or ``None``."""
        row = self.fetchone(
            """
            SELECT payload FROM signal_history
            ORDER BY signal_date DESC, signal_id DESC LIMIT 1;
            """
        )
        if row is None:
            return None
        return Signal.model_validate_json(row["payload"])

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM signal_history;")
        return int(row["n"]) if row else 0
