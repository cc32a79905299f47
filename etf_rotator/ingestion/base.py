"""
Data source protocol consumed by the signal engine.

Any object with a matching ``fetch_daily_bars`` satisfies it; tests inject
in-memory fakes, production uses ``TushareClient``.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from etf_rotator.models.market import DailyBar


class DataSource(Protocol):
    def fetch_daily_bars(self, code: str, start: date, end: date) -> list[DailyBar]:
        """Return bars for ``code`` in ``[start, end]`` ordered by date ascending.

        Raises:
            NetworkFailure: Transport error, timeout or server error.
            RateLimited: Provider throttled the request.
            NoData: Request succeeded but returned no bars.
            DecodeFailure: Payload could not be parsed.
        """
        ...
