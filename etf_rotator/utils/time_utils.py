"""
Date helpers for the exchange calendar.

All trading dates are calendar days in the exchange's local time zone
(Asia/Shanghai). Bars carry no intraday precision, so "today" is always the
exchange-local date, not the host's local date.

Wire formats:
  - Data source requests use compact ``YYYYMMDD`` strings.
  - Persisted documents use ISO ``YYYY-MM-DD``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

MARKET_TZ = ZoneInfo("Asia/Shanghai")


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def market_today() -> date:
    """Return today's date in the exchange time zone."""
    return datetime.now(tz=MARKET_TZ).date()


def days_ago(today: date, days: int) -> date:
    """Return ``today`` shifted back by ``days`` calendar days."""
    return today - timedelta(days=days)


def to_compact(d: date) -> str:
    """Format a date as ``YYYYMMDD``."""
    return d.strftime("%Y%m%d")


def parse_trade_date(value: str | date) -> date:
    """Parse ``YYYYMMDD`` or ``YYYY-MM-DD`` into a ``date``.

    Raises:
        ValueError: If ``value`` matches neither format.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if len(text) == 8 and text.isdigit():
        return datetime.strptime(text, "%Y%m%d").date()
    return date.fromisoformat(text[:10])
