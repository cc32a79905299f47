"""
Tushare Pro daily-bar client.

Protocol: every call is ``POST {base_url}`` with a JSON body::

    {"api_name": "fund_daily", "token": "...",
     "params": {"ts_code": "518880.SH", "start_date": "20260101", "end_date": "20260219"},
     "fields": "trade_date,open,high,low,close,vol,amount"}

and the response is::

    {"code": 0, "msg": "", "data": {"fields": [...], "items": [[...], ...]}}

Items come back newest first; ``fetch_daily_bars`` returns them ascending.

Error mapping:
  transport error / timeout          → NetworkFailure
  HTTP 429, code 40203, "每分钟" msg  → RateLimited
  other non-2xx or non-zero ``code`` → NetworkFailure
  malformed body / rows              → DecodeFailure
  zero rows                          → NoData

Credential setup (.env, gitignored)::

    ETF_ROTATOR_TUSHARE_TOKEN=your_token_here
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from pydantic import ValidationError

from etf_rotator.config import DataSourceConfig
from etf_rotator.errors import DecodeFailure, NetworkFailure, NoData, RateLimited
from etf_rotator.models.market import DailyBar
from etf_rotator.utils.time_utils import to_compact

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


class TushareClient:
    """Fetches daily OHLCV bars for exchange-traded funds.

    Usage::

        client = TushareClient(config.data_source)
        bars = client.fetch_daily_bars("518880.SH", date(2026, 1, 1), date(2026, 2, 19))

    Attributes:
        config: Endpoint, API name, token and timeout.
        http_client: Optional pre-built ``httpx.Client`` (tests pass one with a
            ``MockTransport``); when ``None`` a client is created per call.
    """

    FIELDS: ClassVar[str] = "trade_date,open,high,low,close,vol,amount"
    RATE_LIMIT_CODES: ClassVar[frozenset[int]] = frozenset({40203})
    RATE_LIMIT_MARKERS: ClassVar[tuple[str, ...]] = ("每分钟", "rate limit", "too many")

    def __init__(
        self,
        config: DataSourceConfig,
        http_client: Optional["httpx.Client"] = None,
    ) -> None:
        self.config = config
        self.http_client = http_client

    def fetch_daily_bars(self, code: str, start: date, end: date) -> list[DailyBar]:
        """Fetch bars for ``code`` between ``start`` and ``end`` inclusive.

        Returns:
            Bars sorted ascending by ``trade_date``.

        Raises:
            NetworkFailure, RateLimited, NoData, DecodeFailure: see module docstring.
        """
        body = {
            "api_name": self.config.api_name,
            "token": self.config.token or "",
            "params": {
                "ts_code": code,
                "start_date": to_compact(start),
                "end_date": to_compact(end),
            },
            "fields": self.FIELDS,
        }
        payload = self._post(code, body)
        bars = self._parse_bars(code, payload)
        if not bars:
            raise NoData(f"No bars returned for {code} {start}..{end}.", code=code)

        logger.debug("Fetched %d bar(s) for %s (%s..%s)", len(bars), code, start, end)
        return bars

    # ── Transport ──────────────────────────────────────────────────────────────

    def _post(self, code: str, body: dict[str, Any]) -> dict[str, Any]:
        import httpx

        try:
            if self.http_client is not None:
                resp = self.http_client.post(
                    self.config.base_url, json=body, timeout=self.config.timeout_seconds
                )
            else:
                resp = httpx.post(
                    self.config.base_url, json=body, timeout=self.config.timeout_seconds
                )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Request for {code} failed: {exc}", code=code) from exc

        if resp.status_code == 429:
            raise RateLimited(f"HTTP 429 for {code}.", code=code)
        if not resp.is_success:
            raise NetworkFailure(f"HTTP {resp.status_code} for {code}.", code=code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise DecodeFailure(f"Response for {code} is not JSON: {exc}", code=code) from exc
        if not isinstance(payload, dict):
            raise DecodeFailure(f"Response for {code} is not a JSON object.", code=code)

        status = payload.get("code", 0)
        if status not in (0, None):
            msg = str(payload.get("msg") or "")
            if status in self.RATE_LIMIT_CODES or self._looks_rate_limited(msg):
                raise RateLimited(f"Rate limited for {code}: {msg}", code=code)
            raise NetworkFailure(f"Tushare error {status} for {code}: {msg}", code=code)

        return payload

    def _looks_rate_limited(self, msg: str) -> bool:
        lowered = msg.lower()
        return any(marker in lowered for marker in self.RATE_LIMIT_MARKERS)

    # ── Parsing ────────────────────────────────────────────────────────────────

    def _parse_bars(self, code: str, payload: dict[str, Any]) -> list[DailyBar]:
        data = payload.get("data")
        if not isinstance(data, dict):
            raise DecodeFailure(f"Response for {code} has no 'data' object.", code=code)

        fields = data.get("fields")
        items = data.get("items")
        if not isinstance(fields, list) or not isinstance(items, list):
            raise DecodeFailure(f"Response for {code} lacks fields/items.", code=code)

        index = {name: i for i, name in enumerate(fields)}
        missing = {"trade_date", "open", "high", "low", "close"} - index.keys()
        if missing:
            raise DecodeFailure(
                f"Response for {code} is missing fields: {sorted(missing)}", code=code
            )

        bars: list[DailyBar] = []
        try:
            for row in items:
                bars.append(
                    DailyBar(
                        trade_date=row[index["trade_date"]],
                        open=row[index["open"]],
                        high=row[index["high"]],
                        low=row[index["low"]],
                        close=row[index["close"]],
                        volume=_or_zero(row, index.get("vol")),
                        amount=_or_zero(row, index.get("amount")),
                    )
                )
        except (IndexError, TypeError, ValueError, ValidationError) as exc:
            raise DecodeFailure(f"Malformed bar row for {code}: {exc}", code=code) from exc

        bars.sort(key=lambda b: b.trade_date)
        return bars


def _or_zero(row: list[Any], idx: Optional[int]) -> float:
    if idx is None or row[idx] is None:
        return 0.0
    return float(row[idx])
