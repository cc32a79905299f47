"""
Client for the precomputed-signal HTTP service (first fallback tier).

Endpoints (all ``GET``, ``X-API-Key`` header)::

    /signal/latest[?capital=N]     today's signal
    /signal/{YYYYMMDD}[?capital=N] signal for a given day
    /health                        200 when the service is up

Non-200 responses raise ``NetworkFailure``; bodies that do not validate as a
``Signal`` raise ``DecodeFailure``.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from etf_rotator.config import RemoteSignalConfig
from etf_rotator.errors import DecodeFailure, NetworkFailure
from etf_rotator.models.signal import Signal
from etf_rotator.utils.time_utils import to_compact

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5.0


class RemoteSignalClient:
    """Read-only client for the remote signal service.

    Attributes:
        config: Base URL, API key and timeout.
        http_client: Optional ``httpx.Client`` (tests inject a ``MockTransport``).
    """

    def __init__(
        self,
        config: RemoteSignalConfig,
        http_client: Optional["httpx.Client"] = None,
    ) -> None:
        self.config = config
        self.http_client = http_client

    def fetch_latest_signal(self, total_capital: Optional[float] = None) -> Signal:
        """Fetch today's signal, sized for ``total_capital`` when given."""
        return self._fetch_signal("/signal/latest", total_capital)

    def fetch_signal(self, for_date: date, total_capital: Optional[float] = None) -> Signal:
        """Fetch the signal published for ``for_date``."""
        return self._fetch_signal(f"/signal/{to_compact(for_date)}", total_capital)

    def health_check(self) -> bool:
        """True if ``/health`` answers 200; never raises."""
        import httpx

        try:
            resp = self._get("/health", params=None, timeout=HEALTH_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            logger.debug("Signal service health check failed: %s", exc)
            return False
        return resp.status_code == 200

    # ── Internals ──────────────────────────────────────────────────────────────

    def _fetch_signal(self, path: str, total_capital: Optional[float]) -> Signal:
        import httpx

        params = {"capital": int(total_capital)} if total_capital is not None else None
        try:
            resp = self._get(path, params=params, timeout=self.config.timeout_seconds)
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Signal service request {path} failed: {exc}") from exc

        if resp.status_code != 200:
            raise NetworkFailure(f"Signal service returned HTTP {resp.status_code} for {path}.")

        try:
            signal = Signal.model_validate_json(resp.content)
        except ValidationError as exc:
            raise DecodeFailure(f"Signal service payload for {path} is invalid: {exc}") from exc

        logger.info(
            "Remote signal for %s: status=%s targets=%s",
            signal.date, signal.status, signal.target_names,
        )
        return signal

    def _get(
        self, path: str, params: Optional[dict[str, Any]], timeout: float
    ) -> "httpx.Response":
        import httpx

        url = self.config.base_url.rstrip("/") + path
        headers = {"X-API-Key": self.config.api_key or ""}
        if self.http_client is not None:
            return self.http_client.get(url, params=params, headers=headers, timeout=timeout)
        return httpx.get(url, params=params, headers=headers, timeout=timeout)
