"""
Exception taxonomy for the rotation advisor.

Hierarchy::

    RotatorError
    ├── DataSourceError          - raised by data-source clients
    │   ├── NetworkFailure       - transport error, timeout, non-2xx status
    │   ├── RateLimited          - provider throttled the request
    │   ├── NoData               - request succeeded but returned no bars
    │   └── DecodeFailure        - payload could not be parsed
    ├── DataUnavailable          - no cache AND the fetch failed for one instrument
    ├── AllSourcesFailed         - no candidate instrument has usable data
    ├── RunCancelled             - cancellation requested during the fetch sequence
    ├── InvalidConfiguration     - config rejected at load time
    └── SignalUnavailable        - every signal provider tier failed

Transient errors (``NetworkFailure``, ``RateLimited``) are never retried within
the same run; the next scheduled run picks them up.

Insufficient history is *not* an error: such instruments are excluded from
scoring with a DEBUG log line.
"""

from __future__ import annotations

from typing import Any, Optional


class RotatorError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Data source ───────────────────────────────────────────────────────────────

class DataSourceError(RotatorError):
    """A data-source request failed for one instrument."""

    transient: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.code = code


class NetworkFailure(DataSourceError):
    transient = True


class RateLimited(DataSourceError):
    transient = True


class NoData(DataSourceError):
    pass


class DecodeFailure(DataSourceError):
    """Malformed source payload; handled like ``DataUnavailable`` for the instrument."""


# ── Engine ────────────────────────────────────────────────────────────────────

class DataUnavailable(RotatorError):
    """An instrument has no cached bars and its fetch failed.

    The instrument is excluded from this run; the run itself continues.
    """

    def __init__(self, code: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"No data available for {code}: {cause}", {"code": code})
        self.code = code
        self.cause = cause


class AllSourcesFailed(RotatorError):
    """Every candidate instrument lacks usable data; the run fails."""

    def __init__(self, failures: dict[str, str]) -> None:
        super().__init__(
            f"All {len(failures)} candidate instrument(s) lack usable data.",
            {"failures": failures},
        )
        self.failures = failures


class RunCancelled(RotatorError):
    """The fetch sequence was cancelled; bars merged so far were kept."""

    def __init__(self, completed: list[str]) -> None:
        super().__init__(
            f"Signal run cancelled after {len(completed)} instrument(s).",
            {"completed": completed},
        )
        self.completed = completed


# ── Configuration ─────────────────────────────────────────────────────────────

class InvalidConfiguration(RotatorError):
    """Configuration failed validation; raised by ``load_config()``."""


# ── Signal resolution ────────────────────────────────────────────────────────

class SignalUnavailable(RotatorError):
    """Every provider in the fallback chain failed."""

    def __init__(self, errors: dict[str, str]) -> None:
        detail = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        super().__init__(f"No strategy signal available ({detail})", {"errors": errors})
        self.errors = errors
