"""
Logging setup.

``configure_logging`` runs once per CLI command, right after the config is
loaded. Library modules only ever do ``logger = logging.getLogger(__name__)``.

Timestamps are exchange-local (Asia/Shanghai), the same clock as trade dates
and signal dates, so a log line can be matched to the bar it talks about.

Pipeline stages also pass ``run_slug`` and ``stage`` through ``extra=``;
with ``json_format = true`` they become keys of their own::

    {"ts": "2026-02-24T15:00:00+08:00", "level": "INFO",
     "logger": "etf_rotator.pipeline.base", "msg": "Stage [signal] starting | run_slug=...",
     "run_slug": "...", "stage": "signal"}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from etf_rotator.utils.time_utils import MARKET_TZ

if TYPE_CHECKING:
    from etf_rotator.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# HTTP client chatter drowns out the per-instrument refresh lines.
QUIET_LOGGERS = ("httpx", "httpcore")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class MarketTimeFormatter(logging.Formatter):
    """Text formatter whose ``asctime`` is ISO-8601 in exchange-local time."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created, tz=MARKET_TZ).isoformat(timespec="seconds")


class JsonLineFormatter(MarketTimeFormatter):
    """One JSON object per record; ``extra=`` fields are merged in at top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def build_handlers(config: "LoggingConfig") -> list[logging.Handler]:
    """stdout handler, plus a file handler when ``log_file`` is set."""
    formatter = JsonLineFormatter() if config.json_format else MarketTimeFormatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        path = Path(config.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig") -> None:
    """Replace the root logger's handlers according to ``config``."""
    level = logging.getLevelName(config.level)
    logging.basicConfig(level=level, handlers=build_handlers(config), force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
