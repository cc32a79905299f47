"""
Bulk holdings import document loader.

The import document is what an upstream screenshot-recognition step (or a
user exporting from a brokerage) hands over::

    {
      "holdings": [
        {"name": "黄金ETF", "shares": 1000, "cost_price": 5.1,
         "current_price": 5.3, "market_value": 5300.0}
      ],
      "summary": {"total_assets": 100000.0, "cash_balance": 20000.0}
    }

``summary`` and the optional per-row fields may be omitted. Camel-case keys
(``costPrice``, ``currentPrice``, ``marketValue``, ``totalAssets``,
``cashBalance``) are accepted too.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from etf_rotator.errors import DecodeFailure
from etf_rotator.models.portfolio import ImportedHolding, ImportSummary

logger = logging.getLogger(__name__)

_CAMEL_TO_SNAKE = {
    "costPrice": "cost_price",
    "currentPrice": "current_price",
    "marketValue": "market_value",
    "totalAssets": "total_assets",
    "cashBalance": "cash_balance",
}


def load_import_file(path: Path) -> tuple[list[ImportedHolding], Optional[ImportSummary]]:
    """Parse an import document from ``path``.

    Returns:
        ``(holdings, summary)``; ``summary`` is ``None`` when absent.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        DecodeFailure: If the document is not valid JSON or a row fails validation.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        raise DecodeFailure(f"Import file {path} is not valid JSON: {exc}") from exc

    return parse_import_document(raw)


def parse_import_document(
    raw: Any,
) -> tuple[list[ImportedHolding], Optional[ImportSummary]]:
    """Validate an already-decoded import document."""
    if not isinstance(raw, dict) or not isinstance(raw.get("holdings"), list):
        raise DecodeFailure("Import document must be an object with a 'holdings' list.")

    try:
        holdings = [ImportedHolding.model_validate(_normalize_keys(row)) for row in raw["holdings"]]
        summary_raw = raw.get("summary")
        summary = (
            ImportSummary.model_validate(_normalize_keys(summary_raw))
            if summary_raw is not None
            else None
        )
    except (ValidationError, AttributeError) as exc:
        raise DecodeFailure(f"Import document failed validation: {exc}") from exc

    logger.info("Parsed import document: %d holding(s)", len(holdings))
    return holdings, summary


def _normalize_keys(row: dict[str, Any]) -> dict[str, Any]:
    return {_CAMEL_TO_SNAKE.get(k, k): v for k, v in row.items()}
