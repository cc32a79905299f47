"""
Atomic JSON document writes.

``write_json_atomic`` serializes the whole payload *before* touching the
target, writes it to a temp file in the same directory, fsyncs, then
``os.replace``s it over the target. A crash or serialization error at any
point leaves the previous document intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` as UTF-8 JSON to ``path`` atomically.

    Args:
        path: Destination file; parent directories are created.
        payload: JSON-serializable object.

    Raises:
        TypeError: If ``payload`` is not JSON-serializable (target untouched).
        OSError: If the temp file cannot be written or moved into place.
    """
    text = json.dumps(payload, ensure_ascii=False, indent=2)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.debug("Wrote %d bytes to %s", len(text), path)


def read_json(path: Path) -> Any:
    """Read a JSON document; raises ``FileNotFoundError``/``ValueError`` as json does."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)
