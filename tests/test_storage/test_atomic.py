"""
Tests for etf_rotator/storage/atomic.py.

What we test
------------
  - Written documents read back equal, with non-ASCII text intact.
  - Parent directories are created.
  - A payload that fails to serialize leaves the previous document
    untouched and no temp file behind.
"""

from __future__ import annotations

import pytest

from etf_rotator.storage.atomic import read_json, write_json_atomic


def test_round_trip_preserves_unicode(tmp_path):
    path = tmp_path / "doc.json"
    payload = {"name": "黄金ETF", "shares": 1000}
    write_json_atomic(path, payload)
    assert read_json(path) == payload
    assert "黄金ETF" in path.read_text(encoding="utf-8")


def test_creates_parent_directories(tmp_path):
    path = tmp_path / "a" / "b" / "doc.json"
    write_json_atomic(path, [1, 2])
    assert read_json(path) == [1, 2]


def test_failed_serialization_keeps_previous_document(tmp_path):
    path = tmp_path / "doc.json"
    write_json_atomic(path, {"version": 1})

    with pytest.raises(TypeError):
        write_json_atomic(path, {"version": 2, "bad": object()})

    assert read_json(path) == {"version": 1}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"]


def test_overwrite_replaces_document(tmp_path):
    path = tmp_path / "doc.json"
    write_json_atomic(path, {"version": 1})
    write_json_atomic(path, {"version": 2})
    assert read_json(path) == {"version": 2}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"]
