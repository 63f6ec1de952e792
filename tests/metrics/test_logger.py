from __future__ import annotations

import datetime as dt
import json
import os

import pytest

from therasched.errors import DataError
from therasched.metrics.logger import (
    _atomic_write_text,
    utc_now_iso,
    write_metrics,
    write_report,
)

# --------------------------
# write_metrics
# --------------------------


def test_write_metrics_writes_json_and_overwrites(tmp_path):
    """
    @brief
    Verifies that write_metrics() creates and overwrites metrics.json correctly.

    @details
    The second call replaces the previous file without residual content.
    Keys are written in sorted order.
    """
    # --- Arrange ---
    out_dir = tmp_path / "out"

    # --- Act ---
    p1 = write_metrics({"b": "x", "a": 1}, out_dir)
    text1 = p1.read_text(encoding="utf-8")

    # --- Assert ---
    assert p1.name == "metrics.json"
    assert json.loads(text1) == {"a": 1, "b": "x"}
    assert text1.index('"a"') < text1.index('"b"')

    # --- Act (overwrite) ---
    p2 = write_metrics({"a": 2, "c": True}, out_dir)

    # --- Assert ---
    assert p2 == p1
    assert json.loads(p2.read_text(encoding="utf-8")) == {"a": 2, "c": True}


def test_write_metrics_rejects_non_dict(tmp_path):
    # --- Act & Assert ---
    with pytest.raises(DataError) as ei:
        write_metrics(["not", "a", "dict"], tmp_path)
    assert "metrics must be a dict" in str(ei.value)


def test_write_metrics_non_serializable_raises(tmp_path):
    """
    @brief
    Objects without a JSON representation trigger DataError.
    """

    class Bad:
        pass

    with pytest.raises(DataError) as ei:
        write_metrics({"ok": 1, "bad": Bad()}, tmp_path)
    msg = str(ei.value)
    assert "metrics not JSON-serializable" in msg
    assert "metrics.write_metrics" in msg


# --------------------------
# write_report
# --------------------------


def test_write_report_renders_dates_with_str(tmp_path):
    """
    @brief
    Reports accept dates and other values through str().

    @details
    Unlike metrics, a report is a free-form log of one run; key order is
    preserved and the directory is created on demand.
    """
    # --- Arrange ---
    payload = {"week_start": dt.date(2025, 1, 6), "states": ["collecting", "committing"]}

    # --- Act ---
    path = write_report(payload, tmp_path / "reports", "generation_report.json")

    # --- Assert ---
    assert path == tmp_path / "reports" / "generation_report.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {"week_start": "2025-01-06", "states": ["collecting", "committing"]}


def test_write_report_rejects_non_dict(tmp_path):
    # --- Act & Assert ---
    with pytest.raises(DataError, match="report payload must be a dict"):
        write_report([1, 2], tmp_path, "r.json")


def test_write_report_circular_payload_raises(tmp_path):
    """
    @brief
    A payload that cannot be serialized raises DataError and writes nothing.
    """
    # --- Arrange ---
    payload: dict = {}
    payload["self"] = payload

    # --- Act & Assert ---
    with pytest.raises(DataError, match="report not JSON-serializable"):
        write_report(payload, tmp_path, "r.json")
    assert not (tmp_path / "r.json").exists()


# --------------------------
# _atomic_write_text
# --------------------------


def test_atomic_write_text_failure_raises_and_cleans_tmp(tmp_path, monkeypatch):
    """
    @brief
    Forces os.replace() to fail and verifies DataError and cleanup.

    @details
    Simulates a failure during atomic file replacement and checks
    that the temporary file is properly removed afterward.
    """
    target = tmp_path / "folder" / "file.txt"
    tmp_created = tmp_path / "folder" / "file.txt.tmp-for-test"

    # --- Arrange ---
    def fake_mkstemp(prefix, dir):
        os.makedirs(dir, exist_ok=True)
        f = open(tmp_created, "w", encoding="utf-8")
        f.close()
        fd = os.open(tmp_created, os.O_RDWR)
        return fd, str(tmp_created)

    monkeypatch.setattr("tempfile.mkstemp", fake_mkstemp)

    def boom_replace(src, dst):
        raise OSError("nope")

    monkeypatch.setattr(os, "replace", boom_replace)

    # --- Act & Assert ---
    with pytest.raises(DataError) as ei:
        _atomic_write_text(target, "payload", encoding="utf-8")

    msg = str(ei.value)
    assert "atomic write failed" in msg
    assert "metrics._atomic_write_text" in msg
    assert not tmp_created.exists()


# --------------------------
# utc_now_iso
# --------------------------


def test_utc_now_iso_format():
    """
    @brief
    Timestamps are second-precision ISO 8601 with a UTC offset.
    """
    # --- Act ---
    s = utc_now_iso()

    # --- Assert ---
    parsed = dt.datetime.fromisoformat(s)
    assert parsed.utcoffset() == dt.timedelta(0)
    assert parsed.microsecond == 0
    assert s.endswith("+00:00")
