# src/therasched/metrics/logger.py
from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from therasched.errors import DataError


def write_report(payload: dict[str, Any], out_dir: Path, filename: str) -> Path:
    """
    @brief
    Writes a JSON report atomically in UTF-8 encoding.

    @details
    Validates that the payload is a serializable dictionary, dumps it with
    indentation and performs atomic replacement of the target file.
    Dates and other non-primitive values are rendered with str().

    @params
        payload : dict[str, Any]
            Report content.
        out_dir : Path
            Directory where the file will be created.
        filename : str
            Target filename, e.g. "generation_report.json".

    @returns
        Path to the created file.

    @raises
        DataError
            If input is not a dict or JSON serialization fails.
    """
    if not isinstance(payload, dict):
        raise DataError("report payload must be a dict", source="metrics.write_report")

    # (1) Validate JSON serializability
    try:
        text = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError) as e:
        raise DataError(
            f"report not JSON-serializable: {e}",
            source="metrics.write_report",
            suggested_action="Ensure report values are primitives, lists or dicts.",
        ) from e

    # (2) Ensure output directory exists
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # (3) Atomically write validated payload
    target = out_dir / filename
    _atomic_write_text(target, text, encoding="utf-8")
    return target


def write_metrics(metrics: dict[str, Any], out_dir: Path) -> Path:
    """Writes metrics.json atomically (sorted keys)."""
    if not isinstance(metrics, dict):
        raise DataError("metrics must be a dict", source="metrics.write_metrics")

    try:
        text = json.dumps(metrics, ensure_ascii=False, sort_keys=True, indent=2)
    except (TypeError, ValueError) as e:
        raise DataError(
            f"metrics not JSON-serializable: {e}",
            source="metrics.write_metrics",
            suggested_action="Ensure metrics values are primitives (str/float/int/bool).",
        ) from e

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / "metrics.json"
    _atomic_write_text(target, text, encoding="utf-8")
    return target


def _atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """
    @brief
    Performs atomic text file writing using a temporary file swap.

    @details
    Writes text to a temporary file within the same directory, then replaces
    the destination in a single filesystem operation.

    @raises
        DataError
            On write or rename failure.
    """
    path = Path(path)
    tmp_dir = path.parent
    tmp_dir.mkdir(parents=True, exist_ok=True)

    # (1) Create temporary file near the target
    fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", dir=str(tmp_dir))
    try:
        with open(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        # (2) Clean up temp file on error
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        finally:
            raise DataError(
                f"atomic write failed for {path}: {e}",
                source="metrics._atomic_write_text",
                suggested_action="Check output directory permissions and disk space.",
            ) from e


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
