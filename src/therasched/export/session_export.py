# src/therasched/export/session_export.py
from __future__ import annotations

import csv
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from therasched.errors import DataError
from therasched.schemas.models import GeneratedSession

COLUMNS = (
    "date",
    "start_time",
    "end_time",
    "therapist_id",
    "patient_id",
    "session_spec_id",
    "room_id",
    "notes",
)


def _row(session: GeneratedSession) -> dict[str, str]:
    return {
        "date": session.date.isoformat(),
        "start_time": session.start_time,
        "end_time": session.end_time,
        "therapist_id": session.therapist_id,
        "patient_id": session.patient_id,
        "session_spec_id": session.session_spec_id or "",
        "room_id": session.room_id or "",
        "notes": session.notes or "",
    }


def write_sessions_csv(sessions: Iterable[GeneratedSession], out_path: Path) -> Path:
    """
    @brief
    Exports committed sessions to a UTF-8 CSV file.

    @details
    One row per session, sorted by (date, start_time, therapist_id). Empty
    optional fields are written as empty strings. The file is replaced
    atomically so a reader never sees a half-written export.

    @params
        sessions : Iterable[GeneratedSession]
            Sessions to export (normally ValidationOutcome.valid).
        out_path : Path
            Destination CSV path.

    @returns
        Path to the written file.

    @raises
        DataError
            If an item is not a GeneratedSession or the write fails.
    """
    # (1) Type check
    items = list(sessions)
    for i, s in enumerate(items):
        if not isinstance(s, GeneratedSession):
            raise DataError(
                f"sessions[{i}] is {type(s).__name__}, expected GeneratedSession",
                source="export.write_sessions_csv",
                suggested_action="Export validator output, not raw proposer payloads.",
            )

    # (2) Stable order
    rows = [_row(s) for s in items]
    rows.sort(key=lambda r: (r["date"], r["start_time"], r["therapist_id"]))

    # (3) Atomic write
    out_path = Path(out_path)
    out_dir = out_path.parent
    out_dir.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(out_dir), suffix=".tmp", text=True)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=COLUMNS)
            writer.writeheader()
            writer.writerows(rows)
        os.replace(tmp_name, out_path)
    except OSError as e:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise DataError(
            f"Failed to write sessions CSV {out_path}: {e}",
            source="export.write_sessions_csv",
            suggested_action="Check output directory permissions and disk space.",
        ) from e

    return out_path


__all__ = ["COLUMNS", "write_sessions_csv"]
