# src/therasched/metrics/metrics.py
from __future__ import annotations

import json
import math
from collections.abc import Iterable
from typing import Any

import pandas as pd

from therasched.errors import DataError
from therasched.intervals.interval_math import to_minutes
from therasched.metrics.logger import utc_now_iso
from therasched.schemas.models import GeneratedSession, PatientForScheduling

_COLUMNS = ["therapist_id", "patient_id", "session_spec_id", "room_id", "date", "start", "end"]


def collect_schedule_metrics(
    sessions: Iterable[GeneratedSession],
    patients: Iterable[PatientForScheduling],
    rejected: int = 0,
    warnings: int = 0,
) -> dict[str, Any]:
    """
    @brief
    Builds a JSON-serializable summary of a committed schedule.

    @details
    Counts sessions per therapist, patient and day, the rooms used, the
    booked minutes and the weekly coverage of every active session spec
    (scheduled / sessions_per_week, capped at 1.0 per spec).

    @params
        sessions : committed sessions (validator output)
        patients : patients whose specs define the coverage target
        rejected, warnings : counts carried over from validation

    @returns
        Metrics dictionary with no NaN or infinite values.

    @raises
        DataError
            If a session has a non-positive duration.
    """
    # (1) Schedule frame
    df = _sessions_frame(sessions)

    # (2) Counts
    per_therapist = _value_counts(df, "therapist_id")
    per_patient = _value_counts(df, "patient_id")
    per_day = _value_counts(df, "date")
    rooms_used = int(df["room_id"].dropna().nunique()) if not df.empty else 0
    booked_minutes = int((df["end"] - df["start"]).sum()) if not df.empty else 0

    # (3) Coverage per spec
    coverage = _coverage(df, patients)
    required = sum(c["required"] for c in coverage)
    fulfilled = sum(min(c["scheduled"], c["required"]) for c in coverage)
    overall = fulfilled / required if required else 1.0

    metrics = {
        "timestamp": utc_now_iso(),
        "num_sessions": int(len(df)),
        "num_patients_scheduled": len(per_patient),
        "num_therapists_used": len(per_therapist),
        "num_rooms_used": rooms_used,
        "booked_minutes": booked_minutes,
        "num_rejected": int(rejected),
        "num_warnings": int(warnings),
        "sessions_per_therapist": per_therapist,
        "sessions_per_patient": per_patient,
        "sessions_per_day": per_day,
        "coverage": {"overall": round(overall, 4), "per_spec": coverage},
    }

    # (4) Numerical integrity
    _assert_no_nans(metrics)
    json.dumps(metrics, ensure_ascii=False)
    return metrics


# ----------------- internal -----------------


def _sessions_frame(sessions: Iterable[GeneratedSession]) -> pd.DataFrame:
    rows = [
        {
            "therapist_id": s.therapist_id,
            "patient_id": s.patient_id,
            "session_spec_id": s.session_spec_id,
            "room_id": s.room_id,
            "date": s.date.isoformat(),
            "start": to_minutes(s.start_time),
            "end": to_minutes(s.end_time),
        }
        for s in sessions
    ]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    if df.empty:
        return df

    bad_mask = ~(df["end"] > df["start"])
    if bool(bad_mask.any()):
        bad = df.loc[bad_mask, ["patient_id", "date"]].astype(str).agg(" ".join, axis=1).tolist()
        raise DataError(
            f"Non-positive session durations: {bad}",
            source="metrics.collect_schedule_metrics",
            suggested_action="Pass validated sessions only.",
        )
    return df


def _value_counts(df: pd.DataFrame, column: str) -> dict[str, int]:
    if df.empty:
        return {}
    counts = df[column].value_counts().sort_index()
    return {str(k): int(v) for k, v in counts.items()}


def _coverage(df: pd.DataFrame, patients: Iterable[PatientForScheduling]) -> list[dict[str, Any]]:
    if df.empty:
        scheduled: dict[tuple[str, str], int] = {}
    else:
        grouped = df.dropna(subset=["session_spec_id"]).groupby(["patient_id", "session_spec_id"])
        scheduled = {(str(p), str(s)): int(n) for (p, s), n in grouped.size().items()}

    out: list[dict[str, Any]] = []
    for patient in patients:
        for spec in patient.active_specs:
            if spec.sessions_per_week <= 0:
                continue
            n = scheduled.get((patient.id, spec.id), 0)
            out.append(
                {
                    "patient_id": patient.id,
                    "session_spec_id": spec.id,
                    "required": spec.sessions_per_week,
                    "scheduled": n,
                    "ratio": round(min(n / spec.sessions_per_week, 1.0), 4),
                }
            )
    return out


def _assert_no_nans(obj: Any) -> None:
    """Recursively rejects NaN / infinite floats."""
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise DataError(
                "Metrics contain NaN or infinite values.",
                source="metrics.collect_schedule_metrics",
            )
    elif isinstance(obj, dict):
        for v in obj.values():
            _assert_no_nans(v)
    elif isinstance(obj, (list, tuple)):
        for v in obj:
            _assert_no_nans(v)


__all__ = ["collect_schedule_metrics"]
