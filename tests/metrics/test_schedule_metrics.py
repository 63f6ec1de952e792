import json

import pytest

from tests.factories import MONDAY, TUESDAY, mk_patient, mk_session, mk_spec
from therasched.errors import DataError
from therasched.metrics.metrics import _assert_no_nans, collect_schedule_metrics

# -------------------------
# Helper utilities
# -------------------------


def _patients():
    """
    @brief
    Two patients: p1 needs two sp1 sessions, p2 one sp2 plus an inactive spec.
    """
    return [
        mk_patient("p1", specs=[mk_spec("sp1", per_week=2)]),
        mk_patient(
            "p2",
            name="Dana Fox",
            specs=[mk_spec("sp2", per_week=1), mk_spec("sp3", per_week=3, is_active=False)],
        ),
    ]


def _sessions():
    return [
        mk_session("st1", "p1", "09:00", "10:00", MONDAY, "sp1", room="r1"),
        mk_session("st2", "p2", "09:00", "09:45", MONDAY, "sp2", room="r2"),
        mk_session("st1", "p2", "11:00", "12:00", TUESDAY, "sp2"),
    ]


# -------------------------
# collect_schedule_metrics
# -------------------------


def test_counts_and_minutes():
    """
    @brief
    Per-entity counts, rooms and booked minutes come from the session frame.
    """
    # --- Act ---
    m = collect_schedule_metrics(_sessions(), _patients(), rejected=2, warnings=1)

    # --- Assert ---
    assert m["num_sessions"] == 3
    assert m["num_patients_scheduled"] == 2
    assert m["num_therapists_used"] == 2
    assert m["num_rooms_used"] == 2
    assert m["booked_minutes"] == 60 + 45 + 60
    assert m["num_rejected"] == 2 and m["num_warnings"] == 1
    assert m["sessions_per_therapist"] == {"st1": 2, "st2": 1}
    assert m["sessions_per_day"] == {"2025-01-06": 2, "2025-01-07": 1}
    assert isinstance(m["timestamp"], str)


def test_coverage_is_capped_per_spec():
    """
    @brief
    Coverage counts active specs only and never exceeds 1.0 per spec.

    @details
    p1: 1 of 2 -> 0.5. p2/sp2: 2 of 1 -> capped at 1.0. Overall counts
    fulfilled sessions: (1 + 1) / (2 + 1).
    """
    # --- Act ---
    m = collect_schedule_metrics(_sessions(), _patients())

    # --- Assert ---
    per_spec = {c["session_spec_id"]: c for c in m["coverage"]["per_spec"]}
    assert set(per_spec) == {"sp1", "sp2"}
    assert per_spec["sp1"]["ratio"] == 0.5
    assert per_spec["sp2"]["scheduled"] == 2
    assert per_spec["sp2"]["ratio"] == 1.0
    assert m["coverage"]["overall"] == round(2 / 3, 4)


def test_empty_schedule():
    """
    @brief
    No sessions: zero counts, zero coverage, still JSON-serializable.
    """
    # --- Act ---
    m = collect_schedule_metrics([], _patients())

    # --- Assert ---
    assert m["num_sessions"] == 0
    assert m["booked_minutes"] == 0
    assert m["sessions_per_patient"] == {}
    assert m["coverage"]["overall"] == 0.0
    json.dumps(m)


def test_no_requirements_means_full_coverage():
    # --- Act ---
    m = collect_schedule_metrics([], [mk_patient("p1", specs=[mk_spec("sp1", per_week=0)])])

    # --- Assert ---
    assert m["coverage"] == {"overall": 1.0, "per_spec": []}


def test_non_positive_duration_raises():
    """
    @brief
    Sessions that end before they start are a data error.
    """
    # --- Arrange ---
    bad = mk_session(start="11:00", end="10:00")

    # --- Act / Assert ---
    with pytest.raises(DataError, match="Non-positive session durations"):
        collect_schedule_metrics([bad], _patients())


@pytest.mark.parametrize("value", [float("nan"), float("inf"), {"x": [float("-inf")]}])
def test_assert_no_nans_rejects_non_finite(value):
    with pytest.raises(DataError):
        _assert_no_nans({"nested": value})
