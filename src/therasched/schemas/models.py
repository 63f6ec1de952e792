# src/therasched/schemas/models.py
"""
@brief
Pydantic data models for the therasched engine.

@details
Defines the plain records the engine consumes and produces:
    - entity snapshots (staff, patients with session specs, rooms, rules,
      unavailability overrides, booked sessions, appointment holds)
    - organization settings (business hours, slot grid)
    - proposer payloads (GeneratedSession, ScheduleProposal)
    - validation and generation outcomes

Python attributes are snake_case; the wire format (proposer contract and
snapshot files) is camelCase through the alias generator.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    StringConstraints,
    field_validator,
)
from pydantic.alias_generators import to_camel

# "HH:MM", 24h clock; "24:00" is accepted as an end-of-day bound
HHMM = Annotated[str, StringConstraints(pattern=r"^(([01]\d|2[0-3]):[0-5]\d|24:00)$")]

DayName = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
Gender = Literal["male", "female", "other"]
EntityStatus = Literal["active", "inactive"]


class _StrictBaseModel(BaseModel):
    """
    @brief
    Base model for trusted entity records.

    @details
    Forbids unknown fields and maps snake_case attributes to camelCase keys.
    """

    model_config = {
        "extra": "forbid",  # Reject unknown fields
        "populate_by_name": True,  # Allow population by field name
        "alias_generator": to_camel,
        "use_enum_values": True,
    }


class _PayloadModel(BaseModel):
    """
    @brief
    Base model for untrusted proposer payloads.

    @details
    Unknown keys are dropped instead of failing the whole response;
    every declared field is still type-checked.
    """

    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


# ------------------------------------------------------------
# Time primitives
# ------------------------------------------------------------
class TimeSlot(_StrictBaseModel):
    """
    @brief
    Same-day half-open time range ["start_time", "end_time").

    @details
    Accepts both the {startTime, endTime} and the {start, end} key shapes;
    staff default hours are usually stored in the latter.
    """

    start_time: HHMM = Field(
        ...,
        validation_alias=AliasChoices("startTime", "start_time", "start"),
        serialization_alias="startTime",
    )
    end_time: HHMM = Field(
        ...,
        validation_alias=AliasChoices("endTime", "end_time", "end"),
        serialization_alias="endTime",
    )

    @property
    def is_valid(self) -> bool:
        return self.start_time < self.end_time


class BusinessHoursDay(_StrictBaseModel):
    open: bool = Field(True, description="Organization open on this day")
    start: HHMM = "08:00"
    end: HHMM = "18:00"


def default_business_hours() -> dict[str, BusinessHoursDay]:
    """Monday to Friday 08:00-18:00, closed on weekends."""
    hours = {
        day: BusinessHoursDay(open=True, start="08:00", end="18:00")
        for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
    }
    hours["saturday"] = BusinessHoursDay(open=False, start="08:00", end="18:00")
    hours["sunday"] = BusinessHoursDay(open=False, start="08:00", end="18:00")
    return hours


class OrganizationSettings(_StrictBaseModel):
    """
    @brief
    Organization-wide booking parameters.

    @details
    Business hours bound every staff member's working window; the slot grid
    (duration and step) drives candidate slot generation.
    """

    business_hours: dict[DayName, BusinessHoursDay] = Field(default_factory=default_business_hours)
    default_session_duration: int = Field(60, gt=0, description="Minutes")
    slot_interval: int = Field(30, gt=0, description="Minutes between candidate slot starts")
    timezone: str = Field("UTC", description="IANA timezone name")

    @field_validator("business_hours", mode="before")
    @classmethod
    def _lower_day_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).lower(): v for k, v in value.items()}
        return value


# ------------------------------------------------------------
# Entities
# ------------------------------------------------------------
class StaffForScheduling(_StrictBaseModel):
    id: str
    name: str = ""
    gender: Gender | None = None
    certifications: list[str] = Field(default_factory=list)
    default_hours: dict[DayName, TimeSlot | None] = Field(default_factory=dict)
    status: EntityStatus = "active"

    @field_validator("default_hours", mode="before")
    @classmethod
    def _lower_day_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).lower(): v for k, v in value.items()}
        return value

    def hours_for(self, day: str) -> TimeSlot | None:
        return self.default_hours.get(day)  # type: ignore[call-overload]


class SessionSpec(_StrictBaseModel):
    """
    @brief
    One recurring therapy requirement of a patient.

    @details
    A patient may hold several specs at once (e.g. speech and occupational
    therapy). Each spec carries its own weekly count, duration,
    certification and room-capability requirements.
    """

    id: str
    name: str = ""
    sessions_per_week: int = Field(2, ge=0)
    duration_minutes: int | None = Field(None, gt=0)
    required_certifications: list[str] = Field(default_factory=list)
    preferred_times: list[str] | None = None
    preferred_room_id: str | None = None
    required_room_capabilities: list[str] = Field(default_factory=list)
    is_active: bool = True


class PatientForScheduling(_StrictBaseModel):
    id: str
    identifier: str | None = None
    name: str = ""
    gender: Gender | None = None
    session_specs: list[SessionSpec] = Field(..., min_length=1)
    status: EntityStatus = "active"

    @property
    def display_id(self) -> str:
        return self.identifier or self.id

    @property
    def active_specs(self) -> list[SessionSpec]:
        return [s for s in self.session_specs if s.is_active]

    def spec_by_id(self, spec_id: str) -> SessionSpec | None:
        for spec in self.session_specs:
            if spec.id == spec_id:
                return spec
        return None


class RoomForScheduling(_StrictBaseModel):
    id: str
    name: str = ""
    capabilities: list[str] = Field(default_factory=list)
    status: EntityStatus = "active"


class RuleForScheduling(_StrictBaseModel):
    id: str
    category: str = "general"
    description: str
    rule_logic: dict[str, Any] = Field(default_factory=dict)
    priority: int = 1
    is_active: bool = True


class UnavailabilityRecord(_StrictBaseModel):
    """
    @brief
    Day-specific override of a staff member's default hours.

    @details
    available=False blocks the whole day. available=True with both bounds
    replaces the default hours for that date only. Only approved records
    take effect.
    """

    staff_id: str
    date: dt.date
    available: bool
    start_time: HHMM | None = None
    end_time: HHMM | None = None
    reason: str | None = None
    status: Literal["pending", "approved", "rejected"] = "approved"

    @property
    def window(self) -> TimeSlot | None:
        if self.start_time and self.end_time:
            return TimeSlot(start_time=self.start_time, end_time=self.end_time)
        return None


class BookedSession(_StrictBaseModel):
    """Session already persisted for the organization."""

    id: str
    therapist_id: str
    patient_id: str
    session_spec_id: str | None = None
    room_id: str | None = None
    date: dt.date
    start_time: HHMM
    end_time: HHMM
    status: str = "scheduled"


class AppointmentHold(_StrictBaseModel):
    """Temporary, expiring reservation of a slot before booking is confirmed."""

    id: str
    staff_id: str | None = None
    date: dt.date
    start_time: HHMM
    end_time: HHMM
    expires_at: dt.datetime
    released_at: dt.datetime | None = None
    converted_to_session_id: str | None = None

    def is_active(self, now: dt.datetime) -> bool:
        return (
            _as_utc(self.expires_at) > _as_utc(now)
            and self.released_at is None
            and self.converted_to_session_id is None
        )


def _as_utc(value: dt.datetime) -> dt.datetime:
    # naive timestamps are UTC by contract
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


# ------------------------------------------------------------
# Proposer payloads
# ------------------------------------------------------------
class GeneratedSession(_PayloadModel):
    """Unit the validator accepts or rejects."""

    therapist_id: str
    patient_id: str
    session_spec_id: str | None = None
    room_id: str | None = None
    date: dt.date
    start_time: HHMM
    end_time: HHMM
    notes: str | None = None

    @classmethod
    def from_booked(cls, booked: BookedSession) -> GeneratedSession:
        return cls(
            therapist_id=booked.therapist_id,
            patient_id=booked.patient_id,
            session_spec_id=booked.session_spec_id,
            room_id=booked.room_id,
            date=booked.date,
            start_time=booked.start_time,
            end_time=booked.end_time,
        )


class ScheduleProposal(_PayloadModel):
    """Top-level shape of a generation response: {"sessions": [...], "warnings": [...]}"""

    sessions: list[GeneratedSession]
    warnings: list[str] = Field(default_factory=list)

    @field_validator("warnings", mode="before")
    @classmethod
    def _coerce_warnings(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [str(v) for v in value]


# ------------------------------------------------------------
# Outcomes
# ------------------------------------------------------------
class Advisory(_StrictBaseModel):
    """One non-blocking warning item."""

    check: str
    message: str
    entities: dict[str, Any] = Field(default_factory=dict)


class RejectedSession(_StrictBaseModel):
    session: GeneratedSession
    reasons: list[str]
    checks: list[str] = Field(default_factory=list)


class ValidationOutcome(_StrictBaseModel):
    """
    @brief
    Partition of a candidate batch.

    @details
    valid    : sessions ready to persist (session spec id resolved)
    rejected : sessions with itemized reasons
    warnings : non-blocking advisories
    """

    valid: list[GeneratedSession] = Field(default_factory=list)
    rejected: list[RejectedSession] = Field(default_factory=list)
    warnings: list[Advisory] = Field(default_factory=list)

    @property
    def checks(self) -> dict[str, int]:
        counter: Counter[str] = Counter()
        for item in self.rejected:
            counter.update(set(item.checks))
        return dict(counter)

    @property
    def warning_messages(self) -> list[str]:
        return [w.message for w in self.warnings]


class GenerationStats(_StrictBaseModel):
    total_sessions: int = 0
    patients_scheduled: int = 0
    therapists_used: int = 0

    @classmethod
    def from_sessions(cls, sessions: list[GeneratedSession]) -> GenerationStats:
        return cls(
            total_sessions=len(sessions),
            patients_scheduled=len({s.patient_id for s in sessions}),
            therapists_used=len({s.therapist_id for s in sessions}),
        )


class GenerationResult(_StrictBaseModel):
    sessions: list[GeneratedSession] = Field(default_factory=list)
    warnings: list[Advisory] = Field(default_factory=list)
    stats: GenerationStats = Field(default_factory=GenerationStats)
    rejected: list[RejectedSession] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)


class RemovedSession(_StrictBaseModel):
    original: GeneratedSession
    reason: str


class RegenerationResult(_StrictBaseModel):
    sessions: list[GeneratedSession] = Field(default_factory=list)
    regenerated: list[GeneratedSession] = Field(default_factory=list)
    removed: list[RemovedSession] = Field(default_factory=list)
    warnings: list[Advisory] = Field(default_factory=list)
    stats: GenerationStats = Field(default_factory=GenerationStats)
    states: list[str] = Field(default_factory=list)


__all__ = [
    "Advisory",
    "AppointmentHold",
    "BookedSession",
    "BusinessHoursDay",
    "GeneratedSession",
    "GenerationResult",
    "GenerationStats",
    "OrganizationSettings",
    "PatientForScheduling",
    "RegenerationResult",
    "RejectedSession",
    "RemovedSession",
    "RoomForScheduling",
    "RuleForScheduling",
    "ScheduleProposal",
    "SessionSpec",
    "StaffForScheduling",
    "TimeSlot",
    "UnavailabilityRecord",
    "ValidationOutcome",
    "default_business_hours",
]
