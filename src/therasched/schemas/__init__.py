from therasched.schemas.config import EngineConfig
from therasched.schemas.models import (
    Advisory,
    GeneratedSession,
    PatientForScheduling,
    RoomForScheduling,
    SessionSpec,
    StaffForScheduling,
    TimeSlot,
    UnavailabilityRecord,
    ValidationOutcome,
)

__all__ = [
    "Advisory",
    "EngineConfig",
    "GeneratedSession",
    "PatientForScheduling",
    "RoomForScheduling",
    "SessionSpec",
    "StaffForScheduling",
    "TimeSlot",
    "UnavailabilityRecord",
    "ValidationOutcome",
]
