from therasched.availability.calculator import (
    AvailabilityCalculator,
    business_window,
    effective_working_hours,
    find_override,
    resolve_staff_hours,
)
from therasched.availability.types import (
    AvailabilityEcho,
    AvailabilityQuery,
    AvailabilityResult,
    AvailableSlot,
    SlotCheck,
    StaffDayAvailability,
)

__all__ = [
    "AvailabilityCalculator",
    "AvailabilityEcho",
    "AvailabilityQuery",
    "AvailabilityResult",
    "AvailableSlot",
    "SlotCheck",
    "StaffDayAvailability",
    "business_window",
    "effective_working_hours",
    "find_override",
    "resolve_staff_hours",
]
