# src/therasched/orchestrator/source.py
from __future__ import annotations

import datetime as dt
from typing import Protocol, runtime_checkable

from therasched.schemas.models import (
    OrganizationSettings,
    PatientForScheduling,
    RoomForScheduling,
    RuleForScheduling,
    StaffForScheduling,
    UnavailabilityRecord,
)


@runtime_checkable
class EntitySource(Protocol):
    """
    Upstream data collaborator (database, snapshot file, test fake).

    Fetchers are independent of each other and are awaited concurrently.
    Staff, patients and rooms are expected to be active records only.
    """

    async def fetch_staff(self) -> list[StaffForScheduling]: ...

    async def fetch_patients(self) -> list[PatientForScheduling]: ...

    async def fetch_rooms(self) -> list[RoomForScheduling]: ...

    async def fetch_rules(self) -> list[RuleForScheduling]: ...

    async def fetch_unavailability(
        self, date_from: dt.date, date_to: dt.date
    ) -> list[UnavailabilityRecord]: ...

    async def fetch_settings(self) -> OrganizationSettings: ...


__all__ = ["EntitySource"]
