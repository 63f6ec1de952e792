# src/therasched/dataloader/snapshot_loader.py
from __future__ import annotations

import datetime as dt
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from therasched.errors import DataError
from therasched.schemas.models import (
    AppointmentHold,
    BookedSession,
    OrganizationSettings,
    PatientForScheduling,
    RoomForScheduling,
    RuleForScheduling,
    StaffForScheduling,
    UnavailabilityRecord,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(slots=True)
class EntitySnapshot:
    """
    Point-in-time copy of every record the engine reads for one organization.

    Fields:
        settings: organization business hours and slot grid.
        staff, patients, rooms, rules: entity lists (inactive records included).
        unavailability: day-specific staff overrides.
        sessions: already booked sessions.
        holds: temporary slot reservations.
    """

    settings: OrganizationSettings = field(default_factory=OrganizationSettings)
    staff: list[StaffForScheduling] = field(default_factory=list)
    patients: list[PatientForScheduling] = field(default_factory=list)
    rooms: list[RoomForScheduling] = field(default_factory=list)
    rules: list[RuleForScheduling] = field(default_factory=list)
    unavailability: list[UnavailabilityRecord] = field(default_factory=list)
    sessions: list[BookedSession] = field(default_factory=list)
    holds: list[AppointmentHold] = field(default_factory=list)


class SnapshotLoader:
    """
    JSON file → EntitySnapshot.

    Layout (camelCase keys, every section optional):
        {"settings": {...}, "staff": [...], "patients": [...], "rooms": [...],
         "rules": [...], "unavailability": [...], "sessions": [...], "holds": [...]}

    Any malformed record is fatal: the engine never runs on a partial snapshot.
    """

    SECTIONS: dict[str, type[BaseModel]] = {
        "staff": StaffForScheduling,
        "patients": PatientForScheduling,
        "rooms": RoomForScheduling,
        "rules": RuleForScheduling,
        "unavailability": UnavailabilityRecord,
        "sessions": BookedSession,
        "holds": AppointmentHold,
    }

    def load(self, path: Path | str) -> EntitySnapshot:
        p = Path(path)
        data = self._read_json(p)

        snapshot = EntitySnapshot(settings=self._parse_settings(data.get("settings")))
        for name, model in self.SECTIONS.items():
            setattr(snapshot, name, self._parse_section(name, data.get(name, []), model))

        logger.info(
            "Loaded snapshot %s: staff=%d patients=%d rooms=%d rules=%d sessions=%d",
            p.name,
            len(snapshot.staff),
            len(snapshot.patients),
            len(snapshot.rooms),
            len(snapshot.rules),
            len(snapshot.sessions),
        )
        return snapshot

    # ------------------------------
    # Internal helpers
    # ------------------------------
    def _read_json(self, path: Path) -> Mapping[str, Any]:
        if not path.is_file():
            raise DataError(
                message=f"Snapshot file not found: {path}",
                source="SnapshotLoader._read_json",
                suggested_action="Pass the path of an existing snapshot JSON file.",
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise DataError(
                message=f"Snapshot is not valid JSON: {e.msg} (line {e.lineno})",
                source="SnapshotLoader._read_json",
                suggested_action="Fix the JSON syntax of the snapshot file.",
            ) from e
        except OSError as e:
            raise DataError(
                message=f"Unable to read snapshot file: {e}",
                source="SnapshotLoader._read_json",
            ) from e

        if not isinstance(data, Mapping):
            raise DataError(
                message="Snapshot root must be a JSON object.",
                source="SnapshotLoader._read_json",
            )
        return data

    def _parse_settings(self, raw: Any) -> OrganizationSettings:
        if raw is None:
            return OrganizationSettings()
        try:
            return OrganizationSettings.model_validate(raw)
        except ValidationError as e:
            raise DataError(
                message=f"Invalid settings: {e}",
                source="SnapshotLoader._parse_settings",
            ) from e

    def _parse_section(self, name: str, raw: Any, model: type[M]) -> list[M]:
        if not isinstance(raw, list):
            raise DataError(
                message=f"Snapshot section '{name}' must be a list",
                source="SnapshotLoader._parse_section",
            )
        items: list[M] = []
        for i, item in enumerate(raw):
            try:
                items.append(model.model_validate(item))
            except ValidationError as e:
                raise DataError(
                    message=f"Invalid record {name}[{i}]: {e}",
                    source="SnapshotLoader._parse_section",
                    suggested_action=f"Fix or remove {name}[{i}] in the snapshot.",
                ) from e
        return items


class SnapshotEntitySource:
    """Serves an EntitySnapshot through the orchestrator's EntitySource interface."""

    def __init__(self, snapshot: EntitySnapshot) -> None:
        self.snapshot = snapshot

    async def fetch_staff(self) -> list[StaffForScheduling]:
        return [s for s in self.snapshot.staff if s.status == "active"]

    async def fetch_patients(self) -> list[PatientForScheduling]:
        return [p for p in self.snapshot.patients if p.status == "active"]

    async def fetch_rooms(self) -> list[RoomForScheduling]:
        return [r for r in self.snapshot.rooms if r.status == "active"]

    async def fetch_rules(self) -> list[RuleForScheduling]:
        return [r for r in self.snapshot.rules if r.is_active]

    async def fetch_unavailability(
        self, date_from: dt.date, date_to: dt.date
    ) -> list[UnavailabilityRecord]:
        return [u for u in self.snapshot.unavailability if date_from <= u.date <= date_to]

    async def fetch_settings(self) -> OrganizationSettings:
        return self.snapshot.settings


__all__ = ["EntitySnapshot", "SnapshotEntitySource", "SnapshotLoader"]
