# src/therasched/schemas/config.py
"""
@brief
Runtime configuration models (config.yaml).

@details
Mirrors the YAML layout one-to-one. Unknown keys are rejected so that a
typo in config.yaml fails loudly instead of silently falling back to a
default.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field


class _StrictConfigModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
    }


class AvailabilityConfig(_StrictConfigModel):
    """
    @brief
    Slot-grid defaults used when organization settings are silent.
    """

    slot_interval_minutes: int = Field(30, gt=0, description="Step between candidate slot starts")
    default_session_duration: int = Field(60, gt=0, description="Session length (minutes)")
    non_blocking_statuses: list[str] = Field(
        default_factory=lambda: ["cancelled", "late_cancel"],
        description="Booked-session statuses that never block time",
    )


class ValidationConfig(_StrictConfigModel):
    """
    @brief
    Controls behavior of the session validator.

    @details
    Determines whether business hours are enforced on top of staff hours,
    whether a report is written, and whether warnings count as failures.
    """

    enforce_business_hours: bool = True
    write_report: bool = True
    fail_on_warnings: bool = False


class RepairConfig(_StrictConfigModel):
    """
    @brief
    Bounds of the repair protocol.

    @details
    max_patch_ops caps a single patch; max_iterations caps patch rounds;
    max_proposer_calls caps all proposer calls within one request.
    """

    max_patch_ops: int = Field(10, ge=1)
    max_iterations: int = Field(3, ge=1)
    max_proposer_calls: int = Field(25, ge=1)
    mode: Literal["template", "real"] = "real"
    objective: Literal["fix_blockers", "maximize_fulfillment"] = "fix_blockers"


class ProposerConfig(_StrictConfigModel):
    """
    @brief
    External proposer connection settings.

    @details
    The API key itself never lives in config.yaml; only the name of the
    environment variable that holds it.
    """

    provider: Literal["none", "http"] = "none"
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = Field(60.0, gt=0.0)
    max_tokens: int = Field(8192, ge=1)
    repair_max_tokens: int = Field(4096, ge=1)

    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None

    def is_configured(self) -> bool:
        return self.provider != "none" and self.api_key() is not None


class EngineConfig(_StrictConfigModel):
    """
    @brief
    Full runtime configuration loaded from config.yaml.

    @details
    Combines availability, validation, repair and proposer settings.
    """

    timezone: str = Field("UTC", description="IANA timezone name, e.g. 'UTC'")
    work_week_days: int = Field(5, ge=1, le=7, description="Days per generated week, from Monday")
    availability: AvailabilityConfig = Field(default_factory=AvailabilityConfig.model_construct)
    validation: ValidationConfig = Field(default_factory=ValidationConfig.model_construct)
    repair: RepairConfig = Field(default_factory=RepairConfig.model_construct)
    proposer: ProposerConfig = Field(default_factory=ProposerConfig.model_construct)
    output_dir: str | None = "data/output"


__all__ = [
    "AvailabilityConfig",
    "EngineConfig",
    "ProposerConfig",
    "RepairConfig",
    "ValidationConfig",
]
