# src/therasched/errors.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class TheraschedError(Exception):
    """Base class for all structured therasched exceptions."""

    def __init__(
        self, message: str, source: str | None = None, suggested_action: str | None = None
    ):
        super().__init__(message)
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_type = self.__class__.__name__
        self.source = source or "unknown"
        self.suggested_action = suggested_action

    def __str__(self) -> str:
        base = f"[{self.error_type}] {self.args[0]}"
        if self.source:
            base += f" (source={self.source})"
        if self.suggested_action:
            base += f" | action: {self.suggested_action}"
        return base


class ConfigError(TheraschedError):
    """Invalid or missing configuration (config.yaml)"""


class DataError(TheraschedError):
    """Malformed or inconsistent input data"""


class PreconditionError(TheraschedError):
    """Generation cannot start (no active staff or patients)"""


class ProposerError(TheraschedError):
    """External proposer call failed: network, timeout, parse or shape error"""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        suggested_action: str | None = None,
        retryable: bool = True,
    ):
        super().__init__(message, source=source, suggested_action=suggested_action)
        self.retryable = retryable


class ProposerNotConfiguredError(ProposerError):
    """No proposer provider or credentials available"""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(
            message,
            source=source,
            suggested_action="Set proposer.provider and the API key environment variable.",
            retryable=False,
        )


class PatchRejectedError(TheraschedError):
    """Repair patch failed governance and was discarded as a whole"""

    def __init__(self, errors: list[str], source: str | None = None):
        super().__init__(
            f"Patch rejected with {len(errors)} error(s)",
            source=source,
            suggested_action="Re-prompt the proposer or remove the offending sessions.",
        )
        self.errors = list(errors)


class RuleReviewRequiredError(TheraschedError):
    """Rules contain entity mentions that must be bound before generation"""

    def __init__(self, results: list[Any], source: str | None = None):
        super().__init__(
            "Rules require review before schedule generation",
            source=source,
            suggested_action="Bind ambiguous names to staff/patient ids in each flagged rule.",
        )
        self.results = results


class ValidationError(TheraschedError):
    """Failed to produce or persist a validation report"""
