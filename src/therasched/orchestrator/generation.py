# src/therasched/orchestrator/generation.py
"""
@brief
Generation orchestrator: collect -> propose -> validate -> (repair) -> commit.

@details
Proposer output never reaches the caller without passing through the
session validator. Patches of the repair protocol are also checked by
the repair governor before they are applied. Persistence is left to the
caller.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from therasched.errors import (
    PatchRejectedError,
    PreconditionError,
    ProposerError,
    ProposerNotConfiguredError,
)
from therasched.intervals import week_dates
from therasched.orchestrator.source import EntitySource
from therasched.proposer.base import ChatPrompt, Proposer
from therasched.proposer.parsing import parse_repair_response, parse_schedule_proposal
from therasched.proposer.prompts import (
    build_generation_prompt,
    build_session_repair_prompt,
    redact_names,
)
from therasched.repair.governor import apply_patch, build_repair_prompt
from therasched.repair.request_builder import RepairRequestBuilder
from therasched.rules import resolve_rules_for_proposer
from therasched.schemas.config import EngineConfig, RepairConfig
from therasched.schemas.models import (
    Advisory,
    GeneratedSession,
    GenerationResult,
    GenerationStats,
    OrganizationSettings,
    PatientForScheduling,
    RegenerationResult,
    RejectedSession,
    RemovedSession,
    RoomForScheduling,
    RuleForScheduling,
    SessionSpec,
    StaffForScheduling,
    UnavailabilityRecord,
    ValidationOutcome,
)
from therasched.schemas.repair import RepairSession, RepairViolation
from therasched.validator import validate_sessions

logger = logging.getLogger(__name__)

# state names recorded in result.states
COLLECTING = "collecting"
PROPOSING = "proposing"
VALIDATING = "validating"
REPAIR_LOOP = "repair_loop"
COMMITTING = "committing"
FAILED = "failed"

FALLBACK_NOTE = "removed without regeneration"
REPAIR_NOTE = "removed after repair"


@dataclass
class WeekContext:
    """Entity snapshot fetched at the start of one request."""

    week_start: dt.date
    dates: list[dt.date]
    staff: list[StaffForScheduling]
    patients: list[PatientForScheduling]
    rooms: list[RoomForScheduling]
    rules: list[RuleForScheduling]
    unavailability: list[UnavailabilityRecord]
    settings: OrganizationSettings


@dataclass
class RepairLoopResult:
    """
    Final state of a patch-protocol run.

    Fields:
        sessions: schedule in slot terms after the last applied patch.
        generated: sessions of that schedule accepted by the validator.
        removed: sessions of that schedule the validator still rejects.
        iterations: number of proposer rounds actually made.
        errors: governor/proposer errors per round (empty list = patch applied).
        remaining: violations still present before the final gate.
    """

    sessions: list[RepairSession]
    generated: list[GeneratedSession]
    removed: list[RemovedSession] = field(default_factory=list)
    iterations: int = 0
    errors: list[list[str]] = field(default_factory=list)
    remaining: list[RepairViolation] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return not self.remaining


# ----------------------------
# PROPOSER CALLS
# ----------------------------
class _CallBudget:
    """Caps the number of proposer calls and bounds each one by a deadline."""

    def __init__(self, max_calls: int, timeout_seconds: float) -> None:
        self.max_calls = max_calls
        self.timeout_seconds = timeout_seconds
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_calls

    async def call(self, fn: Callable[[ChatPrompt], Awaitable[str]], prompt: ChatPrompt) -> str:
        if self.exhausted:
            raise ProposerError(
                f"Proposer call budget exhausted ({self.max_calls} calls)",
                source="orchestrator.call_budget",
                retryable=False,
            )
        self.used += 1
        try:
            return await asyncio.wait_for(fn(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProposerError(
                f"Proposer call timed out after {self.timeout_seconds}s",
                source="orchestrator.call_budget",
            ) from e


# ----------------------------
# PATCH PROTOCOL LOOP
# ----------------------------
async def run_repair_loop(
    builder: RepairRequestBuilder,
    sessions: list[RepairSession],
    proposer: Proposer,
    cfg: RepairConfig | None = None,
    timeout_seconds: float = 60.0,
) -> RepairLoopResult:
    """
    @brief
    Drive the repair patch protocol for at most cfg.max_iterations rounds.

    @details
    Each round:
        (1) build the request for the current schedule (violations recomputed)
        (2) stop if nothing is left to fix
        (3) prompt the proposer and parse its patch
        (4) govern and apply the patch as a whole, or record its errors

    A governance failure keeps the schedule as it was and re-prompts in the
    next round. A proposer failure ends the loop.

    After the last round the schedule is validated once more. Only accepted
    sessions are returned in `generated`; the rest are listed in `removed`
    with their reasons.

    @returns
        RepairLoopResult with the final schedule and per-round errors.
    """
    cfg = cfg or builder.cfg
    budget = _CallBudget(min(cfg.max_iterations, cfg.max_proposer_calls), timeout_seconds)
    current = list(sessions)
    errors: list[list[str]] = []
    iterations = 0

    for iteration in range(1, cfg.max_iterations + 1):
        # (1) Fresh diagnosis
        request = builder.build(current, iteration=iteration)

        # (2) Nothing to fix
        if not request.violations:
            break

        # (3) Ask for a patch
        iterations += 1
        try:
            text = await budget.call(proposer.repair, build_repair_prompt(request))
            response = parse_repair_response(text)
        except ProposerError as e:
            logger.error("Repair round %d: proposer failed: %s", iteration, e)
            errors.append([str(e)])
            break

        # (4) All-or-nothing application
        try:
            current = apply_patch(request, response)
        except PatchRejectedError as e:
            errors.append(e.errors)
            continue
        errors.append([])

    # Final gate: nothing the validator rejects is committed
    outcome, remaining = builder.evaluate(current)
    removed = [
        _removed(item, "still rejected by the validator", prefix=REPAIR_NOTE)
        for item in outcome.rejected
    ]
    logger.info(
        "Repair loop finished after %d round(s): %d session(s) kept, %d removed, "
        "%d violation(s) left",
        iterations,
        len(outcome.valid),
        len(removed),
        len(remaining),
    )
    return RepairLoopResult(
        sessions=current,
        generated=outcome.valid,
        removed=removed,
        iterations=iterations,
        errors=errors,
        remaining=remaining,
    )


# ----------------------------
# ORCHESTRATOR
# ----------------------------
class GenerationOrchestrator:
    """
    @brief
    Coordinates one schedule request against an entity source and a proposer.

    @details
    Each public call takes its own snapshot in the collecting state, so
    concurrent requests for different weeks do not share mutable state.
    The trail of states of the last run is kept in `states` and copied
    into the result.

    Public API:
        generate_schedule(week_start) -> GenerationResult
        validate_and_regenerate_copied_schedule(week_start, sessions) -> RegenerationResult
        repair_schedule(week_start, sessions, locked_sids) -> RepairLoopResult
    """

    def __init__(
        self,
        source: EntitySource,
        proposer: Proposer | None = None,
        cfg: EngineConfig | None = None,
    ) -> None:
        self.source = source
        self.proposer = proposer
        self.cfg = cfg or EngineConfig()
        self.states: list[str] = []

    # ---------- Public API ----------
    async def generate_schedule(self, week_start: dt.date) -> GenerationResult:
        """
        @brief
        Fresh generation of one week.

        @details
        Rejected sessions are dropped and reported, not repaired.

        @raises
            PreconditionError, RuleReviewRequiredError, ProposerError
        """
        self.states = []
        try:
            ctx = await self._collect(week_start)

            # (1) Rule text must be bound before it leaves the engine
            rules = resolve_rules_for_proposer(ctx.rules, ctx.staff, ctx.patients)
            proposer = self._require_proposer()

            # (2) Single proposer call
            self._enter(PROPOSING)
            logger.info(
                "Generating schedule for %d staff, %d patients and %d rooms",
                len(ctx.staff),
                len(ctx.patients),
                len(ctx.rooms),
            )
            prompt = build_generation_prompt(ctx.dates, ctx.staff, ctx.patients, rules, ctx.rooms)
            budget = self._budget()
            proposal = parse_schedule_proposal(await budget.call(proposer.generate, prompt))
            logger.info("Proposer returned %d session(s)", len(proposal.sessions))

            # (3) Deterministic gate
            self._enter(VALIDATING)
            outcome = self._validate(ctx, proposal.sessions)
            _log_rejections(outcome.rejected)
        except Exception:
            self._enter(FAILED)
            raise

        # (4) Commit
        self._enter(COMMITTING)
        warnings = [
            Advisory(check="Proposer", message=redact_names(w, ctx.staff, ctx.patients))
            for w in proposal.warnings
        ]
        return GenerationResult(
            sessions=outcome.valid,
            warnings=warnings + outcome.warnings,
            stats=GenerationStats.from_sessions(outcome.valid),
            rejected=outcome.rejected,
            states=list(self.states),
        )

    async def validate_and_regenerate_copied_schedule(
        self, week_start: dt.date, sessions: Iterable[GeneratedSession]
    ) -> RegenerationResult:
        """
        @brief
        Re-validate a copied schedule and replace each violating session.

        @details
        For every rejected session one single-session prompt is sent. The
        replacement is validated against the sessions accepted so far and
        either accepted or the original is removed with its reasons. Each
        rejected session gets at most one proposer call. Without a
        configured proposer every violating session is removed and one
        warning describes the fallback.

        @raises
            PreconditionError, RuleReviewRequiredError
        """
        self.states = []
        try:
            ctx = await self._collect(week_start)

            self._enter(VALIDATING)
            outcome = self._validate(ctx, list(sessions))
            accepted = list(outcome.valid)
            regenerated: list[GeneratedSession] = []
            removed: list[RemovedSession] = []
            warnings: list[Advisory] = []

            if outcome.rejected:
                _log_rejections(outcome.rejected)
                self._enter(REPAIR_LOOP)
                if self.proposer is None or not self.proposer.is_configured():
                    removed = [
                        _removed(item, "proposer not configured") for item in outcome.rejected
                    ]
                    warnings.append(
                        Advisory(
                            check="Fallback",
                            message=(
                                f"Proposer not configured: {len(removed)} violating session(s) "
                                "removed instead of regenerated"
                            ),
                            entities={"removed": len(removed)},
                        )
                    )
                    logger.warning(warnings[-1].message)
                else:
                    rules = resolve_rules_for_proposer(ctx.rules, ctx.staff, ctx.patients)
                    await self._regenerate_each(
                        self.proposer, ctx, rules, outcome.rejected, accepted, regenerated, removed
                    )

            # (1) Final pass over what is left, for coverage advisories
            final = self._validate(ctx, accepted)
        except Exception:
            self._enter(FAILED)
            raise

        self._enter(COMMITTING)
        return RegenerationResult(
            sessions=final.valid,
            regenerated=regenerated,
            removed=removed,
            warnings=warnings + final.warnings,
            stats=GenerationStats.from_sessions(final.valid),
            states=list(self.states),
        )

    async def repair_schedule(
        self,
        week_start: dt.date,
        sessions: Iterable[GeneratedSession],
        locked_sids: Iterable[str] = (),
    ) -> RepairLoopResult:
        """
        @brief
        Repair an existing schedule through the bounded patch protocol.

        @raises
            PreconditionError, ProposerNotConfiguredError
        """
        self.states = []
        try:
            ctx = await self._collect(week_start)
            proposer = self._require_proposer()

            self._enter(REPAIR_LOOP)
            builder = RepairRequestBuilder(
                ctx.dates,
                ctx.staff,
                ctx.patients,
                ctx.rooms,
                ctx.unavailability,
                ctx.settings,
                ctx.rules,
                cfg=self.cfg.repair,
                timezone=self.cfg.timezone,
                locked_sids=locked_sids,
            )
            result = await run_repair_loop(
                builder,
                builder.register(sessions),
                proposer,
                cfg=self.cfg.repair,
                timeout_seconds=self.cfg.proposer.timeout_seconds,
            )
        except Exception:
            self._enter(FAILED)
            raise

        self._enter(COMMITTING)
        return result

    # ---------- Internals ----------
    def _enter(self, state: str) -> None:
        self.states.append(state)
        logger.info("Orchestrator state: %s", state)

    def _budget(self) -> _CallBudget:
        return _CallBudget(self.cfg.repair.max_proposer_calls, self.cfg.proposer.timeout_seconds)

    def _require_proposer(self) -> Proposer:
        if self.proposer is None or not self.proposer.is_configured():
            raise ProposerNotConfiguredError(
                "AI scheduling is not configured", source="orchestrator.GenerationOrchestrator"
            )
        return self.proposer

    async def _collect(self, week_start: dt.date) -> WeekContext:
        """Fetch every entity list concurrently and check preconditions."""
        self._enter(COLLECTING)
        dates = week_dates(week_start, self.cfg.work_week_days)

        staff, patients, rooms, rules, unavailability, settings = await asyncio.gather(
            self.source.fetch_staff(),
            self.source.fetch_patients(),
            self.source.fetch_rooms(),
            self.source.fetch_rules(),
            self.source.fetch_unavailability(dates[0], dates[-1]),
            self.source.fetch_settings(),
        )

        if not staff:
            raise PreconditionError(
                "No active staff members found",
                source="orchestrator.collect",
                suggested_action="Add or activate at least one staff member.",
            )
        if not patients:
            raise PreconditionError(
                "No active patients found",
                source="orchestrator.collect",
                suggested_action="Add or activate at least one patient.",
            )

        return WeekContext(
            week_start=week_start,
            dates=dates,
            staff=list(staff),
            patients=list(patients),
            rooms=list(rooms),
            rules=[r for r in rules if r.is_active],
            unavailability=list(unavailability),
            settings=settings,
        )

    def _validate(self, ctx: WeekContext, sessions: list[GeneratedSession]) -> ValidationOutcome:
        settings = ctx.settings if self.cfg.validation.enforce_business_hours else None
        return validate_sessions(
            sessions, ctx.staff, ctx.patients, ctx.rooms, ctx.unavailability, settings
        )

    async def _regenerate_each(
        self,
        proposer: Proposer,
        ctx: WeekContext,
        rules: list[RuleForScheduling],
        rejected: list[RejectedSession],
        accepted: list[GeneratedSession],
        regenerated: list[GeneratedSession],
        removed: list[RemovedSession],
    ) -> None:
        budget = self._budget()
        patients = {p.id: p for p in ctx.patients}

        for item in rejected:
            original = item.session
            patient = patients.get(original.patient_id)
            if patient is None:
                removed.append(_removed(item, "patient is not schedulable"))
                continue
            if budget.exhausted:
                removed.append(_removed(item, "proposer call budget exhausted"))
                continue

            spec = patient.spec_by_id(original.session_spec_id or "")
            if spec is None and len(patient.active_specs) == 1:
                spec = patient.active_specs[0]

            prompt = build_session_repair_prompt(
                original,
                item.reasons,
                patient,
                spec,
                ctx.dates,
                ctx.staff,
                ctx.rooms,
                accepted,
                rules,
            )
            try:
                proposal = parse_schedule_proposal(
                    await budget.call(proposer.generate, prompt)
                )
            except ProposerError as e:
                logger.error("Regeneration call failed for patient %s: %s", patient.id, e)
                removed.append(_removed(item, "proposer call failed"))
                continue

            replacement = self._accept_replacement(ctx, original, spec, proposal.sessions, accepted)
            if isinstance(replacement, str):
                removed.append(_removed(item, replacement))
                continue

            accepted.append(replacement)
            regenerated.append(replacement)
            logger.info("Regenerated session for patient %s on %s", patient.id, replacement.date)

    def _accept_replacement(
        self,
        ctx: WeekContext,
        original: GeneratedSession,
        spec: SessionSpec | None,
        candidates: list[GeneratedSession],
        accepted: list[GeneratedSession],
    ) -> GeneratedSession | str:
        """Return the validated replacement, or the reason it was not accepted."""
        if not candidates:
            return "no replacement proposed"

        candidate = candidates[0]
        if candidate.patient_id != original.patient_id:
            return "replacement targets a different patient"
        if spec is not None and candidate.session_spec_id not in (None, spec.id):
            return "replacement targets a different session spec"

        # re-run against the current accepted set so new conflicts are caught
        outcome = self._validate(ctx, [*accepted, candidate])
        if outcome.rejected:
            reasons = "; ".join(r for item in outcome.rejected for r in item.reasons)
            return f"replacement rejected: {reasons}"
        return outcome.valid[-1]


# ----------------------------
# AUXILIARY FUNCTIONS
# ----------------------------
def _removed(item: RejectedSession, note: str, prefix: str = FALLBACK_NOTE) -> RemovedSession:
    reason = "; ".join(item.reasons)
    return RemovedSession(original=item.session, reason=f"{reason} ({prefix}: {note})")


def _log_rejections(rejected: list[RejectedSession]) -> None:
    # reasons carry display names; logs identify entities by id only
    if not rejected:
        return
    logger.warning("Validation rejected %d session(s)", len(rejected))
    for item in rejected:
        logger.warning(
            "  - therapist=%s patient=%s %s %s-%s: %s",
            item.session.therapist_id,
            item.session.patient_id,
            item.session.date,
            item.session.start_time,
            item.session.end_time,
            ", ".join(sorted(set(item.checks))),
        )


__all__ = [
    "GenerationOrchestrator",
    "RepairLoopResult",
    "WeekContext",
    "run_repair_loop",
]
