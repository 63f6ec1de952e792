# scripts/run.py
from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import sys
import time
import traceback
from pathlib import Path
from typing import Any

from therasched.dataloader import ConfigLoader, SnapshotEntitySource, SnapshotLoader
from therasched.errors import DataError, TheraschedError
from therasched.export import write_sessions_csv
from therasched.intervals import week_dates
from therasched.metrics import collect_schedule_metrics, utc_now_iso, write_metrics, write_report
from therasched.orchestrator import GenerationOrchestrator
from therasched.proposer import HttpChatProposer, Proposer, StaticProposer
from therasched.schemas.config import EngineConfig
from therasched.schemas.models import BookedSession, GeneratedSession

MODES = ("generate", "regenerate", "repair")


def _setup_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    @brief
    Parses command-line arguments for the offline scheduling run.

    @details
    The proposer is either replayed from a recorded responses file
    (--responses) or called live over HTTP when config enables it.
    """
    parser = argparse.ArgumentParser(
        prog="therasched-run",
        description=(
            "Run one scheduling request offline: "
            "load snapshot → propose → validate/repair → metrics → export"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/config.yaml",
        help="Path to config YAML (default: config/config.yaml)",
    )
    parser.add_argument(
        "--snapshot",
        type=str,
        required=True,
        help="Path to entity snapshot JSON",
    )
    parser.add_argument(
        "--week-start",
        type=dt.date.fromisoformat,
        required=True,
        help="Monday of the target week (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="generate",
        help="generate a fresh week, regenerate a copied one, or repair it by patches",
    )
    parser.add_argument(
        "--responses",
        type=str,
        default=None,
        help="Recorded proposer responses JSON; without it the configured HTTP proposer is used",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory for artifacts (default: output_dir from config)",
    )
    return parser.parse_args(argv)


def _build_proposer(cfg: EngineConfig, responses: Path | None) -> Proposer | None:
    if responses is not None:
        return StaticProposer.from_file(responses)
    if cfg.proposer.provider == "http":
        return HttpChatProposer(cfg.proposer)
    return None


def _week_sessions(
    booked: list[BookedSession], cfg: EngineConfig, week: list[dt.date]
) -> list[GeneratedSession]:
    blocked = set(cfg.availability.non_blocking_statuses)
    return [
        GeneratedSession.from_booked(s)
        for s in booked
        if s.status not in blocked and week[0] <= s.date <= week[-1]
    ]


def run_pipeline(
    config_path: Path,
    snapshot_path: Path,
    week_start: dt.date,
    mode: str = "generate",
    responses_path: Path | None = None,
    output_dir: Path | None = None,
) -> dict[str, Any]:
    """
    @brief
    Executes one scheduling request end to end.

    @details
    (1) Load configuration and entity snapshot.
    (2) Run the orchestrator flow chosen by `mode`.
    (3) Write generation_report.json, sessions.csv and metrics.json.

    @returns
        Summary with session counts and artifact paths.

    @raises
        TheraschedError
            On configuration, data, precondition or proposer failures.
    """
    t0 = time.perf_counter()

    # (1) Inputs
    cfg = ConfigLoader().load(config_path) if config_path.exists() else EngineConfig()
    out_dir = output_dir or Path(cfg.output_dir or "data/output")
    out_dir.mkdir(parents=True, exist_ok=True)

    logging.info("Loading snapshot: %s", snapshot_path)
    snapshot = SnapshotLoader().load(snapshot_path)
    orchestrator = GenerationOrchestrator(
        SnapshotEntitySource(snapshot), _build_proposer(cfg, responses_path), cfg
    )

    # (2) Flow
    report: dict[str, Any] = {"timestamp": utc_now_iso(), "mode": mode, "weekStart": week_start}
    if mode == "generate":
        result = asyncio.run(orchestrator.generate_schedule(week_start))
        sessions = result.sessions
        rejected = len(result.rejected)
        warnings = len(result.warnings)
        report.update(result.model_dump(mode="json", by_alias=True))
    elif mode == "regenerate":
        week = week_dates(week_start, cfg.work_week_days)
        copied = _week_sessions(snapshot.sessions, cfg, week)
        regen = asyncio.run(
            orchestrator.validate_and_regenerate_copied_schedule(week_start, copied)
        )
        sessions = regen.sessions
        rejected = len(regen.removed)
        warnings = len(regen.warnings)
        report.update(regen.model_dump(mode="json", by_alias=True))
    elif mode == "repair":
        week = week_dates(week_start, cfg.work_week_days)
        copied = _week_sessions(snapshot.sessions, cfg, week)
        loop = asyncio.run(orchestrator.repair_schedule(week_start, copied))
        sessions = loop.generated
        rejected = len(loop.removed)
        warnings = 0
        report.update(
            {
                "sessions": [s.model_dump(mode="json", by_alias=True) for s in loop.generated],
                "iterations": loop.iterations,
                "errors": loop.errors,
                "removed": [r.model_dump(mode="json", by_alias=True) for r in loop.removed],
                "remaining": [v.model_dump(mode="json", by_alias=True) for v in loop.remaining],
                "states": orchestrator.states,
            }
        )
    else:
        raise DataError(f"Unknown mode: {mode}", source="scripts.run")

    # (3) Artifacts
    report_path = write_report(report, out_dir, "generation_report.json")
    csv_path = write_sessions_csv(sessions, out_dir / "sessions.csv")
    metrics = collect_schedule_metrics(sessions, snapshot.patients, rejected, warnings)
    metrics_path = write_metrics(metrics, out_dir)

    logging.info("Run finished in %.2f s", time.perf_counter() - t0)
    return {
        "mode": mode,
        "sessions": len(sessions),
        "rejected": rejected,
        "warnings": warnings,
        "artifacts": {
            "report": report_path,
            "sessions_csv": csv_path,
            "metrics": metrics_path,
        },
    }


def main(argv: list[str] | None = None) -> int:
    """
    @brief
    CLI entry point.

    @details
    Exit codes:
      0 – success
      1 – controlled failure (config/data/precondition/proposer)
      2 – unexpected crash
    """
    _setup_logging()
    args = _parse_args(argv)

    try:
        result = run_pipeline(
            Path(args.config),
            Path(args.snapshot),
            args.week_start,
            mode=args.mode,
            responses_path=Path(args.responses) if args.responses else None,
            output_dir=Path(args.output) if args.output else None,
        )
        logging.info(
            "%s: %d session(s) committed, %d rejected/removed, %d warning(s)",
            result["mode"],
            result["sessions"],
            result["rejected"],
            result["warnings"],
        )
        return 0
    except TheraschedError as e:
        logging.error(str(e))
        return 1
    except Exception:
        logging.error("Unexpected error occurred:")
        traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
