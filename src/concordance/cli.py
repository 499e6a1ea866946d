"""CLI entry point: ``concordance run``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from concordance import __version__
from concordance.analysis.snapshot import open_snapshot
from concordance.config import Settings
from concordance.constants import ExitCode, StageProgress
from concordance.export.json_export import export_report_json, write_report
from concordance.ingestion.loader import load_assessments
from concordance.logger import RunLogger
from concordance.logging_config import setup_logging
from concordance.resilience.errors import (
    ConcordanceError,
    exit_code_for,
)
from concordance.rubric.loader import load_rubric
from concordance.services.consensus_service import run_consensus
from concordance.services.events import StageEvent

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"concordance {__version__}")
        return

    if args.command == "run":
        code = _run_command(args)
        if code != ExitCode.OK:
            sys.exit(int(code))
    else:
        parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="concordance",
        description=(
            "Reconcile independent quality assessments into one "
            "consensus report with verified evidence."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser(
        "run",
        help="Aggregate a directory of assessments",
    )
    run.add_argument(
        "--inputs",
        "-i",
        required=True,
        help="Directory of assessment JSON files",
    )
    run.add_argument(
        "--mapping",
        "-m",
        required=True,
        help="Category mapping file (JSON or YAML)",
    )
    run.add_argument(
        "--weights",
        "-w",
        required=True,
        help="Category weights file (JSON or YAML)",
    )
    run.add_argument(
        "--snapshot",
        "-s",
        default=None,
        help=(
            "Directory or archive of the artifact under review "
            "(default: none, all citations unknown)"
        ),
    )
    run.add_argument(
        "--contested-threshold",
        type=float,
        default=None,
        help=(
            "Variance above which a category is contested "
            "(default: derived from the score range)"
        ),
    )
    run.add_argument(
        "--confidence-threshold",
        type=float,
        default=None,
        help=(
            "Consensus score treated as high confidence "
            "(default: 80%% of the maximum score)"
        ),
    )
    run.add_argument(
        "--output",
        "-o",
        default=None,
        help="Write the report here instead of stdout",
    )
    run.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, float] = {}
    if args.contested_threshold is not None:
        overrides["contested_threshold"] = args.contested_threshold
    if args.confidence_threshold is not None:
        overrides["confidence_threshold"] = args.confidence_threshold
    return Settings(**overrides)  # type: ignore[arg-type]


def _run_command(args: argparse.Namespace) -> ExitCode:
    """Execute the run command and return its exit code."""
    try:
        settings = _settings_from_args(args)
    except ValidationError as exc:
        print(f"Error: invalid settings: {exc}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    setup_logging(
        "DEBUG" if args.verbose else settings.log_level, force=True
    )

    def on_progress(event: StageEvent) -> None:
        if not args.verbose:
            return
        if not event.finished:
            print(f"  {event.label}...", file=sys.stderr)
            return
        mark = "ok" if event.status == StageProgress.DONE else "FAILED"
        print(
            f"  [{mark}] {event.label} ({event.duration_ms:.0f}ms)",
            file=sys.stderr,
        )

    run_logger: RunLogger | None = None
    try:
        rubric = load_rubric(Path(args.mapping), Path(args.weights))
        batch = load_assessments(Path(args.inputs), settings)
        snapshot = open_snapshot(
            Path(args.snapshot) if args.snapshot else None
        )
        run_logger = RunLogger(settings.log_dir, settings.log_level)
        result = asyncio.run(
            run_consensus(
                batch,
                rubric,
                settings=settings,
                snapshot=snapshot,
                on_progress=on_progress,
                run_logger=run_logger,
            )
        )
    except (ConcordanceError, OSError) as exc:
        code = exit_code_for(exc)
        logger.error("event=run_failed exit_code=%d error=%s", code, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return code
    finally:
        if run_logger is not None:
            run_logger.close()

    report = result.report
    if report is None:
        print("Error: no report produced", file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    if args.output:
        try:
            write_report(report, Path(args.output))
        except OSError as exc:
            logger.error(
                "event=report_write_failed path=%s error=%s",
                args.output,
                exc,
            )
            print(f"Error: cannot write report: {exc}", file=sys.stderr)
            return ExitCode.INPUT_IO_ERROR
        print(f"Report: {args.output}", file=sys.stderr)
    else:
        print(export_report_json(report))

    print(
        f"Done! Report {report.summary} "
        f"({len(report.metadata.warnings)} warnings, "
        f"{len(report.false_confidence_flags)} false-confidence flags)",
        file=sys.stderr,
    )
    return ExitCode.OK


if __name__ == "__main__":
    main()
