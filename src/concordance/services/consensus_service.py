"""Pipeline orchestration: runs one consensus run end to end."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import NoReturn, TypeVar

from concordance.analysis.aggregator import aggregate
from concordance.analysis.cost_quality import analyze_cost_quality
from concordance.analysis.discrepancy import detect_discrepancies
from concordance.analysis.evidence import validate_assessments
from concordance.analysis.normalizer import normalize_all
from concordance.analysis.pipeline import ParallelGroup, PipelineStage
from concordance.analysis.schemas import (
    AggregateResult,
    ConsensusReport,
    DiscrepancyResult,
    Exclusion,
    Thresholds,
    ValidatedSet,
)
from concordance.analysis.snapshot import Snapshot
from concordance.analysis.synthesizer import synthesize
from concordance.config import Settings
from concordance.constants import ID_HEX_LENGTH, StageProgress
from concordance.ingestion.loader import IngestionBatch
from concordance.logger import RunLogger
from concordance.resilience.errors import (
    IngestionError,
    NoValidAssessmentsError,
    SynthesisAborted,
    classify_error,
)
from concordance.rubric.schemas import Rubric
from concordance.services.events import ProgressCallback, StageEvent

logger = logging.getLogger(__name__)


@dataclass
class StageStatus:
    """Status of a pipeline stage."""

    name: str
    ok: bool
    duration_ms: float = 0.0
    error: str | None = None
    exception: Exception | None = field(default=None, repr=False)


@dataclass
class ConsensusRun:
    """Full result of a consensus run: the report plus stage timings.

    Timings live here, never in the report, so the report stays
    byte-identical across re-runs.
    """

    run_id: str
    report: ConsensusReport | None = None
    stages: list[StageStatus] = field(
        default_factory=lambda: list[StageStatus]()
    )
    total_duration_ms: float = 0.0


@dataclass
class RunContext:
    """Per-run collaborators shared by the phase functions."""

    run_id: str
    settings: Settings
    result: ConsensusRun
    on_progress: ProgressCallback | None = None
    run_logger: RunLogger | None = None

    def report(self, event: StageEvent) -> None:
        if self.on_progress is not None:
            self.on_progress(event)

    def log_failure(self, stage: str, exc: Exception) -> None:
        """Send a stage failure to the run log with its scope."""
        scope = classify_error(exc)
        logger.error(
            "event=stage_error run_id=%s stage=%s scope=%s error=%s",
            self.run_id,
            stage,
            scope.value,
            exc,
            exc_info=exc,
        )
        if self.run_logger is not None:
            self.run_logger.log_error(self.run_id, stage, str(exc))

    def record(self, status: StageStatus) -> None:
        self.result.stages.append(status)
        if self.run_logger is not None:
            self.run_logger.log_stage(
                self.run_id,
                status.name,
                StageProgress.DONE if status.ok else StageProgress.ERROR,
                status.duration_ms,
                status.error,
            )
        self.report(
            StageEvent(
                name=status.name,
                status=(
                    StageProgress.DONE
                    if status.ok
                    else StageProgress.ERROR
                ),
                message=status.error or "",
                duration_ms=status.duration_ms,
            )
        )


def thresholds_for(settings: Settings) -> Thresholds:
    return Thresholds(
        score_min=settings.score_min,
        score_max=settings.score_max,
        contested_variance=settings.contested_threshold,
        contested_span=settings.contested_span,
        high_confidence=settings.effective_confidence_threshold,
        similarity=settings.similarity_threshold,
    )


async def run_consensus(
    batch: IngestionBatch,
    rubric: Rubric,
    settings: Settings | None = None,
    snapshot: Snapshot | None = None,
    on_progress: ProgressCallback | None = None,
    run_logger: RunLogger | None = None,
    run_id: str | None = None,
) -> ConsensusRun:
    """Run the full consensus pipeline over an ingested batch.

    Phases:
      1. Normalization onto the canonical rubric
      2. Evidence validation against the snapshot
      3+4. Aggregation and discrepancy detection (concurrent)
      5. Cost-quality analysis
      6. Synthesis

    Raises ``NoValidAssessmentsError`` when nothing survives
    ingestion and normalization, and ``SynthesisAborted`` (chained
    to the cause) when a stage fails fatally.
    """
    cfg = settings or Settings()
    rid = run_id or uuid.uuid4().hex[:ID_HEX_LENGTH]
    result = ConsensusRun(run_id=rid)
    ctx = RunContext(
        run_id=rid,
        settings=cfg,
        result=result,
        on_progress=on_progress,
        run_logger=run_logger,
    )
    t0 = time.monotonic()

    exclusions = [
        _exclusion(err, "ingestion") for err in batch.errors
    ]

    normalized = _run_stage_sync(
        ctx,
        "normalization",
        lambda: normalize_all(rubric, batch.assessments),
    )
    if normalized is None:
        _abort(ctx)
    canonical, norm_errors = normalized
    exclusions.extend(
        _exclusion(err, "normalization") for err in norm_errors
    )
    if run_logger is not None:
        for excl in exclusions:
            run_logger.log_exclusion(
                rid, excl.source_id, excl.stage, excl.reason
            )

    if not canonical:
        msg = (
            f"No valid assessments: all {batch.total} "
            "were excluded"
        )
        raise NoValidAssessmentsError(msg)

    validated = await _run_stage(
        ctx,
        "evidence_validation",
        lambda: validate_assessments(
            canonical,
            snapshot,
            max_workers=cfg.validation_max_workers,
            timeout=cfg.citation_timeout_seconds,
        ),
    )
    if validated is None:
        _abort(ctx)

    aggregate_result, discrepancy_result = await _phase_consensus(
        ctx, rubric, validated
    )

    cost_result = _run_stage_sync(
        ctx,
        "cost_quality",
        lambda: analyze_cost_quality(validated),
    )
    if cost_result is None:
        _abort(ctx)

    report = _run_stage_sync(
        ctx,
        "synthesis",
        lambda: synthesize(
            aggregate=aggregate_result,
            discrepancy=discrepancy_result,
            cost_quality=cost_result,
            validated=validated,
            thresholds=thresholds_for(cfg),
            assessments_total=batch.total,
            exclusions=exclusions,
            warnings=_run_warnings(snapshot, validated),
        ),
    )
    if report is None:
        _abort(ctx)

    result.report = report
    result.total_duration_ms = _elapsed(t0)
    logger.info(
        "event=run_complete run_id=%s %s duration_ms=%.0f",
        rid,
        report.summary,
        result.total_duration_ms,
    )
    return result


async def _phase_consensus(
    ctx: RunContext,
    rubric: Rubric,
    validated: ValidatedSet,
) -> tuple[AggregateResult, DiscrepancyResult]:
    """Phases 3+4: aggregation and discrepancy run side by side.

    Both consume only the validated set; neither reads the other.
    """
    cfg = ctx.settings

    def _aggregate(vs: ValidatedSet) -> AggregateResult:
        return aggregate(rubric, vs.assessments)

    def _discrepancy(vs: ValidatedSet) -> DiscrepancyResult:
        return detect_discrepancies(
            rubric,
            vs,
            contested_threshold=cfg.contested_threshold,
            contested_span=cfg.contested_span,
            confidence_threshold=cfg.effective_confidence_threshold,
            similarity_threshold=cfg.similarity_threshold,
        )

    for name in ("aggregation", "discrepancy"):
        ctx.report(
            StageEvent(name=name, status=StageProgress.RUNNING)
        )
    group: ParallelGroup[ValidatedSet] = ParallelGroup(
        name="consensus",
        stages=(
            PipelineStage(name="aggregation", execute=_aggregate),
            PipelineStage(name="discrepancy", execute=_discrepancy),
        ),
    )
    results = await group.execute(validated)

    failure: Exception | None = None
    for stage_result in results:
        ctx.record(
            StageStatus(
                name=stage_result.stage_name,
                ok=stage_result.ok,
                duration_ms=stage_result.duration_ms,
                error=(
                    str(stage_result.error)
                    if stage_result.error
                    else None
                ),
            )
        )
        if stage_result.error is not None:
            ctx.log_failure(stage_result.stage_name, stage_result.error)
            if failure is None:
                failure = stage_result.error

    if failure is not None:
        msg = f"Consensus stage failed: {failure}"
        raise SynthesisAborted(msg) from failure

    aggregate_out, discrepancy_out = (r.output for r in results)
    return aggregate_out, discrepancy_out


def _abort(ctx: RunContext) -> NoReturn:
    """Raise SynthesisAborted chained to the last failed stage's error."""
    failed = next(
        (s for s in reversed(ctx.result.stages) if not s.ok), None
    )
    stage = failed.name if failed else "unknown"
    msg = f"Stage '{stage}' failed: {failed.error if failed else None}"
    raise SynthesisAborted(msg) from (failed.exception if failed else None)


def _exclusion(err: IngestionError, stage: str) -> Exclusion:
    return Exclusion(
        source_id=err.source_id or err.path or "<unknown>",
        origin=err.path,
        stage=stage,
        reason=err.message,
    )


def _run_warnings(
    snapshot: Snapshot | None, validated: ValidatedSet
) -> list[str]:
    if snapshot is None:
        return ["No snapshot supplied: all citations are unknown"]
    if not validated.snapshot_available:
        return [
            "Snapshot unavailable during validation: unresolved "
            "citations degraded to unknown"
        ]
    return []


# -- Generic stage runners --

T = TypeVar("T")


async def _run_stage(
    ctx: RunContext,
    name: str,
    fn: Callable[[], Awaitable[T]],
) -> T | None:
    """Run an async stage with error capture."""
    ctx.report(StageEvent(name=name, status=StageProgress.RUNNING))
    t0 = time.monotonic()
    try:
        out = await fn()
    except Exception as exc:
        ctx.log_failure(name, exc)
        ctx.record(
            StageStatus(
                name=name,
                ok=False,
                duration_ms=_elapsed(t0),
                error=str(exc),
                exception=exc,
            )
        )
        return None
    ctx.record(
        StageStatus(name=name, ok=True, duration_ms=_elapsed(t0))
    )
    return out


def _run_stage_sync(
    ctx: RunContext,
    name: str,
    fn: Callable[[], T],
) -> T | None:
    """Run a sync stage with error capture."""
    ctx.report(StageEvent(name=name, status=StageProgress.RUNNING))
    t0 = time.monotonic()
    try:
        out = fn()
    except Exception as exc:
        ctx.log_failure(name, exc)
        ctx.record(
            StageStatus(
                name=name,
                ok=False,
                duration_ms=_elapsed(t0),
                error=str(exc),
                exception=exc,
            )
        )
        return None
    ctx.record(
        StageStatus(name=name, ok=True, duration_ms=_elapsed(t0))
    )
    return out


def _elapsed(t0: float) -> float:
    return (time.monotonic() - t0) * 1000
