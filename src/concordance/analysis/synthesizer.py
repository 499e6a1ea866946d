"""Merge stage outputs into one immutable ConsensusReport.

No scoring happens here; every number comes from an upstream stage.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from concordance.analysis.schemas import (
    AggregateResult,
    CategoryConsensus,
    ConsensusReport,
    CostQualityResult,
    DiscrepancyResult,
    Exclusion,
    ReportMetadata,
    Thresholds,
    ValidatedSet,
)
from concordance.resilience.errors import SynthesisAborted

logger = logging.getLogger(__name__)


def synthesize(
    *,
    aggregate: AggregateResult | None,
    discrepancy: DiscrepancyResult | None,
    cost_quality: CostQualityResult | None,
    validated: ValidatedSet | None,
    thresholds: Thresholds,
    assessments_total: int,
    exclusions: Sequence[Exclusion] = (),
    warnings: Sequence[str] = (),
) -> ConsensusReport:
    """Assemble the report, or abort if any upstream output is missing.

    Raises ``SynthesisAborted`` rather than emitting a partial report.
    """
    missing = [
        name
        for name, value in (
            ("aggregation", aggregate),
            ("discrepancy", discrepancy),
            ("cost_quality", cost_quality),
            ("evidence_validation", validated),
        )
        if value is None
    ]
    if missing:
        msg = f"Upstream stage output missing: {', '.join(missing)}"
        raise SynthesisAborted(msg)
    assert aggregate is not None
    assert discrepancy is not None
    assert cost_quality is not None
    assert validated is not None

    by_key = {d.key: d for d in discrepancy.disagreements}
    agg_keys = [c.key for c in aggregate.categories]
    if sorted(agg_keys) != sorted(by_key):
        msg = (
            "Aggregation and discrepancy outputs cover different "
            "categories"
        )
        raise SynthesisAborted(msg)

    categories = tuple(
        CategoryConsensus(
            key=cat.key,
            weight=cat.weight,
            status=cat.status,
            consensus=cat.consensus,
            variance=by_key[cat.key].variance,
            contested=by_key[cat.key].contested,
            contributors=cat.contributors,
        )
        for cat in aggregate.categories
    )

    all_warnings = {*warnings}
    for ca in validated.assessments:
        all_warnings.update(ca.warnings)

    metadata = ReportMetadata(
        assessments_total=assessments_total,
        assessments_used=len(validated.assessments),
        excluded=tuple(
            sorted(
                exclusions,
                key=lambda e: (e.source_id, e.origin or "", e.stage),
            )
        ),
        warnings=tuple(sorted(all_warnings)),
        snapshot_available=validated.snapshot_available,
        citation_validity=validated.validity_counts(),
        thresholds=thresholds,
    )
    report = ConsensusReport(
        overall_score=aggregate.overall_score,
        categories=categories,
        findings=discrepancy.clusters,
        false_confidence_flags=discrepancy.false_confidence_flags,
        cost_ranking=cost_quality.ranking,
        cost_yield_correlation=cost_quality.cost_yield_correlation,
        metadata=metadata,
    )
    logger.info("event=report_synthesized %s", report.summary)
    return report
