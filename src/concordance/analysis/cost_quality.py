"""Rank assessors by cost per verified major/critical finding."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from concordance.analysis.schemas import (
    CostEntry,
    CostQualityResult,
    ValidatedSet,
)
from concordance.constants import SEVERE, Validity, YieldStatus

logger = logging.getLogger(__name__)


def issue_yield(validated: ValidatedSet, source_id: str) -> int:
    """Count an assessor's valid major/critical findings.

    Raw finding count is never used; only evidence-backed severe
    findings count.
    """
    return sum(
        1
        for vf in validated.findings
        if vf.source_id == source_id
        and vf.validity == Validity.VALID
        and vf.finding.severity in SEVERE
    )


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float | None:
    """Pearson correlation; None if undefined (n < 2 or flat input)."""
    if len(xs) != len(ys) or len(xs) < 2:
        return None
    mx = math.fsum(xs) / len(xs)
    my = math.fsum(ys) / len(ys)
    cov = math.fsum((x - mx) * (y - my) for x, y in zip(xs, ys, strict=True))
    vx = math.fsum((x - mx) ** 2 for x in xs)
    vy = math.fsum((y - my) ** 2 for y in ys)
    if vx == 0 or vy == 0:
        return None
    return cov / math.sqrt(vx * vy)


def analyze_cost_quality(validated: ValidatedSet) -> CostQualityResult:
    """Build the cost-effectiveness ranking.

    Ascending by cost per valid issue, ``cost / max(yield, 1)``.
    Assessors with no valid major/critical finding are marked no-yield
    and always rank last, whatever their cost (including zero).
    """
    rows: list[tuple[str, float, int]] = [
        (ca.source_id, ca.cost, issue_yield(validated, ca.source_id))
        for ca in sorted(validated.assessments, key=lambda a: a.source_id)
    ]

    yielding = sorted(
        (r for r in rows if r[2] > 0),
        key=lambda r: (r[1] / r[2], r[0]),
    )
    no_yield = sorted(
        (r for r in rows if r[2] == 0),
        key=lambda r: (r[1], r[0]),
    )

    ranking: list[CostEntry] = []
    for rank, (source_id, cost, count) in enumerate(
        [*yielding, *no_yield], 1
    ):
        ranking.append(
            CostEntry(
                source_id=source_id,
                rank=rank,
                cost=cost,
                issue_yield=count,
                cost_per_valid_issue=cost / max(count, 1),
                status=(
                    YieldStatus.RANKED
                    if count > 0
                    else YieldStatus.NO_YIELD
                ),
            )
        )

    correlation = pearson(
        [r[1] for r in rows], [float(r[2]) for r in rows]
    )
    logger.info(
        "event=cost_quality_complete assessors=%d no_yield=%d "
        "correlation=%s",
        len(ranking),
        len(no_yield),
        "null" if correlation is None else f"{correlation:.4f}",
    )
    return CostQualityResult(
        ranking=tuple(ranking), cost_yield_correlation=correlation
    )
