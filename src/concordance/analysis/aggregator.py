"""Consensus scores per category and overall."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from concordance.analysis.schemas import (
    AggregateResult,
    CanonicalAssessment,
    CategoryScore,
    ContributorScore,
)
from concordance.constants import CategoryStatus
from concordance.resilience.errors import AggregationInvariantViolation
from concordance.rubric.schemas import Rubric

logger = logging.getLogger(__name__)


def check_rubric_invariants(
    rubric: Rubric, assessments: Sequence[CanonicalAssessment]
) -> None:
    """Fail loudly on category definitions that do not line up.

    A weighted category without a canonical definition, or a canonical
    score outside the rubric, is a configuration defect.
    """
    for cat in rubric.categories:
        if not cat.defined:
            msg = (
                f"Category '{cat.key}' has weight {cat.weight} "
                "but no canonical definition in the mapping"
            )
            raise AggregationInvariantViolation(msg, category=cat.key)

    known = set(rubric.keys)
    for ca in assessments:
        stray = sorted(set(ca.scores) - known)
        if stray:
            msg = f"Canonical score for undefined category '{stray[0]}'"
            raise AggregationInvariantViolation(
                msg, source_id=ca.source_id, category=stray[0]
            )


def contributors_for(
    rubric: Rubric,
    key: str,
    assessments: Sequence[CanonicalAssessment],
) -> tuple[ContributorScore, ...]:
    """Non-abstaining assessors for a category, sorted by source_id."""
    return tuple(
        ContributorScore(
            source_id=ca.source_id,
            score=ca.scores[key],
            weight=rubric.assessor_weight(ca.source_id),
        )
        for ca in sorted(assessments, key=lambda a: a.source_id)
        if key in ca.scores
    )


def weighted_mean(contributors: Sequence[ContributorScore]) -> float | None:
    """Weighted arithmetic mean; None with no contributors.

    ``math.fsum`` is exactly rounded, so the result does not depend
    on summation order.
    """
    total_weight = math.fsum(c.weight for c in contributors)
    if not contributors or total_weight <= 0:
        return None
    return math.fsum(c.score * c.weight for c in contributors) / total_weight


def aggregate(
    rubric: Rubric, assessments: Sequence[CanonicalAssessment]
) -> AggregateResult:
    """Compute per-category and overall consensus.

    Abstainers are excluded from both numerator and denominator. A
    category nobody scored is insufficient-data with a null consensus.
    The overall score re-normalizes weights over judged categories.
    """
    check_rubric_invariants(rubric, assessments)

    categories: list[CategoryScore] = []
    for cat in rubric.categories:
        contributors = contributors_for(rubric, cat.key, assessments)
        consensus = weighted_mean(contributors)
        status = (
            CategoryStatus.JUDGED
            if consensus is not None
            else CategoryStatus.INSUFFICIENT_DATA
        )
        if consensus is None:
            logger.info(
                "event=category_insufficient_data category=%s",
                cat.key,
            )
        categories.append(
            CategoryScore(
                key=cat.key,
                weight=cat.weight,
                status=status,
                consensus=consensus,
                contributors=contributors,
            )
        )

    overall = _overall_score(categories)
    logger.info(
        "event=aggregation_complete categories=%d judged=%d overall=%s",
        len(categories),
        sum(1 for c in categories if c.consensus is not None),
        "null" if overall is None else f"{overall:.4f}",
    )
    return AggregateResult(
        categories=tuple(categories), overall_score=overall
    )


def _overall_score(categories: Sequence[CategoryScore]) -> float | None:
    judged = [c for c in categories if c.consensus is not None]
    weight_total = math.fsum(c.weight for c in judged)
    if not judged or weight_total <= 0:
        return None
    return (
        math.fsum(
            c.consensus * c.weight  # type: ignore[operator]
            for c in judged
        )
        / weight_total
    )
