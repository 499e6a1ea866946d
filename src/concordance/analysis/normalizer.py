"""Map assessor-local category labels onto the canonical rubric."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from concordance.analysis.schemas import CanonicalAssessment
from concordance.ingestion.schemas import Assessment
from concordance.resilience.errors import IngestionError
from concordance.rubric.schemas import Rubric

logger = logging.getLogger(__name__)


def normalize_assessment(
    rubric: Rubric, assessment: Assessment
) -> CanonicalAssessment:
    """Re-key one assessment onto canonical categories.

    Pure function over (rubric, assessment). Rules:
    - many local labels may map to one key; their scores are averaged
    - an unmapped label is dropped with a warning
    - a label claimed by two canonical keys raises IngestionError
    - canonical categories the assessor never rated stay absent
    - citation keys the schema does not know are reported, not used
    """
    source_id = assessment.source_id
    warnings: list[str] = []
    grouped: dict[str, list[tuple[str, float]]] = {}

    for label in sorted(assessment.category_scores):
        key = _resolve(rubric, label, source_id, warnings, "score")
        if key is None:
            continue
        grouped.setdefault(key, []).append(
            (label, assessment.category_scores[label])
        )

    scores: dict[str, float] = {}
    for key in sorted(grouped):
        entries = grouped[key]
        if len(entries) > 1:
            labels = ", ".join(f"'{lbl}'" for lbl, _ in entries)
            warnings.append(
                f"{source_id}: labels {labels} merged into "
                f"'{key}' (mean score)"
            )
        scores[key] = math.fsum(s for _, s in entries) / len(entries)

    finding_categories = tuple(
        _resolve(rubric, f.category, source_id, warnings, "finding")
        for f in assessment.findings
    )
    for idx, finding in enumerate(assessment.findings):
        citation = finding.citation
        if citation is not None and citation.ignored_keys:
            warnings.append(
                f"{source_id}: finding {idx} citation keys ignored: "
                f"{', '.join(citation.ignored_keys)}"
            )

    return CanonicalAssessment(
        source=assessment,
        scores=scores,
        finding_categories=finding_categories,
        warnings=tuple(dict.fromkeys(warnings)),
    )


def normalize_all(
    rubric: Rubric, assessments: Iterable[Assessment]
) -> tuple[tuple[CanonicalAssessment, ...], tuple[IngestionError, ...]]:
    """Normalize each assessment; ambiguity excludes only that one."""
    canonical: list[CanonicalAssessment] = []
    errors: list[IngestionError] = []
    for assessment in sorted(assessments, key=lambda a: a.source_id):
        try:
            canonical.append(normalize_assessment(rubric, assessment))
        except IngestionError as exc:
            logger.warning(
                "event=normalization_failed source_id=%s error=%s",
                assessment.source_id,
                exc,
            )
            errors.append(exc)
    return tuple(canonical), tuple(errors)


def _resolve(
    rubric: Rubric,
    label: str,
    source_id: str,
    warnings: list[str],
    kind: str,
) -> str | None:
    keys = rubric.resolve_label(label, source_id)
    if len(keys) > 1:
        msg = (
            f"Ambiguous {kind} label '{label}' maps to "
            f"{', '.join(sorted(keys))}"
        )
        raise IngestionError(msg, source_id=source_id, category=label)
    if not keys:
        warnings.append(
            f"{source_id}: unmapped {kind} label '{label}' dropped"
            if kind == "score"
            else f"{source_id}: unmapped finding label '{label}' "
            "left uncategorized"
        )
        logger.debug(
            "event=label_unmapped source_id=%s kind=%s label=%s",
            source_id,
            kind,
            label,
        )
        return None
    return next(iter(keys))
