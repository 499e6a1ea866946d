"""Disagreement signals: variance, contested categories, false confidence.

Also clusters near-duplicate findings so corroboration can be counted.
Everything here consumes the validated set and is order-independent:
inputs are sorted on stable keys before any comparison.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence

from concordance.analysis.aggregator import contributors_for, weighted_mean
from concordance.analysis.schemas import (
    CategoryDisagreement,
    ContributorScore,
    DiscrepancyResult,
    FalseConfidenceFlag,
    FindingCluster,
    FindingRef,
    ValidatedFinding,
    ValidatedSet,
)
from concordance.constants import (
    MIN_TOKEN_LENGTH,
    SEVERE,
    SIMILARITY_THRESHOLD,
    UNCATEGORIZED,
    Severity,
    Validity,
)
from concordance.rubric.schemas import Rubric

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")


def _tokenize(text: str) -> frozenset[str]:
    """Lowercase word tokens; tokens under 2 chars are dropped."""
    return frozenset(
        t.lower()
        for t in _TOKEN_RE.findall(text)
        if len(t) >= MIN_TOKEN_LENGTH
    )


def description_similarity(a: str, b: str) -> float:
    """Jaccard similarity of two descriptions' token sets.

    Symmetric by construction. Identical texts (ignoring case and
    whitespace) are 1.0 even when they have no usable tokens.
    """
    if " ".join(a.lower().split()) == " ".join(b.lower().split()):
        return 1.0
    ta, tb = _tokenize(a), _tokenize(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def sample_variance(scores: Sequence[float]) -> float | None:
    """Unbiased (n-1) variance; None with fewer than two scores."""
    if len(scores) < 2:
        return None
    mean = math.fsum(scores) / len(scores)
    return math.fsum((s - mean) ** 2 for s in scores) / (len(scores) - 1)


def span_variance(span: float, count: int) -> float:
    """Smallest sample variance of ``count`` scores spanning ``span``.

    Reached with one score at each end and the rest at the midpoint.
    """
    if count < 2:
        return math.inf
    return span * span / (2 * (count - 1))


def category_disagreement(
    key: str,
    contributors: Sequence[ContributorScore],
    threshold: float | None,
    *,
    span: float = 0.0,
) -> CategoryDisagreement:
    """Variance and contested flag for one category.

    With no explicit ``threshold`` a category is contested once its
    variance exceeds the least any equally many scores spanning
    ``span`` can have. A lone contributor has nothing to disagree
    with and is never contested.
    """
    scores = sorted(c.score for c in contributors)
    variance = sample_variance(scores)
    if threshold is None:
        threshold = span_variance(span, len(scores))
    contested = (
        len(scores) >= 2
        and variance is not None
        and variance > threshold
    )
    return CategoryDisagreement(
        key=key,
        variance=variance,
        contributor_count=len(scores),
        contested=contested,
    )


# ── Clustering ───────────────────────────────────────────


class _UnionFind:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Smaller index is root; keeps roots stable
            lo, hi = sorted((ra, rb))
            self._parent[hi] = lo


def _finding_ref(vf: ValidatedFinding) -> FindingRef:
    citation = vf.finding.citation
    return FindingRef(
        source_id=vf.source_id,
        index=vf.index,
        description=vf.finding.description,
        severity=vf.finding.severity,
        validity=vf.validity,
        citation=citation.label if citation is not None else None,
    )


def _merged_verdict(
    members: Sequence[ValidatedFinding],
) -> tuple[Validity, Severity]:
    """Cluster validity and the severity of the members backing it.

    Valid beats unknown beats invalid. Severity comes only from members
    with the winning validity, so an invalid critical claim never lends
    its severity to a valid minor one.
    """
    for validity in (Validity.VALID, Validity.UNKNOWN, Validity.INVALID):
        backing = [m for m in members if m.validity == validity]
        if backing:
            return validity, max(
                (m.finding.severity for m in backing),
                key=lambda s: s.rank,
            )
    msg = "cannot merge an empty cluster"
    raise ValueError(msg)


def cluster_findings(
    findings: Sequence[ValidatedFinding],
    similarity_threshold: float = SIMILARITY_THRESHOLD,
) -> tuple[FindingCluster, ...]:
    """Group findings per category by description similarity.

    Clusters are connected components of the similarity graph, so
    membership is symmetric and transitive regardless of input order.
    """
    by_category: dict[str | None, list[ValidatedFinding]] = {}
    for vf in findings:
        by_category.setdefault(vf.category, []).append(vf)

    clusters: list[FindingCluster] = []
    # None (uncategorized) sorts last
    for category in sorted(
        by_category, key=lambda c: (c is None, c or "")
    ):
        members = sorted(by_category[category], key=lambda f: f.sort_key)
        uf = _UnionFind(len(members))
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                sim = description_similarity(
                    members[i].finding.description,
                    members[j].finding.description,
                )
                if sim >= similarity_threshold:
                    uf.union(i, j)

        groups: dict[int, list[ValidatedFinding]] = {}
        for i, vf in enumerate(members):
            groups.setdefault(uf.find(i), []).append(vf)

        prefix = category or UNCATEGORIZED
        for n, root in enumerate(sorted(groups), 1):
            group = groups[root]
            lead = group[0]
            sources = tuple(sorted({m.source_id for m in group}))
            validity, severity = _merged_verdict(group)
            clusters.append(
                FindingCluster(
                    cluster_id=f"{prefix}#{n}",
                    category=category,
                    description=lead.finding.description,
                    severity=severity,
                    validity=validity,
                    corroboration_count=len(sources),
                    sources=sources,
                    members=tuple(_finding_ref(m) for m in group),
                )
            )
    return tuple(clusters)


# ── False confidence ─────────────────────────────────────


def _trigger(cluster: FindingCluster) -> FindingRef | None:
    """First member that is verifiably valid and major/critical."""
    for ref in cluster.members:
        if ref.validity == Validity.VALID and ref.severity in SEVERE:
            return ref
    return None


def detect_false_confidence(
    rubric: Rubric,
    validated: ValidatedSet,
    clusters: Sequence[FindingCluster],
    threshold: float,
) -> tuple[FalseConfidenceFlag, ...]:
    """Flag high-consensus categories hiding a verified severe finding.

    Only findings with validity 'valid' can trigger a flag; the named
    assessors are those scoring the category at or above the threshold.
    """
    flags: list[FalseConfidenceFlag] = []
    for cat in rubric.categories:
        contributors = contributors_for(
            rubric, cat.key, validated.assessments
        )
        consensus = weighted_mean(contributors)
        if consensus is None or consensus < threshold:
            continue
        inflating = tuple(
            c.source_id for c in contributors if c.score >= threshold
        )
        for cluster in clusters:
            if cluster.category != cat.key:
                continue
            trigger = _trigger(cluster)
            if trigger is None:
                continue
            logger.warning(
                "event=false_confidence category=%s consensus=%.3f "
                "finding=%s:%d assessors=%s",
                cat.key,
                consensus,
                trigger.source_id,
                trigger.index,
                ",".join(inflating),
            )
            flags.append(
                FalseConfidenceFlag(
                    category=cat.key,
                    consensus=consensus,
                    threshold=threshold,
                    cluster_id=cluster.cluster_id,
                    finding=trigger,
                    assessors=inflating,
                )
            )
    return tuple(flags)


def detect_discrepancies(
    rubric: Rubric,
    validated: ValidatedSet,
    *,
    contested_threshold: float | None,
    confidence_threshold: float,
    contested_span: float = 0.0,
    similarity_threshold: float = SIMILARITY_THRESHOLD,
) -> DiscrepancyResult:
    """Run variance, clustering and false-confidence detection."""
    disagreements = tuple(
        category_disagreement(
            cat.key,
            contributors_for(rubric, cat.key, validated.assessments),
            contested_threshold,
            span=contested_span,
        )
        for cat in rubric.categories
    )
    clusters = cluster_findings(
        validated.findings, similarity_threshold
    )
    flags = detect_false_confidence(
        rubric, validated, clusters, confidence_threshold
    )
    logger.info(
        "event=discrepancy_complete contested=%d clusters=%d flags=%d",
        sum(1 for d in disagreements if d.contested),
        len(clusters),
        len(flags),
    )
    return DiscrepancyResult(
        disagreements=disagreements,
        clusters=clusters,
        false_confidence_flags=flags,
    )
