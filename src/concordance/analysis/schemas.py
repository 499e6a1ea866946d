"""Pydantic models for every derived stage output and the final report.

All models are frozen. Collections are tuples ordered by stable keys
(source id, category key, cluster id) so that serializing the same
inputs always yields the same bytes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from concordance.constants import (
    REPORT_SCHEMA_VERSION,
    CategoryStatus,
    Severity,
    Validity,
    YieldStatus,
)
from concordance.ingestion.schemas import Assessment, Finding


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Normalization ────────────────────────────────────────


class CanonicalAssessment(_Frozen):
    """An assessment re-keyed onto the canonical rubric.

    Categories missing from ``scores`` are abstentions, not zeros.
    ``finding_categories`` is parallel to ``source.findings``; ``None``
    marks a finding whose label did not map.
    """

    source: Assessment
    scores: dict[str, float] = Field(
        default_factory=lambda: dict[str, float]()
    )
    finding_categories: tuple[str | None, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def source_id(self) -> str:
        return self.source.source_id

    @property
    def cost(self) -> float:
        return self.source.cost


# ── Evidence validation ──────────────────────────────────


class CitationCheck(_Frozen):
    """Derived validity of one citation."""

    validity: Validity
    reason: str | None = None


class ValidatedFinding(_Frozen):
    """A finding with its canonical category and citation validity.

    Findings without a citation carry ``Validity.UNKNOWN``.
    """

    source_id: str
    index: int
    finding: Finding
    category: str | None
    validity: Validity
    reason: str | None = None

    @property
    def sort_key(self) -> tuple[str, int]:
        return (self.source_id, self.index)


class ValidatedSet(_Frozen):
    """Canonical assessments plus every finding's validity."""

    assessments: tuple[CanonicalAssessment, ...]
    findings: tuple[ValidatedFinding, ...]
    snapshot_available: bool

    def validity_counts(self) -> dict[str, int]:
        counts = {v.value: 0 for v in Validity}
        for vf in self.findings:
            if vf.finding.citation is not None:
                counts[vf.validity.value] += 1
        return counts


# ── Aggregation ──────────────────────────────────────────


class ContributorScore(_Frozen):
    source_id: str
    score: float
    weight: float = 1.0


class CategoryScore(_Frozen):
    """Aggregator output for one canonical category."""

    key: str
    weight: float
    status: CategoryStatus
    consensus: float | None
    contributors: tuple[ContributorScore, ...] = ()


class AggregateResult(_Frozen):
    categories: tuple[CategoryScore, ...]
    overall_score: float | None


# ── Discrepancy ──────────────────────────────────────────


class CategoryDisagreement(_Frozen):
    key: str
    variance: float | None
    contributor_count: int
    contested: bool


class FindingRef(_Frozen):
    """Pointer to one finding of one assessor."""

    source_id: str
    index: int
    description: str
    severity: Severity
    validity: Validity
    citation: str | None = None


class FindingCluster(_Frozen):
    """Findings merged by category and textual similarity."""

    cluster_id: str
    category: str | None
    description: str
    severity: Severity
    validity: Validity
    corroboration_count: int
    sources: tuple[str, ...]
    members: tuple[FindingRef, ...]


class FalseConfidenceFlag(_Frozen):
    """High consensus co-occurring with a verified severe defect."""

    category: str
    consensus: float
    threshold: float
    cluster_id: str
    finding: FindingRef
    assessors: tuple[str, ...]


class DiscrepancyResult(_Frozen):
    disagreements: tuple[CategoryDisagreement, ...]
    clusters: tuple[FindingCluster, ...]
    false_confidence_flags: tuple[FalseConfidenceFlag, ...]


# ── Cost-quality ─────────────────────────────────────────


class CostEntry(_Frozen):
    source_id: str
    rank: int
    cost: float
    issue_yield: int
    cost_per_valid_issue: float
    status: YieldStatus


class CostQualityResult(_Frozen):
    ranking: tuple[CostEntry, ...]
    cost_yield_correlation: float | None = None


# ── Report ───────────────────────────────────────────────


class CategoryConsensus(_Frozen):
    """Per-category view in the final report."""

    key: str
    weight: float
    status: CategoryStatus
    consensus: float | None
    variance: float | None
    contested: bool
    contributors: tuple[ContributorScore, ...] = ()


class Exclusion(_Frozen):
    """An assessment left out of the run and why."""

    source_id: str
    origin: str | None = None
    stage: str
    reason: str


class Thresholds(_Frozen):
    """Thresholds in force for a run.

    ``contested_variance`` is None when the contested cut-off is derived
    per category from ``contested_span`` and the contributor count.
    """

    score_min: float
    score_max: float
    contested_variance: float | None
    contested_span: float
    high_confidence: float
    similarity: float


class ReportMetadata(_Frozen):
    assessments_total: int
    assessments_used: int
    excluded: tuple[Exclusion, ...] = ()
    warnings: tuple[str, ...] = ()
    snapshot_available: bool
    citation_validity: dict[str, int] = Field(
        default_factory=lambda: dict[str, int]()
    )
    thresholds: Thresholds


class ConsensusReport(_Frozen):
    """Sole output record handed to downstream renderers."""

    schema_version: str = REPORT_SCHEMA_VERSION
    overall_score: float | None
    categories: tuple[CategoryConsensus, ...]
    findings: tuple[FindingCluster, ...]
    false_confidence_flags: tuple[FalseConfidenceFlag, ...]
    cost_ranking: tuple[CostEntry, ...]
    cost_yield_correlation: float | None = None
    metadata: ReportMetadata

    @property
    def complete(self) -> bool:
        """True when every ingested assessment contributed."""
        return (
            self.metadata.assessments_used
            == self.metadata.assessments_total
        )

    @property
    def summary(self) -> str:
        return (
            f"computed from {self.metadata.assessments_used} of "
            f"{self.metadata.assessments_total} assessments"
        )

    def category(self, key: str) -> CategoryConsensus | None:
        for cat in self.categories:
            if cat.key == key:
                return cat
        return None
