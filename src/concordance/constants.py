"""Shared constants: single source of truth for cross-module values.

StrEnum members are str-compatible, so the JSON report and log lines
carry the plain string values unchanged.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

# ── String Enums ─────────────────────────────────────────


class Severity(StrEnum):
    """Severity of a single finding, lowest first."""

    INFORMATIONAL = "informational"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal position (informational=0 ... critical=3)."""
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.INFORMATIONAL,
    Severity.MINOR,
    Severity.MAJOR,
    Severity.CRITICAL,
)

# Severities that count toward issue yield and false confidence
SEVERE: frozenset[Severity] = frozenset({
    Severity.MAJOR,
    Severity.CRITICAL,
})


class Validity(StrEnum):
    """Outcome of resolving a citation against a snapshot."""

    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class CategoryStatus(StrEnum):
    """Whether a canonical category received any scores."""

    JUDGED = "judged"
    INSUFFICIENT_DATA = "insufficient-data"


class YieldStatus(StrEnum):
    """Cost-effectiveness marker for an assessor."""

    RANKED = "ranked"
    NO_YIELD = "no-yield"


class StageOutcome(StrEnum):
    """Outcome of an individual pipeline stage execution."""

    COMPLETED = "completed"
    FAILED = "failed"


class StageProgress(StrEnum):
    """Progress status for pipeline stage events."""

    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class ExitCode(IntEnum):
    """Process exit codes for the ``concordance run`` command."""

    OK = 0
    CONFIG_ERROR = 1
    NO_VALID_ASSESSMENTS = 2
    INPUT_IO_ERROR = 3


# ── Numeric Defaults ─────────────────────────────────────

WEIGHT_EPSILON = 1e-6
DEFAULT_SCORE_MIN = 0.0
DEFAULT_SCORE_MAX = 5.0

# Contested when scores span more than this share of the range
CONTESTED_SPAN_FRACTION = 0.4
# High confidence when consensus reaches this share of score_max
CONFIDENCE_FRACTION = 0.8

SIMILARITY_THRESHOLD = 0.5
MIN_TOKEN_LENGTH = 2

VALIDATION_MAX_WORKERS = 8
CITATION_TIMEOUT_SECONDS = 5.0

# Cluster ids are "<category>#<n>"; unmapped findings use this bucket
UNCATEGORIZED = "uncategorized"

ERROR_TRUNCATION_CHARS = 200
ID_HEX_LENGTH = 12
REPORT_SCHEMA_VERSION = "1"

# ── Stage Labels (user-facing) ─────────────────────────

STAGE_LABELS: dict[str, str] = {
    "ingestion": "Loading assessments",
    "normalization": "Normalizing rubrics",
    "evidence_validation": "Validating citations",
    "aggregation": "Computing consensus",
    "discrepancy": "Detecting discrepancies",
    "cost_quality": "Ranking cost-effectiveness",
    "synthesis": "Synthesizing report",
}
