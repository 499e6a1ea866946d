"""Error taxonomy for structured error handling.

Classifies exceptions by scope to enable:
- Per-item recovery (one assessment or citation fails, the run goes on)
- Run-level aborts with actionable context
- Exit code selection in the CLI
"""

from __future__ import annotations

from enum import Enum

from concordance.constants import ExitCode


class ErrorScope(Enum):
    ITEM = "item"  # one assessment or citation; recorded, run continues
    RUN = "run"  # configuration or invariant defect; abort


class ConcordanceError(Exception):
    """Base class for all engine errors.

    Carries optional context naming the assessor, category or file
    that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        category: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_id = source_id
        self.category = category
        self.path = path

    @property
    def context(self) -> dict[str, str]:
        """Non-empty context fields, for log lines and reports."""
        ctx = {
            "source_id": self.source_id,
            "category": self.category,
            "path": self.path,
        }
        return {k: v for k, v in ctx.items() if v}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        extras = ", ".join(
            f"{k}={v}" for k, v in sorted(self.context.items())
        )
        return f"{self.message} ({extras})"


class ConfigError(ConcordanceError):
    """Bad weight distribution or category mapping."""


class InputUnavailableError(ConcordanceError):
    """A required input (inputs dir, mapping, weights) is unreadable."""


class IngestionError(ConcordanceError):
    """One assessment is malformed and must be excluded."""


class NoValidAssessmentsError(ConcordanceError):
    """Every assessment was excluded; there is nothing to aggregate."""


class CitationResolutionError(ConcordanceError):
    """A citation could not be resolved (missing snapshot, I/O failure)."""


class AggregationInvariantViolation(ConcordanceError):
    """Rubric and canonical assessments disagree on category definitions."""


class SynthesisAborted(ConcordanceError):
    """An upstream stage failed fatally; no report may be emitted."""


_ITEM_ERRORS: tuple[type[ConcordanceError], ...] = (
    IngestionError,
    CitationResolutionError,
)


def classify_error(error: Exception) -> ErrorScope:
    """Return whether an error is local to one item or fatal to the run.

    Unrecognized exceptions are treated as run-fatal.
    """
    if isinstance(error, _ITEM_ERRORS):
        return ErrorScope.ITEM
    return ErrorScope.RUN


def exit_code_for(error: Exception) -> ExitCode:
    """Map a run-fatal error to the CLI exit code.

    An aborted synthesis is classified by the error that caused it.
    """
    if isinstance(error, SynthesisAborted) and isinstance(
        error.__cause__, Exception
    ):
        return exit_code_for(error.__cause__)
    if isinstance(error, NoValidAssessmentsError):
        return ExitCode.NO_VALID_ASSESSMENTS
    if isinstance(error, InputUnavailableError):
        return ExitCode.INPUT_IO_ERROR
    if isinstance(error, (ConfigError, AggregationInvariantViolation)):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, OSError):
        return ExitCode.INPUT_IO_ERROR
    return ExitCode.CONFIG_ERROR
