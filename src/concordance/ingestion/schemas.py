"""Pydantic models for raw assessment records.

These are the ingestion boundary: every record is validated here and
frozen afterwards. Records carry no citation validity; it is derived
by the evidence validator, never supplied by an assessor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from concordance.constants import Severity


class Citation(BaseModel):
    """A claimed evidence location inside the artifact snapshot."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str = Field(min_length=1)
    line: int | None = None
    line_end: int | None = None
    quoted_text: str | None = None
    # Unrecognized input keys (e.g. an assessor-supplied validity)
    ignored_keys: tuple[str, ...] = Field(default=(), exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _prepare(cls, data: Any) -> Any:
        """Note unknown keys and expand ``line_range: [start, end]``."""
        if not isinstance(data, dict):
            return data
        known = {"path", "line", "line_end", "quoted_text", "line_range"}
        values = {k: v for k, v in data.items() if k in known}
        values["ignored_keys"] = tuple(
            sorted(str(k) for k in data if k not in known)
        )
        if "line_range" not in values:
            return values
        span = values.pop("line_range")
        if span is None:
            return values
        if not isinstance(span, (list, tuple)) or len(span) != 2:
            msg = "line_range must be a [start, end] pair"
            raise ValueError(msg)
        values.setdefault("line", span[0])
        values.setdefault("line_end", span[1])
        return values

    @property
    def last_line(self) -> int | None:
        if self.line_end is not None:
            return self.line_end
        return self.line

    @property
    def label(self) -> str:
        """``path:line`` or ``path:start-end`` for log lines."""
        if self.line is None:
            return self.path
        if self.line_end is not None and self.line_end != self.line:
            return f"{self.path}:{self.line}-{self.line_end}"
        return f"{self.path}:{self.line}"


class Finding(BaseModel):
    """One discrete observation inside an assessment."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    severity: Severity
    category: str = Field(min_length=1)
    citation: Citation | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            # "info" is a common shorthand across review tools
            return "informational" if lowered == "info" else lowered
        return v


class Assessment(BaseModel):
    """One assessor's full evaluation of one artifact snapshot."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    cost: float = Field(ge=0)
    category_scores: dict[str, float] = Field(
        default_factory=lambda: dict[str, float]()
    )
    findings: tuple[Finding, ...] = ()
    timestamp: datetime | None = None

    @field_validator("source_id")
    @classmethod
    def _strip_source_id(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            msg = "source_id must not be blank"
            raise ValueError(msg)
        return stripped

    def check_score_range(
        self, score_min: float, score_max: float
    ) -> list[str]:
        """Return a problem description per out-of-range score."""
        return [
            f"score {score} for '{label}' outside "
            f"[{score_min}, {score_max}]"
            for label, score in sorted(self.category_scores.items())
            if not score_min <= score <= score_max
        ]
