"""Environment-based configuration for a consensus run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Self

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

from concordance.constants import (
    CITATION_TIMEOUT_SECONDS,
    CONFIDENCE_FRACTION,
    CONTESTED_SPAN_FRACTION,
    DEFAULT_SCORE_MAX,
    DEFAULT_SCORE_MIN,
    SIMILARITY_THRESHOLD,
    VALIDATION_MAX_WORKERS,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and CONCORDANCE_* environment variables."""

    # Scoring scale
    score_min: float = DEFAULT_SCORE_MIN
    score_max: float = DEFAULT_SCORE_MAX

    # Discrepancy thresholds (None = derive from the scoring scale)
    contested_threshold: float | None = None
    confidence_threshold: float | None = None
    similarity_threshold: float = SIMILARITY_THRESHOLD

    # Evidence validation
    validation_max_workers: int = VALIDATION_MAX_WORKERS
    citation_timeout_seconds: float = CITATION_TIMEOUT_SECONDS

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @field_validator("validation_max_workers")
    @classmethod
    def _validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(
                "validation_max_workers must be at least 1"
            )
        return v

    @field_validator("citation_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(
                "citation_timeout_seconds must be positive"
            )
        return v

    @field_validator("similarity_threshold")
    @classmethod
    def _validate_similarity(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError(
                "similarity_threshold must be in (0, 1]"
            )
        return v

    @model_validator(mode="after")
    def _validate_scale(self) -> Self:
        if self.score_max <= self.score_min:
            raise ValueError("score_max must exceed score_min")
        if self.contested_threshold is not None and (
            self.contested_threshold < 0
        ):
            raise ValueError("contested_threshold must be >= 0")
        if self.confidence_threshold is not None and not (
            self.score_min
            <= self.confidence_threshold
            <= self.score_max
        ):
            logger.warning(
                "event=confidence_threshold_outside_scale "
                "threshold=%s min=%s max=%s",
                self.confidence_threshold,
                self.score_min,
                self.score_max,
            )
        return self

    @property
    def score_range(self) -> float:
        return self.score_max - self.score_min

    @property
    def contested_span(self) -> float:
        """Score spread that counts as disagreement on this scale."""
        return CONTESTED_SPAN_FRACTION * self.score_range

    @property
    def effective_confidence_threshold(self) -> float:
        """Consensus score at or above which a category is 'high'."""
        if self.confidence_threshold is not None:
            return self.confidence_threshold
        return CONFIDENCE_FRACTION * self.score_max

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "CONCORDANCE_",
        "extra": "ignore",
    }
