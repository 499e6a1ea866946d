"""Read assessment records from disk and validate them.

Each failure is local to its record: it becomes an ``IngestionError``
in the batch and the remaining records are still loaded.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from concordance.config import Settings
from concordance.ingestion.schemas import Assessment
from concordance.resilience.errors import (
    IngestionError,
    InputUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionBatch:
    """Assessments that passed validation plus per-record failures."""

    assessments: tuple[Assessment, ...] = ()
    errors: tuple[IngestionError, ...] = ()

    @property
    def total(self) -> int:
        return len(self.assessments) + len(self.errors)


def parse_assessment(
    raw: Mapping[str, Any],
    settings: Settings,
    *,
    origin: str,
) -> Assessment:
    """Validate one raw record; raise ``IngestionError`` on any defect."""
    source_hint = str(raw.get("source_id") or origin)
    try:
        assessment = Assessment.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: "
            f"{err['msg']}"
            for err in exc.errors()
        )
        msg = f"Invalid assessment record: {problems}"
        raise IngestionError(
            msg, source_id=source_hint, path=origin
        ) from exc

    out_of_range = assessment.check_score_range(
        settings.score_min, settings.score_max
    )
    if out_of_range:
        msg = "Score out of range: " + "; ".join(out_of_range)
        raise IngestionError(
            msg, source_id=assessment.source_id, path=origin
        )
    return assessment


def ingest_records(
    records: Iterable[tuple[str, Mapping[str, Any]]],
    settings: Settings,
) -> IngestionBatch:
    """Validate ``(origin, record)`` pairs in origin order.

    A repeated ``source_id`` is rejected; the first occurrence in
    origin order wins so the choice does not depend on arrival order.
    """
    ordered = sorted(records, key=lambda pair: pair[0])
    accepted: dict[str, Assessment] = {}
    errors: list[IngestionError] = []

    for origin, raw in ordered:
        try:
            assessment = parse_assessment(
                raw, settings, origin=origin
            )
        except IngestionError as exc:
            logger.warning(
                "event=assessment_excluded origin=%s error=%s",
                origin,
                exc,
            )
            errors.append(exc)
            continue

        if assessment.source_id in accepted:
            duplicate = IngestionError(
                "Duplicate source_id",
                source_id=assessment.source_id,
                path=origin,
            )
            logger.warning(
                "event=assessment_excluded origin=%s error=%s",
                origin,
                duplicate,
            )
            errors.append(duplicate)
            continue
        accepted[assessment.source_id] = assessment

    return IngestionBatch(
        assessments=tuple(
            accepted[k] for k in sorted(accepted)
        ),
        errors=tuple(errors),
    )


def load_assessments(
    inputs_dir: Path, settings: Settings
) -> IngestionBatch:
    """Load every ``*.json`` record in ``inputs_dir``.

    Raises ``InputUnavailableError`` if the directory itself cannot be
    listed. Unparseable files become ingestion errors.
    """
    if not inputs_dir.is_dir():
        msg = "Inputs directory not found"
        raise InputUnavailableError(msg, path=str(inputs_dir))

    try:
        paths = sorted(inputs_dir.glob("*.json"))
    except OSError as exc:
        msg = f"Cannot list inputs directory: {exc}"
        raise InputUnavailableError(
            msg, path=str(inputs_dir)
        ) from exc

    records: list[tuple[str, Mapping[str, Any]]] = []
    unreadable: list[IngestionError] = []
    for path in paths:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            unreadable.append(
                IngestionError(
                    f"Unreadable assessment file: {exc}",
                    source_id=path.stem,
                    path=path.name,
                )
            )
            continue
        if not isinstance(raw, dict):
            unreadable.append(
                IngestionError(
                    "Assessment file must contain a JSON object",
                    source_id=path.stem,
                    path=path.name,
                )
            )
            continue
        records.append((path.name, raw))

    for err in unreadable:
        logger.warning(
            "event=assessment_excluded origin=%s error=%s",
            err.path,
            err,
        )

    batch = ingest_records(records, settings)
    logger.info(
        "event=ingestion_complete files=%d accepted=%d excluded=%d",
        len(paths),
        len(batch.assessments),
        len(batch.errors) + len(unreadable),
    )
    return IngestionBatch(
        assessments=batch.assessments,
        errors=tuple(
            sorted(
                (*unreadable, *batch.errors),
                key=lambda e: (e.path or "", e.source_id or ""),
            )
        ),
    )
