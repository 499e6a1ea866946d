"""Per-run audit trail written as JSON lines.

Every record carries ``type``, ``timestamp`` and ``run_id`` so a log
directory shared by many runs can be filtered back into one.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from concordance.constants import ERROR_TRUNCATION_CHARS

__all__ = ["RUN_LOGGER_NAME", "RUN_LOG_FILENAME", "RunLogger"]

RUN_LOGGER_NAME = "concordance.run"
RUN_LOG_FILENAME = "run.log"


def _clip(text: str) -> str:
    return text[:ERROR_TRUNCATION_CHARS]


class RunLogger:
    """Appends stage, exclusion and error records to ``run.log``."""

    def __init__(self, log_dir: Path, level: str = "INFO") -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        self._path = log_dir / RUN_LOG_FILENAME
        self._logger = logging.getLogger(RUN_LOGGER_NAME)
        self._logger.setLevel(level.upper())
        # Records go to the file only, never the console
        self._logger.propagate = False
        self._attach_file_handler()

    def _attach_file_handler(self) -> None:
        target = self._path.absolute()
        for existing in self._logger.handlers:
            if (
                isinstance(existing, logging.FileHandler)
                and Path(existing.baseFilename) == target
            ):
                return
        handler = logging.FileHandler(target, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)

    @property
    def path(self) -> Path:
        return self._path

    def _emit(
        self, level: int, kind: str, run_id: str, **fields: Any
    ) -> None:
        record = {
            "type": kind,
            "timestamp": datetime.now(UTC).isoformat(),
            "run_id": run_id,
            **fields,
        }
        self._logger.log(level, json.dumps(record, sort_keys=True))

    def log_stage(
        self,
        run_id: str,
        stage_name: str,
        status: str,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        self._emit(
            logging.INFO,
            "stage",
            run_id,
            stage=stage_name,
            status=status,
            duration_ms=round(duration_ms, 3),
            error=_clip(error) if error else None,
        )

    def log_exclusion(
        self, run_id: str, source_id: str, stage: str, reason: str
    ) -> None:
        """Record an assessment dropped before aggregation."""
        self._emit(
            logging.WARNING,
            "exclusion",
            run_id,
            source_id=source_id,
            stage=stage,
            reason=_clip(reason),
        )

    def log_error(self, run_id: str, component: str, error: str) -> None:
        self._emit(
            logging.ERROR,
            "error",
            run_id,
            component=component,
            error=_clip(error),
        )

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
