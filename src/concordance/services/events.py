"""Progress notifications emitted while a consensus run advances."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias

from concordance.constants import STAGE_LABELS, StageProgress


@dataclass(frozen=True)
class StageEvent:
    """One stage entering or leaving the run.

    ``message`` holds the failure text on ``ERROR`` and is empty
    otherwise; ``duration_ms`` is only meaningful once the stage ends.
    """

    name: str
    status: StageProgress
    message: str = ""
    duration_ms: float = 0.0

    @property
    def finished(self) -> bool:
        return self.status in (StageProgress.DONE, StageProgress.ERROR)

    @property
    def label(self) -> str:
        return STAGE_LABELS.get(self.name, self.name)


ProgressCallback: TypeAlias = Callable[[StageEvent], None]
