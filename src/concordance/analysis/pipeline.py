"""Concurrent fan-out of pure analysis stages.

A stage is a plain synchronous function over one shared input. Stages
in a group are dispatched to worker threads together; a stage that
raises is captured on its result instead of cancelling its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from concordance.constants import StageOutcome

logger = logging.getLogger(__name__)

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")


@dataclass(frozen=True)
class StageResult(Generic[TOutput]):
    """What one stage produced, or the exception that stopped it."""

    stage_name: str
    output: TOutput | None
    duration_ms: float
    status: StageOutcome
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status == StageOutcome.COMPLETED


@dataclass(frozen=True)
class PipelineStage(Generic[TInput, TOutput]):
    """A named pure function run off the event loop."""

    name: str
    execute: Callable[[TInput], TOutput]

    async def run(self, input_data: TInput) -> StageResult[TOutput]:
        start = time.monotonic()
        try:
            output = await asyncio.to_thread(self.execute, input_data)
        except Exception as exc:
            logger.warning(
                "event=stage_failed stage=%s error=%s", self.name, exc
            )
            return StageResult(
                stage_name=self.name,
                output=None,
                duration_ms=_since(start),
                status=StageOutcome.FAILED,
                error=exc,
            )
        return StageResult(
            stage_name=self.name,
            output=output,
            duration_ms=_since(start),
            status=StageOutcome.COMPLETED,
        )


@dataclass(frozen=True)
class ParallelGroup(Generic[TInput]):
    """Stages that read the same input and never each other's output."""

    name: str
    stages: tuple[PipelineStage[TInput, Any], ...] = ()

    async def execute(self, input_data: TInput) -> list[StageResult[Any]]:
        """Run every stage; results follow ``stages`` order."""
        results = list(
            await asyncio.gather(
                *(stage.run(input_data) for stage in self.stages)
            )
        )
        logger.debug(
            "event=group_complete group=%s stages=%d failed=%s",
            self.name,
            len(results),
            ",".join(r.stage_name for r in results if not r.ok) or "-",
        )
        return results


def _since(start: float) -> float:
    return (time.monotonic() - start) * 1000
