"""Tests for PipelineStage and ParallelGroup."""

from __future__ import annotations

import time

import pytest

from concordance.analysis.pipeline import ParallelGroup, PipelineStage
from concordance.constants import StageOutcome


def _double(x: int) -> int:
    return x * 2


def _slow_increment(x: int) -> int:
    time.sleep(0.02)
    return x + 1


def _fail(x: int) -> int:
    msg = f"cannot handle {x}"
    raise ValueError(msg)


@pytest.mark.asyncio
async def test_stage_success() -> None:
    result = await PipelineStage("double", _double).run(4)
    assert result.ok
    assert result.output == 8
    assert result.status == StageOutcome.COMPLETED
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_stage_failure_captured() -> None:
    result = await PipelineStage("fail", _fail).run(1)
    assert not result.ok
    assert result.output is None
    assert isinstance(result.error, ValueError)


@pytest.mark.asyncio
async def test_group_keeps_stage_order() -> None:
    group: ParallelGroup[int] = ParallelGroup(
        name="fanout",
        stages=(
            PipelineStage("slow", _slow_increment),
            PipelineStage("fail", _fail),
            PipelineStage("double", _double),
        ),
    )
    results = await group.execute(3)
    assert [r.stage_name for r in results] == ["slow", "fail", "double"]
    assert [r.output for r in results] == [4, None, 6]


@pytest.mark.asyncio
async def test_empty_group() -> None:
    assert await ParallelGroup[int](name="empty").execute(1) == []
