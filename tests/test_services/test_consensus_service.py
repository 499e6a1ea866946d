"""End-to-end tests for the consensus run orchestration."""

from __future__ import annotations

import itertools
import json
from pathlib import Path

import pytest

from concordance.analysis.snapshot import DirectorySnapshot
from concordance.config import Settings
from concordance.constants import (
    CategoryStatus,
    StageProgress,
    Validity,
    YieldStatus,
)
from concordance.export.json_export import export_report_json
from concordance.ingestion.loader import IngestionBatch
from concordance.ingestion.schemas import Assessment, Finding
from concordance.logger import RunLogger
from concordance.resilience.errors import (
    AggregationInvariantViolation,
    IngestionError,
    NoValidAssessmentsError,
    SynthesisAborted,
)
from concordance.rubric.schemas import Rubric
from concordance.services.consensus_service import run_consensus
from concordance.services.events import StageEvent
from tests.conftest import (
    MAPPING,
    make_assessment,
    make_finding,
    make_rubric,
)

SQL_QUOTE = "SELECT * FROM users WHERE name='"


def _batch(*assessments: Assessment) -> IngestionBatch:
    return IngestionBatch(assessments=tuple(assessments))


def _sql_finding(severity: str = "critical") -> Finding:
    return make_finding(
        "SQL injection in login handler",
        severity,
        path="app/auth.py",
        line=2,
        quoted_text=SQL_QUOTE,
    )


class TestScenarios:
    @pytest.mark.asyncio
    async def test_contested_and_false_confidence(
        self, rubric: Rubric, settings: Settings, snapshot_dir: Path
    ) -> None:
        batch = _batch(
            make_assessment("rev-1", {"Security": 5}),
            make_assessment("rev-2", {"Security": 5}),
            make_assessment("rev-3", {"Security": 2}, [_sql_finding()]),
        )
        run = await run_consensus(
            batch, rubric, settings, DirectorySnapshot(snapshot_dir)
        )
        report = run.report
        assert report is not None
        security = report.category("security")
        assert security is not None
        assert security.consensus == pytest.approx(4.0)
        assert security.variance == pytest.approx(3.0)
        assert security.contested is True
        assert len(report.false_confidence_flags) == 1
        flag = report.false_confidence_flags[0]
        assert flag.category == "security"
        assert flag.assessors == ("rev-1", "rev-2")
        assert flag.finding.validity == Validity.VALID

    @pytest.mark.asyncio
    async def test_lone_dissenter_among_four_is_contested(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        batch = _batch(
            *(
                make_assessment(f"rev-{i}", {"Security": 5})
                for i in range(1, 4)
            ),
            make_assessment("rev-4", {"Security": 2.5}),
        )
        report = (await run_consensus(batch, rubric, settings)).report
        assert report is not None
        security = report.category("security")
        assert security is not None
        assert security.variance == pytest.approx(1.5625)
        assert security.contested is True
        assert report.metadata.thresholds.contested_variance is None
        assert report.metadata.thresholds.contested_span == pytest.approx(
            2.0
        )

    @pytest.mark.asyncio
    async def test_unquoted_citation_stays_unknown(
        self, rubric: Rubric, settings: Settings, snapshot_dir: Path
    ) -> None:
        batch = _batch(
            make_assessment("rev-1", {"Security": 5}),
            make_assessment(
                "rev-2",
                {"Security": 5},
                [
                    make_finding(
                        "SQL injection in login handler",
                        path="app/auth.py",
                        line=2,
                    )
                ],
            ),
        )
        run = await run_consensus(
            batch, rubric, settings, DirectorySnapshot(snapshot_dir)
        )
        report = run.report
        assert report is not None
        assert report.findings[0].validity == Validity.UNKNOWN
        assert report.false_confidence_flags == ()
        assert report.metadata.citation_validity["unknown"] == 1

    @pytest.mark.asyncio
    async def test_no_yield_ranks_last(
        self, rubric: Rubric, settings: Settings, snapshot_dir: Path
    ) -> None:
        cheap_findings = [
            make_finding(
                "Login accepts any password",
                path="app/auth.py",
                line=1,
                quoted_text="def login(user, password):",
            ),
            _sql_finding(),
            make_finding(
                "Raw query executed",
                "major",
                path="app/auth.py",
                line=3,
                quoted_text="return db.execute(query)",
            ),
        ]
        batch = _batch(
            make_assessment("pricey", {"Security": 3}, cost=8.80),
            make_assessment(
                "cheap", {"Security": 2}, cheap_findings, cost=0.15
            ),
        )
        run = await run_consensus(
            batch, rubric, settings, DirectorySnapshot(snapshot_dir)
        )
        report = run.report
        assert report is not None
        ranking = [
            (e.source_id, e.issue_yield, e.status)
            for e in report.cost_ranking
        ]
        assert ranking == [
            ("cheap", 3, YieldStatus.RANKED),
            ("pricey", 0, YieldStatus.NO_YIELD),
        ]
        assert report.cost_ranking[1].cost_per_valid_issue == pytest.approx(
            8.80
        )


class TestRunInvariants:
    @pytest.mark.asyncio
    async def test_report_bytes_independent_of_input_order(
        self, rubric: Rubric, settings: Settings, snapshot_dir: Path
    ) -> None:
        assessments = [
            make_assessment(
                "rev-a", {"Sec": 4.1, "Tests": 2.2}, [_sql_finding()]
            ),
            make_assessment(
                "rev-b",
                {"Safety": 0.7, "Code Quality": 3.3},
                [make_finding("Login SQL injection", "major")],
                cost=0.3,
            ),
            make_assessment("rev-c", {"Security": 4.9}, cost=2.0),
        ]
        outputs = set()
        for perm in itertools.permutations(assessments):
            run = await run_consensus(
                _batch(*perm),
                rubric,
                settings,
                DirectorySnapshot(snapshot_dir),
                run_id="fixed",
            )
            assert run.report is not None
            outputs.add(export_report_json(run.report))
        assert len(outputs) == 1

    @pytest.mark.asyncio
    async def test_abstention_does_not_move_consensus(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        base = [
            make_assessment("rev-a", {"Sec": 4.0, "Tests": 3.0}),
            make_assessment("rev-b", {"Sec": 2.0, "Tests": 1.0}),
        ]
        abstainer = make_assessment("rev-c", {"Tests": 2.0})

        without = await run_consensus(_batch(*base), rubric, settings)
        with_abstainer = await run_consensus(
            _batch(*base, abstainer), rubric, settings
        )
        assert without.report is not None
        assert with_abstainer.report is not None
        sec_before = without.report.category("security")
        sec_after = with_abstainer.report.category("security")
        assert sec_before is not None and sec_after is not None
        assert sec_after.consensus == sec_before.consensus
        assert [c.source_id for c in sec_after.contributors] == [
            "rev-a",
            "rev-b",
        ]

    @pytest.mark.asyncio
    async def test_no_snapshot_means_no_valid_evidence(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        batch = _batch(
            make_assessment("rev-1", {"Security": 5}),
            make_assessment("rev-2", {"Security": 5}, [_sql_finding()]),
        )
        run = await run_consensus(batch, rubric, settings, None)
        report = run.report
        assert report is not None
        assert report.metadata.snapshot_available is False
        assert report.metadata.citation_validity["valid"] == 0
        assert report.false_confidence_flags == ()
        assert report.cost_ranking[0].status == YieldStatus.NO_YIELD
        assert (
            "No snapshot supplied: all citations are unknown"
            in report.metadata.warnings
        )

    @pytest.mark.asyncio
    async def test_unjudged_category_reported(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        run = await run_consensus(
            _batch(make_assessment("rev-1", {"Security": 3})),
            rubric,
            settings,
        )
        assert run.report is not None
        testing = run.report.category("testing")
        assert testing is not None
        assert testing.status == CategoryStatus.INSUFFICIENT_DATA
        assert testing.consensus is None
        assert run.report.overall_score == pytest.approx(3.0)


class TestExclusionsAndFailures:
    @pytest.mark.asyncio
    async def test_excluded_assessments_listed(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        batch = IngestionBatch(
            assessments=(make_assessment("rev-a", {"Security": 3}),),
            errors=(
                IngestionError(
                    "Score out of range",
                    source_id="rev-b",
                    path="rev-b.json",
                ),
            ),
        )
        run = await run_consensus(batch, rubric, settings)
        report = run.report
        assert report is not None
        assert report.summary == "computed from 1 of 2 assessments"
        assert report.complete is False
        excluded = report.metadata.excluded[0]
        assert (excluded.source_id, excluded.stage) == (
            "rev-b",
            "ingestion",
        )

    @pytest.mark.asyncio
    async def test_nothing_valid_raises(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        batch = IngestionBatch(
            errors=(IngestionError("bad", source_id="rev-a"),)
        )
        with pytest.raises(NoValidAssessmentsError):
            await run_consensus(batch, rubric, settings)

    @pytest.mark.asyncio
    async def test_invariant_violation_aborts_run(
        self, settings: Settings
    ) -> None:
        rubric = make_rubric(
            MAPPING,
            {
                "security": 0.4,
                "maintainability": 0.3,
                "testing": 0.2,
                "performance": 0.1,
            },
        )
        batch = _batch(make_assessment("rev-a", {"Security": 3}))
        with pytest.raises(SynthesisAborted) as info:
            await run_consensus(batch, rubric, settings)
        assert isinstance(
            info.value.__cause__, AggregationInvariantViolation
        )


class TestProgressAndLogging:
    @pytest.mark.asyncio
    async def test_progress_events_and_run_log(
        self, rubric: Rubric, settings: Settings
    ) -> None:
        events: list[StageEvent] = []
        run_logger = RunLogger(settings.log_dir)
        try:
            run = await run_consensus(
                _batch(make_assessment("rev-a", {"Security": 3})),
                rubric,
                settings,
                on_progress=events.append,
                run_logger=run_logger,
                run_id="abc123",
            )
        finally:
            run_logger.close()

        assert run.run_id == "abc123"
        done = [e.name for e in events if e.status == StageProgress.DONE]
        assert done[0] == "normalization"
        assert done[-1] == "synthesis"
        assert {"aggregation", "discrepancy", "cost_quality"} <= set(
            done
        )
        running = [e for e in events if e.status == StageProgress.RUNNING]
        assert running
        assert not any(e.finished for e in running)
        assert all(s.ok for s in run.stages)

        records = [
            json.loads(line)
            for line in run_logger.path.read_text().splitlines()
        ]
        assert {r["run_id"] for r in records} == {"abc123"}
        assert any(r["stage"] == "synthesis" for r in records)

    @pytest.mark.asyncio
    async def test_stage_failure_written_to_run_log(
        self, settings: Settings
    ) -> None:
        rubric = make_rubric(
            MAPPING,
            {
                "security": 0.4,
                "maintainability": 0.3,
                "testing": 0.2,
                "performance": 0.1,
            },
        )
        run_logger = RunLogger(settings.log_dir)
        try:
            with pytest.raises(SynthesisAborted):
                await run_consensus(
                    _batch(make_assessment("rev-a", {"Security": 3})),
                    rubric,
                    settings,
                    run_logger=run_logger,
                    run_id="r-fail",
                )
        finally:
            run_logger.close()

        records = [
            json.loads(line)
            for line in run_logger.path.read_text().splitlines()
        ]
        errors = [r for r in records if r["type"] == "error"]
        assert [e["component"] for e in errors] == ["aggregation"]
        assert "performance" in errors[0]["error"]
