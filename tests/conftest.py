"""Shared test fixtures: rubric, assessment factories, snapshots."""

from __future__ import annotations

import os

# Keep a developer's CONCORDANCE_* environment out of the tests.
for _key in [k for k in os.environ if k.startswith("CONCORDANCE_")]:
    del os.environ[_key]

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from concordance.analysis.normalizer import normalize_assessment
from concordance.analysis.schemas import (
    CanonicalAssessment,
    ValidatedFinding,
    ValidatedSet,
)
from concordance.config import Settings
from concordance.constants import Validity
from concordance.ingestion.schemas import Assessment, Citation, Finding
from concordance.rubric.loader import build_rubric
from concordance.rubric.schemas import Rubric

MAPPING: dict[str, Any] = {
    "categories": {
        "security": ["Security", "Sec", "Safety"],
        "maintainability": ["Maintainability", "Code Quality"],
        "testing": ["Testing", "Tests", "Test Coverage"],
    },
}

WEIGHTS: dict[str, float] = {
    "security": 0.5,
    "maintainability": 0.3,
    "testing": 0.2,
}


def make_rubric(
    mapping: dict[str, Any] | None = None,
    weights: dict[str, Any] | None = None,
) -> Rubric:
    return build_rubric(mapping or MAPPING, weights or WEIGHTS)


def make_finding(
    description: str = "SQL injection in login handler",
    severity: str = "critical",
    category: str = "Security",
    path: str | None = None,
    line: int | None = None,
    line_end: int | None = None,
    quoted_text: str | None = None,
) -> Finding:
    citation = (
        Citation(
            path=path,
            line=line,
            line_end=line_end,
            quoted_text=quoted_text,
        )
        if path is not None
        else None
    )
    return Finding.model_validate({
        "description": description,
        "severity": severity,
        "category": category,
        "citation": citation,
    })


def make_assessment(
    source_id: str,
    scores: dict[str, float] | None = None,
    findings: list[Finding] | None = None,
    cost: float = 1.0,
) -> Assessment:
    return Assessment(
        source_id=source_id,
        cost=cost,
        category_scores=scores or {},
        findings=tuple(findings or ()),
    )


def canonical(
    rubric: Rubric, *assessments: Assessment
) -> list[CanonicalAssessment]:
    return [normalize_assessment(rubric, a) for a in assessments]


@pytest.fixture
def rubric() -> Rubric:
    return make_rubric()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(log_dir=tmp_path / "logs")


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    """A tiny source tree to validate citations against."""
    root = tmp_path / "snapshot"
    (root / "app").mkdir(parents=True)
    (root / "app" / "auth.py").write_text(
        "def login(user, password):\n"
        "    query = \"SELECT * FROM users WHERE name='\" + user + \"'\"\n"
        "    return db.execute(query)\n"
        "\n"
        "def logout(session):\n"
        "    session.clear()\n",
        encoding="utf-8",
    )
    (root / "README.md").write_text(
        "# Demo\n\nA demo service.\n", encoding="utf-8"
    )
    return root


def validated_set(
    assessments: Sequence[CanonicalAssessment],
    validities: dict[tuple[str, int], Validity] | None = None,
) -> ValidatedSet:
    """Build a validated set directly; findings default to unknown."""
    ordered = sorted(assessments, key=lambda a: a.source_id)
    validities = validities or {}
    findings = tuple(
        ValidatedFinding(
            source_id=ca.source_id,
            index=idx,
            finding=finding,
            category=ca.finding_categories[idx],
            validity=validities.get(
                (ca.source_id, idx), Validity.UNKNOWN
            ),
        )
        for ca in ordered
        for idx, finding in enumerate(ca.source.findings)
    )
    return ValidatedSet(
        assessments=tuple(ordered),
        findings=findings,
        snapshot_available=True,
    )
