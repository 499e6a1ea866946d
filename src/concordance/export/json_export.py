"""JSON export: canonical encoding of a ConsensusReport.

Keys are sorted and no wall-clock fields are added, so identical
inputs always produce identical bytes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from concordance.analysis.schemas import ConsensusReport


def report_to_dict(report: ConsensusReport) -> dict[str, Any]:
    """Convert a report to a JSON-serializable dict."""
    payload = report.model_dump(mode="json")
    payload["summary"] = report.summary
    return payload


def export_report_json(report: ConsensusReport) -> str:
    """Export a report as canonical JSON text."""
    return json.dumps(
        report_to_dict(report),
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
    )


def write_report(report: ConsensusReport, path: Path) -> None:
    """Write the canonical JSON report, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        export_report_json(report) + "\n", encoding="utf-8"
    )
