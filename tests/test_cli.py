"""Tests for CLI argument parsing and run exit codes."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from concordance.cli import _build_parser, main
from concordance.constants import ExitCode
from tests.conftest import MAPPING, WEIGHTS


def _assessment(source_id: str, **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "source_id": source_id,
        "cost": 0.5,
        "category_scores": {"Security": 4, "Tests": 3},
        "findings": [
            {
                "description": "SQL injection in login handler",
                "severity": "critical",
                "category": "Security",
                "citation": {
                    "path": "app/auth.py",
                    "line_range": [2, 2],
                    "quoted_text": "SELECT * FROM users WHERE name='",
                },
            }
        ],
    }
    record.update(overrides)
    return record


@pytest.fixture
def workspace(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Path:
    """Inputs dir plus mapping and weights files in a temp dir."""
    monkeypatch.setenv("CONCORDANCE_LOG_DIR", str(tmp_path / "logs"))
    inputs = tmp_path / "inputs"
    inputs.mkdir()
    (inputs / "rev-a.json").write_text(json.dumps(_assessment("rev-a")))
    (inputs / "rev-b.json").write_text(
        json.dumps(
            _assessment("rev-b", category_scores={"Security": 2})
        )
    )
    (tmp_path / "mapping.json").write_text(json.dumps(MAPPING))
    (tmp_path / "weights.json").write_text(json.dumps(WEIGHTS))
    return tmp_path


def _run_args(root: Path, *extra: str) -> list[str]:
    return [
        "run",
        "--inputs",
        str(root / "inputs"),
        "--mapping",
        str(root / "mapping.json"),
        "--weights",
        str(root / "weights.json"),
        *extra,
    ]


def _exit_code(argv: list[str]) -> int:
    try:
        main(argv)
    except SystemExit as exc:
        return int(exc.code or 0)
    return 0


class TestArgParser:
    def test_version_flag(self) -> None:
        parser = _build_parser()
        args = parser.parse_args(["--version"])
        assert args.version is True

    def test_run_defaults(self) -> None:
        parser = _build_parser()
        args = parser.parse_args(
            ["run", "-i", "in", "-m", "map.json", "-w", "w.json"]
        )
        assert args.command == "run"
        assert args.inputs == "in"
        assert args.snapshot is None
        assert args.contested_threshold is None
        assert args.confidence_threshold is None
        assert args.output is None
        assert args.verbose is False

    def test_run_with_options(self) -> None:
        parser = _build_parser()
        args = parser.parse_args(
            [
                "run",
                "-i",
                "in",
                "-m",
                "map.yaml",
                "-w",
                "w.yaml",
                "--snapshot",
                "repo.zip",
                "--contested-threshold",
                "1.5",
                "--confidence-threshold",
                "4.5",
                "--output",
                "report.json",
                "--verbose",
            ]
        )
        assert args.snapshot == "repo.zip"
        assert args.contested_threshold == 1.5
        assert args.confidence_threshold == 4.5
        assert args.output == "report.json"
        assert args.verbose is True

    def test_run_requires_inputs(self) -> None:
        parser = _build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["run", "-m", "m.json", "-w", "w.json"])

    def test_no_command_prints_help(self) -> None:
        parser = _build_parser()
        args = parser.parse_args([])
        assert args.command is None


class TestRunCommand:
    def test_success_writes_report(
        self, workspace: Path, snapshot_dir: Path
    ) -> None:
        out = workspace / "out" / "report.json"
        code = _exit_code(
            _run_args(
                workspace,
                "--snapshot",
                str(snapshot_dir),
                "--output",
                str(out),
            )
        )
        assert code == ExitCode.OK
        report = json.loads(out.read_text())
        assert report["summary"] == "computed from 2 of 2 assessments"
        assert report["metadata"]["citation_validity"]["valid"] == 2
        assert (workspace / "logs" / "run.log").exists()

    def test_report_to_stdout(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _exit_code(_run_args(workspace)) == ExitCode.OK
        captured = capsys.readouterr()
        report = json.loads(captured.out)
        assert report["metadata"]["snapshot_available"] is False
        assert "Done!" in captured.err

    def test_bad_weights_exit_1(self, workspace: Path) -> None:
        (workspace / "weights.json").write_text(
            json.dumps(
                {"security": 0.9, "maintainability": 0.3, "testing": 0.2}
            )
        )
        assert _exit_code(_run_args(workspace)) == ExitCode.CONFIG_ERROR

    def test_negative_contested_threshold_exit_1(
        self, workspace: Path
    ) -> None:
        code = _exit_code(
            _run_args(workspace, "--contested-threshold", "-1")
        )
        assert code == ExitCode.CONFIG_ERROR

    def test_all_invalid_exit_2(self, workspace: Path) -> None:
        inputs = workspace / "inputs"
        for path in inputs.iterdir():
            path.write_text(
                json.dumps(
                    _assessment(
                        path.stem, category_scores={"Security": 99}
                    )
                )
            )
        code = _exit_code(_run_args(workspace))
        assert code == ExitCode.NO_VALID_ASSESSMENTS

    def test_missing_inputs_exit_3(self, workspace: Path) -> None:
        code = _exit_code(
            [
                "run",
                "--inputs",
                str(workspace / "absent"),
                "--mapping",
                str(workspace / "mapping.json"),
                "--weights",
                str(workspace / "weights.json"),
            ]
        )
        assert code == ExitCode.INPUT_IO_ERROR

    def test_missing_mapping_exit_3(self, workspace: Path) -> None:
        (workspace / "mapping.json").unlink()
        assert _exit_code(_run_args(workspace)) == ExitCode.INPUT_IO_ERROR

    def test_unwritable_output_exit_3(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        blocker = workspace / "blocker"
        blocker.write_text("not a directory")
        code = _exit_code(
            _run_args(
                workspace, "--output", str(blocker / "report.json")
            )
        )
        assert code == ExitCode.INPUT_IO_ERROR
        assert "Error: cannot write report" in capsys.readouterr().err


def test_verbose_reports_stage_progress(
    workspace: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _exit_code(_run_args(workspace, "--verbose")) == ExitCode.OK
    err = capsys.readouterr().err
    assert "[ok]" in err
    assert "FAILED" not in err
