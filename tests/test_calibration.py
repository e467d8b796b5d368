from __future__ import annotations

import json
from pathlib import Path

import allure

from refactor_pilot.agent.base import AgentRunRequest, AgentRunResult, SandboxMode
from refactor_pilot.calibration import calibrate_scan, collect_candidates, read_snippet
from refactor_pilot.context import ExecutionSettings
from refactor_pilot.scan.hotspots import to_hotspot
from refactor_pilot.scan.models import FileInsight, RepoScan
from tests.conftest import FakeExecutor, make_context, write_file

pytestmark = [
    allure.epic("AI Calibration"),
    allure.feature("Candidate Filtering"),
]


def _scan(root: Path) -> RepoScan:
    debt_a = to_hotspot(FileInsight(path="a.py", line_count=10, todo_count=2))
    debt_b = to_hotspot(FileInsight(path="b.py", line_count=10, todo_count=1))
    return RepoScan(
        target_dir=str(root),
        tech_stack="Python",
        project_shape="library",
        scanned_source_files=2,
        scanned_total_lines=20,
        debt_candidates=(debt_a, debt_b),
        largest_files=(FileInsight(path="a.py", line_count=10),),
    )


def _answer(payload: object):
    def _respond(request: AgentRunRequest) -> AgentRunResult:
        return AgentRunResult(ok=True, output=json.dumps(payload), provider_used="claude")

    return _respond


def test_collect_candidates_deduplicates_paths(tmp_path: Path) -> None:
    write_file(tmp_path, "a.py", "def a():\n    pass\n")

    candidates = collect_candidates(_scan(tmp_path))

    assert [candidate.insight.path for candidate in candidates] == ["a.py", "b.py"]
    assert candidates[0].snippet.startswith("def a()")
    assert candidates[1].snippet == ""


def test_read_snippet_prefers_declarations_for_long_files(tmp_path: Path) -> None:
    body = "\n".join(f"def f{i}():\n    x = {i}\n    return x" for i in range(30))
    write_file(tmp_path, "long.py", body)

    snippet = read_snippet(tmp_path, "long.py")

    assert "x = " not in snippet
    assert snippet.startswith("def f0():")


def test_calibration_keeps_only_submitted_paths_in_ai_order(tmp_path: Path) -> None:
    executor = FakeExecutor(_answer({"debtPaths": ["b.py", "missing.py", "a.py", "b.py"]}))
    context = make_context(
        tmp_path,
        executor,
        settings=ExecutionSettings(provider="claude", model="fast-model", notes="keep tests"),
    )

    result = calibrate_scan(_scan(tmp_path), context)

    assert result.warning is None
    assert [item.path for item in result.scan.debt_candidates] == ["b.py", "a.py"]
    request = executor.requests[0]
    assert request.label == "calibration"
    assert request.sandbox_mode is SandboxMode.READ_ONLY
    assert request.model == "fast-model"
    assert "keep tests" in request.prompt


def test_calibration_can_clear_a_category(tmp_path: Path) -> None:
    context = make_context(tmp_path, FakeExecutor(_answer({"debtPaths": []})))

    result = calibrate_scan(_scan(tmp_path), context)

    assert result.scan.debt_candidates == ()


def test_calibration_failure_keeps_deterministic_scan(tmp_path: Path) -> None:
    scan = _scan(tmp_path)
    failing = FakeExecutor(lambda request: AgentRunResult(ok=False, output="", warning="down"))
    garbled = FakeExecutor(lambda request: AgentRunResult(ok=True, output="no json at all"))

    failed = calibrate_scan(scan, make_context(tmp_path, failing))
    invalid = calibrate_scan(scan, make_context(tmp_path, garbled))

    assert failed.scan == scan
    assert failed.warning == "down"
    assert invalid.scan == scan
    assert invalid.warning is not None
    assert "not valid JSON" in invalid.warning


def test_empty_scan_skips_the_agent(tmp_path: Path) -> None:
    executor = FakeExecutor()
    scan = RepoScan(
        target_dir=str(tmp_path),
        tech_stack="custom",
        project_shape="custom",
        scanned_source_files=0,
        scanned_total_lines=0,
    )

    result = calibrate_scan(scan, make_context(tmp_path, executor))

    assert result.scan == scan
    assert executor.requests == []


def test_calibration_keeps_the_original_hotspot_entries(tmp_path: Path) -> None:
    scan = _scan(tmp_path)
    executor = FakeExecutor(_answer({"debtPaths": ["b.py"]}))

    result = calibrate_scan(scan, make_context(tmp_path, executor))

    (kept,) = result.scan.debt_candidates
    assert kept is scan.debt_candidates[1]
    assert kept.score == scan.debt_candidates[1].score
