from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from refactor_pilot.agent.base import AgentRunRequest, AgentRunResult
from refactor_pilot.agent.status import PassStatus
from refactor_pilot.checkpoint import CheckpointStore
from refactor_pilot.backlog import summarize_backlog
from refactor_pilot.context import ExecutionSettings
from refactor_pilot.controller import RefactorController, RefactorRunError, RunOptions
from refactor_pilot.scan.repository import scan_repository
from tests.conftest import FakeExecutor, make_context, write_file

pytestmark = [
    allure.epic("Pass Controller"),
    allure.feature("Refactor Loop"),
]

_FIXED_SERVICE = "def load():\n    return 1\n"


def _fixing_responder(repo: Path, status: str = "COMPLETE"):
    def _respond(request: AgentRunRequest) -> AgentRunResult:
        if request.label == "calibration":
            return AgentRunResult(ok=False, output="", warning="calibration disabled")
        write_file(repo, "sample/service.py", _FIXED_SERVICE)
        return AgentRunResult(
            ok=True,
            output=f"Removed stale TODO.\nREFACTOR_PILOT_STATUS: {status}",
            provider_used="claude",
        )

    return _respond


def _run(repo: Path, executor: FakeExecutor, options: RunOptions | None = None, **overrides):
    context = make_context(repo, executor, **overrides)
    return RefactorController(context).run(options or RunOptions())


def test_single_pass_clears_backlog_and_checkpoint(debt_repo: Path) -> None:
    executor = FakeExecutor(_fixing_responder(debt_repo, "CONTINUE"))
    progress: list[str] = []

    outcome = _run(debt_repo, executor, progress=progress.append)

    assert outcome.completed_passes == 1
    assert outcome.final_pass_status is PassStatus.CONTINUE
    assert outcome.final_backlog.debt_count == 0
    assert outcome.source_diff.modified == ("sample/service.py",)
    assert executor.labels() == ["calibration", "refactor", "calibration"]
    assert not CheckpointStore(debt_repo).path.exists()
    assert outcome.prompt_path == debt_repo / ".refactor-pilot" / "refactor-prompt.generated.txt"
    assert "Refactor finished across 1 pass(es)." in progress


def test_dry_run_writes_prompt_without_agent_calls(debt_repo: Path) -> None:
    executor = FakeExecutor()

    outcome = _run(debt_repo, executor, dry_run=True)

    assert outcome.dry_run
    assert executor.requests == []
    assert outcome.prompt_path is not None
    assert "Mode: DRY-RUN" in outcome.prompt_path.read_text("utf-8")
    assert outcome.final_backlog.debt_count == 1


def test_calibration_can_finish_the_run_before_any_pass(debt_repo: Path) -> None:
    def _respond(request: AgentRunRequest) -> AgentRunResult:
        return AgentRunResult(ok=True, output=json.dumps({"debtPaths": []}))

    executor = FakeExecutor(_respond)

    outcome = _run(debt_repo, executor)

    assert outcome.completed_passes == 0
    assert executor.labels() == ["calibration"]


def test_fixed_budget_run_fails_when_backlog_remains(debt_repo: Path) -> None:
    executor = FakeExecutor()
    options = RunOptions(max_passes=2)

    with pytest.raises(RefactorRunError, match=r"Refactor incomplete after 2 passes\. "):
        _run(debt_repo, executor, options, explicit_max_passes=True)

    assert executor.labels().count("refactor") == 2
    checkpoint = CheckpointStore(debt_repo).load()
    assert checkpoint is not None
    assert checkpoint.next_pass == 3
    assert (debt_repo / ".refactor-pilot" / "refactor-prompt.pass-02.generated.txt").exists()


def test_resume_rejects_exhausted_budget_then_continues_with_more_passes(debt_repo: Path) -> None:
    with pytest.raises(RefactorRunError):
        _run(debt_repo, FakeExecutor(), RunOptions(max_passes=2), explicit_max_passes=True)

    with pytest.raises(RefactorRunError, match="Saved checkpoint expects pass 3"):
        _run(debt_repo, FakeExecutor())

    executor = FakeExecutor(_fixing_responder(debt_repo))
    outcome = _run(debt_repo, executor, RunOptions(max_passes=4), explicit_max_passes=True)

    assert outcome.resumed
    assert [report.pass_number for report in outcome.pass_reports] == [3]
    assert executor.labels() == ["refactor", "calibration"]


def test_no_resume_discards_checkpoint(debt_repo: Path) -> None:
    with pytest.raises(RefactorRunError):
        _run(debt_repo, FakeExecutor(), RunOptions(max_passes=1), explicit_max_passes=True)

    outcome = _run(debt_repo, FakeExecutor(_fixing_responder(debt_repo)), RunOptions(resume=False))

    assert not outcome.resumed
    assert outcome.completed_passes == 1


def test_failed_agent_call_stops_the_run(debt_repo: Path) -> None:
    def _respond(request: AgentRunRequest) -> AgentRunResult:
        return AgentRunResult(ok=False, output="", warning="claude exited with exit code 2")

    with pytest.raises(RefactorRunError, match="exit code 2"):
        _run(debt_repo, FakeExecutor(_respond))


def _continue_without_edits(request: AgentRunRequest) -> AgentRunResult:
    if request.label == "calibration":
        return AgentRunResult(ok=False, output="", warning="calibration disabled")
    return AgentRunResult(
        ok=True,
        output="Looked around.\nREFACTOR_PILOT_STATUS: CONTINUE",
        provider_used="claude",
    )


def test_unchanged_backlog_stalls_after_two_passes(debt_repo: Path) -> None:
    executor = FakeExecutor(_continue_without_edits)

    with pytest.raises(
        RefactorRunError,
        match=r"Refactor stalled after pass 2\. Remaining backlog is unchanged: 1 debt",
    ):
        _run(debt_repo, executor)

    assert executor.labels().count("refactor") == 2
    checkpoint = CheckpointStore(debt_repo).load()
    assert checkpoint is not None
    assert checkpoint.next_pass == 3


def test_adaptive_budget_grows_when_work_remains_at_last_pass(debt_repo: Path) -> None:
    calls: list[str] = []

    def _respond(request: AgentRunRequest) -> AgentRunResult:
        if request.label == "calibration":
            return AgentRunResult(ok=False, output="", warning="calibration disabled")
        calls.append(request.label)
        if len(calls) == 2:
            write_file(debt_repo, "sample/service.py", _FIXED_SERVICE)
        return AgentRunResult(
            ok=True,
            output="Working.\nREFACTOR_PILOT_STATUS: CONTINUE",
            provider_used="claude",
        )

    executor = FakeExecutor(_respond)
    progress: list[str] = []

    outcome = _run(debt_repo, executor, progress=progress.append)

    assert "Adaptive pass budget set to 1 from calibrated backlog." in progress
    assert "Adaptive pass budget increased from 1 to 2 after pass 1." in progress
    assert outcome.completed_passes == 2
    assert outcome.planned_passes == 2
    assert outcome.final_backlog.debt_count == 0


def test_adaptive_budget_at_safety_cap_reports_the_cap(monkeypatch, debt_repo: Path) -> None:
    monkeypatch.setattr("refactor_pilot.controller.MAX_ADAPTIVE_PASSES", 1)
    executor = FakeExecutor(_continue_without_edits)
    progress: list[str] = []

    with pytest.raises(RefactorRunError) as error:
        _run(debt_repo, executor, progress=progress.append)

    message = str(error.value)
    assert message.startswith("Refactor incomplete after 1 passes. Remaining backlog: 1 debt.")
    assert message.endswith(" Adaptive continuation reached safety cap (1).")
    assert not any(line.startswith("Adaptive pass budget increased") for line in progress)
    assert executor.labels().count("refactor") == 1


def test_fixed_budget_failure_omits_safety_cap_hint(debt_repo: Path) -> None:
    executor = FakeExecutor(_continue_without_edits)

    with pytest.raises(RefactorRunError) as error:
        _run(debt_repo, executor, RunOptions(max_passes=1), explicit_max_passes=True)

    assert "safety cap" not in str(error.value)


def test_resume_adopts_saved_execution_settings_without_rescanning(debt_repo: Path) -> None:
    scan = scan_repository(debt_repo, 100)
    CheckpointStore(debt_repo).save(
        planned_passes=2,
        next_pass=1,
        max_files=100,
        scan=scan,
        backlog=summarize_backlog(scan),
        execution=ExecutionSettings(provider="claude", model="saved-model", orchestration=False),
    )
    executor = FakeExecutor(_fixing_responder(debt_repo), provider="codex")
    progress: list[str] = []

    outcome = _run(
        debt_repo,
        executor,
        settings=ExecutionSettings(provider="codex", model="new-model", orchestration=True),
        progress=progress.append,
    )

    assert outcome.resumed
    assert executor.labels() == ["refactor", "calibration"]
    assert {request.provider for request in executor.requests} == {"claude"}
    assert {request.model for request in executor.requests} == {"saved-model"}
    assert "Reusing saved execution settings from checkpoint." in progress
    assert "Resuming interrupted refactor from pass 1/2." in progress
    assert not any(line.startswith("Scanning repository") for line in progress)
