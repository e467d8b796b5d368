"""Controllers for refactor-pilot CLI commands."""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass, replace
from pathlib import Path

from refactor_pilot.agent import AgentRunRequest, CliAgentExecutor, SandboxMode
from refactor_pilot.backlog import (
    format_backlog_compact,
    has_actionable_backlog,
    normalize_max_passes,
    summarize_backlog,
)
from refactor_pilot.change_report import format_change_summary
from refactor_pilot.checkpoint import CheckpointStore
from refactor_pilot.config import (
    Settings,
    clamp_ai_timeout,
    normalize_max_workers,
    normalize_model,
    normalize_provider,
)
from refactor_pilot.context import ExecutionSettings, RunContext
from refactor_pilot.controller import RefactorController, RunOptions, RunOutcome
from refactor_pilot.scan import RepoScan, resolve_scan_with_coverage
from refactor_pilot.scan.constants import STATE_DIR_NAME

logger = logging.getLogger(__name__)

_SENTINEL = object()
CANDIDATE_PREVIEW = 5


@dataclass(slots=True)
class RunCommand:
    """Input for the refactor run command."""

    target_dir: Path
    provider: str | None = None
    model: str | None = None
    planner_model: str | None = None
    orchestrator_model: str | None = None
    worker_model: str | None = None
    orchestration: bool | None = None
    max_workers: int | None = None
    max_files: int | None = None
    max_passes: int | None = None
    ai_timeout_seconds: int | None = None
    dry_run: bool = False
    resume: bool = True
    verify: bool | None = None
    notes: str | None = None
    focus: str | None = None


@dataclass(slots=True)
class ScanCommand:
    """Input for the heuristic scan command."""

    target_dir: Path
    max_files: int | None = None
    as_json: bool = False


@dataclass(slots=True)
class CheckpointCommand:
    """Input for checkpoint show/clear."""

    target_dir: Path


@dataclass(slots=True)
class SmokeCommand:
    """Input for the agent smoke check."""

    target_dir: Path
    provider: str | None = None
    model: str | None = None
    prompt: str = "Reply with exactly: OK"
    expect_substring: str = "OK"
    timeout_seconds: int = 120


@dataclass(slots=True)
class SmokeResult:
    """Smoke-check report to render in CLI."""

    lines: list[str]
    success: bool


class RefactorCliController:
    """Coordinates scan, run, checkpoint and smoke CLI operations."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    def _load_settings(self) -> Settings:
        return self._settings if self._settings is not None else Settings.from_env()

    def run(self, command: RunCommand) -> Iterator[str]:
        """Run the refactor loop in a worker thread, yielding progress lines.

        Errors from the loop are re-raised after all progress has been yielded.
        """

        settings = self._load_settings()
        target_dir = _resolve_target(command.target_dir)
        context = _build_context(command, target_dir, settings)
        options = RunOptions(
            resume=command.resume,
            max_files=command.max_files or settings.max_files,
            max_passes=normalize_max_passes(command.max_passes),
            focus=command.focus,
        )

        progress_q: queue.Queue[str | object] = queue.Queue()
        context = replace(context, progress=progress_q.put)

        result_holder: list[RunOutcome] = []
        error_holder: list[Exception] = []

        def _run() -> None:
            try:
                result_holder.append(RefactorController(context).run(options))
            except Exception as exc:  # noqa: BLE001
                error_holder.append(exc)
            finally:
                progress_q.put(_SENTINEL)

        worker_thread = threading.Thread(target=_run, name="refactor-run", daemon=True)
        worker_thread.start()

        while True:
            item = progress_q.get()
            if item is _SENTINEL:
                break
            yield str(item)

        worker_thread.join(timeout=10)

        if error_holder:
            raise error_holder[0]
        if result_holder:
            yield from _format_outcome(result_holder[0])

    def scan(self, command: ScanCommand) -> list[str]:
        target_dir = _resolve_target(command.target_dir)
        coverage = resolve_scan_with_coverage(
            target_dir,
            command.max_files or self._load_settings().max_files,
            explicit_max_files=command.max_files is not None,
        )
        scan = coverage.scan
        backlog = summarize_backlog(scan)
        if command.as_json:
            return [json.dumps({"scan": scan.to_dict(), "backlog": backlog.to_dict()}, indent=2)]

        lines = [
            f"Target: {scan.target_dir}",
            f"Stack: {scan.tech_stack} ({scan.project_shape})",
            f"Source files: {scan.scanned_source_files} ({scan.scanned_total_lines} lines)"
            + (" [file cap reached]" if scan.reached_file_cap else ""),
            f"Backlog: {format_backlog_compact(backlog)} (score {backlog.score:.2f})",
            f"Actionable: {'yes' if has_actionable_backlog(scan) else 'no'}",
        ]
        lines.extend(_candidate_lines(scan))
        return lines

    def checkpoint_show(self, command: CheckpointCommand) -> list[str]:
        store = CheckpointStore(_resolve_target(command.target_dir))
        checkpoint = store.load()
        if checkpoint is None:
            return [f"No resumable checkpoint at {store.path}"]
        lines = [
            f"Checkpoint: {store.path}",
            f"Updated: {checkpoint.updated_at or 'unknown'}",
            f"Next pass: {checkpoint.next_pass}/{checkpoint.planned_passes}",
            f"Max files: {checkpoint.max_files}",
            f"Backlog: {format_backlog_compact(checkpoint.backlog)}",
        ]
        if checkpoint.execution is not None:
            execution = checkpoint.execution
            lines.append(
                f"Execution: provider={execution.provider} "
                f"orchestration={'on' if execution.orchestration else 'off'} "
                f"max_workers={execution.max_workers}",
            )
        return lines

    def checkpoint_clear(self, command: CheckpointCommand) -> list[str]:
        store = CheckpointStore(_resolve_target(command.target_dir))
        if store.clear():
            return [f"Removed checkpoint {store.path}"]
        return [f"No checkpoint to remove at {store.path}"]

    def smoke(self, command: SmokeCommand) -> SmokeResult:
        settings = self._load_settings()
        target_dir = _resolve_target(command.target_dir)
        try:
            provider = normalize_provider(command.provider or settings.agent.provider)
        except ValueError as error:
            return SmokeResult(lines=["Agent smoke check:", str(error)], success=False)

        executor = _executor(settings, target_dir)
        resolved = executor.resolve_provider(provider)
        if resolved is None:
            return SmokeResult(
                lines=["Agent smoke check:", f"No agent CLI available for provider {provider!r}."],
                success=False,
            )

        result = executor.execute(
            AgentRunRequest(
                prompt=command.prompt,
                provider=provider,
                cwd=target_dir,
                timeout_seconds=command.timeout_seconds,
                sandbox_mode=SandboxMode.READ_ONLY,
                model=normalize_model(command.model),
                label="smoke",
            ),
        )
        matched = command.expect_substring in result.output
        success = result.ok and matched
        lines = [
            "Agent smoke check:",
            f"- provider={resolved} ok={result.ok} "
            f"expected_substring={'found' if matched else 'missing'}",
        ]
        if result.warning:
            lines.append(f"  warning: {result.warning}")
        preview = result.output.strip().splitlines()[-3:]
        lines.extend(f"  > {line}" for line in preview)
        lines.append("Result: PASS" if success else "Result: FAIL")
        return SmokeResult(lines=lines, success=success)


def _build_context(command: RunCommand, target_dir: Path, settings: Settings) -> RunContext:
    defaults = settings.execution
    execution = ExecutionSettings.from_defaults(
        defaults,
        provider=normalize_provider(command.provider or settings.agent.provider),
        notes=command.notes,
    )
    overrides = {
        "model": normalize_model(command.model),
        "planner_model": normalize_model(command.planner_model),
        "orchestrator_model": normalize_model(command.orchestrator_model),
        "worker_model": normalize_model(command.worker_model),
        "orchestration": command.orchestration,
        "max_workers": (
            normalize_max_workers(command.max_workers) if command.max_workers else None
        ),
    }
    execution = replace(
        execution,
        **{key: value for key, value in overrides.items() if value is not None},
    )
    timeout = (
        clamp_ai_timeout(command.ai_timeout_seconds)
        if command.ai_timeout_seconds
        else settings.agent.timeout_seconds
    )
    return RunContext(
        target_dir=target_dir,
        executor=_executor(settings, target_dir),
        settings=execution,
        ai_timeout_seconds=timeout,
        dry_run=command.dry_run,
        explicit_max_files=command.max_files is not None,
        explicit_max_passes=command.max_passes is not None,
        verify=settings.verification.enabled if command.verify is None else command.verify,
        verify_timeout_seconds=settings.verification.timeout_seconds,
    )


def _resolve_target(target_dir: Path) -> Path:
    resolved = Path(target_dir).expanduser().resolve()
    if not resolved.is_dir():
        raise ValueError(f"Target directory does not exist: {resolved}")
    return resolved


def _executor(settings: Settings, target_dir: Path) -> CliAgentExecutor:
    return CliAgentExecutor(settings.agent, calls_root=target_dir / STATE_DIR_NAME / "calls")


def _candidate_lines(scan: RepoScan) -> list[str]:
    lines: list[str] = []
    sections = (
        (
            "Monolith candidates",
            [(item.path, f"{item.line_count} lines") for item in scan.monolith_candidates],
        ),
        (
            "Coupling candidates",
            [(item.path, f"score {item.score:.1f}") for item in scan.coupling_candidates],
        ),
        (
            "Debt candidates",
            [(item.path, f"score {item.score:.1f}") for item in scan.debt_candidates],
        ),
        (
            "Comment cleanup candidates",
            [
                (item.path, f"{item.low_signal_comment_lines} low-signal comment lines")
                for item in scan.comment_cleanup_candidates
            ],
        ),
    )
    for title, entries in sections:
        if not entries:
            continue
        lines.append(f"{title} ({len(entries)}):")
        lines.extend(f"  - {path}: {detail}" for path, detail in entries[:CANDIDATE_PREVIEW])
        if len(entries) > CANDIDATE_PREVIEW:
            lines.append(f"  ... {len(entries) - CANDIDATE_PREVIEW} more")
    return lines


def _format_outcome(outcome: RunOutcome) -> Iterator[str]:
    if outcome.dry_run:
        yield f"Dry run: prompt written to {outcome.prompt_path}"
        yield f"Backlog: {format_backlog_compact(outcome.final_backlog)}"
        return

    yield (
        f"Refactor complete: {outcome.completed_passes} pass(es) "
        f"in {outcome.elapsed_seconds:.1f}s."
    )
    yield f"Remaining backlog: {format_backlog_compact(outcome.final_backlog)}"
    if outcome.final_pass_status.value != "unknown":
        yield f"Final pass status: {outcome.final_pass_status.value.upper()}"
    if outcome.completed_passes:
        yield from format_change_summary(outcome.source_diff)
    if outcome.verification_signals:
        yield "Verification notes from the agent:"
        yield from (f"  {signal}" for signal in outcome.verification_signals)
