"""Single-pass execution: planner -> orchestrator -> concurrent worker waves.

Workers inside one wave never share a file. Waves are packed greedily from
planner tasks (or from orchestrator assignments mapped back to them), so the
no-overlap rule holds whatever the orchestrator returns.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path

from refactor_pilot.agent.base import AgentRunRequest, AgentRunResult, SandboxMode
from refactor_pilot.agent.status import PassStatus, parse_pass_status, status_line, tail_lines
from refactor_pilot.config import ORCHESTRATION_PROVIDER
from refactor_pilot.context import RunContext
from refactor_pilot.parsing import (
    PlannerTask,
    WaveAssignment,
    parse_orchestration_output,
    parse_planner_output,
)
from refactor_pilot.prompts import (
    build_orchestrator_prompt,
    build_planner_prompt,
    build_worker_prompt,
)

logger = logging.getLogger(__name__)

_DUPLICATE_SLASHES = re.compile(r"/+")
_LEADING_DOT_SLASH = re.compile(r"^(?:\./+)+")


@dataclass(slots=True, frozen=True)
class PassResult:
    """Outcome of one refactor pass as reported to the pass controller."""

    executed: bool
    pass_status: PassStatus
    output_tail: str
    provider_used: str | None = None
    warning: str | None = None


def normalize_task_path(value: str) -> str:
    path = value.strip().replace("\\", "/")
    path = _LEADING_DOT_SLASH.sub("", path)
    return _DUPLICATE_SLASHES.sub("/", path)


def _normalized_files(files: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(path for path in map(normalize_task_path, files) if path))


def pack_waves(tasks: Sequence[PlannerTask], max_workers: int) -> list[list[PlannerTask]]:
    """Greedy bin-packing of tasks into waves with disjoint file sets.

    Each task goes into the first wave that has room and shares no file with
    it; otherwise a new wave is opened. Tasks without files are dropped.
    """

    capacity = max(1, max_workers)
    waves: list[list[PlannerTask]] = []
    occupied: list[set[str]] = []
    for task in tasks:
        files = _normalized_files(task.files)
        if not files:
            continue
        placed = replace(task, files=files)
        for index, wave in enumerate(waves):
            if len(wave) >= capacity or not occupied[index].isdisjoint(files):
                continue
            wave.append(placed)
            occupied[index].update(files)
            break
        else:
            waves.append([placed])
            occupied.append(set(files))
    return waves


def waves_from_assignments(
    tasks: Sequence[PlannerTask],
    assignments: Sequence[WaveAssignment],
    max_workers: int,
) -> list[list[PlannerTask]]:
    """Rebuild waves from orchestrator assignments, falling back to planner order."""

    by_id = {task.id: task for task in tasks}
    assigned: list[PlannerTask] = []
    for assignment in sorted(assignments, key=lambda item: item.wave):
        source = by_id.get(assignment.task_id)
        if source is None:
            continue
        files = _normalized_files(assignment.files)
        if not files:
            continue
        assigned.append(
            PlannerTask(
                id=source.id,
                title=source.title,
                files=files,
                instructions=assignment.worker_instructions,
            ),
        )
    return pack_waves(assigned or tasks, max_workers)


def _with_marker(message: str, status: PassStatus) -> str:
    return f"{message}\n{status_line(status)}"


def run_orchestrated_pass(prompt: str, context: RunContext) -> PassResult | None:
    """Run one pass as planned parallel waves.

    Returns ``None`` when the orchestrated path cannot be used, so the caller
    falls back to one non-decomposed call.
    """

    settings = context.settings
    max_workers = max(1, settings.max_workers)

    context.emit("Launching planner model...")
    planner_result = _execute(
        context,
        prompt=build_planner_prompt(prompt, max_workers),
        sandbox_mode=SandboxMode.READ_ONLY,
        model=settings.planner_model,
        label="planner",
    )
    if not planner_result.ok:
        logger.warning("Planner call failed: %s", planner_result.warning)
        return None
    if planner_result.provider_used != ORCHESTRATION_PROVIDER:
        logger.info("Planner ran on %s; orchestration disabled", planner_result.provider_used)
        return None
    plan = parse_planner_output(planner_result.output)
    if plan is None:
        logger.warning("Planner output did not match the planner schema")
        return None

    if not plan.refactor_needed or not plan.tasks:
        summary = (plan.summary or "").strip() or "Planner marked this pass as non-actionable."
        return PassResult(
            executed=True,
            pass_status=PassStatus.COMPLETE,
            output_tail=_with_marker(summary, PassStatus.COMPLETE),
            provider_used=planner_result.provider_used,
        )

    context.emit("Launching orchestration planner...")
    orchestrator_result = _execute(
        context,
        prompt=build_orchestrator_prompt(plan.summary, plan.tasks, max_workers),
        sandbox_mode=SandboxMode.READ_ONLY,
        model=settings.orchestrator_model,
        label="orchestrator",
    )
    orchestration = (
        parse_orchestration_output(orchestrator_result.output) if orchestrator_result.ok else None
    )
    if orchestration is None:
        logger.warning(
            "Orchestrator output unusable (%s); packing planner tasks greedily",
            orchestrator_result.warning or "schema mismatch",
        )
        waves = pack_waves(plan.tasks, max_workers)
    else:
        waves = waves_from_assignments(plan.tasks, orchestration.assignments, max_workers)

    provider_used = orchestrator_result.provider_used or planner_result.provider_used
    if not waves:
        return PassResult(
            executed=True,
            pass_status=PassStatus.COMPLETE,
            output_tail=_with_marker(
                "No executable worker waves were produced for this pass.",
                PassStatus.COMPLETE,
            ),
            provider_used=provider_used,
        )

    completed = 0
    for wave_number, wave in enumerate(waves, start=1):
        context.emit(f"Launching worker wave {wave_number}/{len(waves)}...")
        outcomes = _run_wave(prompt, wave, wave_number, context, max_workers)
        for task, result, error in outcomes:
            if result is not None and result.provider_used:
                provider_used = result.provider_used
            if error is None and result is not None and result.ok:
                completed += 1
                continue
            reason = f"Worker task {task.id} failed in wave {wave_number}."
            if result is None:
                warning, output = f"{reason} {error}", ""
            else:
                warning, output = result.warning or reason, result.output.strip()
            return PassResult(
                executed=False,
                pass_status=PassStatus.UNKNOWN,
                output_tail=output,
                provider_used=provider_used,
                warning=warning,
            )

    summary = (
        (orchestration.summary if orchestration else None) or plan.summary or ""
    ).strip() or "Orchestrated refactor pass completed."
    return PassResult(
        executed=True,
        pass_status=PassStatus.COMPLETE,
        output_tail=_with_marker(
            f"{summary} Executed {completed} worker task(s) across {len(waves)} wave(s).",
            PassStatus.COMPLETE,
        ),
        provider_used=provider_used,
    )


def _run_wave(
    prompt: str,
    wave: Sequence[PlannerTask],
    wave_number: int,
    context: RunContext,
    max_workers: int,
) -> list[tuple[PlannerTask, AgentRunResult | None, BaseException | None]]:
    """Run every worker of one wave concurrently and wait for all of them."""

    with ThreadPoolExecutor(
        max_workers=min(len(wave), max_workers),
        thread_name_prefix=f"wave-{wave_number}",
    ) as pool:
        futures: list[tuple[PlannerTask, Future[AgentRunResult]]] = [
            (
                task,
                pool.submit(
                    _execute,
                    context,
                    prompt=build_worker_prompt(prompt, task, wave_number),
                    sandbox_mode=SandboxMode.WORKSPACE_WRITE,
                    model=context.settings.worker_model,
                    label=f"worker-w{wave_number}-{task.id}",
                    expect_file_writes=True,
                ),
            )
            for task in wave
        ]

    outcomes: list[tuple[PlannerTask, AgentRunResult | None, BaseException | None]] = []
    for task, future in futures:
        error = future.exception()
        if error is not None:
            logger.error("Worker task %s raised: %s", task.id, error)
            outcomes.append((task, None, error))
        else:
            outcomes.append((task, future.result(), None))
    return outcomes


def _execute(  # noqa: PLR0913
    context: RunContext,
    *,
    prompt: str,
    sandbox_mode: SandboxMode,
    model: str | None,
    label: str,
    expect_file_writes: bool = False,
) -> AgentRunResult:
    return context.executor.execute(
        AgentRunRequest(
            prompt=prompt,
            provider=context.settings.provider,
            cwd=Path(context.target_dir),
            timeout_seconds=context.ai_timeout_seconds,
            sandbox_mode=sandbox_mode,
            model=model,
            max_concurrent_workers=1,
            expect_file_writes=expect_file_writes,
            label=label,
        ),
    )


def run_refactor_prompt(prompt: str, context: RunContext) -> PassResult:
    """Run one pass, orchestrated when possible, else as a single write-enabled call."""

    settings = context.settings
    if (
        settings.orchestration
        and context.executor.resolve_provider(settings.provider) == ORCHESTRATION_PROVIDER
    ):
        orchestrated = run_orchestrated_pass(prompt, context)
        if orchestrated is not None:
            return orchestrated
        context.emit("Retrying fallback mode...")

    result = context.executor.execute(
        AgentRunRequest(
            prompt=prompt,
            provider=settings.provider,
            cwd=Path(context.target_dir),
            timeout_seconds=context.ai_timeout_seconds,
            sandbox_mode=SandboxMode.WORKSPACE_WRITE,
            model=settings.model,
            max_concurrent_workers=settings.max_workers if settings.orchestration else None,
            expect_file_writes=True,
            label="refactor",
        ),
    )
    return PassResult(
        executed=result.ok,
        pass_status=parse_pass_status(result.output),
        output_tail=tail_lines(result.output),
        provider_used=result.provider_used,
        warning=result.warning,
    )
