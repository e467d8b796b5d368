"""Prompt builders for refactor passes, calibration and orchestration roles."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

from refactor_pilot.agent.status import STATUS_MARKER_PREFIX
from refactor_pilot.parsing import PlannerTask
from refactor_pilot.policy import RefactorPolicy
from refactor_pilot.scan.constants import STATE_DIR_NAME
from refactor_pilot.scan.models import RepoScan

T = TypeVar("T")

FIRST_PASS_SNAPSHOT_NAME = "refactor-prompt.generated.txt"


def _rows(entries: Iterable[T], formatter: Callable[[T], str], fallback: str) -> list[str]:
    rows = [formatter(entry) for entry in entries]
    return rows or [fallback]


def _combined_notes(*values: str | None) -> str:
    return "\n".join(value.strip() for value in values if value and value.strip())


def build_refactor_prompt(  # noqa: PLR0913
    scan: RepoScan,
    policy: RefactorPolicy,
    *,
    dry_run: bool,
    notes: str | None = None,
    focus: str | None = None,
    orchestration: bool = False,
    max_workers: int = 12,
) -> str:
    """Render the mission prompt for one refactor pass from the current scan."""

    lines: list[str] = [
        "You are a senior refactoring agent working directly inside this repository.",
        "",
        "Primary objective:",
        "- Make the codebase scalable and comfortable for AI-assisted maintenance.",
        "- Remove low-value comments while preserving useful documentation.",
        "- Split monolithic and over-coupled files into cohesive modules with explicit boundaries.",
        "",
        "Hard constraints:",
        "- Preserve behavior and public contracts (CLI flags, API payloads, output semantics).",
        "- Do not change user-facing UI/UX behavior, visual design, or interaction flow "
        "unless explicitly requested.",
        "- Keep business logic outcomes and side-effect semantics identical.",
        "- Prefer many small safe refactor steps over one large rewrite.",
        "- Do not introduce placeholder logic, speculative abstractions, or TODO-only edits.",
        "- Keep deterministic ordering and outputs.",
        "- If contracts or architecture boundaries change, update docs in the same change.",
        "",
        "Repository scan summary:",
        f"- Detected stack: {scan.tech_stack}",
        f"- Inferred project shape: {scan.project_shape}",
        f"- Scanned source files: {scan.scanned_source_files}",
        f"- Scanned source lines: {scan.scanned_total_lines}",
        f"- Scan reached configured file cap: {'yes' if scan.reached_file_cap else 'no'}",
        "",
        "Large files (with structural metrics):",
        *_rows(
            scan.largest_files,
            lambda entry: (
                f"- {entry.path} ({entry.line_count} LOC, fan-in {entry.fan_in}, "
                f"exports {entry.export_count}, functions {entry.function_count})"
            ),
            "- No source files detected.",
        ),
        "",
        "Monolith split candidates:",
        *_rows(
            scan.monolith_candidates,
            lambda entry: (
                f"- {entry.path} ({entry.line_count} LOC, imports {entry.internal_import_count}, "
                f"exports {entry.export_count}, functions {entry.function_count})"
            ),
            "- No monolith-sized files above threshold were detected.",
        ),
        "",
        "Coupling hotspots (priority refactor targets):",
        *_rows(
            scan.coupling_candidates,
            lambda entry: (
                f"- {entry.path} (score {entry.score:g}; "
                f"{', '.join(entry.reasons) or 'coupling hotspot'}). "
                f"Proposed split: {entry.split_hypothesis}"
            ),
            "- No high-coupling hotspots detected.",
        ),
        "",
        "Technical debt hotspots:",
        *_rows(
            scan.debt_candidates,
            lambda entry: (
                f"- {entry.path} (TODO/FIXME {entry.todo_count}, "
                f"low-signal comments {entry.low_signal_comment_lines})."
            ),
            "- No TODO/FIXME or comment-debt hotspots detected.",
        ),
        "",
        "Comment cleanup candidates:",
        *_rows(
            scan.comment_cleanup_candidates,
            lambda entry: (
                f"- {entry.path} ({entry.low_signal_comment_lines}/{entry.comment_lines} "
                f"low-signal comment lines, {entry.line_count} LOC)"
            ),
            "- No strong low-signal comment hotspots were detected.",
        ),
        "",
        "Refactor policy:",
        f"- Baseline: {policy.baseline.name} ({policy.baseline.purpose})",
        *(
            f"- Stack add-on: {guidance.name} ({guidance.applies_when}): {guidance.purpose}"
            for guidance in policy.stack_guidance
        ),
        "",
        "Verification commands (run if available in this repo):",
        *(f"- {command}" for command in policy.verification_commands),
        "",
        "Notes:",
        *(_rows(policy.notes, lambda note: f"- {note}", "- None.")),
        "",
    ]

    user_notes = _combined_notes(notes, focus)
    if user_notes:
        lines.extend(["Additional user notes:", user_notes, ""])

    lines.extend(
        [
            "Execution workflow:",
            "1) Establish baseline by running available verification commands before edits.",
            "2) Start with top coupling hotspots and monolith files; make focused extractions.",
            "3) Split files by responsibility, isolate contracts/types, and reduce import fan-out.",
            "4) Remove low-value comments and convert intent into concise, high-signal docs.",
            "5) Re-run verification commands and resolve regressions immediately.",
            "6) Never run watch/dev-server commands (`dev`, `start`, `--watch`, `--hot`) "
            "during refactor verification.",
            "7) If a verification command hangs (for example lock contention), stop it and "
            "report timeout/lock instead of blocking the pass.",
            "8) Return a concise report with changed files, architectural effect, and "
            "verification results.",
            "",
        ],
    )

    if orchestration:
        lines.extend(
            [
                "Orchestration mode:",
                "- Use one coordinator plus workers with strict file ownership.",
                "- A file can be owned by only one worker at a time; no overlapping edits.",
                "- Workers must not delete directories.",
                "- Workers must not spawn additional subagents.",
                "- Merge worker outputs at checkpoints and run verification between checkpoints.",
                f"- Keep active worker count within {max_workers}.",
                "",
            ],
        )

    if dry_run:
        lines.extend(
            [
                "Mode: DRY-RUN",
                "- Do not modify any files.",
                "- Return a concrete, ordered refactor plan with file-level actions "
                "and checkpoints.",
            ],
        )
    else:
        lines.extend(
            [
                "Mode: EXECUTE",
                "- Apply the refactor changes directly in this repository now.",
                "- Keep changes focused and behavior-preserving.",
                "- End with the change report.",
                f"- Final line required: {STATUS_MARKER_PREFIX}: COMPLETE or "
                f"{STATUS_MARKER_PREFIX}: CONTINUE",
            ],
        )
    return "\n".join(lines)


def build_calibration_prompt(
    scan: RepoScan,
    candidates: Sequence[Mapping[str, Any]],
    notes: str | None = None,
) -> str:
    """Ask a read-only agent to confirm which heuristic candidates are real."""

    payload = {
        "repository": {
            "techStack": scan.tech_stack,
            "projectShape": scan.project_shape,
            "scannedSourceFiles": scan.scanned_source_files,
            "scannedSourceLines": scan.scanned_total_lines,
        },
        "candidates": list(candidates),
    }
    lines = [
        "You are auditing refactor signals for a software codebase.",
        "Classify ONLY provided candidate files into refactor categories.",
        "Return ONLY JSON. No markdown.",
        "",
        "Category semantics:",
        "- monolithPaths: file is truly multi-responsibility and should be split.",
        "- couplingPaths: file has problematic fan-in/dependency coupling.",
        "- debtPaths: file has actionable TODO/FIXME/debt risk.",
        "- commentCleanupPaths: file has low-signal comments worth cleanup.",
        "",
        "Important guidance:",
        "- Calibration is conservative: remove false positives, do not invent new categories.",
        "- A large file is NOT automatically monolithic.",
        "- Template-heavy files containing generated script text/literals should NOT be "
        "labeled monolith unless orchestration complexity is clearly high.",
        "- Facade/barrel files that mostly re-export contracts should NOT be marked as "
        "coupling hotspots.",
        "- Select only paths from candidates.",
        "",
        "Required output schema:",
        '{"monolithPaths": string[], "couplingPaths": string[], "debtPaths": string[], '
        '"commentCleanupPaths": string[]}',
        "",
    ]
    if notes and notes.strip():
        lines.extend(["User notes for calibration context:", notes.strip(), ""])
    lines.extend(["Candidate payload:", json.dumps(payload, indent=2)])
    return "\n".join(lines)


def build_planner_prompt(mission_prompt: str, max_workers: int) -> str:
    return "\n".join(
        [
            "You are the lead planner for a safe refactor orchestration run.",
            "Analyze the mission and produce only JSON matching this exact shape:",
            "{",
            '  "refactorNeeded": boolean,',
            '  "summary": string,',
            '  "tasks": [',
            "    {",
            '      "id": string,',
            '      "title": string,',
            '      "files": string[],',
            '      "instructions": string',
            "    }",
            "  ]",
            "}",
            "",
            "Rules:",
            "- Set refactorNeeded=false when the mission has no actionable engineering edits.",
            "- Keep tasks behavior-preserving and deterministic.",
            f"- Design for parallel worker execution up to {max_workers} workers.",
            "- Do not request directory deletions.",
            "- Do not request worker-spawned subagents.",
            "",
            "Mission prompt:",
            mission_prompt,
        ],
    )


def build_orchestrator_prompt(
    planner_summary: str | None,
    tasks: Sequence[PlannerTask],
    max_workers: int,
) -> str:
    tasks_payload = [
        {
            "id": task.id,
            "title": task.title,
            "files": list(task.files),
            "instructions": task.instructions,
        }
        for task in tasks
    ]
    return "\n".join(
        [
            "You are the execution orchestrator.",
            "Transform planner tasks into wave assignments and output only JSON matching "
            "this exact shape:",
            "{",
            '  "summary": string,',
            '  "assignments": [',
            "    {",
            '      "taskId": string,',
            '      "wave": number,',
            '      "files": string[],',
            '      "workerInstructions": string',
            "    }",
            "  ]",
            "}",
            "",
            "Constraints:",
            f"- A wave can run up to {max_workers} workers.",
            "- Avoid overlapping files inside the same wave.",
            "- Keep worker instructions precise and file-scoped.",
            "- No directory deletion.",
            "- No nested worker spawning.",
            "",
            f"Planner summary: {planner_summary}" if planner_summary else "Planner summary: n/a",
            "Planner tasks JSON:",
            json.dumps(tasks_payload, indent=2),
        ],
    )


def build_worker_prompt(mission_prompt: str, task: PlannerTask, wave: int) -> str:
    return "\n".join(
        [
            "You are an implementation worker in a coordinated refactor run.",
            f"Task id: {task.id}",
            f"Task title: {task.title}",
            f"Wave: {wave}",
            "",
            "Owned files (edit only these files):",
            *(f"- {path}" for path in task.files),
            "",
            "Worker rules:",
            "- Edit only owned files listed above.",
            "- Do not delete directories.",
            "- Do not spawn subagents.",
            "- Keep behavior-preserving changes only.",
            "- Do not alter user-visible UI/UX behavior or visual design.",
            "- Keep business logic outcomes and side effects unchanged.",
            "- Use only one-shot verification commands (no dev servers, no watch mode).",
            "- If verification hangs or lock contention occurs, stop and report it; "
            "do not block the session.",
            "",
            "Task instructions:",
            task.instructions,
            "",
            "Global mission context:",
            mission_prompt,
            "",
            "Return a concise completion note.",
            f"Final line required: {STATUS_MARKER_PREFIX}: COMPLETE",
        ],
    )


def prompt_snapshot_path(target_dir: Path, pass_number: int = 1) -> Path:
    name = (
        FIRST_PASS_SNAPSHOT_NAME
        if pass_number <= 1
        else f"refactor-prompt.pass-{pass_number:02d}.generated.txt"
    )
    return target_dir / STATE_DIR_NAME / name


def write_prompt_snapshot(target_dir: Path, prompt: str, pass_number: int = 1) -> Path:
    """Persist the prompt sent for ``pass_number`` and return its path."""

    path = prompt_snapshot_path(target_dir, pass_number)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{prompt.rstrip()}\n", "utf-8")
    return path
