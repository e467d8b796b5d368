from __future__ import annotations

from pathlib import Path

import allure
import pytest

from refactor_pilot.parsing import PlannerTask
from refactor_pilot.policy import build_refactor_policy, detect_signals, is_likely_node_backend
from refactor_pilot.prompts import (
    build_orchestrator_prompt,
    build_refactor_prompt,
    build_worker_prompt,
    prompt_snapshot_path,
    write_prompt_snapshot,
)
from refactor_pilot.scan.models import RepoScan

pytestmark = [
    allure.epic("Prompt Rendering"),
    allure.feature("Policy and Prompts"),
]


@pytest.mark.parametrize(
    ("stack", "shape", "expected"),
    [
        ("Rust", "cli", ("cargo fmt", "cargo clippy --fix", "cargo test")),
        ("Python", "library", ("ruff check .", "ruff format --check .", "pytest -q")),
        ("Go", "api-service", ("go test ./...", "golangci-lint run")),
        ("Vite, React, TypeScript", "web-app", ("npx tsc --noEmit", "vitest run", "vite build")),
        (
            "TypeScript, Node.js",
            "api-service",
            ("npx tsc --noEmit", "npm run test", "npm run build"),
        ),
        ("custom", "custom", ("npm run lint", "npm run test", "npm run build")),
    ],
)
def test_verification_commands_follow_stack(stack: str, shape: str, expected: tuple) -> None:
    assert build_refactor_policy(stack, shape).verification_commands == expected


def test_node_backend_detection_excludes_other_runtimes() -> None:
    assert is_likely_node_backend(detect_signals("Express"), "web-app")
    assert is_likely_node_backend(detect_signals("TypeScript"), "api-service")
    assert not is_likely_node_backend(detect_signals("TypeScript, Python"), "api-service")
    assert not is_likely_node_backend(detect_signals("Next.js, TypeScript"), "api-service")


def test_policy_guidance_and_notes() -> None:
    swift = build_refactor_policy("Swift, iOS", "mobile-app")
    nextjs = build_refactor_policy("Next.js, React, TypeScript", "web-app")

    assert [g.name for g in swift.stack_guidance] == ["swift-architecture"]
    assert any("swift-format" in note for note in swift.notes)
    assert [g.name for g in nextjs.stack_guidance] == ["react-architecture"]
    assert nextjs.baseline.name == "safe-refactoring"


def _scan(root: Path) -> RepoScan:
    return RepoScan(
        target_dir=str(root),
        tech_stack="Python",
        project_shape="library",
        scanned_source_files=3,
        scanned_total_lines=120,
    )


def test_execute_prompt_requires_status_marker_and_includes_notes(tmp_path: Path) -> None:
    policy = build_refactor_policy("Python", "library")

    prompt = build_refactor_prompt(
        _scan(tmp_path),
        policy,
        dry_run=False,
        notes="Keep the public API.",
        focus="Focus on the parser.",
        orchestration=True,
        max_workers=3,
    )

    assert "- Detected stack: Python" in prompt
    assert "- No source files detected." in prompt
    assert "Additional user notes:\nKeep the public API.\nFocus on the parser." in prompt
    assert "- Keep active worker count within 3." in prompt
    assert prompt.endswith(
        "- Final line required: REFACTOR_PILOT_STATUS: COMPLETE or REFACTOR_PILOT_STATUS: CONTINUE",
    )


def test_dry_run_prompt_forbids_edits(tmp_path: Path) -> None:
    policy = build_refactor_policy("Python", "library")

    prompt = build_refactor_prompt(_scan(tmp_path), policy, dry_run=True)

    assert "Mode: DRY-RUN" in prompt
    assert "Orchestration mode:" not in prompt
    assert "REFACTOR_PILOT_STATUS" not in prompt


def test_role_prompts_carry_task_ownership() -> None:
    task = PlannerTask(id="t1", title="Split", files=("a.py", "b.py"), instructions="Move helpers.")

    worker = build_worker_prompt("mission", task, wave=2)
    orchestrator = build_orchestrator_prompt(None, [task], max_workers=4)

    assert "Owned files (edit only these files):\n- a.py\n- b.py" in worker
    assert "Wave: 2" in worker
    assert worker.endswith("Final line required: REFACTOR_PILOT_STATUS: COMPLETE")
    assert "Planner summary: n/a" in orchestrator
    assert '"id": "t1"' in orchestrator


def test_prompt_snapshots_are_numbered_per_pass(tmp_path: Path) -> None:
    first = write_prompt_snapshot(tmp_path, "first prompt\n\n")
    third = write_prompt_snapshot(tmp_path, "third prompt", pass_number=3)

    assert first == tmp_path / ".refactor-pilot" / "refactor-prompt.generated.txt"
    assert third == prompt_snapshot_path(tmp_path, 3)
    assert third.name == "refactor-prompt.pass-03.generated.txt"
    assert first.read_text("utf-8") == "first prompt\n"
