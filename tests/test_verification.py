from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from refactor_pilot.policy import build_refactor_policy
from refactor_pilot.scan.models import RepoScan
from refactor_pilot.verification import (
    ShellResult,
    VerificationCommandResult,
    VerificationPlan,
    build_verification_plan,
    format_actionable_failures,
    is_non_actionable_failure,
    map_command_for_package_manager,
    run_verification_cycle,
)
from tests.conftest import write_file

pytestmark = [
    allure.epic("Verification"),
    allure.feature("Post-pass Checks"),
]


def _scan(root: Path, stack: str) -> RepoScan:
    return RepoScan(
        target_dir=str(root),
        tech_stack=stack,
        project_shape="web-app",
        scanned_source_files=1,
        scanned_total_lines=10,
    )


@pytest.mark.parametrize(
    ("command", "manager", "expected"),
    [
        ("npm run lint", "pnpm", "pnpm run lint"),
        ("npx tsc --noEmit", "pnpm", "pnpm exec tsc --noEmit"),
        ("npx --no-install vitest run", "bun", "bun x vitest run"),
        ("npx tsc --noEmit", "npm", "npx --no-install tsc --noEmit"),
        ("cargo test", "yarn", "cargo test"),
    ],
)
def test_map_command_for_package_manager(command: str, manager: str, expected: str) -> None:
    assert map_command_for_package_manager(command, manager) == expected


def test_plan_uses_lockfile_manager_and_backfills_scripts(tmp_path: Path) -> None:
    write_file(tmp_path, "pnpm-lock.yaml", "lockfileVersion: 9\n")
    write_file(
        tmp_path,
        "package.json",
        json.dumps({"scripts": {"lint": "eslint .", "typecheck": "tsc", "dev": "next dev"}}),
    )
    policy = build_refactor_policy("Next.js, TypeScript", "web-app")

    plan = build_verification_plan(_scan(tmp_path, "Next.js, TypeScript"), policy)

    assert plan.package_manager == "pnpm"
    assert plan.commands == (
        "pnpm exec tsc --noEmit",
        "pnpm run lint",
        "pnpm run test",
        "pnpm run typecheck",
    )
    assert "pnpm run dev" not in plan.commands


def test_missing_scripts_are_skipped_without_running(tmp_path: Path) -> None:
    plan = VerificationPlan(commands=("npm run test",), package_manager="npm")
    progress: list[str] = []

    cycle = run_verification_cycle(plan, cwd=tmp_path, timeout_seconds=5, progress=progress.append)

    (result,) = cycle.results
    assert result.skipped
    assert not result.actionable_failure
    assert result.reason == "skipped (missing script: test)"
    assert progress == ["Verification 1/1: npm run test"]
    assert cycle.actionable_failures == ()


def test_real_failures_are_actionable_and_missing_tools_are_not(tmp_path: Path) -> None:
    plan = VerificationPlan(
        commands=(
            "echo ok",
            "echo 'assert 1 == 2' >&2; exit 1",
            "definitely-missing-verification-tool --check",
        ),
    )

    cycle = run_verification_cycle(plan, cwd=tmp_path, timeout_seconds=30)

    passed, failed, missing = cycle.results
    assert passed.ok
    assert failed.actionable_failure
    assert failed.reason is not None
    assert failed.reason.startswith("exit code 1: assert 1 == 2")
    assert missing.skipped
    assert not missing.actionable_failure
    assert cycle.actionable_failures == (failed,)


@pytest.mark.parametrize(
    "shell",
    [
        ShellResult(ok=False, stdout="", stderr="", reason="timeout after 30s"),
        ShellResult(ok=False, stdout="", stderr="Unable to acquire .next/lock", reason="exit 1"),
        ShellResult(ok=False, stdout="", stderr="npm ERR! Missing script: \"lint\"", reason="x"),
        ShellResult(ok=False, stdout="", stderr="sh: 1: ruff: not found", reason="exit code 127"),
        ShellResult(ok=False, stdout="", stderr="", reason="No such file", spawn_failed=True),
    ],
)
def test_environmental_failures_are_not_actionable(shell: ShellResult) -> None:
    assert is_non_actionable_failure(shell)


def test_lint_error_is_actionable() -> None:
    shell = ShellResult(
        ok=False,
        stdout="src/a.ts:1:1 error no-unused-vars",
        stderr="",
        reason="exit code 1",
    )

    assert not is_non_actionable_failure(shell)


def test_format_actionable_failures() -> None:
    failure = VerificationCommandResult(
        command="pytest -q",
        ok=False,
        actionable_failure=True,
        reason="exit code 1: 2 failed",
    )

    assert format_actionable_failures([]) == ""
    assert format_actionable_failures([failure]) == (
        "Verification failures from the previous pass (fix these first):\n"
        "- `pytest -q`: exit code 1: 2 failed"
    )
