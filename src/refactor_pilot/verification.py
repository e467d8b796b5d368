"""Post-pass verification commands and actionable failure classification."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from refactor_pilot.config import DEFAULT_VERIFY_TIMEOUT_SECONDS
from refactor_pilot.policy import RefactorPolicy
from refactor_pilot.scan.models import RepoScan

logger = logging.getLogger(__name__)

SCRIPT_CANDIDATES: tuple[str, ...] = ("lint", "typecheck", "test", "build", "check", "verify")
FAILURE_SNIPPET_CHARS = 200

_LOCK_CONTENTION_MARKERS: tuple[str, ...] = (
    ".next/lock",
    "another process is running",
    "could not acquire lock",
    "timed out waiting for lock",
    "resource busy",
)
_MISSING_TOOL_MARKERS: tuple[str, ...] = (
    "missing script:",
    "missing tasks in project",
    "there are no scripts specified",
    "could not determine executable to run",
)
_SHELL_MISSING_COMMAND = re.compile(
    r"(?:^|\n)(?:zsh|bash|sh):\s*(?:\d+:\s*)?.*(?:command not found|no such file or directory)",
    re.IGNORECASE,
)
_NPM_SCRIPT = re.compile(r"^npm\s+run\s+([A-Za-z0-9:_-]+)$", re.IGNORECASE)
_NPX = re.compile(r"^npx(?:\s+--no-install)?\s+(.+)$", re.IGNORECASE)
_SCRIPT_INVOCATION = re.compile(r"^(npm|pnpm|yarn|bun)\s+run\s+([A-Za-z0-9:_-]+)$", re.IGNORECASE)
_EXEC_PREFIX = {"pnpm": "pnpm exec", "bun": "bun x", "yarn": "yarn", "npm": "npx --no-install"}
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class VerificationPlan:
    commands: tuple[str, ...]
    package_manager: str = "npm"
    scripts: frozenset[str] = field(default_factory=frozenset)


@dataclass(slots=True, frozen=True)
class VerificationCommandResult:
    """Result of one verification command."""

    command: str
    ok: bool
    skipped: bool = False
    actionable_failure: bool = False
    reason: str | None = None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0


@dataclass(slots=True, frozen=True)
class VerificationCycleResult:
    results: tuple[VerificationCommandResult, ...] = ()

    @property
    def actionable_failures(self) -> tuple[VerificationCommandResult, ...]:
        return tuple(result for result in self.results if result.actionable_failure)


@dataclass(slots=True, frozen=True)
class ShellResult:
    ok: bool
    stdout: str
    stderr: str
    reason: str | None = None
    spawn_failed: bool = False


def detect_package_manager(root: Path) -> str:
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (root / "yarn.lock").exists():
        return "yarn"
    if (root / "bun.lockb").exists() or (root / "bun.lock").exists():
        return "bun"
    return "npm"


def read_package_scripts(root: Path) -> frozenset[str]:
    package_json = root / "package.json"
    if not package_json.exists():
        return frozenset()
    try:
        parsed = json.loads(package_json.read_text("utf-8"))
    except (OSError, ValueError) as error:
        logger.debug("Unreadable package.json in %s: %s", root, error)
        return frozenset()
    scripts = parsed.get("scripts") if isinstance(parsed, dict) else None
    if not isinstance(scripts, dict):
        return frozenset()
    return frozenset(name.lower() for name in scripts)


def map_command_for_package_manager(command: str, package_manager: str) -> str:
    """Rewrite ``npm run``/``npx`` policy commands for the repository's package manager."""

    normalized = command.strip()
    script = _NPM_SCRIPT.match(normalized)
    if script:
        return f"{package_manager} run {script.group(1)}"
    npx = _NPX.match(normalized)
    if npx:
        return f"{_EXEC_PREFIX[package_manager]} {npx.group(1)}".strip()
    return normalized


def build_verification_plan(scan: RepoScan, policy: RefactorPolicy) -> VerificationPlan:
    root = Path(scan.target_dir)
    package_manager = detect_package_manager(root)
    scripts = read_package_scripts(root)
    commands = [
        map_command_for_package_manager(command, package_manager)
        for command in policy.verification_commands
    ]
    commands.extend(
        f"{package_manager} run {script}" for script in SCRIPT_CANDIDATES if script in scripts
    )
    return VerificationPlan(
        commands=tuple(_unique(commands)),
        package_manager=package_manager,
        scripts=scripts,
    )


def run_verification_cycle(
    plan: VerificationPlan,
    *,
    cwd: Path,
    timeout_seconds: int = DEFAULT_VERIFY_TIMEOUT_SECONDS,
    progress: Callable[[str], None] | None = None,
) -> VerificationCycleResult:
    """Run each planned command once, classifying failures.

    Only failures that point at real lint/test/build defects are actionable.
    Missing scripts or tools, timeouts and lock contention are skipped.
    """

    results: list[VerificationCommandResult] = []
    total = len(plan.commands)
    for index, command in enumerate(plan.commands, start=1):
        if progress is not None:
            progress(f"Verification {index}/{total}: {command}")

        invocation = _SCRIPT_INVOCATION.match(command)
        if invocation and invocation.group(2).lower() not in plan.scripts:
            results.append(
                VerificationCommandResult(
                    command=command,
                    ok=False,
                    skipped=True,
                    reason=f"skipped (missing script: {invocation.group(2).lower()})",
                ),
            )
            continue

        started = time.monotonic()
        shell = run_shell_command(command, cwd=cwd, timeout_seconds=timeout_seconds)
        duration = round(time.monotonic() - started, 3)
        if shell.ok:
            results.append(
                VerificationCommandResult(
                    command=command,
                    ok=True,
                    stdout=shell.stdout,
                    stderr=shell.stderr,
                    duration_seconds=duration,
                ),
            )
            continue

        actionable = not is_non_actionable_failure(shell)
        summary = _summarize_failure(shell)
        results.append(
            VerificationCommandResult(
                command=command,
                ok=False,
                skipped=not actionable,
                actionable_failure=actionable,
                reason=summary if actionable else f"skipped ({summary})",
                stdout=shell.stdout,
                stderr=shell.stderr,
                duration_seconds=duration,
            ),
        )
        logger.info("Verification command %r failed (actionable=%s)", command, actionable)
    return VerificationCycleResult(results=tuple(results))


def run_shell_command(command: str, *, cwd: Path, timeout_seconds: int) -> ShellResult:
    shell = os.environ.get("SHELL", "").strip() or "sh"
    try:
        completed = subprocess.run(  # noqa: S603
            [shell, "-lc", command],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        return ShellResult(
            ok=False,
            stdout=_as_text(error.stdout),
            stderr=_as_text(error.stderr),
            reason=f"timeout after {timeout_seconds}s",
        )
    except OSError as error:
        return ShellResult(ok=False, stdout="", stderr="", reason=str(error), spawn_failed=True)

    if completed.returncode != 0:
        return ShellResult(
            ok=False,
            stdout=completed.stdout,
            stderr=completed.stderr,
            reason=f"exit code {completed.returncode}",
        )
    return ShellResult(ok=True, stdout=completed.stdout, stderr=completed.stderr)


def is_non_actionable_failure(result: ShellResult) -> bool:
    reason = (result.reason or "").lower()
    output = f"{result.stderr}\n{result.stdout}"
    lowered = output.lower()
    if reason.startswith("timeout after") or result.spawn_failed:
        return True
    if any(marker in lowered for marker in _LOCK_CONTENTION_MARKERS):
        return True
    if _SHELL_MISSING_COMMAND.search(output):
        return True
    # 127 is the shell's "command not found" exit status
    if reason == "exit code 127":
        return True
    return any(marker in lowered for marker in _MISSING_TOOL_MARKERS)


def format_actionable_failures(failures: Iterable[VerificationCommandResult]) -> str:
    """Render failures as notes for the next pass prompt."""

    lines = [f"- `{failure.command}`: {failure.reason}" for failure in failures]
    if not lines:
        return ""
    return "\n".join(["Verification failures from the previous pass (fix these first):", *lines])


def _summarize_failure(result: ShellResult) -> str:
    reason = result.reason or "unknown failure"
    combined = _WHITESPACE.sub(" ", f"{result.stderr}\n{result.stdout}").strip()
    if not combined:
        return reason
    if len(combined) > FAILURE_SNIPPET_CHARS:
        combined = f"{combined[:FAILURE_SNIPPET_CHARS]}..."
    return f"{reason}: {combined}"


def _unique(commands: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(command.strip() for command in commands if command.strip()))


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
