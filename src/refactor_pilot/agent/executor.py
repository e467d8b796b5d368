"""CLI agent adapter implementing the AI execution contract."""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
from pathlib import Path

from refactor_pilot.agent.base import AgentRunRequest, AgentRunResult
from refactor_pilot.agent.cli_backend import (
    AgentExecutionError,
    CommandRunResult,
    build_run_args,
    run_command,
)
from refactor_pilot.agent.failure_classifier import classify_agent_failure, has_write_block_signal
from refactor_pilot.agent.providers import (
    BinaryLookup,
    extra_arguments,
    resolve_provider,
    sandbox_argument,
)
from refactor_pilot.agent.status import STATUS_MARKER_PREFIX, has_terminal_status_marker
from refactor_pilot.agent.workdir import CallWorkdirManager
from refactor_pilot.config import AgentSettings
from refactor_pilot.jsonio import write_json

logger = logging.getLogger(__name__)

FAILURE_SNIPPET_CHARS = 280
_WHITESPACE = re.compile(r"\s+")
_NO_PROVIDER_WARNING = "No compatible `codex` or `claude` binary was found."
_WRITE_BLOCKED_WARNING = (
    "AI reported that file writes are blocked in the current sandbox. Re-run with a "
    "write-enabled sandbox (`--sandbox workspace-write` for codex, "
    "`--permission-mode acceptEdits` for claude)."
)


def summarize_failure(reason: str, output: str) -> str:
    """Return ``reason: snippet`` with the output collapsed to one short line."""

    combined = _WHITESPACE.sub(" ", output).strip()
    if not combined:
        return reason
    if len(combined) > FAILURE_SNIPPET_CHARS:
        combined = f"{combined[:FAILURE_SNIPPET_CHARS]}..."
    return f"{reason}: {combined}"


class CliAgentExecutor:
    """Run agent calls through provider command templates.

    Each call gets its own artifact directory under ``calls_root`` holding the
    prompt, captured stdout/stderr and a small metadata document.
    """

    def __init__(
        self,
        settings: AgentSettings,
        *,
        calls_root: Path,
        which: BinaryLookup = shutil.which,
    ) -> None:
        self._settings = settings
        self._workdirs = CallWorkdirManager(calls_root)
        self._which = which

    def resolve_provider(self, requested: str) -> str | None:
        return resolve_provider(requested, which=self._which)

    def execute(self, request: AgentRunRequest) -> AgentRunResult:
        provider = self.resolve_provider(request.provider)
        if provider is None:
            return AgentRunResult(ok=False, output="", warning=_NO_PROVIDER_WARNING)

        workdir = self._workdirs.materialize(label=request.label, prompt=request.prompt)
        logger.info(
            "Launching %s%s for %s (sandbox=%s, timeout=%ss)",
            provider,
            f" ({request.model})" if request.model else "",
            request.label,
            request.sandbox_mode.value,
            request.timeout_seconds,
        )
        started = time.monotonic()
        try:
            run_args, _ = build_run_args(
                command_template=self._settings.command_template_for(provider),
                prompt=request.prompt,
                prompt_file=workdir.prompt_path,
                sandbox=sandbox_argument(provider, request.sandbox_mode),
                model=request.model,
                extra_args=extra_arguments(provider, request.max_concurrent_workers),
            )
            run = run_command(
                run_args=run_args,
                cwd=request.cwd,
                timeout_seconds=request.timeout_seconds,
                stdout_path=workdir.stdout_path,
                stderr_path=workdir.stderr_path,
                env=self._build_env(request, provider),
                stop_when=has_terminal_status_marker if request.expect_file_writes else None,
                stop_grace_seconds=self._settings.stop_grace_seconds,
            )
        except AgentExecutionError as error:
            logger.warning("Agent call %s could not start: %s", request.label, error)
            return AgentRunResult(
                ok=False,
                output="",
                provider_used=provider,
                warning=f"Could not complete AI task with {provider} ({error}).",
            )

        output = _combined_output(run)
        result = self._interpret(request, provider, run, output)
        write_json(
            workdir.meta_path,
            {
                "label": request.label,
                "provider": provider,
                "model": request.model,
                "sandbox_mode": request.sandbox_mode.value,
                "exit_code": run.exit_code,
                "timed_out": run.timed_out,
                "stopped_on_marker": run.stopped_on_marker,
                "ok": result.ok,
                "warning": result.warning,
                "elapsed_seconds": round(time.monotonic() - started, 2),
            },
        )
        logger.info(
            "Agent call %s finished: ok=%s exit_code=%s timed_out=%s",
            request.label,
            result.ok,
            run.exit_code,
            run.timed_out,
        )
        return result

    def _interpret(
        self,
        request: AgentRunRequest,
        provider: str,
        run: CommandRunResult,
        output: str,
    ) -> AgentRunResult:
        succeeded = run.stopped_on_marker or (not run.timed_out and run.exit_code == 0)
        if succeeded:
            if request.expect_file_writes and has_write_block_signal(
                output,
                status_prefix=STATUS_MARKER_PREFIX,
            ):
                return AgentRunResult(
                    ok=False,
                    output=output,
                    provider_used=provider,
                    warning=_WRITE_BLOCKED_WARNING,
                    exit_code=run.exit_code,
                )
            return AgentRunResult(
                ok=True,
                output=output,
                provider_used=provider,
                exit_code=run.exit_code,
            )

        if run.timed_out:
            if has_terminal_status_marker(output):
                return AgentRunResult(
                    ok=True,
                    output=output,
                    provider_used=provider,
                    warning=(
                        f"AI process timed out after emitting {STATUS_MARKER_PREFIX}; "
                        "accepting this result from the reported status marker."
                    ),
                    timed_out=True,
                    exit_code=run.exit_code,
                )
            reason = f"timeout after {request.timeout_seconds}s"
            return AgentRunResult(
                ok=False,
                output=output,
                provider_used=provider,
                warning=f"Could not complete AI task with {provider} "
                f"({summarize_failure(reason, output)}).",
                timed_out=True,
                exit_code=run.exit_code,
            )

        classification = classify_agent_failure(provider=provider, output=output)
        reason = f"exit code {run.exit_code}"
        return AgentRunResult(
            ok=False,
            output=output,
            provider_used=provider,
            warning=f"Could not complete AI task with {provider} "
            f"({summarize_failure(reason, output)}) [{classification.reason_code}].",
            exit_code=run.exit_code,
        )

    @staticmethod
    def _build_env(request: AgentRunRequest, provider: str) -> dict[str, str]:
        env = os.environ.copy()
        env["REFACTOR_PILOT_CALL_LABEL"] = request.label
        env["REFACTOR_PILOT_CALL_PROVIDER"] = provider
        env["REFACTOR_PILOT_CALL_SANDBOX"] = request.sandbox_mode.value
        if request.model:
            env["REFACTOR_PILOT_CALL_MODEL"] = request.model
        return env


def _combined_output(run: CommandRunResult) -> str:
    stdout = _read_text(run.stdout_path)
    stderr = _read_text(run.stderr_path)
    return f"{stdout}\n{stderr}".strip()


def _read_text(path: Path) -> str:
    try:
        return path.read_text("utf-8", errors="replace")
    except OSError:
        return ""
