"""Subprocess runner for CLI agents driven by command templates."""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

_POLL_INTERVAL_SECONDS = 0.1
_MARKER_CHECK_INTERVAL_SECONDS = 1.0
_MARKER_TAIL_BYTES = 8_192
TIMEOUT_EXIT_CODE = 124


class AgentExecutionError(RuntimeError):
    """Agent process could not be started, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class CommandRunResult:
    """Exit metadata of one agent process."""

    exit_code: int
    timed_out: bool
    stdout_path: Path
    stderr_path: Path
    stopped_on_marker: bool = False


def build_run_args(  # noqa: PLR0913
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    sandbox: str,
    model: str | None = None,
    extra_args: tuple[str, ...] = (),
) -> tuple[list[str], str]:
    """Render a command template into argv.

    Placeholders: ``{prompt}``, ``{prompt_file}``, ``{sandbox}``, ``{model_args}``
    and ``{extra_args}``. Single values are shell-quoted; the ``*_args``
    placeholders expand to zero or more arguments.
    """

    stripped = command_template.strip()
    if not stripped:
        raise AgentExecutionError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AgentExecutionError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )

    model_args = ("--model", model) if model else ()
    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            sandbox=shlex.quote(sandbox),
            model=shlex.quote(model or ""),
            model_args=shlex.join(model_args),
            extra_args=shlex.join(extra_args),
        )
    except (KeyError, IndexError) as error:
        raise AgentExecutionError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentExecutionError(
            "Agent command template rendered empty command.",
            transient=False,
        )
    return argv, argv[0]


def run_command(  # noqa: PLR0913
    *,
    run_args: list[str],
    cwd: Path,
    timeout_seconds: int,
    stdout_path: Path,
    stderr_path: Path,
    env: dict[str, str] | None = None,
    stop_when: Callable[[str], bool] | None = None,
    stop_grace_seconds: float = 10.0,
) -> CommandRunResult:
    """Run ``run_args`` with output captured to files and a hard timeout.

    When ``stop_when`` accepts the tail of stdout, the process gets
    ``stop_grace_seconds`` to exit on its own before it is terminated.
    """

    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)
    command_head = run_args[0]
    try:
        with (
            stdout_path.open("w", encoding="utf-8") as stdout_handle,
            stderr_path.open("w", encoding="utf-8") as stderr_handle,
        ):
            process = subprocess.Popen(  # noqa: S603
                run_args,
                cwd=cwd,
                env=env if env is not None else os.environ.copy(),
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                text=True,
            )
            return _wait_for_process(
                process=process,
                timeout_seconds=timeout_seconds,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                stop_when=stop_when,
                stop_grace_seconds=stop_grace_seconds,
            )
    except FileNotFoundError as error:
        raise AgentExecutionError(
            f"Agent command not found: {command_head}",
            transient=False,
        ) from error
    except OSError as error:
        raise AgentExecutionError(
            f"Agent command failed to start: {error}",
            transient=True,
        ) from error


def _wait_for_process(  # noqa: PLR0913
    *,
    process: subprocess.Popen[str],
    timeout_seconds: int,
    stdout_path: Path,
    stderr_path: Path,
    stop_when: Callable[[str], bool] | None,
    stop_grace_seconds: float,
) -> CommandRunResult:
    start_monotonic = time.monotonic()
    next_marker_check = start_monotonic + _MARKER_CHECK_INTERVAL_SECONDS
    stop_deadline: float | None = None

    while True:
        returncode = process.poll()
        if returncode is not None:
            return CommandRunResult(
                exit_code=returncode,
                timed_out=False,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            )

        now = time.monotonic()
        if now - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return CommandRunResult(
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            )

        if stop_when is not None and stop_deadline is None and now >= next_marker_check:
            next_marker_check = now + _MARKER_CHECK_INTERVAL_SECONDS
            if stop_when(_read_tail(stdout_path)):
                stop_deadline = now + max(0.0, stop_grace_seconds)

        if stop_deadline is not None and now >= stop_deadline:
            _terminate_process(process)
            return CommandRunResult(
                exit_code=0,
                timed_out=False,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                stopped_on_marker=True,
            )

        time.sleep(_POLL_INTERVAL_SECONDS)


def _read_tail(path: Path) -> str:
    try:
        with path.open("rb") as handle:
            handle.seek(0, os.SEEK_END)
            size = handle.tell()
            handle.seek(max(0, size - _MARKER_TAIL_BYTES))
            return handle.read().decode("utf-8", errors="replace")
    except OSError:
        return ""


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
