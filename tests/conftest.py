"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
import threading
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from refactor_pilot.agent.base import AgentRunRequest, AgentRunResult
from refactor_pilot.config import Settings
from refactor_pilot.context import ExecutionSettings, RunContext

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m refactor_pilot.agent.echo_agent --prompt-file {{prompt_file}}"
)

Responder = Callable[[AgentRunRequest], AgentRunResult]


def _default_responder(request: AgentRunRequest) -> AgentRunResult:
    if request.label == "calibration":
        return AgentRunResult(ok=False, output="", warning="calibration disabled in tests")
    return AgentRunResult(
        ok=True,
        output="done\nREFACTOR_PILOT_STATUS: COMPLETE",
        provider_used="claude",
    )


class FakeExecutor:
    """Executor double recording requests and answering through a responder."""

    def __init__(self, responder: Responder | None = None, *, provider: str = "claude") -> None:
        self.responder = responder or _default_responder
        self.provider = provider
        self.requests: list[AgentRunRequest] = []
        self._lock = threading.Lock()

    def resolve_provider(self, requested: str) -> str | None:
        return self.provider

    def execute(self, request: AgentRunRequest) -> AgentRunResult:
        with self._lock:
            self.requests.append(request)
        return self.responder(request)

    def labels(self) -> list[str]:
        return [request.label for request in self.requests]


def make_context(
    target_dir: Path,
    executor: FakeExecutor,
    **overrides,
) -> RunContext:
    settings = overrides.pop("settings", ExecutionSettings(provider=executor.provider))
    return RunContext(
        target_dir=target_dir,
        executor=executor,
        settings=settings,
        ai_timeout_seconds=60,
        **overrides,
    )


def write_file(root: Path, relative: str, text: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, "utf-8")
    return path


@pytest.fixture()
def debt_repo(tmp_path: Path) -> Path:
    """Small Python repository with one debt candidate."""

    repo = tmp_path / "repo"
    write_file(repo, "pyproject.toml", '[project]\nname = "sample"\n')
    write_file(
        repo,
        "sample/service.py",
        "def load():\n    # TODO: cache results\n    return 1\n",
    )
    write_file(repo, "sample/__init__.py", "")
    return repo


@pytest.fixture()
def echo_agent(monkeypatch, tmp_path: Path):
    """Route the codex provider to the local echo agent."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    fake_codex = bin_dir / "codex"
    fake_codex.write_text("#!/usr/bin/env sh\nexit 0\n", "utf-8")
    fake_codex.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    original_from_env = Settings.from_env

    def _patched_from_env():
        settings = original_from_env()
        agent = replace(
            settings.agent,
            provider="codex",
            codex_command_template=ECHO_AGENT_COMMAND_TEMPLATE,
            stop_grace_seconds=0.0,
        )
        return replace(settings, agent=agent)

    monkeypatch.setattr(Settings, "from_env", staticmethod(_patched_from_env))
    return ECHO_AGENT_COMMAND_TEMPLATE
