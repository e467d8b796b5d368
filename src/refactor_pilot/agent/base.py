"""AI execution contract between the refactor engine and agent adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol


class SandboxMode(str, Enum):
    """Write policy requested from the external agent for one call."""

    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs for one blocking agent invocation."""

    prompt: str
    provider: str
    cwd: Path
    timeout_seconds: int
    sandbox_mode: SandboxMode = SandboxMode.READ_ONLY
    model: str | None = None
    max_concurrent_workers: int | None = None
    expect_file_writes: bool = False
    label: str = "agent"


@dataclass(slots=True)
class AgentRunResult:
    """Outcome of one agent invocation.

    ``output`` is opaque combined stdout/stderr text. ``warning`` carries the
    human readable reason for failures and for accepted degraded results.
    """

    ok: bool
    output: str
    provider_used: str | None = None
    warning: str | None = None
    timed_out: bool = False
    exit_code: int | None = None


class AgentExecutor(Protocol):
    """Protocol implemented by agent adapters."""

    def resolve_provider(self, requested: str) -> str | None:
        """Return the concrete provider a request for ``requested`` would use."""

    def execute(self, request: AgentRunRequest) -> AgentRunResult:
        """Run one agent call and return its outcome without raising."""
