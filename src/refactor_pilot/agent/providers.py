"""Provider selection and per-provider command arguments."""

from __future__ import annotations

import shutil
from collections.abc import Callable

from refactor_pilot.agent.base import SandboxMode

PROVIDER_PREFERENCE: tuple[str, ...] = ("codex", "claude")

_CLAUDE_PERMISSION_MODES = {
    SandboxMode.READ_ONLY: "plan",
    SandboxMode.WORKSPACE_WRITE: "acceptEdits",
}

BinaryLookup = Callable[[str], str | None]


def resolve_provider(requested: str, *, which: BinaryLookup = shutil.which) -> str | None:
    """Map ``auto``/``codex``/``claude`` to an installed provider, or ``None``."""

    if requested in PROVIDER_PREFERENCE:
        return requested if which(requested) else None
    for candidate in PROVIDER_PREFERENCE:
        if which(candidate):
            return candidate
    return None


def sandbox_argument(provider: str, sandbox_mode: SandboxMode) -> str:
    if provider == "claude":
        return _CLAUDE_PERMISSION_MODES[sandbox_mode]
    return sandbox_mode.value


def extra_arguments(provider: str, max_concurrent_workers: int | None) -> tuple[str, ...]:
    if provider == "codex" and max_concurrent_workers is not None:
        return ("-c", f"agents.max_threads={max_concurrent_workers}")
    return ()
