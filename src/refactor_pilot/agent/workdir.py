"""Per-call artifact directories for agent invocations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

_UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(slots=True)
class CallWorkdir:
    """Materialized file paths for one agent call."""

    base_dir: Path
    prompt_path: Path
    stdout_path: Path
    stderr_path: Path
    meta_path: Path


class CallWorkdirManager:
    """Creates a deterministic directory layout for each agent call."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def materialize(self, *, label: str, prompt: str) -> CallWorkdir:
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S")
        safe_label = _UNSAFE_LABEL_CHARS.sub("-", label).strip("-") or "agent"
        base_dir = self.root_dir / f"{stamp}-{safe_label}-{uuid4().hex[:8]}"
        input_dir = base_dir / "input"
        output_dir = base_dir / "output"
        input_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)

        prompt_path = input_dir / "prompt.txt"
        prompt_path.write_text(prompt, "utf-8")
        return CallWorkdir(
            base_dir=base_dir,
            prompt_path=prompt_path,
            stdout_path=output_dir / "agent_stdout.log",
            stderr_path=output_dir / "agent_stderr.log",
            meta_path=base_dir / "call.json",
        )
