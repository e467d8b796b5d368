"""Immutable per-run values threaded through the pass loop."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from refactor_pilot.agent.base import AgentExecutor
from refactor_pilot.config import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_ORCHESTRATOR_MODEL,
    DEFAULT_PLANNER_MODEL,
    DEFAULT_WORKER_MODEL,
    ExecutionDefaults,
    normalize_max_workers,
    normalize_model,
    normalize_provider,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def _ignore_progress(_message: str) -> None:
    return None


@dataclass(slots=True, frozen=True)
class ExecutionSettings:
    """Agent execution choices persisted with a checkpoint.

    A resumed run adopts the saved value wholesale so it behaves exactly like
    the interrupted one.
    """

    provider: str = "auto"
    model: str | None = None
    planner_model: str = DEFAULT_PLANNER_MODEL
    orchestrator_model: str = DEFAULT_ORCHESTRATOR_MODEL
    worker_model: str = DEFAULT_WORKER_MODEL
    orchestration: bool = True
    max_workers: int = DEFAULT_MAX_WORKERS
    notes: str | None = None

    @classmethod
    def from_defaults(
        cls,
        defaults: ExecutionDefaults,
        *,
        provider: str,
        notes: str | None = None,
    ) -> ExecutionSettings:
        return cls(
            provider=provider,
            model=defaults.model,
            planner_model=defaults.planner_model,
            orchestrator_model=defaults.orchestrator_model,
            worker_model=defaults.worker_model,
            orchestration=defaults.orchestration,
            max_workers=defaults.max_workers,
            notes=notes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "plannerModel": self.planner_model,
            "orchestratorModel": self.orchestrator_model,
            "workerModel": self.worker_model,
            "orchestration": self.orchestration,
            "maxWorkers": self.max_workers,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, raw: object) -> ExecutionSettings:
        if not isinstance(raw, dict):
            raise TypeError("executionSettings must be an object")
        orchestration = raw.get("orchestration", True)
        max_workers = raw.get("maxWorkers", DEFAULT_MAX_WORKERS)
        notes = raw.get("notes")
        if not isinstance(orchestration, bool):
            raise TypeError("executionSettings.orchestration must be a boolean")
        if isinstance(max_workers, bool) or not isinstance(max_workers, int):
            raise TypeError("executionSettings.maxWorkers must be an integer")
        if notes is not None and not isinstance(notes, str):
            raise TypeError("executionSettings.notes must be a string")
        return cls(
            provider=normalize_provider(_optional_str(raw, "provider")),
            model=normalize_model(_optional_str(raw, "model")),
            planner_model=normalize_model(_optional_str(raw, "plannerModel"))
            or DEFAULT_PLANNER_MODEL,
            orchestrator_model=normalize_model(_optional_str(raw, "orchestratorModel"))
            or DEFAULT_ORCHESTRATOR_MODEL,
            worker_model=normalize_model(_optional_str(raw, "workerModel")) or DEFAULT_WORKER_MODEL,
            orchestration=orchestration,
            max_workers=normalize_max_workers(max_workers),
            notes=notes,
        )


@dataclass(slots=True, frozen=True)
class RunContext:
    """Everything one refactor run needs, passed explicitly to each step."""

    target_dir: Path
    executor: AgentExecutor
    settings: ExecutionSettings
    ai_timeout_seconds: int
    dry_run: bool = False
    explicit_max_files: bool = False
    explicit_max_passes: bool = False
    verify: bool = False
    verify_timeout_seconds: int = 360
    progress: ProgressCallback = field(default=_ignore_progress)

    def emit(self, message: str) -> None:
        logger.info("%s", message)
        self.progress(message)


def _optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"executionSettings.{key} must be a string")
    return value
