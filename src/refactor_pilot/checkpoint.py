"""Resumable pass state stored under the target repository."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from refactor_pilot.backlog import Backlog
from refactor_pilot.context import ExecutionSettings
from refactor_pilot.jsonio import load_json, write_json
from refactor_pilot.scan.constants import STATE_DIR_NAME
from refactor_pilot.scan.models import RepoScan

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
CHECKPOINT_FILE_NAME = "refactor-resume.json"


class CheckpointError(RuntimeError):
    """Checkpoint file could not be removed."""


@dataclass(slots=True, frozen=True)
class Checkpoint:
    """Persisted state of an interrupted multi-pass run."""

    target_dir: str
    planned_passes: int
    next_pass: int
    max_files: int
    scan: RepoScan
    backlog: Backlog
    execution: ExecutionSettings | None = None
    updated_at: str = ""
    version: int = CHECKPOINT_VERSION

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": self.version,
            "targetDir": self.target_dir,
            "plannedPasses": self.planned_passes,
            "nextPass": self.next_pass,
            "maxFiles": self.max_files,
            "scan": self.scan.to_dict(),
            "backlog": self.backlog.to_dict(),
            "updatedAt": self.updated_at,
        }
        if self.execution is not None:
            payload["executionSettings"] = self.execution.to_dict()
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Checkpoint:
        """Parse and validate a checkpoint document.

        Raises ``ValueError``/``TypeError`` for any structural or range problem.
        """

        if raw.get("version") != CHECKPOINT_VERSION:
            raise ValueError(f"Unsupported checkpoint version: {raw.get('version')!r}")
        target_dir = raw.get("targetDir")
        if not isinstance(target_dir, str) or not target_dir:
            raise ValueError("targetDir must be a non-empty string")
        planned_passes = _int_field(raw, "plannedPasses")
        next_pass = _int_field(raw, "nextPass")
        max_files = _int_field(raw, "maxFiles")
        if planned_passes < 1:
            raise ValueError("plannedPasses must be >= 1")
        if not 1 <= next_pass <= planned_passes + 1:
            raise ValueError(
                f"nextPass {next_pass} is outside 1..{planned_passes + 1}",
            )
        if max_files < 1:
            raise ValueError("maxFiles must be >= 1")
        updated_at = raw.get("updatedAt", "")
        if not isinstance(updated_at, str):
            raise TypeError("updatedAt must be a string")
        raw_execution = raw.get("executionSettings")
        return cls(
            target_dir=target_dir,
            planned_passes=planned_passes,
            next_pass=next_pass,
            max_files=max_files,
            scan=RepoScan.from_dict(raw.get("scan")),
            backlog=Backlog.from_dict(raw.get("backlog")),
            execution=(
                ExecutionSettings.from_dict(raw_execution) if raw_execution is not None else None
            ),
            updated_at=updated_at,
        )


class CheckpointStore:
    """Load, save and clear ``<target>/.refactor-pilot/refactor-resume.json``."""

    def __init__(self, target_dir: Path | str) -> None:
        self.target_dir = Path(target_dir).resolve()
        self.path = self.target_dir / STATE_DIR_NAME / CHECKPOINT_FILE_NAME

    def load(self) -> Checkpoint | None:
        """Return the stored checkpoint, or ``None`` when absent or invalid."""

        if not self.path.exists():
            return None
        try:
            checkpoint = Checkpoint.from_dict(load_json(self.path))
        except (OSError, TypeError, ValueError) as error:
            logger.warning("Ignoring invalid checkpoint %s: %s", self.path, error)
            return None
        if Path(checkpoint.target_dir).resolve() != self.target_dir:
            logger.warning(
                "Ignoring checkpoint for %s in %s",
                checkpoint.target_dir,
                self.target_dir,
            )
            return None
        return checkpoint

    def save(  # noqa: PLR0913
        self,
        *,
        planned_passes: int,
        next_pass: int,
        max_files: int,
        scan: RepoScan,
        backlog: Backlog,
        execution: ExecutionSettings | None,
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            target_dir=str(self.target_dir),
            planned_passes=planned_passes,
            next_pass=next_pass,
            max_files=max_files,
            scan=scan,
            backlog=backlog,
            execution=execution,
            updated_at=datetime.now(tz=UTC).isoformat(),
        )
        write_json(self.path, checkpoint.to_dict())
        logger.debug("Checkpoint saved: next pass %d of %d", next_pass, planned_passes)
        return checkpoint

    def clear(self) -> bool:
        """Delete the checkpoint file; a missing file is not an error."""

        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as error:
            raise CheckpointError(f"Could not remove checkpoint {self.path}: {error}") from error
        return True


def _int_field(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{key} must be an integer")
    return value
