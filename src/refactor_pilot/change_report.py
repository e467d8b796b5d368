"""Source tree fingerprints for the end-of-run change summary."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from refactor_pilot.scan.analyzer import extension_of
from refactor_pilot.scan.constants import SCAN_SKIP_DIRS, SOURCE_EXTENSIONS

MAX_VERIFICATION_SIGNALS = 8

_VERIFICATION_SIGNAL = re.compile(
    r"(lint|test|build|tsc|vitest|vite build|cargo|swift test|pytest|go test|gradle|lock|"
    r"timeout|missing script)",
    re.IGNORECASE,
)


@dataclass(slots=True, frozen=True)
class SourceSnapshot:
    """``size:mtime`` fingerprint per relative source path."""

    files: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SourceDiff:
    added: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def changed_count(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)


def capture_source_snapshot(target_dir: Path, max_files: int) -> SourceSnapshot:
    root = target_dir.resolve()
    files: dict[str, str] = {}
    stack = [root]
    while stack and len(files) < max_files:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda entry: entry.name)
        except OSError:
            continue
        for entry in entries:
            if len(files) >= max_files:
                break
            if entry.is_dir() and not entry.is_symlink():
                if entry.name not in SCAN_SKIP_DIRS:
                    stack.append(entry)
                continue
            if not entry.is_file() or extension_of(entry.name) not in SOURCE_EXTENSIONS:
                continue
            try:
                stat = entry.stat()
            except OSError:
                continue
            relative = entry.relative_to(root).as_posix()
            files[relative] = f"{stat.st_size}:{round(stat.st_mtime * 1000)}"
    return SourceSnapshot(files=files)


def diff_snapshots(before: SourceSnapshot, after: SourceSnapshot) -> SourceDiff:
    added = sorted(path for path in after.files if path not in before.files)
    removed = sorted(path for path in before.files if path not in after.files)
    modified = sorted(
        path
        for path, fingerprint in before.files.items()
        if path in after.files and after.files[path] != fingerprint
    )
    return SourceDiff(added=tuple(added), modified=tuple(modified), removed=tuple(removed))


def extract_verification_signals(output_tail: str) -> list[str]:
    """Pick lines where the agent reported lint/test/build results."""

    lines = [line.strip() for line in output_tail.splitlines() if line.strip()]
    signals = dict.fromkeys(line for line in lines if _VERIFICATION_SIGNAL.search(line))
    return list(signals)[:MAX_VERIFICATION_SIGNALS]


def format_change_summary(diff: SourceDiff, *, preview: int = 10) -> list[str]:
    lines = [
        f"Source changes: {len(diff.added)} added, {len(diff.modified)} modified, "
        f"{len(diff.removed)} removed.",
    ]
    for label, paths in (("+", diff.added), ("~", diff.modified), ("-", diff.removed)):
        lines.extend(f"  {label} {path}" for path in paths[:preview])
        if len(paths) > preview:
            lines.append(f"  {label} ... {len(paths) - preview} more")
    return lines
