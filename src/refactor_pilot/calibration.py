"""AI calibration of heuristic scan candidates.

The agent can only narrow candidate lists: every returned path must already be
a candidate of the same category and part of the submitted payload.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, TypeVar

from refactor_pilot.agent.base import AgentRunRequest, SandboxMode
from refactor_pilot.agent.cli_backend import AgentExecutionError
from refactor_pilot.context import RunContext
from refactor_pilot.parsing import MAX_CALIBRATION_PATHS, parse_calibration_output
from refactor_pilot.prompts import build_calibration_prompt
from refactor_pilot.scan.models import FileInsight, Hotspot, RepoScan

logger = logging.getLogger(__name__)

SNIPPET_MAX_LINES = 80
SNIPPET_MAX_CHARS = 1200
SNIPPET_MIN_DECLARATIONS = 14

_DECLARATION_LINE = re.compile(
    r"\b(export|function|class|interface|type|const|let|var|def|fn|func|struct|impl|pub)\b",
)
_FAILED_WARNING = "AI scan calibration failed; using deterministic scan."
_INVALID_WARNING = "AI scan output was not valid JSON for calibration; using deterministic scan."

Insight = FileInsight | Hotspot
InsightT = TypeVar("InsightT", FileInsight, Hotspot)


@dataclass(slots=True, frozen=True)
class ScanCandidate:
    """Candidate file as submitted to the calibration agent."""

    insight: Insight
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        item = self.insight
        return {
            "path": item.path,
            "lineCount": item.line_count,
            "fanIn": item.fan_in,
            "internalImportCount": item.internal_import_count,
            "exportCount": item.export_count,
            "functionCount": item.function_count,
            "classCount": item.class_count,
            "todoCount": item.todo_count,
            "lowSignalCommentLines": item.low_signal_comment_lines,
            "snippet": self.snippet,
        }


@dataclass(slots=True, frozen=True)
class CalibrationResult:
    scan: RepoScan
    provider_used: str | None = None
    warning: str | None = None


def read_snippet(root: Path, relative_path: str) -> str:
    """Return a short representative excerpt, preferring declaration lines."""

    try:
        raw = (root / relative_path).read_text("utf-8", errors="replace")
    except OSError:
        return ""
    lines = raw.splitlines()
    declarations = [line for line in lines if _DECLARATION_LINE.search(line)]
    selected = declarations if len(declarations) >= SNIPPET_MIN_DECLARATIONS else lines
    snippet = "\n".join(selected[:SNIPPET_MAX_LINES]).strip()
    if len(snippet) <= SNIPPET_MAX_CHARS:
        return snippet
    return f"{snippet[:SNIPPET_MAX_CHARS]}\n..."


def collect_candidates(scan: RepoScan) -> list[ScanCandidate]:
    """Pick up to 32 unique paths: monolith, coupling, debt, comment, then largest."""

    ordered: list[str] = []
    for group in (
        scan.monolith_candidates,
        scan.coupling_candidates,
        scan.debt_candidates,
        scan.comment_cleanup_candidates,
        scan.largest_files,
    ):
        for entry in group:
            if entry.path not in ordered:
                ordered.append(entry.path)

    insights = _insight_map(scan)
    root = Path(scan.target_dir)
    return [
        ScanCandidate(insight=insights[path], snippet=read_snippet(root, path))
        for path in ordered[:MAX_CALIBRATION_PATHS]
    ]


def calibrate_scan(scan: RepoScan, context: RunContext) -> CalibrationResult:
    """Filter ``scan`` candidate lists through one read-only agent call.

    Never raises: any failure returns the unfiltered scan with a warning.
    """

    candidates = collect_candidates(scan)
    if not candidates:
        return CalibrationResult(scan=scan)

    context.emit(f"AI scan calibration across {len(candidates)} candidates...")
    prompt = build_calibration_prompt(
        scan,
        [candidate.to_dict() for candidate in candidates],
        context.settings.notes,
    )
    request = AgentRunRequest(
        prompt=prompt,
        provider=context.settings.provider,
        cwd=Path(scan.target_dir),
        timeout_seconds=context.ai_timeout_seconds,
        sandbox_mode=SandboxMode.READ_ONLY,
        model=context.settings.model,
        label="calibration",
    )
    try:
        result = context.executor.execute(request)
    except AgentExecutionError as error:
        logger.warning("Calibration call failed to start: %s", error)
        return CalibrationResult(scan=scan, warning=_FAILED_WARNING)

    if not result.ok or not result.output:
        return CalibrationResult(
            scan=scan,
            provider_used=result.provider_used,
            warning=result.warning or _FAILED_WARNING,
        )

    selection = parse_calibration_output(result.output)
    if selection is None:
        return CalibrationResult(
            scan=scan,
            provider_used=result.provider_used,
            warning=_INVALID_WARNING,
        )

    submitted = {candidate.insight.path for candidate in candidates}
    calibrated = replace(
        scan,
        monolith_candidates=_select(
            selection.monolith_paths,
            scan.monolith_candidates,
            submitted,
        ),
        coupling_candidates=_select(
            selection.coupling_paths,
            scan.coupling_candidates,
            submitted,
        ),
        debt_candidates=_select(selection.debt_paths, scan.debt_candidates, submitted),
        comment_cleanup_candidates=_select(
            selection.comment_cleanup_paths,
            scan.comment_cleanup_candidates,
            submitted,
        ),
    )
    logger.info(
        "Calibration kept monolith=%d coupling=%d debt=%d comment=%d",
        len(calibrated.monolith_candidates),
        len(calibrated.coupling_candidates),
        len(calibrated.debt_candidates),
        len(calibrated.comment_cleanup_candidates),
    )
    return CalibrationResult(scan=calibrated, provider_used=result.provider_used)


def _select(
    paths: Sequence[str],
    original: Sequence[InsightT],
    submitted: set[str],
) -> tuple[InsightT, ...]:
    by_path = {entry.path: entry for entry in original if entry.path in submitted}
    selected: list[InsightT] = []
    seen: set[str] = set()
    for raw_path in paths:
        path = raw_path.strip()
        if not path or path in seen or path not in by_path:
            continue
        seen.add(path)
        selected.append(by_path[path])
    return tuple(selected)


def _insight_map(scan: RepoScan) -> dict[str, Insight]:
    insights: dict[str, Insight] = {}
    for group in (
        scan.largest_files,
        scan.monolith_candidates,
        scan.comment_cleanup_candidates,
        scan.coupling_candidates,
        scan.debt_candidates,
    ):
        for entry in group:
            insights[entry.path] = entry
    return insights
