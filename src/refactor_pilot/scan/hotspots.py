"""Backlog classification: candidate selection and scoring over file insights."""

from __future__ import annotations

from collections.abc import Sequence

from refactor_pilot.scan.constants import (
    COMMENT_CANDIDATES_LIMIT,
    COUPLING_CANDIDATES_LIMIT,
    DEBT_CANDIDATES_LIMIT,
    MONOLITH_CANDIDATES_LIMIT,
    MONOLITH_COMPLEXITY_THRESHOLD,
    MONOLITH_LINE_THRESHOLD,
)
from refactor_pilot.scan.models import FileInsight, Hotspot

_SPLIT_HYPOTHESES: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("/commands/", "/cli/"),
        "Split into command parser, validation layer, and execution/service layer.",
    ),
    (
        ("/core/ai", "/agent/", "/agents/", "/llm/"),
        "Split into provider adapters, prompt builders, and output parsing/validation.",
    ),
    (
        ("/core/prompts",),
        "Split into stack detection, prompt question flow, and defaults normalization modules.",
    ),
    (
        ("/core/templates",),
        "Split by template domain: docs generators, scripts generators, and adapter generators.",
    ),
    (
        ("/quick-setup", "/setup/"),
        "Split into preset detection, command planning, and execution/reporting modules.",
    ),
    (
        ("/models/", "/schemas/"),
        "Split into per-entity model modules and shared validation helpers.",
    ),
    (
        ("/views/", "/routes/", "/api/", "/handlers/"),
        "Split into request handlers, service layer, and serialization helpers.",
    ),
)
_DEFAULT_SPLIT_HYPOTHESIS = "Split into contracts/types, orchestration flow, and helper utilities."


def select_largest(files: Sequence[FileInsight], take: int) -> list[FileInsight]:
    return sorted(files, key=lambda item: (-item.line_count, item.path))[:take]


def monolith_complexity_score(file: FileInsight) -> float:
    """Score how strongly a large file looks like an unsplit monolith.

    Large cohesive modules with narrow boundaries are penalized so that line
    count alone does not make a file a candidate.
    """

    line_pressure = 0.0
    if file.line_count >= MONOLITH_LINE_THRESHOLD:
        line_pressure = (file.line_count - MONOLITH_LINE_THRESHOLD) / 90 + 4
    structure_pressure = (
        file.internal_import_count * 0.9
        + file.fan_in * 1.5
        + file.export_count * 0.25
        + file.function_count * 0.35
        + file.class_count * 1.2
    )
    debt_pressure = file.todo_count * 1.4 + file.low_signal_comment_lines * 0.1
    score = line_pressure + structure_pressure + debt_pressure

    likely_cohesive = (
        file.export_count <= 2
        and file.internal_import_count <= 3
        and file.fan_in <= 2
        and file.class_count <= 1
        and file.todo_count == 0
    )
    if likely_cohesive:
        score -= 3
    low_branching = (
        file.function_count <= 6 and file.internal_import_count <= 3 and file.export_count <= 3
    )
    if low_branching:
        score -= 2
    return round(score, 2)


def select_monolith_candidates(files: Sequence[FileInsight]) -> list[FileInsight]:
    scored = [
        (monolith_complexity_score(item), item)
        for item in files
        if item.line_count >= MONOLITH_LINE_THRESHOLD
    ]
    kept = [entry for entry in scored if entry[0] >= MONOLITH_COMPLEXITY_THRESHOLD]
    kept.sort(key=lambda entry: (-entry[0], -entry[1].line_count, entry[1].path))
    return [item for _, item in kept[:MONOLITH_CANDIDATES_LIMIT]]


def select_comment_cleanup_candidates(files: Sequence[FileInsight]) -> list[FileInsight]:
    selected = [item for item in files if _needs_comment_cleanup(item)]
    selected.sort(key=lambda item: (-item.low_signal_comment_lines, item.path))
    return selected[:COMMENT_CANDIDATES_LIMIT]


def _needs_comment_cleanup(file: FileInsight) -> bool:
    if file.comment_lines < 6:
        return False
    if file.low_signal_comment_lines >= 4:
        return True
    return file.low_signal_comment_lines / max(1, file.comment_lines) >= 0.35


def hotspot_score(file: FileInsight) -> float:
    return round(
        file.line_count / 40
        + file.fan_in * 2.4
        + file.internal_import_count * 1.2
        + file.export_count * 0.9
        + file.function_count * 0.55
        + file.todo_count * 1.6,
        2,
    )


def hotspot_reasons(file: FileInsight) -> list[str]:
    reasons: list[str] = []
    if file.line_count >= MONOLITH_LINE_THRESHOLD:
        reasons.append(f"{file.line_count} LOC")
    if file.fan_in >= 3:
        reasons.append(f"fan-in {file.fan_in}")
    if file.internal_import_count >= 12:
        reasons.append(f"{file.internal_import_count} internal imports")
    if file.export_count >= 10:
        reasons.append(f"{file.export_count} exports")
    if file.function_count >= 20:
        reasons.append(f"{file.function_count} function-like declarations")
    if file.todo_count >= 3:
        reasons.append(f"{file.todo_count} TODO/FIXME markers")
    return reasons


def split_hypothesis(path: str) -> str:
    normalized = "/" + path.replace("\\", "/").lower()
    for fragments, hypothesis in _SPLIT_HYPOTHESES:
        if any(fragment in normalized for fragment in fragments):
            return hypothesis
    return _DEFAULT_SPLIT_HYPOTHESIS


def is_likely_facade(file: FileInsight | Hotspot) -> bool:
    """Return True for small re-export modules whose fan-in comes from re-exporting."""

    no_internal_orchestration = (
        file.internal_import_count <= 1
        and file.function_count <= 1
        and file.class_count == 0
        and file.todo_count == 0
    )
    return no_internal_orchestration and file.export_count >= 2 and file.line_count <= 240


def to_hotspot(file: FileInsight) -> Hotspot:
    return Hotspot(
        path=file.path,
        line_count=file.line_count,
        comment_lines=file.comment_lines,
        low_signal_comment_lines=file.low_signal_comment_lines,
        todo_count=file.todo_count,
        import_count=file.import_count,
        internal_import_count=file.internal_import_count,
        fan_in=file.fan_in,
        export_count=file.export_count,
        function_count=file.function_count,
        class_count=file.class_count,
        score=hotspot_score(file),
        reasons=tuple(hotspot_reasons(file)),
        split_hypothesis=split_hypothesis(file.path),
    )


def select_coupling_candidates(files: Sequence[FileInsight]) -> list[Hotspot]:
    hotspots = [
        to_hotspot(item)
        for item in files
        if (item.fan_in >= 2 or item.internal_import_count >= 9 or item.export_count >= 8)
        and not is_likely_facade(item)
    ]
    hotspots.sort(key=lambda item: (-item.score, item.path))
    return hotspots[:COUPLING_CANDIDATES_LIMIT]


def select_debt_candidates(files: Sequence[FileInsight]) -> list[Hotspot]:
    hotspots = [
        to_hotspot(item)
        for item in files
        if item.todo_count > 0 or item.low_signal_comment_lines >= 3
    ]
    hotspots.sort(key=lambda item: (-item.todo_count, -item.low_signal_comment_lines, item.path))
    return hotspots[:DEBT_CANDIDATES_LIMIT]
