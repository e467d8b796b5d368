"""Scan result contracts and their JSON representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_INSIGHT_KEYS: tuple[tuple[str, str], ...] = (
    ("line_count", "lineCount"),
    ("comment_lines", "commentLines"),
    ("low_signal_comment_lines", "lowSignalCommentLines"),
    ("todo_count", "todoCount"),
    ("import_count", "importCount"),
    ("internal_import_count", "internalImportCount"),
    ("fan_in", "fanIn"),
    ("export_count", "exportCount"),
    ("function_count", "functionCount"),
    ("class_count", "classCount"),
)


@dataclass(slots=True, frozen=True)
class FileInsight:
    """Structural metrics of one source file."""

    path: str
    line_count: int = 0
    comment_lines: int = 0
    low_signal_comment_lines: int = 0
    todo_count: int = 0
    import_count: int = 0
    internal_import_count: int = 0
    fan_in: int = 0
    export_count: int = 0
    function_count: int = 0
    class_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path}
        for attr, key in _INSIGHT_KEYS:
            payload[key] = getattr(self, attr)
        return payload

    @classmethod
    def from_dict(cls, raw: object) -> FileInsight:
        return cls(**_insight_fields(raw, "file insight"))


@dataclass(slots=True, frozen=True)
class Hotspot:
    """File insight flagged as a coupling or debt concern."""

    path: str
    line_count: int = 0
    comment_lines: int = 0
    low_signal_comment_lines: int = 0
    todo_count: int = 0
    import_count: int = 0
    internal_import_count: int = 0
    fan_in: int = 0
    export_count: int = 0
    function_count: int = 0
    class_count: int = 0
    score: float = 0.0
    reasons: tuple[str, ...] = ()
    split_hypothesis: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path}
        for attr, key in _INSIGHT_KEYS:
            payload[key] = getattr(self, attr)
        payload["score"] = self.score
        payload["reasons"] = list(self.reasons)
        payload["splitHypothesis"] = self.split_hypothesis
        return payload

    @classmethod
    def from_dict(cls, raw: object) -> Hotspot:
        if not isinstance(raw, dict):
            raise TypeError("hotspot must be an object")
        fields = _insight_fields(raw, "hotspot")
        score = raw.get("score", 0)
        reasons = raw.get("reasons", [])
        split_hypothesis = raw.get("splitHypothesis", "")
        if isinstance(score, bool) or not isinstance(score, int | float):
            raise TypeError("hotspot.score must be a number")
        if not isinstance(reasons, list) or not all(isinstance(item, str) for item in reasons):
            raise TypeError("hotspot.reasons must be an array of strings")
        if not isinstance(split_hypothesis, str):
            raise TypeError("hotspot.splitHypothesis must be a string")
        return cls(
            **fields,
            score=float(score),
            reasons=tuple(reasons),
            split_hypothesis=split_hypothesis,
        )


@dataclass(slots=True, frozen=True)
class RepoScan:
    """Snapshot of one repository scan with classified candidate lists."""

    target_dir: str
    tech_stack: str
    project_shape: str
    scanned_source_files: int
    scanned_total_lines: int
    reached_file_cap: bool = False
    largest_files: tuple[FileInsight, ...] = field(default_factory=tuple)
    monolith_candidates: tuple[FileInsight, ...] = field(default_factory=tuple)
    coupling_candidates: tuple[Hotspot, ...] = field(default_factory=tuple)
    debt_candidates: tuple[Hotspot, ...] = field(default_factory=tuple)
    comment_cleanup_candidates: tuple[FileInsight, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetDir": self.target_dir,
            "techStack": self.tech_stack,
            "projectShape": self.project_shape,
            "scannedSourceFiles": self.scanned_source_files,
            "scannedTotalLines": self.scanned_total_lines,
            "reachedFileCap": self.reached_file_cap,
            "largestFiles": [item.to_dict() for item in self.largest_files],
            "monolithCandidates": [item.to_dict() for item in self.monolith_candidates],
            "couplingCandidates": [item.to_dict() for item in self.coupling_candidates],
            "debtCandidates": [item.to_dict() for item in self.debt_candidates],
            "commentCleanupCandidates": [
                item.to_dict() for item in self.comment_cleanup_candidates
            ],
        }

    @classmethod
    def from_dict(cls, raw: object) -> RepoScan:
        """Rebuild a scan from its JSON form, raising on malformed payloads."""

        if not isinstance(raw, dict):
            raise TypeError("scan must be an object")
        target_dir = raw.get("targetDir")
        tech_stack = raw.get("techStack")
        project_shape = raw.get("projectShape")
        if not isinstance(target_dir, str) or not target_dir:
            raise ValueError("scan.targetDir must be a non-empty string")
        if not isinstance(tech_stack, str):
            raise TypeError("scan.techStack must be a string")
        if not isinstance(project_shape, str):
            raise TypeError("scan.projectShape must be a string")
        reached_file_cap = raw.get("reachedFileCap", False)
        if not isinstance(reached_file_cap, bool):
            raise TypeError("scan.reachedFileCap must be a boolean")
        return cls(
            target_dir=target_dir,
            tech_stack=tech_stack,
            project_shape=project_shape,
            scanned_source_files=_non_negative_int(raw, "scannedSourceFiles", "scan"),
            scanned_total_lines=_non_negative_int(raw, "scannedTotalLines", "scan"),
            reached_file_cap=reached_file_cap,
            largest_files=tuple(
                FileInsight.from_dict(item) for item in _list_field(raw, "largestFiles")
            ),
            monolith_candidates=tuple(
                FileInsight.from_dict(item) for item in _list_field(raw, "monolithCandidates")
            ),
            coupling_candidates=tuple(
                Hotspot.from_dict(item) for item in _list_field(raw, "couplingCandidates")
            ),
            debt_candidates=tuple(
                Hotspot.from_dict(item) for item in _list_field(raw, "debtCandidates")
            ),
            comment_cleanup_candidates=tuple(
                FileInsight.from_dict(item)
                for item in _list_field(raw, "commentCleanupCandidates")
            ),
        )


def _insight_fields(raw: object, label: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise TypeError(f"{label} must be an object")
    path = raw.get("path")
    if not isinstance(path, str) or not path:
        raise ValueError(f"{label}.path must be a non-empty string")
    fields: dict[str, Any] = {"path": path}
    for attr, key in _INSIGHT_KEYS:
        fields[attr] = _non_negative_int(raw, key, label)
    return fields


def _non_negative_int(raw: dict[str, Any], key: str, label: str) -> int:
    value = raw.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{label}.{key} must be a non-negative integer")
    return value


def _list_field(raw: dict[str, Any], key: str) -> list[Any]:
    value = raw.get(key, [])
    if not isinstance(value, list):
        raise TypeError(f"scan.{key} must be an array")
    return value
