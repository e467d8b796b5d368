"""Decode structured JSON payloads from free-form agent output.

Agents wrap JSON in prose, fenced blocks or provider envelopes
(``structured_output``/``result``/``output``). Decoding walks a fixed list of
extraction strategies and returns the first candidate that validates against
a strict schema, or ``None`` when nothing does. Nothing is partially coerced.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PLANNER_TASKS = 120
MAX_ASSIGNMENTS = 240
MAX_WAVE_NUMBER = 400
MAX_TASK_FILES = 80
MAX_CALIBRATION_PATHS = 32

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_ENVELOPE_STRING_KEYS: tuple[str, ...] = ("result", "output")


class SchemaError(ValueError):
    """Payload does not match the expected schema."""


@dataclass(slots=True, frozen=True)
class PlannerTask:
    """Unit of refactor work proposed by the planner."""

    id: str
    title: str
    files: tuple[str, ...]
    instructions: str


@dataclass(slots=True, frozen=True)
class PlannerPlan:
    refactor_needed: bool
    summary: str | None
    tasks: tuple[PlannerTask, ...]


@dataclass(slots=True, frozen=True)
class WaveAssignment:
    """Orchestrator decision placing one planner task in a wave."""

    task_id: str
    wave: int
    files: tuple[str, ...]
    worker_instructions: str


@dataclass(slots=True, frozen=True)
class OrchestrationPlan:
    summary: str | None
    assignments: tuple[WaveAssignment, ...]


@dataclass(slots=True, frozen=True)
class CalibrationSelection:
    """Paths the calibration agent confirmed per candidate category."""

    monolith_paths: tuple[str, ...] = ()
    coupling_paths: tuple[str, ...] = ()
    debt_paths: tuple[str, ...] = ()
    comment_cleanup_paths: tuple[str, ...] = ()


def parse_with_schema(raw: str, decode: Callable[[Any], T]) -> T | None:
    """Return the first candidate payload in ``raw`` accepted by ``decode``."""

    for candidate in _json_candidates(raw):
        try:
            parsed = _unwrap(json.loads(candidate))
        except json.JSONDecodeError:
            continue

        items = parsed if isinstance(parsed, list) else [parsed]
        for item in items:
            try:
                return decode(_unwrap(item))
            except (SchemaError, TypeError) as error:
                logger.debug("Rejected structured output candidate: %s", error)
    return None


def parse_planner_output(raw: str) -> PlannerPlan | None:
    return parse_with_schema(raw, decode_planner)


def parse_orchestration_output(raw: str) -> OrchestrationPlan | None:
    return parse_with_schema(raw, decode_orchestration)


def parse_calibration_output(raw: str) -> CalibrationSelection | None:
    return parse_with_schema(raw, decode_calibration)


def decode_planner(payload: Any) -> PlannerPlan:
    record = _require_object(payload, "planner output")
    refactor_needed = record.get("refactorNeeded")
    if not isinstance(refactor_needed, bool):
        raise SchemaError("refactorNeeded must be a boolean.")
    raw_tasks = _optional_list(record, "tasks", max_items=MAX_PLANNER_TASKS)
    tasks = []
    for raw_task in raw_tasks:
        task = _require_object(raw_task, "planner task")
        tasks.append(
            PlannerTask(
                id=_require_text(task, "id", max_length=120),
                title=_require_text(task, "title", max_length=240),
                files=_require_paths(task, "files"),
                instructions=_require_text(task, "instructions", max_length=12_000),
            ),
        )
    return PlannerPlan(
        refactor_needed=refactor_needed,
        summary=_optional_text(record, "summary", max_length=2000),
        tasks=tuple(tasks),
    )


def decode_orchestration(payload: Any) -> OrchestrationPlan:
    record = _require_object(payload, "orchestration output")
    raw_assignments = _optional_list(record, "assignments", max_items=MAX_ASSIGNMENTS)
    assignments = []
    for raw_assignment in raw_assignments:
        assignment = _require_object(raw_assignment, "wave assignment")
        assignments.append(
            WaveAssignment(
                task_id=_require_text(assignment, "taskId", max_length=120),
                wave=_require_wave(assignment.get("wave")),
                files=_require_paths(assignment, "files"),
                worker_instructions=_require_text(
                    assignment,
                    "workerInstructions",
                    max_length=12_000,
                ),
            ),
        )
    return OrchestrationPlan(
        summary=_optional_text(record, "summary", max_length=2000),
        assignments=tuple(assignments),
    )


def decode_calibration(payload: Any) -> CalibrationSelection:
    record = _require_object(payload, "calibration output")

    def paths(key: str) -> tuple[str, ...]:
        values = _optional_list(record, key, max_items=MAX_CALIBRATION_PATHS)
        for value in values:
            if not isinstance(value, str) or not value:
                raise SchemaError(f"{key} must contain non-empty strings.")
        return tuple(values)

    return CalibrationSelection(
        monolith_paths=paths("monolithPaths"),
        coupling_paths=paths("couplingPaths"),
        debt_paths=paths("debtPaths"),
        comment_cleanup_paths=paths("commentCleanupPaths"),
    )


def _json_candidates(raw: str) -> Iterator[str]:
    yield raw.strip()
    for match in _FENCED_BLOCK.finditer(raw):
        yield match.group(1).strip()
    yield from _balanced_spans(raw, "{", "}")
    yield from _balanced_spans(raw, "[", "]")


def _balanced_spans(raw: str, open_char: str, close_char: str) -> Iterator[str]:
    """Yield top-level ``open_char``...``close_char`` spans, ignoring string contents."""

    start = -1
    depth = 0
    in_string = False
    escape_next = False
    for index, char in enumerate(raw):
        if start == -1:
            if char == open_char:
                start, depth, in_string, escape_next = index, 1, False, False
            continue
        if in_string:
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                yield raw[start : index + 1].strip()
                start = -1


def _parse_json_like(value: str) -> Any:
    """Parse a JSON document embedded in ``value``; return ``value`` when none is found."""

    if not value.strip():
        return value
    for candidate in _json_candidates(value):
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return value


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, str):
        parsed = _parse_json_like(payload)
        return payload if parsed is payload else _unwrap(parsed)
    if isinstance(payload, list):
        return [_unwrap(item) for item in payload]
    if not isinstance(payload, dict):
        return payload

    structured = payload.get("structured_output")
    if isinstance(structured, (dict, list)):
        return _unwrap(structured)
    for key in _ENVELOPE_STRING_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            parsed = _parse_json_like(value)
            if parsed is not value:
                return _unwrap(parsed)
    return payload


def _require_object(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaError(f"{label} must be a JSON object.")
    return value


def _require_text(record: dict[str, Any], key: str, *, max_length: int) -> str:
    value = record.get(key)
    if not isinstance(value, str) or not value:
        raise SchemaError(f"{key} must be a non-empty string.")
    if len(value) > max_length:
        raise SchemaError(f"{key} exceeds {max_length} characters.")
    return value


def _optional_text(record: dict[str, Any], key: str, *, max_length: int) -> str | None:
    if record.get(key) is None:
        return None
    return _require_text(record, key, max_length=max_length)


def _optional_list(record: dict[str, Any], key: str, *, max_items: int) -> list[Any]:
    value = record.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise SchemaError(f"{key} must be an array.")
    if len(value) > max_items:
        raise SchemaError(f"{key} exceeds {max_items} entries.")
    return value


def _require_paths(record: dict[str, Any], key: str) -> tuple[str, ...]:
    values = record.get(key)
    if not isinstance(values, list) or not values or len(values) > MAX_TASK_FILES:
        raise SchemaError(f"{key} must hold 1..{MAX_TASK_FILES} paths.")
    for value in values:
        if not isinstance(value, str) or not value or len(value) > 280:
            raise SchemaError(f"{key} entries must be 1..280 character strings.")
    return tuple(values)


def _require_wave(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError("wave must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise SchemaError("wave must be an integer.")
    wave = int(value)
    if not 1 <= wave <= MAX_WAVE_NUMBER:
        raise SchemaError(f"wave must be within 1..{MAX_WAVE_NUMBER}.")
    return wave
