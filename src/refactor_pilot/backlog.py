"""Backlog aggregation, comparison and pass budgeting."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from refactor_pilot.scan.constants import MONOLITH_LINE_THRESHOLD
from refactor_pilot.scan.hotspots import is_likely_facade
from refactor_pilot.scan.models import RepoScan

MAX_MAX_PASSES = 80
MAX_ADAPTIVE_PASSES = 12
MAX_BUDGET_GROWTH_STEP = 3
SAME_SCORE_TOLERANCE = 0.05


@dataclass(slots=True, frozen=True)
class Backlog:
    """Scored summary of the refactor work a scan still reports."""

    monolith_count: int
    coupling_count: int
    debt_count: int
    comment_count: int
    score: float
    signature: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "monolithCount": self.monolith_count,
            "couplingCount": self.coupling_count,
            "debtCount": self.debt_count,
            "commentCount": self.comment_count,
            "score": self.score,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, raw: object) -> Backlog:
        if not isinstance(raw, dict):
            raise TypeError("backlog must be an object")
        counts: dict[str, int] = {}
        for key in ("monolithCount", "couplingCount", "debtCount", "commentCount"):
            value = raw.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"backlog.{key} must be a non-negative integer")
            counts[key] = value
        score = raw.get("score")
        signature = raw.get("signature")
        if isinstance(score, bool) or not isinstance(score, int | float):
            raise TypeError("backlog.score must be a number")
        if not isinstance(signature, str):
            raise TypeError("backlog.signature must be a string")
        return cls(
            monolith_count=counts["monolithCount"],
            coupling_count=counts["couplingCount"],
            debt_count=counts["debtCount"],
            comment_count=counts["commentCount"],
            score=float(score),
            signature=signature,
        )


def summarize_backlog(scan: RepoScan) -> Backlog:
    coupling_score = sum(item.score for item in scan.coupling_candidates)
    debt_score = sum(item.score for item in scan.debt_candidates)
    monolith_pressure = sum(item.line_count / 100 for item in scan.monolith_candidates)
    comment_pressure = sum(
        item.low_signal_comment_lines for item in scan.comment_cleanup_candidates
    )
    score = round(
        len(scan.monolith_candidates) * 120
        + coupling_score * 10
        + debt_score * 6
        + len(scan.comment_cleanup_candidates) * 2
        + monolith_pressure
        + comment_pressure * 0.5,
        2,
    )
    signature = "::".join(
        (
            _signature_part(f"{item.path}:{item.line_count}" for item in scan.monolith_candidates),
            _signature_part(
                f"{item.path}:{_format_score(item.score)}" for item in scan.coupling_candidates
            ),
            _signature_part(
                f"{item.path}:{item.todo_count}:{item.low_signal_comment_lines}"
                for item in scan.debt_candidates
            ),
            _signature_part(
                f"{item.path}:{item.low_signal_comment_lines}"
                for item in scan.comment_cleanup_candidates
            ),
        ),
    )
    return Backlog(
        monolith_count=len(scan.monolith_candidates),
        coupling_count=len(scan.coupling_candidates),
        debt_count=len(scan.debt_candidates),
        comment_count=len(scan.comment_cleanup_candidates),
        score=score,
        signature=signature,
    )


def _signature_part(entries: Iterable[str]) -> str:
    return "|".join(sorted(entries))


def _format_score(score: float) -> str:
    return repr(float(score))


def has_pending_backlog(backlog: Backlog) -> bool:
    return (
        backlog.monolith_count > 0
        or backlog.coupling_count > 0
        or backlog.debt_count > 0
        or backlog.comment_count > 0
    )


def count_actionable_items(scan: RepoScan) -> int:
    """Count candidates that represent real work, leaving facades and small files out."""

    monoliths = sum(
        1 for item in scan.monolith_candidates if item.line_count >= MONOLITH_LINE_THRESHOLD
    )
    coupling = sum(1 for item in scan.coupling_candidates if not is_likely_facade(item))
    return (
        monoliths
        + coupling
        + len(scan.debt_candidates)
        + len(scan.comment_cleanup_candidates)
    )


def has_actionable_backlog(scan: RepoScan) -> bool:
    return count_actionable_items(scan) > 0


def same_backlog(previous: Backlog, current: Backlog) -> bool:
    if previous.signature != current.signature:
        return False
    return abs(previous.score - current.score) < SAME_SCORE_TOLERANCE


def format_backlog_compact(backlog: Backlog) -> str:
    labels: list[str] = []
    if backlog.monolith_count > 0:
        labels.append(f"{backlog.monolith_count} monolith")
    if backlog.coupling_count > 0:
        labels.append(f"{backlog.coupling_count} coupling")
    if backlog.debt_count > 0:
        labels.append(f"{backlog.debt_count} debt")
    if backlog.comment_count > 0:
        labels.append(f"{backlog.comment_count} comment-cleanup")
    return ", ".join(labels) if labels else "clear"


def derive_adaptive_pass_count(backlog: Backlog) -> int:
    """Size the pass budget from backlog weight, between 1 and 12 passes."""

    weight = (
        backlog.monolith_count * 3
        + backlog.coupling_count * 2
        + backlog.debt_count
        + backlog.comment_count
    )
    return min(MAX_ADAPTIVE_PASSES, max(1, math.ceil(weight / 4)))


def derive_budget_growth(actionable_failures: int) -> int:
    """Number of passes to add when the budget runs out with work remaining."""

    return max(1, min(MAX_BUDGET_GROWTH_STEP, math.ceil(actionable_failures / 2)))


def normalize_max_passes(value: int | str | None) -> int | None:
    """Clamp a caller supplied pass budget to ``1..MAX_MAX_PASSES``."""

    if value is None:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError) as error:
        raise ValueError(
            f"Invalid max passes value {value!r}. "
            f"Expected an integer between 1 and {MAX_MAX_PASSES}.",
        ) from error
    return min(MAX_MAX_PASSES, max(1, parsed))
