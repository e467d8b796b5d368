from __future__ import annotations

from dataclasses import replace

import allure
import pytest

from refactor_pilot.backlog import (
    MAX_ADAPTIVE_PASSES,
    MAX_MAX_PASSES,
    Backlog,
    count_actionable_items,
    derive_adaptive_pass_count,
    derive_budget_growth,
    format_backlog_compact,
    has_actionable_backlog,
    has_pending_backlog,
    normalize_max_passes,
    same_backlog,
    summarize_backlog,
)
from refactor_pilot.scan.hotspots import (
    is_likely_facade,
    monolith_complexity_score,
    select_comment_cleanup_candidates,
    select_coupling_candidates,
    select_debt_candidates,
    select_monolith_candidates,
    split_hypothesis,
    to_hotspot,
)
from refactor_pilot.scan.models import FileInsight, Hotspot, RepoScan

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Classification and Budget"),
]


def _scan(**candidates) -> RepoScan:
    return RepoScan(
        target_dir="/repo",
        tech_stack="Python",
        project_shape="library",
        scanned_source_files=10,
        scanned_total_lines=1000,
        **candidates,
    )


def _backlog(monolith=0, coupling=0, debt=0, comment=0) -> Backlog:
    return Backlog(
        monolith_count=monolith,
        coupling_count=coupling,
        debt_count=debt,
        comment_count=comment,
        score=0.0,
        signature="",
    )


def test_monolith_selection_requires_size_and_complexity() -> None:
    tangled = FileInsight(
        path="src/engine.py",
        line_count=900,
        internal_import_count=10,
        fan_in=4,
        export_count=12,
        function_count=40,
        class_count=3,
        todo_count=2,
    )
    cohesive = FileInsight(path="src/table.py", line_count=330, function_count=2, export_count=1)
    small = FileInsight(path="src/tiny.py", line_count=50, function_count=30, fan_in=9)

    selected = select_monolith_candidates([tangled, cohesive, small])

    assert [item.path for item in selected] == ["src/engine.py"]
    assert monolith_complexity_score(cohesive) < monolith_complexity_score(tangled)


def test_facade_is_not_a_coupling_candidate() -> None:
    facade = FileInsight(path="src/index.ts", line_count=20, export_count=8, fan_in=9)
    hub = FileInsight(
        path="src/hub.ts",
        line_count=200,
        export_count=8,
        fan_in=5,
        internal_import_count=6,
        function_count=12,
    )

    assert is_likely_facade(facade)
    assert [item.path for item in select_coupling_candidates([facade, hub])] == ["src/hub.ts"]


def test_debt_and_comment_cleanup_selection() -> None:
    todo_file = FileInsight(path="a.py", line_count=40, todo_count=1)
    noisy = FileInsight(path="b.py", line_count=80, comment_lines=10, low_signal_comment_lines=5)
    clean = FileInsight(path="c.py", line_count=80, comment_lines=10, low_signal_comment_lines=1)

    assert [item.path for item in select_debt_candidates([todo_file, noisy, clean])] == [
        "a.py",
        "b.py",
    ]
    assert [item.path for item in select_comment_cleanup_candidates([todo_file, noisy, clean])] == [
        "b.py",
    ]


def test_signature_is_independent_of_candidate_order() -> None:
    first = to_hotspot(FileInsight(path="a.py", line_count=100, todo_count=2))
    second = to_hotspot(FileInsight(path="b.py", line_count=50, todo_count=1))

    forward = summarize_backlog(_scan(debt_candidates=(first, second)))
    backward = summarize_backlog(_scan(debt_candidates=(second, first)))

    assert forward.signature == backward.signature
    assert same_backlog(forward, backward)


def test_signature_distinguishes_close_coupling_scores() -> None:
    low = Hotspot(path="hub.py", fan_in=9, score=12.3456781)
    high = Hotspot(path="hub.py", fan_in=9, score=12.3456789)

    first = summarize_backlog(_scan(coupling_candidates=(low,)))
    second = summarize_backlog(_scan(coupling_candidates=(high,)))

    assert first.signature != second.signature
    assert "hub.py:12.3456781" in first.signature


def test_same_backlog_tolerates_small_score_drift() -> None:
    base = replace(_backlog(debt=1), score=10.0, signature="x")

    assert same_backlog(base, replace(base, score=10.04))
    assert not same_backlog(base, replace(base, score=10.2))
    assert not same_backlog(base, replace(base, signature="y"))


def test_facade_only_coupling_backlog_is_pending_but_not_actionable() -> None:
    facade = to_hotspot(FileInsight(path="src/index.ts", line_count=20, export_count=8, fan_in=9))
    scan = _scan(coupling_candidates=(facade,))

    assert has_pending_backlog(summarize_backlog(scan))
    assert count_actionable_items(scan) == 0
    assert not has_actionable_backlog(scan)


def test_format_backlog_compact() -> None:
    assert format_backlog_compact(_backlog()) == "clear"
    assert (
        format_backlog_compact(_backlog(monolith=2, debt=1, comment=3))
        == "2 monolith, 1 debt, 3 comment-cleanup"
    )


def test_adaptive_pass_count_is_bounded_and_monotone() -> None:
    assert derive_adaptive_pass_count(_backlog()) == 1
    assert derive_adaptive_pass_count(_backlog(monolith=1, coupling=1)) == 2
    assert derive_adaptive_pass_count(_backlog(monolith=50)) == MAX_ADAPTIVE_PASSES

    previous = 0
    for debt in range(0, 80, 3):
        count = derive_adaptive_pass_count(_backlog(debt=debt))
        assert previous <= count <= MAX_ADAPTIVE_PASSES
        previous = count


@pytest.mark.parametrize(
    ("failures", "expected"),
    [(0, 1), (1, 1), (3, 2), (6, 3), (40, 3)],
)
def test_budget_growth_steps(failures: int, expected: int) -> None:
    assert derive_budget_growth(failures) == expected


def test_normalize_max_passes_clamps_and_rejects_garbage() -> None:
    assert normalize_max_passes(None) is None
    assert normalize_max_passes(0) == 1
    assert normalize_max_passes("5") == 5
    assert normalize_max_passes(1000) == MAX_MAX_PASSES
    with pytest.raises(ValueError, match="Invalid max passes"):
        normalize_max_passes("many")


def test_prompt_and_template_hypotheses_need_the_core_directory() -> None:
    assert split_hypothesis("src/core/prompts/setup.ts").startswith("Split into stack detection")
    assert split_hypothesis("src/core/templates.ts").startswith("Split by template domain")
    assert split_hypothesis("web/templates/page.ts") == split_hypothesis("misc/page.ts")
    assert split_hypothesis("app/prompts.py") == split_hypothesis("misc/page.ts")
