from __future__ import annotations

from pathlib import Path

import allure

from refactor_pilot.scan import resolve_scan_with_coverage, scan_repository
from refactor_pilot.scan.analyzer import (
    analyze_source_text,
    extension_of,
    is_low_signal_comment,
    to_module_key,
)
from refactor_pilot.scan.constants import MIN_MAX_FILES
from tests.conftest import write_file

pytestmark = [
    allure.epic("Repository Scanner"),
    allure.feature("Lexical Metrics"),
]


def test_extension_and_module_key_normalization() -> None:
    assert extension_of("src/App.TSX") == ".tsx"
    assert extension_of(".eslintrc") == ""
    assert to_module_key("src/utils/index.ts") == "src/utils"
    assert to_module_key("pkg/sub/__init__.py") == "pkg/sub"
    assert to_module_key("pkg/sub/mod.py") == "pkg/sub/mod"


def test_low_signal_comment_detection() -> None:
    assert is_low_signal_comment("----------")
    assert is_low_signal_comment("return value;")
    assert is_low_signal_comment("increment counter")
    assert is_low_signal_comment("loop")
    assert not is_low_signal_comment("TODO remove once v2 ships")
    assert not is_low_signal_comment("Retries are capped because the upstream API bans bursts")


def test_python_metrics_count_declarations_and_todos() -> None:
    text = "\n".join(
        [
            "from .models import Item",
            "import json",
            "",
            "# TODO: split this module",
            "class Store:",
            "    def load(self):",
            "        return json.loads('{}')",
            "",
            "def helper():",
            "    pass  # FIXME handle errors",
        ],
    )

    analyzed = analyze_source_text("pkg/store.py", text)

    insight = analyzed.insight
    assert analyzed.module_key == "pkg/store"
    assert insight.line_count == 10
    assert insight.import_count == 2
    assert insight.internal_import_count == 1
    assert insight.class_count == 1
    assert insight.function_count == 2
    assert insight.todo_count == 2


def test_typescript_metrics_count_relative_imports_and_exports() -> None:
    text = "\n".join(
        [
            "import { a } from './a';",
            "import React from 'react';",
            "export const value = 1;",
            "export function run() { return a; }",
            "export class Widget {}",
            "// ------------",
        ],
    )

    insight = analyze_source_text("src/widget.ts", text).insight

    assert insight.import_count == 2
    assert insight.internal_import_count == 1
    assert insight.export_count == 3
    assert insight.class_count == 1
    assert insight.comment_lines == 1
    assert insight.low_signal_comment_lines == 1


def test_scan_repository_infers_python_stack_and_fan_in(tmp_path: Path) -> None:
    write_file(tmp_path, "pyproject.toml", '[project]\nname = "demo"\n')
    write_file(tmp_path, "demo/__init__.py", "")
    write_file(tmp_path, "demo/core.py", "def core():\n    return 1\n")
    write_file(tmp_path, "demo/a.py", "from demo.core import core\n")
    write_file(tmp_path, "demo/b.py", "from .core import core\n")
    write_file(tmp_path, "node_modules/lib/index.js", "module.exports = 1;\n")

    scan = scan_repository(tmp_path, MIN_MAX_FILES)

    assert "python" in scan.tech_stack.lower()
    assert scan.scanned_source_files == 4
    assert not scan.reached_file_cap
    largest = {item.path: item for item in scan.largest_files}
    assert largest["demo/core.py"].fan_in == 2


def test_pinned_file_cap_is_not_expanded(tmp_path: Path) -> None:
    for index in range(MIN_MAX_FILES + 5):
        write_file(tmp_path, f"src/m{index}.js", "export const x = 1;\n")

    coverage = resolve_scan_with_coverage(tmp_path, MIN_MAX_FILES, explicit_max_files=True)

    assert coverage.scan.reached_file_cap
    assert coverage.scan.scanned_source_files == MIN_MAX_FILES
    assert coverage.max_files_used == MIN_MAX_FILES
    assert not coverage.expanded


def test_unpinned_file_cap_climbs_the_scan_ladder(tmp_path: Path, monkeypatch) -> None:
    for index in range(MIN_MAX_FILES + 5):
        write_file(tmp_path, f"src/m{index}.js", "export const x = 1;\n")
    monkeypatch.setattr(
        "refactor_pilot.scan.repository.AUTO_SCAN_LIMITS",
        (MIN_MAX_FILES + 2, MIN_MAX_FILES + 10),
    )

    coverage = resolve_scan_with_coverage(tmp_path, MIN_MAX_FILES, explicit_max_files=False)

    assert coverage.expanded
    assert coverage.max_files_used == MIN_MAX_FILES + 10
    assert coverage.scan.scanned_source_files == MIN_MAX_FILES + 5
    assert not coverage.scan.reached_file_cap


def test_scan_ladder_reports_truncation_at_its_last_step(tmp_path: Path, monkeypatch) -> None:
    for index in range(MIN_MAX_FILES + 5):
        write_file(tmp_path, f"src/m{index}.js", "export const x = 1;\n")
    monkeypatch.setattr("refactor_pilot.scan.repository.AUTO_SCAN_LIMITS", (MIN_MAX_FILES + 2,))

    coverage = resolve_scan_with_coverage(tmp_path, MIN_MAX_FILES, explicit_max_files=False)

    assert coverage.expanded
    assert coverage.max_files_used == MIN_MAX_FILES + 2
    assert coverage.scan.scanned_source_files == MIN_MAX_FILES + 2
    assert coverage.scan.reached_file_cap
