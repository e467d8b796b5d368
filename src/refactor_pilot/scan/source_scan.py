"""Source tree walk with a file cap and fan-in enrichment."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import replace
from pathlib import Path

from refactor_pilot.scan.analyzer import AnalyzedFile, ImportRef, analyze_source_file, extension_of
from refactor_pilot.scan.constants import SCAN_SKIP_DIRS, SOURCE_EXTENSIONS
from refactor_pilot.scan.models import FileInsight

logger = logging.getLogger(__name__)


def scan_source_files(root: Path, max_files: int) -> tuple[list[FileInsight], bool]:
    """Walk ``root`` and analyze up to ``max_files`` source files.

    Returns the insights sorted by path and whether the cap cut the walk short.
    """

    analyzed: list[AnalyzedFile] = []
    stack: list[Path] = [root]
    reached_file_cap = False

    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda entry: entry.name)
        except OSError as error:
            logger.debug("Skipping unreadable directory %s: %s", current, error)
            continue

        for entry in entries:
            if len(analyzed) >= max_files:
                reached_file_cap = True
                break
            if entry.is_dir() and not entry.is_symlink():
                if entry.name not in SCAN_SKIP_DIRS:
                    stack.append(entry)
                continue
            if not entry.is_file():
                continue
            if extension_of(entry.name) not in SOURCE_EXTENSIONS:
                continue
            result = analyze_source_file(root, entry)
            if result is not None:
                analyzed.append(result)

        if reached_file_cap:
            break

    analyzed.sort(key=lambda item: item.insight.path)
    return enrich_fan_in(analyzed), reached_file_cap


def enrich_fan_in(files: list[AnalyzedFile]) -> list[FileInsight]:
    """Resolve internal imports and count distinct importers per module."""

    known_modules = {item.module_key for item in files}
    python_roots = _python_import_roots(files)
    fan_in: dict[str, int] = {}
    resolved_absolute: dict[str, int] = {}

    for item in files:
        targets: set[str] = set()
        absolute_hits = 0
        for ref in item.imports:
            resolved = _resolve(ref, known_modules, python_roots)
            if ref.absolute_python and resolved:
                absolute_hits += 1
            targets.update(target for target in resolved if target != item.module_key)
        resolved_absolute[item.insight.path] = absolute_hits
        for target in targets:
            fan_in[target] = fan_in.get(target, 0) + 1

    return [
        replace(
            item.insight,
            fan_in=fan_in.get(item.module_key, 0),
            internal_import_count=(
                item.insight.internal_import_count + resolved_absolute[item.insight.path]
            ),
        )
        for item in files
    ]


def _resolve(ref: ImportRef, known: set[str], python_roots: dict[str, str]) -> list[str]:
    if ref.absolute_python:
        candidates = [_anchor(candidate, python_roots) for candidate in ref.candidates]
        fallback = _anchor(ref.fallback, python_roots) if ref.fallback else None
    else:
        candidates = list(ref.candidates)
        fallback = ref.fallback
    hits = [candidate for candidate in candidates if candidate and candidate in known]
    if hits:
        return hits
    if fallback and fallback in known:
        return [fallback]
    return []


def _anchor(dotted_path: str, python_roots: dict[str, str]) -> str:
    head = dotted_path.split("/", 1)[0]
    if head not in python_roots:
        return ""
    prefix = python_roots[head]
    return f"{prefix}/{dotted_path}" if prefix else dotted_path


def _python_import_roots(files: list[AnalyzedFile]) -> dict[str, str]:
    """Map top-level importable names to the directory that holds them."""

    python_keys = [item.module_key for item in files if item.insight.path.endswith(".py")]
    packages = {
        item.module_key for item in files if item.insight.path.endswith("__init__.py")
    }
    roots: dict[str, str] = {}
    for key in python_keys:
        top = key
        while posixpath.dirname(top) in packages:
            top = posixpath.dirname(top)
        name = posixpath.basename(top)
        if name and name not in roots:
            roots[name] = posixpath.dirname(top)
    return roots
