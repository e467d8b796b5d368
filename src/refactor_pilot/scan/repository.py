"""Repository scan entry points."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from refactor_pilot.scan.constants import (
    AUTO_SCAN_LIMITS,
    DEFAULT_MAX_FILES,
    LARGEST_FILES_LIMIT,
    MAX_MAX_FILES,
    MIN_MAX_FILES,
)
from refactor_pilot.scan.hotspots import (
    select_comment_cleanup_candidates,
    select_coupling_candidates,
    select_debt_candidates,
    select_largest,
    select_monolith_candidates,
)
from refactor_pilot.scan.models import RepoScan
from refactor_pilot.scan.project_inference import (
    infer_project_shape,
    infer_tech_stack,
    read_package_signals,
)
from refactor_pilot.scan.source_scan import scan_source_files

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CoverageScan:
    """Scan result together with the file cap that produced it."""

    scan: RepoScan
    max_files_used: int
    expanded: bool


def clamp_max_files(value: int | None) -> int:
    if value is None:
        return DEFAULT_MAX_FILES
    return min(MAX_MAX_FILES, max(MIN_MAX_FILES, int(value)))


def scan_repository(target_dir: Path | str, max_files: int | None = DEFAULT_MAX_FILES) -> RepoScan:
    """Scan ``target_dir`` and classify its files into refactor candidates."""

    root = Path(target_dir).resolve()
    files, reached_file_cap = scan_source_files(root, clamp_max_files(max_files))
    signals = read_package_signals(root)
    tech_stack = infer_tech_stack(root, signals, files)
    return RepoScan(
        target_dir=str(root),
        tech_stack=tech_stack,
        project_shape=infer_project_shape(root, tech_stack, signals),
        scanned_source_files=len(files),
        scanned_total_lines=sum(item.line_count for item in files),
        reached_file_cap=reached_file_cap,
        largest_files=tuple(select_largest(files, LARGEST_FILES_LIMIT)),
        monolith_candidates=tuple(select_monolith_candidates(files)),
        coupling_candidates=tuple(select_coupling_candidates(files)),
        debt_candidates=tuple(select_debt_candidates(files)),
        comment_cleanup_candidates=tuple(select_comment_cleanup_candidates(files)),
    )


def resolve_scan_with_coverage(
    target_dir: Path | str,
    requested_max_files: int | None,
    *,
    explicit_max_files: bool,
) -> CoverageScan:
    """Scan, climbing the auto cap ladder while the walk is truncated.

    A cap pinned by the caller is used as-is.
    """

    initial_limit = clamp_max_files(requested_max_files)
    if explicit_max_files:
        return CoverageScan(
            scan=scan_repository(target_dir, initial_limit),
            max_files_used=initial_limit,
            expanded=False,
        )

    limits = [initial_limit, *(limit for limit in AUTO_SCAN_LIMITS if limit > initial_limit)]
    max_files_used = limits[0]
    scan = scan_repository(target_dir, max_files_used)
    for limit in limits[1:]:
        if not scan.reached_file_cap:
            break
        logger.info("Scan reached %d files; rescanning with a cap of %d", max_files_used, limit)
        max_files_used = limit
        scan = scan_repository(target_dir, max_files_used)

    return CoverageScan(
        scan=scan,
        max_files_used=max_files_used,
        expanded=max_files_used > initial_limit,
    )
