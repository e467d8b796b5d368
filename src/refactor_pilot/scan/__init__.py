"""Repository scanning and backlog candidate classification."""

from refactor_pilot.scan.models import FileInsight, Hotspot, RepoScan
from refactor_pilot.scan.repository import (
    CoverageScan,
    clamp_max_files,
    resolve_scan_with_coverage,
    scan_repository,
)

__all__ = [
    "CoverageScan",
    "FileInsight",
    "Hotspot",
    "RepoScan",
    "clamp_max_files",
    "resolve_scan_with_coverage",
    "scan_repository",
]
