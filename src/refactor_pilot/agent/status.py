"""Terminal status marker emitted by the agent at the end of a pass."""

from __future__ import annotations

import re
from enum import Enum

STATUS_MARKER_PREFIX = "REFACTOR_PILOT_STATUS"
STATUS_MARKER = re.compile(
    rf"^\s*{STATUS_MARKER_PREFIX}:\s*(COMPLETE|CONTINUE)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
MARKER_TAIL_LINES = 8
OUTPUT_TAIL_LINES = 16


class PassStatus(str, Enum):
    """Status the agent reported for a pass."""

    COMPLETE = "complete"
    CONTINUE = "continue"
    UNKNOWN = "unknown"


def status_line(status: PassStatus) -> str:
    return f"{STATUS_MARKER_PREFIX}: {status.value.upper()}"


def parse_pass_status(output: str) -> PassStatus:
    """Return the status from the last marker line, or ``UNKNOWN``."""

    matches = STATUS_MARKER.findall(output)
    if not matches:
        return PassStatus.UNKNOWN
    return PassStatus.COMPLETE if matches[-1].upper() == "COMPLETE" else PassStatus.CONTINUE


def has_terminal_status_marker(output: str) -> bool:
    """Return True when a marker appears among the last non-empty output lines."""

    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return False
    return STATUS_MARKER.search("\n".join(lines[-MARKER_TAIL_LINES:])) is not None


def tail_lines(output: str, max_lines: int = OUTPUT_TAIL_LINES) -> str:
    lines = [line.rstrip() for line in output.splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])
