"""Local deterministic agent for CLI backend integration tests and smoke checks.

Behavior is driven by environment variables so tests can script a run:

- ``REFACTOR_PILOT_ECHO_PLANNER``/``REFACTOR_PILOT_ECHO_ORCHESTRATION``/
  ``REFACTOR_PILOT_ECHO_CALIBRATION``: JSON printed for the matching prompt kind.
- ``REFACTOR_PILOT_ECHO_STATUS``: status marker value for edit prompts.
- ``REFACTOR_PILOT_ECHO_EXIT_CODE``: process exit code.
- ``REFACTOR_PILOT_ECHO_SLEEP``: seconds to hang after printing output.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

from refactor_pilot.agent.status import STATUS_MARKER_PREFIX

_PROMPT_KINDS: tuple[tuple[str, str], ...] = (
    ('"refactorNeeded"', "REFACTOR_PILOT_ECHO_PLANNER"),
    ('"assignments"', "REFACTOR_PILOT_ECHO_ORCHESTRATION"),
    ('"monolithPaths"', "REFACTOR_PILOT_ECHO_CALIBRATION"),
)


def main(argv: list[str] | None = None) -> int:
    """Answer one prompt deterministically."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", default=None)
    parser.add_argument("prompt", nargs="?", default="")
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8") if args.prompt_file else args.prompt
    print(_respond(prompt), flush=True)

    sleep_seconds = float(os.getenv("REFACTOR_PILOT_ECHO_SLEEP", "0"))
    if sleep_seconds > 0:
        time.sleep(sleep_seconds)
    return int(os.getenv("REFACTOR_PILOT_ECHO_EXIT_CODE", "0"))


def _respond(prompt: str) -> str:
    for marker, env_name in _PROMPT_KINDS:
        if marker in prompt:
            return os.getenv(env_name, "echo agent: no structured answer configured")

    first_line = next((line.strip() for line in prompt.splitlines() if line.strip()), "")
    status = os.getenv("REFACTOR_PILOT_ECHO_STATUS", "COMPLETE").upper()
    return f"echo agent handled: {first_line}\n{STATUS_MARKER_PREFIX}: {status}"


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
