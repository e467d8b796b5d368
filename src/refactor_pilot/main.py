"""CLI entrypoint for refactor-pilot."""

import logging
from collections.abc import Iterable
from pathlib import Path

import rich_click as click

from refactor_pilot import __version__
from refactor_pilot.checkpoint import CheckpointError
from refactor_pilot.config import MAX_AI_TIMEOUT_SECONDS, MAX_MAX_WORKERS, MIN_AI_TIMEOUT_SECONDS
from refactor_pilot.controller import RefactorRunError
from refactor_pilot.controllers import (
    CheckpointCommand,
    RefactorCliController,
    RunCommand,
    ScanCommand,
    SmokeCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RefactorCliController()

_TARGET = click.argument(
    "target_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
)
_PROVIDERS = click.Choice(["auto", "codex", "claude"], case_sensitive=False)


@click.group()
@click.version_option(version=__version__, prog_name="refactor-pilot")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics written to stderr.",
)
def refactor_pilot(log_level: str) -> None:
    """Drive multi-pass refactors of a repository with an external coding agent."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@refactor_pilot.command("run")
@_TARGET
@click.option("--provider", type=_PROVIDERS, default=None, help="Agent CLI to use.")
@click.option("--model", default=None, help="Model for single-call passes and calibration.")
@click.option("--planner-model", default=None, help="Model for the planner call.")
@click.option("--orchestrator-model", default=None, help="Model for the wave orchestrator call.")
@click.option("--worker-model", default=None, help="Model for worker calls.")
@click.option(
    "--orchestration/--no-orchestration",
    default=None,
    help="Split codex passes into planned parallel worker waves.",
)
@click.option(
    "--max-workers",
    type=click.IntRange(min=1, max=MAX_MAX_WORKERS),
    default=None,
    help="Upper bound on concurrent workers per wave.",
)
@click.option(
    "--max-files",
    type=click.IntRange(min=1),
    default=None,
    help="Pin the source scan file cap. Without it the cap grows automatically.",
)
@click.option(
    "--max-passes",
    type=click.IntRange(min=1),
    default=None,
    help="Fixed pass budget. Without it the budget is derived from the backlog.",
)
@click.option(
    "--ai-timeout",
    "ai_timeout_seconds",
    type=click.IntRange(min=MIN_AI_TIMEOUT_SECONDS, max=MAX_AI_TIMEOUT_SECONDS),
    default=None,
    help="Hard timeout per agent call, in seconds.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Scan and write the prompt without calling any agent.",
)
@click.option(
    "--resume/--no-resume",
    default=True,
    show_default=True,
    help="Continue from a saved checkpoint when one exists.",
)
@click.option(
    "--verify/--no-verify",
    default=None,
    help="Run lint/test/build commands after each pass and feed real failures back.",
)
@click.option("--notes", default=None, help="Extra guidance appended to every prompt.")
@click.option("--focus", default=None, help="Area of the codebase to prioritize.")
def run(  # noqa: PLR0913
    target_dir: Path,
    provider: str | None,
    model: str | None,
    planner_model: str | None,
    orchestrator_model: str | None,
    worker_model: str | None,
    orchestration: bool | None,
    max_workers: int | None,
    max_files: int | None,
    max_passes: int | None,
    ai_timeout_seconds: int | None,
    dry_run: bool,
    resume: bool,
    verify: bool | None,
    notes: str | None,
    focus: str | None,
) -> None:
    """Run refactor passes until the actionable backlog is clear."""

    _emit_lines(
        CONTROLLER.run(
            RunCommand(
                target_dir=target_dir,
                provider=provider.lower() if provider else None,
                model=model,
                planner_model=planner_model,
                orchestrator_model=orchestrator_model,
                worker_model=worker_model,
                orchestration=orchestration,
                max_workers=max_workers,
                max_files=max_files,
                max_passes=max_passes,
                ai_timeout_seconds=ai_timeout_seconds,
                dry_run=dry_run,
                resume=resume,
                verify=verify,
                notes=notes,
                focus=focus,
            ),
        ),
    )


@refactor_pilot.command("scan")
@_TARGET
@click.option(
    "--max-files",
    type=click.IntRange(min=1),
    default=None,
    help="Pin the source scan file cap.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the scan and backlog as JSON.")
def scan(target_dir: Path, max_files: int | None, as_json: bool) -> None:
    """Scan a repository and print the heuristic backlog. No agent is called."""

    _emit_lines(
        CONTROLLER.scan(
            ScanCommand(target_dir=target_dir, max_files=max_files, as_json=as_json),
        ),
    )


@refactor_pilot.group()
def checkpoint() -> None:
    """Resume checkpoint commands."""


@checkpoint.command("show")
@_TARGET
def checkpoint_show(target_dir: Path) -> None:
    """Show the saved resume checkpoint."""

    _emit_lines(CONTROLLER.checkpoint_show(CheckpointCommand(target_dir=target_dir)))


@checkpoint.command("clear")
@_TARGET
def checkpoint_clear(target_dir: Path) -> None:
    """Delete the saved resume checkpoint."""

    _emit_lines(CONTROLLER.checkpoint_clear(CheckpointCommand(target_dir=target_dir)))


@refactor_pilot.command("smoke")
@click.option(
    "--target-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Working directory for the probe call.",
)
@click.option("--provider", type=_PROVIDERS, default=None, help="Agent CLI to test.")
@click.option("--model", default=None, help="Optional explicit model id.")
@click.option(
    "--prompt",
    default="Reply with exactly: OK",
    show_default=True,
    help="Synthetic prompt used for run check.",
)
@click.option(
    "--expect-substring",
    default="OK",
    show_default=True,
    help="Substring required in output for a successful check.",
)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1, max=600),
    default=120,
    show_default=True,
    help="Timeout for the probe call.",
)
def smoke(  # noqa: PLR0913
    target_dir: Path,
    provider: str | None,
    model: str | None,
    prompt: str,
    expect_substring: str,
    timeout_seconds: int,
) -> None:
    """Send a tiny prompt through the configured agent CLI."""

    result = CONTROLLER.smoke(
        SmokeCommand(
            target_dir=target_dir,
            provider=provider.lower() if provider else None,
            model=model,
            prompt=prompt,
            expect_substring=expect_substring,
            timeout_seconds=timeout_seconds,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Agent smoke check failed.")


def _emit_lines(lines: Iterable[str]) -> None:
    try:
        for line in lines:
            click.echo(line)
    except (RefactorRunError, CheckpointError, ValueError) as error:
        raise click.ClickException(str(error)) from error


if __name__ == "__main__":  # pragma: no cover
    refactor_pilot()
