"""Multi-pass refactor loop: scan, calibrate, execute, rescan, decide."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path

from refactor_pilot.agent.status import PassStatus
from refactor_pilot.backlog import (
    MAX_ADAPTIVE_PASSES,
    Backlog,
    count_actionable_items,
    derive_adaptive_pass_count,
    derive_budget_growth,
    format_backlog_compact,
    has_actionable_backlog,
    has_pending_backlog,
    same_backlog,
    summarize_backlog,
)
from refactor_pilot.calibration import calibrate_scan
from refactor_pilot.change_report import (
    SourceDiff,
    capture_source_snapshot,
    diff_snapshots,
    extract_verification_signals,
)
from refactor_pilot.checkpoint import Checkpoint, CheckpointStore
from refactor_pilot.context import RunContext
from refactor_pilot.policy import build_refactor_policy
from refactor_pilot.prompts import (
    build_refactor_prompt,
    prompt_snapshot_path,
    write_prompt_snapshot,
)
from refactor_pilot.scan import RepoScan, clamp_max_files, resolve_scan_with_coverage
from refactor_pilot.scheduler import run_refactor_prompt
from refactor_pilot.verification import (
    VerificationCommandResult,
    build_verification_plan,
    format_actionable_failures,
    run_verification_cycle,
)

logger = logging.getLogger(__name__)

STAGNATION_LIMIT = 2


class RefactorRunError(RuntimeError):
    """Run ended without clearing the actionable backlog."""


@dataclass(slots=True, frozen=True)
class RunOptions:
    """Per-invocation choices that are not checkpointed."""

    resume: bool = True
    max_files: int | None = None
    max_passes: int | None = None
    focus: str | None = None


@dataclass(slots=True, frozen=True)
class PassReport:
    pass_number: int
    pass_status: PassStatus
    output_tail: str


@dataclass(slots=True)
class RunOutcome:
    """Terminal success summary of one run."""

    completed_passes: int
    planned_passes: int
    final_backlog: Backlog
    final_pass_status: PassStatus = PassStatus.UNKNOWN
    final_output_tail: str = ""
    pass_reports: list[PassReport] = field(default_factory=list)
    source_diff: SourceDiff = field(default_factory=SourceDiff)
    verification_signals: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    prompt_path: Path | None = None
    dry_run: bool = False
    resumed: bool = False


@dataclass(slots=True)
class _LoopState:
    scan: RepoScan
    backlog: Backlog
    max_files: int
    planned_passes: int
    start_pass: int
    verification_notes: str = ""


class RefactorController:
    """Drive refactor passes for one target repository.

    Only the checkpoint store persists state, and only at pass boundaries.
    """

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self.store = CheckpointStore(context.target_dir)

    def run(self, options: RunOptions) -> RunOutcome:  # noqa: C901
        started = time.monotonic()
        context = self.context
        target_dir = Path(context.target_dir)
        if not options.resume:
            self.store.clear()
        checkpoint = self.store.load() if options.resume and not context.dry_run else None

        if checkpoint is not None:
            state = self._resume_state(checkpoint, options)
            context = self.context
            prompt_path = prompt_snapshot_path(target_dir, 1)
        else:
            context.emit(f"Scanning repository in {target_dir}...")
            coverage = resolve_scan_with_coverage(
                target_dir,
                options.max_files,
                explicit_max_files=context.explicit_max_files,
            )
            scan = coverage.scan
            if coverage.expanded:
                context.emit(
                    f"Auto-expanded source scan limit to {coverage.max_files_used} files.",
                )
            self._warn_on_file_cap(scan, coverage.max_files_used)
            prompt_path = write_prompt_snapshot(
                target_dir,
                self._build_prompt(scan, options, dry_run=context.dry_run),
                1,
            )
            backlog = summarize_backlog(scan)
            context.emit(
                f"Refactor brief ready ({scan.tech_stack}, {scan.project_shape}, "
                f"{scan.scanned_source_files} files); heuristic backlog: "
                f"{format_backlog_compact(backlog)}.",
            )

            if context.dry_run:
                context.emit(f"Dry run complete. Prompt snapshot saved at {prompt_path}.")
                return RunOutcome(
                    completed_passes=0,
                    planned_passes=0,
                    final_backlog=backlog,
                    elapsed_seconds=_elapsed(started),
                    prompt_path=prompt_path,
                    dry_run=True,
                )

            context.emit("Calibrating backlog signals with AI...")
            calibration = calibrate_scan(scan, context)
            if calibration.warning:
                logger.warning("%s", calibration.warning)
            scan = calibration.scan
            calibrated_backlog = summarize_backlog(scan)
            if not same_backlog(backlog, calibrated_backlog):
                context.emit(
                    f"AI calibration adjusted backlog from {format_backlog_compact(backlog)} "
                    f"to {format_backlog_compact(calibrated_backlog)}.",
                )
            prompt_path = write_prompt_snapshot(
                target_dir,
                self._build_prompt(scan, options, dry_run=False),
                1,
            )
            if not has_actionable_backlog(scan):
                self.store.clear()
                context.emit(
                    "No actionable backlog remains after AI calibration. Refactor complete.",
                )
                return RunOutcome(
                    completed_passes=0,
                    planned_passes=0,
                    final_backlog=calibrated_backlog,
                    elapsed_seconds=_elapsed(started),
                    prompt_path=prompt_path,
                )
            planned_passes = (
                options.max_passes
                if context.explicit_max_passes and options.max_passes
                else derive_adaptive_pass_count(calibrated_backlog)
            )
            if not context.explicit_max_passes:
                context.emit(
                    f"Adaptive pass budget set to {planned_passes} from calibrated backlog.",
                )
            state = _LoopState(
                scan=scan,
                backlog=calibrated_backlog,
                max_files=coverage.max_files_used,
                planned_passes=planned_passes,
                start_pass=1,
            )

        if not has_actionable_backlog(state.scan):
            self.store.clear()
            context.emit("No actionable backlog remains. Refactor complete.")
            return RunOutcome(
                completed_passes=0,
                planned_passes=state.planned_passes,
                final_backlog=state.backlog,
                elapsed_seconds=_elapsed(started),
                prompt_path=prompt_path,
                resumed=checkpoint is not None,
            )

        if options.resume:
            self._save_checkpoint(state, next_pass=state.start_pass)
        before = capture_source_snapshot(target_dir, state.max_files)
        outcome = self._run_passes(state, options)
        after = capture_source_snapshot(target_dir, state.max_files)
        if options.resume:
            self.store.clear()

        outcome.source_diff = diff_snapshots(before, after)
        outcome.verification_signals = extract_verification_signals(outcome.final_output_tail)
        outcome.elapsed_seconds = _elapsed(started)
        outcome.prompt_path = prompt_path
        outcome.resumed = checkpoint is not None
        return outcome

    def _resume_state(self, checkpoint: Checkpoint, options: RunOptions) -> _LoopState:
        """Adopt the saved scan and settings; no rescan happens before the next pass."""

        context = self.context
        if checkpoint.execution is not None:
            context = replace(context, settings=checkpoint.execution)
            self.context = context
            context.emit("Reusing saved execution settings from checkpoint.")
        else:
            logger.warning("Checkpoint has no saved execution settings; using current ones.")
        planned_passes = (
            options.max_passes
            if context.explicit_max_passes and options.max_passes
            else checkpoint.planned_passes
        )
        state = _LoopState(
            scan=checkpoint.scan,
            backlog=checkpoint.backlog,
            max_files=(
                clamp_max_files(options.max_files)
                if context.explicit_max_files
                else checkpoint.max_files
            ),
            planned_passes=planned_passes,
            start_pass=checkpoint.next_pass,
        )
        if state.start_pass > state.planned_passes:
            raise RefactorRunError(
                f"Saved checkpoint expects pass {state.start_pass}, but current pass budget "
                f"is {state.planned_passes}. Increase --max-passes or rerun with --no-resume.",
            )
        context.emit(
            f"Resuming interrupted refactor from pass "
            f"{state.start_pass}/{state.planned_passes}.",
        )
        return state

    def _run_passes(self, state: _LoopState, options: RunOptions) -> RunOutcome:  # noqa: C901
        context = self.context
        allow_growth = not context.explicit_max_passes
        stagnant_passes = 0
        cap_warning_logged = False
        reports: list[PassReport] = []

        pass_number = state.start_pass
        while pass_number <= state.planned_passes:
            prompt = self._build_prompt(
                state.scan,
                options,
                dry_run=False,
                extra_notes=state.verification_notes,
            )
            if pass_number > 1:
                path = write_prompt_snapshot(Path(context.target_dir), prompt, pass_number)
                logger.info("Prompt snapshot for pass %d saved at %s", pass_number, path)

            context.emit(f"Running AI pass {pass_number}/{state.planned_passes}...")
            result = run_refactor_prompt(prompt, context)
            if not result.executed:
                raise RefactorRunError(result.warning or "AI refactor execution failed.")
            if result.warning:
                logger.warning("%s", result.warning)
            if (
                context.settings.orchestration
                and result.provider_used == "claude"
                and pass_number == state.start_pass
            ):
                logger.warning("Orchestration is ignored because claude handled this pass.")
            reports.append(PassReport(pass_number, result.pass_status, result.output_tail))

            scan, backlog = self._rescan(state, pass_number)
            verification_failures = self._verify(scan)
            state.verification_notes = format_actionable_failures(verification_failures)
            context.emit(
                f"Pass {pass_number} status {result.pass_status.value.upper()}, "
                f"backlog {format_backlog_compact(backlog)}.",
            )

            has_pending = has_pending_backlog(backlog)
            has_actionable = has_actionable_backlog(scan) or bool(verification_failures)
            ai_requests_continue = result.pass_status is PassStatus.CONTINUE
            should_continue = has_actionable or (ai_requests_continue and has_pending)

            if should_continue and allow_growth and pass_number == state.planned_passes:
                failures = count_actionable_items(scan) + len(verification_failures)
                grown = min(
                    MAX_ADAPTIVE_PASSES,
                    state.planned_passes + derive_budget_growth(failures),
                )
                if grown > state.planned_passes:
                    context.emit(
                        f"Adaptive pass budget increased from {state.planned_passes} to {grown} "
                        f"after pass {pass_number}.",
                    )
                    state.planned_passes = grown
                elif not cap_warning_logged:
                    cap_warning_logged = True
                    logger.warning(
                        "Adaptive pass budget reached safety cap (%d) with remaining backlog.",
                        MAX_ADAPTIVE_PASSES,
                    )

            previous_backlog = state.backlog
            state.scan, state.backlog = scan, backlog
            if options.resume:
                self._save_checkpoint(state, next_pass=pass_number + 1)

            if not should_continue:
                if has_pending:
                    context.emit("Remaining backlog is non-actionable; stopping loop.")
                context.emit(f"Refactor finished across {len(reports)} pass(es).")
                return RunOutcome(
                    completed_passes=len(reports),
                    planned_passes=state.planned_passes,
                    final_backlog=backlog,
                    final_pass_status=result.pass_status,
                    final_output_tail=result.output_tail,
                    pass_reports=reports,
                )

            if pass_number == state.planned_passes:
                cap_hint = (
                    f" Adaptive continuation reached safety cap ({MAX_ADAPTIVE_PASSES})."
                    if allow_growth and state.planned_passes >= MAX_ADAPTIVE_PASSES
                    else ""
                )
                raise RefactorRunError(
                    f"Refactor incomplete after {state.planned_passes} passes. "
                    f"Remaining backlog: {format_backlog_compact(backlog)}.{cap_hint}",
                )

            stagnant_passes = stagnant_passes + 1 if same_backlog(previous_backlog, backlog) else 0
            if stagnant_passes >= STAGNATION_LIMIT:
                raise RefactorRunError(
                    f"Refactor stalled after pass {pass_number}. Remaining backlog is unchanged: "
                    f"{format_backlog_compact(backlog)}",
                )

            context.emit(
                f"Continuing to pass {pass_number + 1}/{state.planned_passes} "
                f"({_continue_reason(has_actionable, ai_requests_continue)}).",
            )
            pass_number += 1

        raise RefactorRunError("Refactor pass loop exited without terminal status.")

    def _rescan(self, state: _LoopState, pass_number: int) -> tuple[RepoScan, Backlog]:
        context = self.context
        context.emit(f"Rescanning after pass {pass_number}...")
        coverage = resolve_scan_with_coverage(
            context.target_dir,
            state.max_files,
            explicit_max_files=context.explicit_max_files,
        )
        if not context.explicit_max_files and coverage.max_files_used > state.max_files:
            state.max_files = coverage.max_files_used
            context.emit(f"Auto-expanded source scan limit to {state.max_files} files.")
        self._warn_on_file_cap(coverage.scan, state.max_files)

        heuristic_backlog = summarize_backlog(coverage.scan)
        calibration = calibrate_scan(coverage.scan, context)
        if calibration.warning:
            logger.warning("%s", calibration.warning)
        backlog = summarize_backlog(calibration.scan)
        if not same_backlog(heuristic_backlog, backlog):
            context.emit(
                f"Pass {pass_number} AI calibration adjusted backlog from "
                f"{format_backlog_compact(heuristic_backlog)} to "
                f"{format_backlog_compact(backlog)}.",
            )
        return calibration.scan, backlog

    def _verify(self, scan: RepoScan) -> tuple[VerificationCommandResult, ...]:
        context = self.context
        if not context.verify:
            return ()
        policy = build_refactor_policy(scan.tech_stack, scan.project_shape)
        plan = build_verification_plan(scan, policy)
        cycle = run_verification_cycle(
            plan,
            cwd=Path(context.target_dir),
            timeout_seconds=context.verify_timeout_seconds,
            progress=context.emit,
        )
        failures = cycle.actionable_failures
        if failures:
            context.emit(f"Verification reported {len(failures)} actionable failure(s).")
        return failures

    def _build_prompt(
        self,
        scan: RepoScan,
        options: RunOptions,
        *,
        dry_run: bool,
        extra_notes: str = "",
    ) -> str:
        settings = self.context.settings
        notes = "\n".join(note for note in (settings.notes, extra_notes) if note)
        return build_refactor_prompt(
            scan,
            build_refactor_policy(scan.tech_stack, scan.project_shape),
            dry_run=dry_run,
            notes=notes or None,
            focus=options.focus,
            orchestration=settings.orchestration,
            max_workers=settings.max_workers,
        )

    def _save_checkpoint(self, state: _LoopState, *, next_pass: int) -> None:
        try:
            self.store.save(
                planned_passes=state.planned_passes,
                next_pass=next_pass,
                max_files=state.max_files,
                scan=state.scan,
                backlog=state.backlog,
                execution=self.context.settings,
            )
        except OSError as error:
            logger.warning("Could not update resume checkpoint (%s).", error)

    def _warn_on_file_cap(self, scan: RepoScan, max_files: int) -> None:
        if not scan.reached_file_cap:
            return
        if self.context.explicit_max_files:
            logger.warning(
                "Source scan reached file cap; rerun with a higher --max-files value "
                "for broader coverage.",
            )
        else:
            logger.warning(
                "Source scan reached automatic cap at %d files; coverage may still be partial.",
                max_files,
            )


def _continue_reason(has_actionable: bool, ai_requests_continue: bool) -> str:
    if has_actionable and ai_requests_continue:
        return "backlog remains and AI requested CONTINUE"
    if has_actionable:
        return "backlog remains"
    return "AI requested CONTINUE"


def _elapsed(started: float) -> float:
    return round(time.monotonic() - started, 2)
