from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .drill_core import DrillMode, TimingQuality, format_clock
from .scoring import ScoreBreakdown

if TYPE_CHECKING:
    from .session import CommandEvent, DrillSession


@dataclass(frozen=True, slots=True)
class DrillAttemptResult:
    """Summary + event log for a finished drill attempt.

    Built from a session after report-out (or the safety cutoff) so the UI can
    show the end-of-drill report without reaching into live state.
    """

    mode: DrillMode
    breakdown: ScoreBreakdown
    completed_commands: int
    total_commands: int
    misses: int
    perfect_timing: int
    checkpoints_passed: int
    final_in_position: bool | None
    forced_end: bool
    duration_s: float

    events: list[CommandEvent]

    @property
    def accuracy(self) -> float:
        attempts = self.completed_commands + self.misses
        return 0.0 if attempts == 0 else self.completed_commands / attempts


def score_report_lines(breakdown: ScoreBreakdown) -> list[str]:
    """End-of-drill report, one line per row of the evaluation sheet."""

    lines = [
        f"Score: {breakdown.total}/{breakdown.max_possible}",
        f"Part I (Leadership): {breakdown.part_i.total}/{breakdown.part_i.max_possible}",
        f"Part II (Commands): {breakdown.part_ii.total}/{breakdown.part_ii.max_possible}",
        f"Time: {format_clock(breakdown.overtime.time_seconds)}",
    ]
    if breakdown.overtime.penalty > 0:
        lines.append(f"Overtime Penalty: -{breakdown.overtime.penalty}")
    return lines


def attempt_result_from_session(session: DrillSession) -> DrillAttemptResult:
    events = session.events()
    accepted = [e for e in events if e.accepted]
    return DrillAttemptResult(
        mode=session.mode,
        breakdown=session.score_breakdown(),
        completed_commands=len(accepted),
        total_commands=len(session.catalog),
        misses=sum(1 for e in events if not e.accepted),
        perfect_timing=sum(1 for e in accepted if e.timing_quality is TimingQuality.PERFECT),
        checkpoints_passed=sum(1 for cp in session.checkpoints() if cp.passed),
        final_in_position=session.final_in_position,
        forced_end=session.forced_end,
        duration_s=session.elapsed_s(),
        events=events,
    )
