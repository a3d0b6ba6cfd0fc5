from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .clock import Clock
from .commands import CHECKPOINTS
from .drill_core import RejectReason, round_half_up

logger = logging.getLogger(__name__)

PART_I_MAX = 14
PART_II_MAX = 32
TOTAL_MAX = PART_I_MAX + PART_II_MAX

COMMANDS_MAX = 30
CROSSOVERS_MAX = 2
TIMING_SCORE_MAX = 6.0
TIMING_POINTS_PER_PERFECT = 0.5

REPORT_POINTS = 2
FINAL_POSITION_POINTS = 2
POSITION_ON_FLIGHT_POINTS = 1

TIME_LIMIT_S = 180.0
OVERTIME_STEP_S = 10.0


@dataclass(frozen=True, slots=True)
class PartIBreakdown:
    """Leadership."""

    total: int
    max_possible: int
    command_voice: int
    calling_cadence: int
    military_bearing: int
    position_on_flight: int
    final_positioning: int
    report_in: int
    report_out: int


@dataclass(frozen=True, slots=True)
class PartIIBreakdown:
    """Order of commands."""

    total: int
    max_possible: int
    commands: int
    crossovers: int


@dataclass(frozen=True, slots=True)
class OvertimeBreakdown:
    penalty: int
    time_seconds: float
    time_limit_s: float


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    part_i: PartIBreakdown
    part_ii: PartIIBreakdown
    overtime: OvertimeBreakdown
    total: int
    max_possible: int = TOTAL_MAX


class ScoringEngine:
    """Grades one drill attempt.

    Part I (max 14) covers voice, cadence, bearing, position on the flight,
    final positioning and the report in/out. Part II (max 32) is one point
    per correct command plus one per crossover checkpoint. Each full 10
    seconds between report-in and report-out beyond the time limit costs
    one point.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        catalog_size: int,
        crossover_ids: tuple[int, ...] = tuple(cp.command_id for cp in CHECKPOINTS),
        unscored_ids: frozenset[int] = frozenset(),
        time_limit_s: float = TIME_LIMIT_S,
    ) -> None:
        if catalog_size <= 0:
            raise ValueError("catalog_size must be > 0")
        if time_limit_s <= 0.0:
            raise ValueError("time_limit_s must be > 0")
        if len(set(crossover_ids)) > CROSSOVERS_MAX:
            raise ValueError(f"at most {CROSSOVERS_MAX} crossover checkpoints are scored")

        self._clock = clock
        self._catalog_size = int(catalog_size)
        self._crossover_ids = frozenset(int(i) for i in crossover_ids)
        self._unscored_ids = frozenset(int(i) for i in unscored_ids)
        self._time_limit_s = float(time_limit_s)
        self.reset()

    @property
    def time_limit_s(self) -> float:
        return self._time_limit_s

    @property
    def crossovers(self) -> int:
        return len(self._crossover_credit)

    @property
    def perfect_timing_count(self) -> int:
        return len(self._perfect_ids)

    @property
    def correct_commands(self) -> tuple[int, ...]:
        return tuple(self._correct)

    @property
    def reported_in(self) -> bool:
        return self._start_s is not None

    @property
    def reported_out(self) -> bool:
        return self._end_s is not None

    def reset(self) -> None:
        self._correct: list[int] = [0] * self._catalog_size
        self._perfect_ids: set[int] = set()
        self._crossover_credit: set[int] = set()
        self._command_times_s: dict[int, float] = {}
        self._final_positioning = 0
        self._report_in = 0
        self._report_out = 0
        self._start_s: float | None = None
        self._end_s: float | None = None

    def record_command(self, command_id: int, is_correct: bool, is_perfect_timing: bool) -> RejectReason | None:
        """Record the result of one command; the latest recording for an id wins."""

        valid_id = isinstance(command_id, int) and not isinstance(command_id, bool)
        if not valid_id or not (0 <= command_id < self._catalog_size):
            logger.warning("ignoring score for command id %r outside 0..%d", command_id, self._catalog_size - 1)
            return RejectReason.OUT_OF_RANGE

        cid = command_id
        correct = bool(is_correct)
        self._correct[cid] = 1 if correct and cid not in self._unscored_ids else 0
        self._command_times_s[cid] = self._clock.now()

        if correct and is_perfect_timing:
            self._perfect_ids.add(cid)
        else:
            self._perfect_ids.discard(cid)

        if cid in self._crossover_ids:
            if correct:
                self._crossover_credit.add(cid)
            else:
                self._crossover_credit.discard(cid)
        return None

    def record_report_in(self) -> None:
        self._report_in = REPORT_POINTS
        self._start_s = self._clock.now()

    def record_report_out(self) -> None:
        self._report_out = REPORT_POINTS
        self._end_s = self._clock.now()

    def record_final_position(self, within_tolerance: bool) -> None:
        self._final_positioning = FINAL_POSITION_POINTS if within_tolerance else 0

    def command_time_s(self, command_id: int) -> float | None:
        return self._command_times_s.get(int(command_id))

    def elapsed_s(self) -> float:
        if self._start_s is None or self._end_s is None:
            return 0.0
        return max(0.0, self._end_s - self._start_s)

    def calculate_part_i(self) -> int:
        return self._part_i().total

    def calculate_part_ii(self) -> int:
        return self._part_ii().total

    def calculate_overtime_penalty(self) -> int:
        overtime_s = max(0.0, self.elapsed_s() - self._time_limit_s)
        return int(math.floor(overtime_s / OVERTIME_STEP_S))

    def calculate_total_score(self) -> int:
        return max(0, self.calculate_part_i() + self.calculate_part_ii() - self.calculate_overtime_penalty())

    def get_score_breakdown(self) -> ScoreBreakdown:
        part_i = self._part_i()
        part_ii = self._part_ii()
        penalty = self.calculate_overtime_penalty()
        return ScoreBreakdown(
            part_i=part_i,
            part_ii=part_ii,
            overtime=OvertimeBreakdown(
                penalty=penalty,
                time_seconds=self.elapsed_s(),
                time_limit_s=self._time_limit_s,
            ),
            total=max(0, part_i.total + part_ii.total - penalty),
        )

    def _part_i(self) -> PartIBreakdown:
        # Voice, cadence and bearing share one timing budget.
        timing_score = min(TIMING_SCORE_MAX, self.perfect_timing_count * TIMING_POINTS_PER_PERFECT)
        shared = round_half_up(timing_score / 3.0)
        total = (
            shared * 3
            + POSITION_ON_FLIGHT_POINTS
            + self._final_positioning
            + self._report_in
            + self._report_out
        )
        return PartIBreakdown(
            total=min(PART_I_MAX, total),
            max_possible=PART_I_MAX,
            command_voice=shared,
            calling_cadence=shared,
            military_bearing=shared,
            position_on_flight=POSITION_ON_FLIGHT_POINTS,
            final_positioning=self._final_positioning,
            report_in=self._report_in,
            report_out=self._report_out,
        )

    def _part_ii(self) -> PartIIBreakdown:
        commands = min(COMMANDS_MAX, sum(self._correct))
        crossovers = min(CROSSOVERS_MAX, self.crossovers)
        return PartIIBreakdown(
            total=min(PART_II_MAX, commands + crossovers),
            max_possible=PART_II_MAX,
            commands=commands,
            crossovers=crossovers,
        )
