from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .clock import Clock, to_ms
from .commands import (
    CHECKPOINTS,
    DEFAULT_CATALOG,
    FINAL_POSITION,
    Checkpoint,
    Command,
    CommandCatalog,
    normalize_key,
)
from .drill_core import (
    DrillMode,
    DrillState,
    Facing,
    Point,
    RejectReason,
    SessionPhase,
    TimingQuality,
)
from .formation import FormationConfig, FormationMember, FormationSnapshot, FormationStateMachine
from .results import score_report_lines
from .scoring import ScoreBreakdown, ScoringEngine

logger = logging.getLogger(__name__)

REPORT_KEY = "Enter"


@dataclass(frozen=True, slots=True)
class FieldEntity:
    name: str
    position: Point
    radius: float = 0.5


DEFAULT_ENTITIES: tuple[FieldEntity, ...] = (
    FieldEntity(name="Commander", position=Point(11.5, 7.0)),
    FieldEntity(name="Evaluator", position=Point(2.0, 12.0)),
)


@dataclass(frozen=True, slots=True)
class DrillConfig:
    time_limit_s: float = 180.0
    # Hard ceiling after report-in, independent of the UI timer.
    safety_cutoff_s: float = 300.0

    # 120 steps per minute.
    cadence_period_ms: int = 500
    cadence_window_ms: int = 100
    tick_ms: int = 10

    field_width: float = 50.0
    field_height: float = 50.0

    checkpoints: tuple[Checkpoint, ...] = CHECKPOINTS
    final_position: Point = FINAL_POSITION
    final_tolerance: float = 1.0
    entities: tuple[FieldEntity, ...] = DEFAULT_ENTITIES

    formation: FormationConfig = FormationConfig()


@dataclass(frozen=True, slots=True)
class CommandEvent:
    command_id: int
    timestamp_ms: int
    was_correct_key: bool
    was_valid_state: bool
    timing_quality: TimingQuality
    reason: RejectReason | None = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


@dataclass(frozen=True, slots=True)
class InputResult:
    accepted: bool
    reason: RejectReason | None = None
    command_id: int | None = None
    timing_quality: TimingQuality | None = None
    feedback: str | None = None


@dataclass(frozen=True, slots=True)
class CheckpointStatus:
    command_id: int
    name: str
    target: Point
    tolerance: float
    passed: bool


@dataclass(frozen=True, slots=True)
class CommandProgress:
    command: Command
    status: str  # "completed" | "active" | "pending"


@dataclass(frozen=True, slots=True)
class DrillSnapshot:
    """View model for the UI (pure data)."""

    title: str
    phase: SessionPhase
    mode: DrillMode
    prompt: str
    input_hint: str
    feedback: str | None
    expected_command: Command | None
    completed_commands: int
    total_commands: int
    elapsed_s: float
    time_remaining_s: float | None
    running_score: int
    formation: FormationSnapshot
    checkpoints: tuple[CheckpointStatus, ...]
    on_cadence: bool
    collision_pending: bool
    misses: int
    event_count: int


@dataclass(slots=True)
class DrillContext:
    """Everything one attempt owns; replaced wholesale on restart."""

    formation: FormationStateMachine
    scoring: ScoringEngine
    origin_s: float
    phase: SessionPhase = SessionPhase.READY
    expected_index: int = 0
    reported_in_at_s: float | None = None
    finished_at_s: float | None = None
    last_update_ms: int = 0
    accumulator_ms: int = 0
    cadence_ms: int = 0
    on_cadence: bool = False
    events: list[CommandEvent] = field(default_factory=list)
    checkpoints_passed: dict[int, bool] = field(default_factory=dict)
    collision_pending: bool = False
    collision_detail: str | None = None
    # Heading the player chose to continue on after a collision.
    blocked_facing: Facing | None = None
    misses: int = 0
    feedback: str | None = None
    forced_end: bool = False
    final_in_position: bool | None = None


def accepted_feedback(command: Command, timing: TimingQuality) -> str:
    text = f'Command "{command.name}" executed successfully!'
    if timing is TimingQuality.PERFECT:
        text += " Perfect timing!"
    return text


def rejection_feedback(command: Command | None, reason: RejectReason, drill_state: DrillState) -> str:
    if command is None:
        return "No command is expected right now."
    if reason in (RejectReason.WRONG_KEY, RejectReason.OUT_OF_ORDER):
        return f'Incorrect command key. Expected "{command.name}" ({command.display_key}).'
    if reason is RejectReason.WRONG_STATE:
        needed = "halted" if command.is_halt_command else "marching"
        return f'Invalid command state. The flight must be {needed} for "{command.name}".'
    if reason is RejectReason.INVALID_TRANSITION:
        return f'"{command.name}" cannot be executed while the flight is {drill_state.label}.'
    if reason is RejectReason.NOT_REPORTED_IN:
        return "Press Enter to Report In before issuing commands."
    return f'"{command.name}" was not accepted.'


def collision_feedback(detail: str) -> str:
    return f"Movement blocked: the flight would run into {detail}. Shift+Enter to restart, Enter to continue."


class DrillSession:
    """Drives one drill attempt against real-time input.

    Key presses and frame updates are the only mutation points. Time comes
    from the injected Clock; the formation advances in fixed ticks so that a
    scripted run always produces the same positions and cadence judgements.
    """

    _MAX_UPDATE_MS = 500

    def __init__(
        self,
        *,
        clock: Clock,
        mode: DrillMode = DrillMode.PRACTICE,
        config: DrillConfig | None = None,
        catalog: CommandCatalog = DEFAULT_CATALOG,
    ) -> None:
        cfg = config or DrillConfig()

        if cfg.time_limit_s <= 0.0:
            raise ValueError("time_limit_s must be > 0")
        if cfg.safety_cutoff_s < cfg.time_limit_s:
            raise ValueError("safety_cutoff_s must be >= time_limit_s")
        if cfg.cadence_period_ms <= 0:
            raise ValueError("cadence_period_ms must be > 0")
        if not (0 <= cfg.cadence_window_ms * 2 <= cfg.cadence_period_ms):
            raise ValueError("cadence_window_ms must be in [0, cadence_period_ms / 2]")
        if cfg.tick_ms <= 0:
            raise ValueError("tick_ms must be > 0")
        if cfg.field_width <= 0.0 or cfg.field_height <= 0.0:
            raise ValueError("field dimensions must be > 0")
        for checkpoint in cfg.checkpoints:
            if catalog.lookup(checkpoint.command_id) is None:
                raise ValueError(f"checkpoint {checkpoint.name!r} refers to unknown command {checkpoint.command_id}")

        self._clock = clock
        self._mode = DrillMode(mode)
        self._cfg = cfg
        self._catalog = catalog
        self._ctx = self._new_context()

    @property
    def mode(self) -> DrillMode:
        return self._mode

    @property
    def phase(self) -> SessionPhase:
        return self._ctx.phase

    @property
    def config(self) -> DrillConfig:
        return self._cfg

    @property
    def catalog(self) -> CommandCatalog:
        return self._catalog

    @property
    def forced_end(self) -> bool:
        return self._ctx.forced_end

    @property
    def final_in_position(self) -> bool | None:
        return self._ctx.final_in_position

    def can_exit(self) -> bool:
        # Evaluation attempts are locked once the report-in has been made.
        return self._mode is DrillMode.PRACTICE or self._ctx.phase is not SessionPhase.DRILLING

    def restart(self) -> None:
        self._ctx = self._new_context()
        logger.info("drill session restarted (%s mode)", self._mode.value)

    def resolve_collision(self, *, restart: bool) -> None:
        """Close the collision prompt, either restarting or continuing.

        Continuing leaves the flight held in place; it moves again once a
        command turns it onto a heading that is not blocked.
        """

        if restart:
            self.restart()
            return
        ctx = self._ctx
        ctx.collision_pending = False
        ctx.collision_detail = None
        ctx.blocked_facing = ctx.formation.facing
        ctx.feedback = None

    def handle_key(self, key: str, *, shift: bool = False) -> InputResult:
        key = normalize_key(key)
        ctx = self._ctx

        if key == REPORT_KEY:
            if shift:
                self.restart()
                return InputResult(accepted=True)
            if ctx.collision_pending:
                self.resolve_collision(restart=False)
                return InputResult(accepted=True)
            if ctx.phase is SessionPhase.READY:
                self._report_in()
                return InputResult(accepted=True, feedback=self._practice_only(ctx.feedback))
            if ctx.phase is SessionPhase.AWAITING_REPORT_OUT:
                self._report_out()
                return InputResult(accepted=True)
            # Enter is never a drill command; ignore it mid-sequence.
            over = ctx.phase is SessionPhase.RESULTS
            return InputResult(accepted=False, reason=RejectReason.SESSION_OVER if over else RejectReason.WRONG_KEY)

        if ctx.phase is SessionPhase.READY:
            return self._reject(None, RejectReason.NOT_REPORTED_IN, record=False)
        if ctx.phase is not SessionPhase.DRILLING:
            return InputResult(accepted=False, reason=RejectReason.SESSION_OVER)

        expected = self._catalog.lookup(ctx.expected_index)
        if expected is None:
            return InputResult(accepted=False, reason=RejectReason.SESSION_OVER)
        if ctx.collision_pending:
            # The prompt has to be answered first; not counted as a miss.
            return InputResult(
                accepted=False,
                reason=RejectReason.WALL_OR_ENTITY_COLLISION,
                feedback=self._practice_only(ctx.feedback),
            )

        formation = ctx.formation
        marching = formation.drill_state.is_marching
        candidates = [c for c in (self._catalog.lookup(i) for i in self._catalog.lookup_by_key(key)) if c is not None]
        survivors = [c for c in candidates if c.is_halt_command != marching]

        correct_key = any(c.id == expected.id for c in candidates)
        valid_state = expected.is_halt_command != marching

        if not candidates:
            return self._reject(expected, RejectReason.WRONG_KEY, correct_key=False, valid_state=valid_state)
        if not survivors:
            subject = expected if correct_key else candidates[0]
            return self._reject(subject, RejectReason.WRONG_STATE, correct_key=correct_key, valid_state=False)

        chosen = next((c for c in survivors if c.id == expected.id), survivors[0])
        if chosen.id != expected.id:
            return self._reject(expected, RejectReason.OUT_OF_ORDER, correct_key=False, valid_state=valid_state)

        timing = TimingQuality.PERFECT
        if marching and not ctx.on_cadence:
            timing = TimingQuality.NORMAL

        outcome = formation.apply(chosen.id)
        if not outcome.accepted:
            reason = outcome.reason or RejectReason.INVALID_TRANSITION
            return self._reject(chosen, reason, correct_key=True, valid_state=False, timing=timing)

        ctx.scoring.record_command(chosen.id, True, timing is TimingQuality.PERFECT)
        self._append_event(chosen.id, True, True, timing, None)

        for checkpoint in self._cfg.checkpoints:
            if checkpoint.command_id == chosen.id and formation.is_guide_within(
                checkpoint.target, checkpoint.tolerance
            ):
                ctx.checkpoints_passed[checkpoint.command_id] = True

        ctx.expected_index += 1
        ctx.feedback = accepted_feedback(chosen, timing)

        if ctx.expected_index >= len(self._catalog):
            in_position = formation.is_guide_within(self._cfg.final_position, self._cfg.final_tolerance)
            ctx.scoring.record_final_position(in_position)
            ctx.final_in_position = in_position
            ctx.phase = SessionPhase.AWAITING_REPORT_OUT
            ctx.feedback = "Drill sequence complete! " + (
                "Good final positioning." if in_position else "Final position not accurate."
            )
            logger.info("drill sequence complete (final position %s)", "ok" if in_position else "off")

        return InputResult(
            accepted=True,
            command_id=chosen.id,
            timing_quality=timing,
            feedback=self._practice_only(ctx.feedback),
        )

    def update(self) -> None:
        ctx = self._ctx
        now = self._clock.now()
        now_ms = to_ms(now - ctx.origin_s)
        dt_ms = now_ms - ctx.last_update_ms
        ctx.last_update_ms = now_ms

        if ctx.phase in (SessionPhase.READY, SessionPhase.RESULTS):
            return
        if self._check_safety_cutoff(now):
            return
        if dt_ms <= 0:
            return

        ctx.accumulator_ms += min(dt_ms, self._MAX_UPDATE_MS)
        tick = self._cfg.tick_ms
        while ctx.accumulator_ms >= tick:
            ctx.accumulator_ms -= tick
            self._step(tick)

    def elapsed_s(self) -> float:
        ctx = self._ctx
        if ctx.reported_in_at_s is None:
            return 0.0
        end = ctx.finished_at_s if ctx.finished_at_s is not None else self._clock.now()
        return max(0.0, end - ctx.reported_in_at_s)

    def time_remaining_s(self) -> float | None:
        if self._ctx.phase is SessionPhase.READY:
            return None
        return max(0.0, self._cfg.time_limit_s - self.elapsed_s())

    def formation_snapshot(self) -> FormationSnapshot:
        return self._ctx.formation.snapshot()

    def score_breakdown(self) -> ScoreBreakdown:
        return self._ctx.scoring.get_score_breakdown()

    def running_score(self) -> int:
        return self._ctx.scoring.calculate_total_score()

    def events(self) -> list[CommandEvent]:
        return list(self._ctx.events)

    def checkpoints(self) -> tuple[CheckpointStatus, ...]:
        return tuple(
            CheckpointStatus(
                command_id=cp.command_id,
                name=cp.name,
                target=cp.target,
                tolerance=cp.tolerance,
                passed=self._ctx.checkpoints_passed.get(cp.command_id, False),
            )
            for cp in self._cfg.checkpoints
        )

    def command_list(self) -> tuple[CommandProgress, ...]:
        index = self._ctx.expected_index
        return tuple(
            CommandProgress(
                command=cmd,
                status="completed" if cmd.id < index else "active" if cmd.id == index else "pending",
            )
            for cmd in self._catalog
        )

    def snapshot(self) -> DrillSnapshot:
        ctx = self._ctx
        expected = self._catalog.lookup(ctx.expected_index) if ctx.phase is SessionPhase.DRILLING else None
        return DrillSnapshot(
            title="Drill Evaluation" if self._mode is DrillMode.EVALUATION else "Drill Practice",
            phase=ctx.phase,
            mode=self._mode,
            prompt=self.current_prompt(),
            input_hint="Enter=Report In/Out  Shift+Enter=Restart  Letters/Arrows=Commands",
            feedback=self._practice_only(ctx.feedback),
            expected_command=expected,
            completed_commands=ctx.expected_index,
            total_commands=len(self._catalog),
            elapsed_s=self.elapsed_s(),
            time_remaining_s=self.time_remaining_s(),
            running_score=self.running_score(),
            formation=ctx.formation.snapshot(),
            checkpoints=self.checkpoints(),
            on_cadence=ctx.on_cadence,
            collision_pending=ctx.collision_pending,
            misses=ctx.misses,
            event_count=len(ctx.events),
        )

    def current_prompt(self) -> str:
        ctx = self._ctx
        if ctx.phase is SessionPhase.READY:
            mode = "Practice" if self._mode is DrillMode.PRACTICE else "Evaluation"
            return f"{mode} Mode: Press Enter to Report In and start the drill."
        if ctx.phase is SessionPhase.AWAITING_REPORT_OUT:
            return "Drill sequence complete. Press Enter to Report Out."
        if ctx.phase is SessionPhase.RESULTS:
            lines = score_report_lines(self.score_breakdown())
            if ctx.forced_end:
                lines = ["Time expired: the drill was ended automatically.", *lines]
            return "\n".join([*lines, "", "Shift+Enter to restart."])

        expected = self._catalog.lookup(ctx.expected_index)
        if expected is None:
            return ""
        if self._mode is DrillMode.PRACTICE:
            return f"Next command: {expected.name} ({expected.display_key})"
        return f"Command {ctx.expected_index + 1} of {len(self._catalog)}"

    def _new_context(self) -> DrillContext:
        formation = FormationStateMachine(self._catalog, config=self._cfg.formation)
        scoring = ScoringEngine(
            clock=self._clock,
            catalog_size=len(self._catalog),
            crossover_ids=tuple(cp.command_id for cp in self._cfg.checkpoints),
            unscored_ids=frozenset(c.id for c in self._catalog if not c.scored),
            time_limit_s=self._cfg.time_limit_s,
        )
        return DrillContext(formation=formation, scoring=scoring, origin_s=self._clock.now())

    def _report_in(self) -> None:
        ctx = self._ctx
        ctx.scoring.record_report_in()
        ctx.reported_in_at_s = self._clock.now()
        ctx.phase = SessionPhase.DRILLING
        first = self._catalog.lookup(0)
        assert first is not None
        ctx.feedback = f"Reported In! Begin the drill sequence with '{first.name}' ({first.display_key} key)."
        logger.info("reported in (%s mode)", self._mode.value)

    def _report_out(self) -> None:
        ctx = self._ctx
        ctx.scoring.record_report_out()
        ctx.finished_at_s = self._clock.now()
        ctx.phase = SessionPhase.RESULTS
        ctx.feedback = None
        logger.info("reported out, total score %d", ctx.scoring.calculate_total_score())

    def _check_safety_cutoff(self, now: float) -> bool:
        ctx = self._ctx
        if ctx.reported_in_at_s is None or ctx.phase is SessionPhase.RESULTS:
            return False
        if now - ctx.reported_in_at_s < self._cfg.safety_cutoff_s:
            return False
        ctx.phase = SessionPhase.RESULTS
        ctx.finished_at_s = now
        ctx.forced_end = True
        ctx.feedback = None
        logger.warning("safety cutoff reached after %.0f s; ending drill", now - ctx.reported_in_at_s)
        return True

    def _step(self, tick_ms: int) -> None:
        ctx = self._ctx
        formation = ctx.formation

        if formation.drill_state.is_marching:
            period = self._cfg.cadence_period_ms
            window = self._cfg.cadence_window_ms
            ctx.cadence_ms = (ctx.cadence_ms + tick_ms) % period
            ctx.on_cadence = ctx.cadence_ms < window or ctx.cadence_ms > period - window
        else:
            ctx.on_cadence = False

        blocked = formation.update(tick_ms, guard=self._movement_guard)
        if blocked is None:
            ctx.blocked_facing = None
        elif not ctx.collision_pending and ctx.blocked_facing is not formation.facing:
            ctx.collision_pending = True
            ctx.feedback = collision_feedback(ctx.collision_detail or "an obstacle")
            logger.info("movement blocked by %s", ctx.collision_detail)

    def _movement_guard(self, members: tuple[FormationMember, ...]) -> RejectReason | None:
        detail = self._blocking_obstacle(members)
        if detail is None:
            return None
        self._ctx.collision_detail = detail
        return RejectReason.WALL_OR_ENTITY_COLLISION

    def _blocking_obstacle(self, members: tuple[FormationMember, ...]) -> str | None:
        cfg = self._cfg
        radius = cfg.formation.member_radius
        for member in members:
            pos = member.position
            if not (0.0 <= pos.x <= cfg.field_width and 0.0 <= pos.y <= cfg.field_height):
                return "the edge of the drill field"
            for entity in cfg.entities:
                if pos.distance_to(entity.position) < entity.radius + radius:
                    return f"the {entity.name}"
        return None

    def _append_event(
        self,
        command_id: int,
        correct_key: bool,
        valid_state: bool,
        timing: TimingQuality,
        reason: RejectReason | None,
    ) -> None:
        ctx = self._ctx
        ts = to_ms(self._clock.now() - ctx.origin_s)
        if ctx.events:
            ts = max(ts, ctx.events[-1].timestamp_ms)
        ctx.events.append(
            CommandEvent(
                command_id=command_id,
                timestamp_ms=ts,
                was_correct_key=correct_key,
                was_valid_state=valid_state,
                timing_quality=timing,
                reason=reason,
            )
        )

    def _reject(
        self,
        command: Command | None,
        reason: RejectReason,
        *,
        correct_key: bool = False,
        valid_state: bool = False,
        timing: TimingQuality = TimingQuality.NORMAL,
        record: bool = True,
    ) -> InputResult:
        ctx = self._ctx
        if record and command is not None:
            ctx.misses += 1
            self._append_event(command.id, correct_key, valid_state, timing, reason)
        ctx.feedback = rejection_feedback(command, reason, ctx.formation.drill_state)
        logger.debug("rejected input: %s", reason.value)
        return InputResult(
            accepted=False,
            reason=reason,
            command_id=None if command is None else command.id,
            feedback=self._practice_only(ctx.feedback),
        )

    def _practice_only(self, text: str | None) -> str | None:
        return text if self._mode is DrillMode.PRACTICE else None


def build_drill_session(
    *,
    clock: Clock,
    mode: DrillMode = DrillMode.PRACTICE,
    config: DrillConfig | None = None,
) -> DrillSession:
    return DrillSession(clock=clock, mode=mode, config=config)
