from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .commands import DEFAULT_CATALOG, START_POSITION, CommandCatalog, DrillOp
from .drill_core import DrillState, Facing, Outcome, Point, RejectReason, Shape

logger = logging.getLogger(__name__)

# One drill-field grid unit is two feet.
INCHES_PER_UNIT = 24.0


@dataclass(frozen=True, slots=True)
class FormationConfig:
    start_position: Point = START_POSITION
    start_facing: Facing = Facing.UP

    # 4 ranks x 3 files = 12 cadets.
    ranks: int = 4
    files: int = 3

    close_rank_spacing_in: float = 40.0
    open_rank_spacing_in: float = 64.0
    file_spacing_in: float = 40.0

    speed_units_per_s: float = 2.0
    step_ms: int = 500
    right_step_in: float = 12.0
    right_step_count: int = 5

    form_settle_ms: int = 500
    facing_settle_ms: int = 500
    flank_settle_ms: int = 500
    column_settle_ms: int = 1000

    member_radius: float = 0.25


@dataclass(frozen=True, slots=True)
class FormationMember:
    rank_index: int
    file_index: int
    position: Point
    facing: Facing
    is_guide: bool = False


@dataclass(frozen=True, slots=True)
class FormationSnapshot:
    """Read-only view of the flight for renderers and the session."""

    shape: Shape
    facing: Facing
    drill_state: DrillState
    is_moving: bool
    rank_spacing: float
    file_spacing: float
    position: Point
    members: tuple[FormationMember, ...]
    pending_state: DrillState | None
    right_step_active: bool
    eyes_right: bool

    @property
    def formed(self) -> bool:
        return self.shape is not Shape.NONE

    def guide(self) -> FormationMember | None:
        for member in self.members:
            if member.is_guide:
                return member
        return None


@dataclass(frozen=True, slots=True)
class Transition:
    """Legal move for one command: allowed sources, target, optional settle target.

    ``to_state=None`` keeps the current state. When ``then_state`` is set the
    machine sits in ``to_state`` for ``settle_ms`` and then resolves to it.
    """

    from_states: frozenset[DrillState]
    to_state: DrillState | None
    then_state: DrillState | None = None
    settle_ms: int = 0


@dataclass(slots=True)
class _PendingTransition:
    target: DrillState
    ready_at_ms: float


@dataclass(slots=True)
class _RightStep:
    original_facing: Facing
    steps_taken: int = 0
    step_elapsed_ms: float = 0.0


MemberGuard = Callable[[tuple[FormationMember, ...]], RejectReason | None]

HALTED_STATES = frozenset({DrillState.HALTED_AT_ATTENTION, DrillState.HALTED_IN_FORMATION})
MARCHING_STATES = frozenset({DrillState.MARCHING_FORWARD, DrillState.MARCHING_OTHER})


def build_transition_table(cfg: FormationConfig) -> dict[DrillOp, Transition]:
    facing = Transition(HALTED_STATES, DrillState.FACING, DrillState.HALTED_AT_ATTENTION, cfg.facing_settle_ms)
    flank = Transition(MARCHING_STATES, DrillState.FLANKING, DrillState.MARCHING_FORWARD, cfg.flank_settle_ms)
    column = Transition(
        MARCHING_STATES, DrillState.COLUMN_MOVEMENT, DrillState.MARCHING_FORWARD, cfg.column_settle_ms
    )
    in_formation = Transition(HALTED_STATES, DrillState.HALTED_IN_FORMATION)
    manual_of_arms = Transition(HALTED_STATES, DrillState.HALTED_AT_ATTENTION)

    return {
        DrillOp.FALL_IN: Transition(
            frozenset({DrillState.NONE}),
            DrillState.FORMING,
            DrillState.HALTED_IN_FORMATION,
            cfg.form_settle_ms,
        ),
        DrillOp.OPEN_RANKS: in_formation,
        DrillOp.CLOSE_RANKS: in_formation,
        DrillOp.READY_FRONT: Transition(HALTED_STATES | MARCHING_STATES, None),
        DrillOp.PRESENT_ARMS: manual_of_arms,
        DrillOp.ORDER_ARMS: manual_of_arms,
        DrillOp.PARADE_REST: Transition(HALTED_STATES, DrillState.HALTED_AT_REST),
        DrillOp.ATTENTION: Transition(
            HALTED_STATES | {DrillState.HALTED_AT_REST},
            DrillState.HALTED_AT_ATTENTION,
        ),
        DrillOp.LEFT_FACE: facing,
        DrillOp.RIGHT_FACE: facing,
        DrillOp.ABOUT_FACE: facing,
        DrillOp.FORWARD_MARCH: Transition(HALTED_STATES | MARCHING_STATES, DrillState.MARCHING_FORWARD),
        DrillOp.HALT: Transition(MARCHING_STATES, DrillState.HALTED_AT_ATTENTION),
        DrillOp.RIGHT_FLANK: flank,
        DrillOp.LEFT_FLANK: flank,
        DrillOp.COLUMN_RIGHT: column,
        DrillOp.COLUMN_LEFT: column,
        DrillOp.TO_THE_REAR: Transition(
            MARCHING_STATES, DrillState.MARCHING_OTHER, DrillState.MARCHING_FORWARD, cfg.flank_settle_ms
        ),
        DrillOp.EYES_RIGHT: Transition(MARCHING_STATES, DrillState.MARCHING_OTHER),
        DrillOp.CHANGE_STEP: Transition(
            MARCHING_STATES, DrillState.MARCHING_OTHER, DrillState.MARCHING_FORWARD, cfg.step_ms
        ),
        DrillOp.RIGHT_STEP: Transition(HALTED_STATES, DrillState.MARCHING_OTHER),
    }


class FormationStateMachine:
    """Shape, facing, spacing and drill state of the flight.

    The maneuver methods (``fall_in``, ``left_face`` ...) are total geometric
    operations. ``apply`` is the guarded entry point used by sessions: it
    checks the command against the transition table and either performs the
    maneuver and moves the drill state, or rejects without touching anything.
    Timed effects (settling into a state, the right step) only advance in
    ``update``.
    """

    def __init__(
        self,
        catalog: CommandCatalog = DEFAULT_CATALOG,
        *,
        config: FormationConfig | None = None,
        initial_state: DrillState = DrillState.NONE,
    ) -> None:
        cfg = config or FormationConfig()

        if cfg.ranks < 1 or cfg.files < 1:
            raise ValueError("ranks and files must be >= 1")
        if cfg.close_rank_spacing_in <= 0.0 or cfg.open_rank_spacing_in <= 0.0 or cfg.file_spacing_in <= 0.0:
            raise ValueError("spacing must be > 0")
        if cfg.speed_units_per_s < 0.0:
            raise ValueError("speed_units_per_s must be >= 0")
        if cfg.step_ms <= 0:
            raise ValueError("step_ms must be > 0")
        if cfg.right_step_count < 1:
            raise ValueError("right_step_count must be >= 1")
        if min(cfg.form_settle_ms, cfg.facing_settle_ms, cfg.flank_settle_ms, cfg.column_settle_ms) < 0:
            raise ValueError("settle delays must be >= 0")

        self._catalog = catalog
        self._cfg = cfg
        self._transitions = build_transition_table(cfg)
        self._initial_state = DrillState(initial_state)
        self.reset()

    @property
    def config(self) -> FormationConfig:
        return self._cfg

    @property
    def drill_state(self) -> DrillState:
        return self._drill_state

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def facing(self) -> Facing:
        return self._facing

    @property
    def is_moving(self) -> bool:
        return self._is_moving

    def transition_for(self, op: DrillOp) -> Transition | None:
        return self._transitions.get(op)

    def reset(self) -> None:
        """Return to the initial state, aborting any settle or right step in flight."""

        cfg = self._cfg
        self._shape = Shape.NONE
        self._facing = cfg.start_facing
        self._drill_state = DrillState.NONE
        self._is_moving = False
        self._rank_spacing = float(cfg.close_rank_spacing_in)
        self._file_spacing = float(cfg.file_spacing_in)
        self._position = cfg.start_position
        self._members: tuple[FormationMember, ...] = ()
        self._elapsed_ms = 0.0
        self._pending: _PendingTransition | None = None
        self._right_step: _RightStep | None = None
        self._eyes_right = False

        if self._initial_state is not DrillState.NONE:
            self.fall_in()
            self._drill_state = self._initial_state
            self._is_moving = self._initial_state.is_marching

    # Guarded entry point.

    def apply(self, command_id: int) -> Outcome:
        command = self._catalog.lookup(command_id)
        if command is None:
            logger.debug("rejected unknown command id %r", command_id)
            return Outcome.rejected(RejectReason.UNKNOWN_COMMAND)

        transition = self._transitions.get(command.op)
        if transition is None or self._drill_state not in transition.from_states:
            logger.debug("rejected %s from %s", command.name, self._drill_state.value)
            return Outcome.rejected(RejectReason.INVALID_TRANSITION)

        _MANEUVERS[command.op](self)

        # Commands that keep the current state leave any settle in flight alone.
        if transition.to_state is not None:
            self._drill_state = transition.to_state
            self._pending = None
            if transition.then_state is not None:
                self._pending = _PendingTransition(
                    target=transition.then_state,
                    ready_at_ms=self._elapsed_ms + transition.settle_ms,
                )
                self._resolve_pending()
        return Outcome.ok()

    # Maneuvers.

    def fall_in(self) -> None:
        self._shape = Shape.LINE
        self._drill_state = DrillState.HALTED_IN_FORMATION
        self._is_moving = False
        self._right_step = None
        self._relayout()

    def open_ranks(self) -> None:
        self._rank_spacing = float(self._cfg.open_rank_spacing_in)
        self._relayout()

    def close_ranks(self) -> None:
        self._rank_spacing = float(self._cfg.close_rank_spacing_in)
        self._relayout()

    def left_face(self) -> None:
        self._turn(-1)
        self._toggle_shape()
        self._relayout()

    def right_face(self) -> None:
        self._turn(1)
        self._toggle_shape()
        self._relayout()

    def about_face(self) -> None:
        self._turn(2)
        self._relayout()

    def forward(self) -> None:
        if self._right_step is not None:
            self._facing = self._right_step.original_facing
            self._right_step = None
            self._relayout()
        self._is_moving = True

    def halt(self) -> None:
        if self._right_step is not None:
            self._facing = self._right_step.original_facing
            self._right_step = None
            self._relayout()
        self._is_moving = False
        self._pending = None
        self._drill_state = DrillState.HALTED_AT_ATTENTION

    def right_flank(self) -> None:
        self._turn(1)
        self._relayout()

    def left_flank(self) -> None:
        self._turn(-1)
        self._relayout()

    def column_right(self) -> None:
        self._turn(1)
        self._shape = Shape.COLUMN
        self._relayout()

    def column_left(self) -> None:
        self._turn(-1)
        self._shape = Shape.COLUMN
        self._relayout()

    def to_the_rear(self) -> None:
        self._turn(2)
        self._relayout()

    def right_step(self) -> None:
        original = self._facing if self._right_step is None else self._right_step.original_facing
        self._right_step = _RightStep(original_facing=original)
        self._facing = original.turned(1)
        self._is_moving = True
        self._relayout()

    def eyes_right(self) -> None:
        self._eyes_right = True

    def ready_front(self) -> None:
        self._eyes_right = False

    def hold(self) -> None:
        """Manual-of-arms and stance commands leave the geometry alone."""

    # Ticking.

    def update(self, delta_ms: float, *, guard: MemberGuard | None = None) -> RejectReason | None:
        """Advance timers and, while moving, the flight's position.

        If ``guard`` rejects the projected member positions the position is
        left unchanged and the guard's reason is returned.
        """

        dt = max(0.0, float(delta_ms))
        self._elapsed_ms += dt
        self._resolve_pending()

        if self._shape is Shape.NONE or not self._is_moving:
            return None

        dx, dy = self._facing.vector
        travel = self._speed_units_per_ms() * dt
        moved = self._position.offset(dx * travel, dy * travel)
        members = self._layout(moved)

        blocked = None if guard is None else guard(members)
        if blocked is None:
            self._position = moved
            self._members = members

        self._advance_right_step(dt)
        return blocked

    def snapshot(self) -> FormationSnapshot:
        return FormationSnapshot(
            shape=self._shape,
            facing=self._facing,
            drill_state=self._drill_state,
            is_moving=self._is_moving,
            rank_spacing=self._rank_spacing,
            file_spacing=self._file_spacing,
            position=self._position,
            members=self._members,
            pending_state=None if self._pending is None else self._pending.target,
            right_step_active=self._right_step is not None,
            eyes_right=self._eyes_right,
        )

    def guide_position(self) -> Point | None:
        for member in self._members:
            if member.is_guide:
                return member.position
        return None

    def is_guide_within(self, target: Point, tolerance: float) -> bool:
        pos = self.guide_position()
        return pos is not None and pos.within(target, tolerance)

    # Internals.

    def _turn(self, quarter_turns: int) -> None:
        self._facing = self._facing.turned(quarter_turns)

    def _toggle_shape(self) -> None:
        if self._shape is Shape.LINE:
            self._shape = Shape.COLUMN
        elif self._shape is Shape.COLUMN:
            self._shape = Shape.LINE

    def _speed_units_per_ms(self) -> float:
        if self._right_step is not None:
            return (self._cfg.right_step_in / INCHES_PER_UNIT) / float(self._cfg.step_ms)
        return self._cfg.speed_units_per_s / 1000.0

    def _resolve_pending(self) -> None:
        pending = self._pending
        if pending is None or self._elapsed_ms < pending.ready_at_ms:
            return
        self._drill_state = pending.target
        self._pending = None

    def _advance_right_step(self, dt: float) -> None:
        step = self._right_step
        if step is None:
            return
        step.step_elapsed_ms += dt
        while step.step_elapsed_ms >= self._cfg.step_ms:
            step.step_elapsed_ms -= self._cfg.step_ms
            step.steps_taken += 1
            if step.steps_taken >= self._cfg.right_step_count:
                self._facing = step.original_facing
                self._is_moving = False
                self._right_step = None
                self._relayout()
                return

    def _relayout(self) -> None:
        self._members = self._layout(self._position)

    def _layout(self, origin: Point) -> tuple[FormationMember, ...]:
        if self._shape is Shape.NONE:
            return ()

        # The flight always fills the box to the +x/+y of the origin. The
        # front rank sits on the edge the flight faces; files run left to
        # right as seen by the cadets.
        rank_step = self._rank_spacing / INCHES_PER_UNIT
        file_step = self._file_spacing / INCHES_PER_UNIT
        last_rank = self._cfg.ranks - 1
        last_file = self._cfg.files - 1
        guide_file = self._cfg.files // 2

        members: list[FormationMember] = []
        for rank in range(self._cfg.ranks):
            for file in range(self._cfg.files):
                if self._facing is Facing.UP:
                    dx, dy = file * file_step, rank * rank_step
                elif self._facing is Facing.RIGHT:
                    dx, dy = (last_rank - rank) * rank_step, file * file_step
                elif self._facing is Facing.DOWN:
                    dx, dy = (last_file - file) * file_step, (last_rank - rank) * rank_step
                else:
                    dx, dy = rank * rank_step, (last_file - file) * file_step
                members.append(
                    FormationMember(
                        rank_index=rank,
                        file_index=file,
                        position=origin.offset(dx, dy),
                        facing=self._facing,
                        is_guide=rank == 0 and file == guide_file,
                    )
                )
        return tuple(members)


_MANEUVERS: dict[DrillOp, Callable[[FormationStateMachine], None]] = {
    DrillOp.FALL_IN: FormationStateMachine.fall_in,
    DrillOp.OPEN_RANKS: FormationStateMachine.open_ranks,
    DrillOp.CLOSE_RANKS: FormationStateMachine.close_ranks,
    DrillOp.READY_FRONT: FormationStateMachine.ready_front,
    DrillOp.PRESENT_ARMS: FormationStateMachine.hold,
    DrillOp.ORDER_ARMS: FormationStateMachine.hold,
    DrillOp.PARADE_REST: FormationStateMachine.hold,
    DrillOp.ATTENTION: FormationStateMachine.hold,
    DrillOp.LEFT_FACE: FormationStateMachine.left_face,
    DrillOp.RIGHT_FACE: FormationStateMachine.right_face,
    DrillOp.ABOUT_FACE: FormationStateMachine.about_face,
    DrillOp.FORWARD_MARCH: FormationStateMachine.forward,
    DrillOp.HALT: FormationStateMachine.halt,
    DrillOp.RIGHT_FLANK: FormationStateMachine.right_flank,
    DrillOp.LEFT_FLANK: FormationStateMachine.left_flank,
    DrillOp.COLUMN_RIGHT: FormationStateMachine.column_right,
    DrillOp.COLUMN_LEFT: FormationStateMachine.column_left,
    DrillOp.TO_THE_REAR: FormationStateMachine.to_the_rear,
    DrillOp.EYES_RIGHT: FormationStateMachine.eyes_right,
    DrillOp.CHANGE_STEP: FormationStateMachine.hold,
    DrillOp.RIGHT_STEP: FormationStateMachine.right_step,
}
