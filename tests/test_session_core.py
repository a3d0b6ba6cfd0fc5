from __future__ import annotations

from dataclasses import dataclass

import pytest

from drill_trainer.commands import CHECKPOINTS, Checkpoint, Command, CommandCatalog, DrillOp
from drill_trainer.drill_core import DrillMode, DrillState, Point, RejectReason, SessionPhase, TimingQuality
from drill_trainer.results import attempt_result_from_session
from drill_trainer.session import DrillConfig, DrillSession, FieldEntity, build_drill_session


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


SHORT_CATALOG = CommandCatalog(
    [
        Command(0, "Fall In", "f", True, DrillOp.FALL_IN),
        Command(1, "Forward, March", "ArrowUp", True, DrillOp.FORWARD_MARCH, initiates_movement=True),
        Command(2, "Right Flank, March", "ArrowRight", False, DrillOp.RIGHT_FLANK),
        Command(3, "Flight, Halt", "ArrowDown", False, DrillOp.HALT, stops_movement=True),
    ]
)


def _session(
    clock: FakeClock,
    *,
    mode: DrillMode = DrillMode.PRACTICE,
    entities: tuple[FieldEntity, ...] = (),
) -> DrillSession:
    config = DrillConfig(checkpoints=(), entities=entities)
    return DrillSession(clock=clock, mode=mode, config=config, catalog=SHORT_CATALOG)


def _run(session: DrillSession, clock: FakeClock, ms: int, *, frame_ms: int = 50) -> None:
    remaining = ms
    while remaining > 0:
        step = min(frame_ms, remaining)
        clock.advance(step / 1000.0)
        session.update()
        remaining -= step


def _fall_in_and_march(session: DrillSession, clock: FakeClock) -> None:
    session.handle_key("Enter")
    assert session.handle_key("f").accepted
    _run(session, clock, 600)
    assert session.handle_key("ArrowUp").accepted


def test_commands_before_report_in_are_refused_without_a_miss() -> None:
    clock = FakeClock()
    session = _session(clock)
    assert session.phase is SessionPhase.READY
    assert "Report In" in session.current_prompt()

    result = session.handle_key("f")
    assert result.reason is RejectReason.NOT_REPORTED_IN
    assert session.snapshot().misses == 0
    assert session.events() == []


def test_report_in_starts_drill_with_guidance() -> None:
    clock = FakeClock()
    session = _session(clock)
    result = session.handle_key("Enter")
    assert result.accepted
    assert session.phase is SessionPhase.DRILLING
    assert result.feedback == "Reported In! Begin the drill sequence with 'Fall In' (F key)."
    assert session.snapshot().expected_command.id == 0


def test_wrong_key_counts_a_miss() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")

    result = session.handle_key("q")
    assert not result.accepted
    assert result.reason is RejectReason.WRONG_KEY
    assert result.feedback == 'Incorrect command key. Expected "Fall In" (F).'
    events = session.events()
    assert len(events) == 1
    assert events[0].command_id == 0
    assert events[0].was_correct_key is False
    assert session.snapshot().misses == 1


def test_marching_command_while_halted_is_wrong_state() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    session.handle_key("f")
    _run(session, clock, 600)

    result = session.handle_key("ArrowRight")
    assert result.reason is RejectReason.WRONG_STATE
    assert result.feedback == 'Invalid command state. The flight must be marching for "Right Flank, March".'
    assert session.snapshot().completed_commands == 1


def test_out_of_order_command_is_rejected() -> None:
    clock = FakeClock()
    session = build_drill_session(clock=clock)
    session.handle_key("Enter")

    result = session.handle_key("o")
    assert result.reason is RejectReason.OUT_OF_ORDER
    assert result.command_id == 0
    assert session.formation_snapshot().drill_state is DrillState.NONE


def test_accepted_halted_command_has_perfect_timing() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")

    result = session.handle_key("F")
    assert result.accepted
    assert result.timing_quality is TimingQuality.PERFECT
    assert result.feedback == 'Command "Fall In" executed successfully! Perfect timing!'
    assert session.snapshot().completed_commands == 1


def test_command_during_settle_is_invalid_transition() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    session.handle_key("f")

    result = session.handle_key("ArrowUp")
    assert result.reason is RejectReason.INVALID_TRANSITION
    assert "forming" in (result.feedback or "")

    _run(session, clock, 600)
    assert session.handle_key("ArrowUp").accepted


def test_cadence_decides_timing_of_marching_commands() -> None:
    clock = FakeClock()
    session = _session(clock)
    _fall_in_and_march(session, clock)

    # 250 ms into the step cycle: off the beat.
    _run(session, clock, 250)
    assert not session.snapshot().on_cadence
    flank = session.handle_key("ArrowRight")
    assert flank.accepted
    assert flank.timing_quality is TimingQuality.NORMAL
    assert flank.feedback == 'Command "Right Flank, March" executed successfully!'

    # Flank settles; 450 ms into the cycle is within the window.
    _run(session, clock, 700)
    assert session.formation_snapshot().drill_state is DrillState.MARCHING_FORWARD
    assert session.snapshot().on_cadence
    halt = session.handle_key("ArrowDown")
    assert halt.accepted
    assert halt.timing_quality is TimingQuality.PERFECT


def test_last_command_awaits_report_out_then_shows_results() -> None:
    clock = FakeClock()
    session = _session(clock)
    _fall_in_and_march(session, clock)
    _run(session, clock, 100)
    session.handle_key("ArrowRight")
    _run(session, clock, 600)
    assert session.handle_key("ArrowDown").accepted

    assert session.phase is SessionPhase.AWAITING_REPORT_OUT
    assert session.final_in_position is False
    assert session.snapshot().feedback == "Drill sequence complete! Final position not accurate."
    assert session.handle_key("ArrowDown").reason is RejectReason.SESSION_OVER

    clock.advance(1.0)
    session.handle_key("Enter")
    assert session.phase is SessionPhase.RESULTS
    elapsed = session.elapsed_s()
    clock.advance(30.0)
    assert session.elapsed_s() == elapsed
    assert session.current_prompt().startswith("Score: ")

    result = attempt_result_from_session(session)
    assert result.completed_commands == 4
    assert result.total_commands == 4
    assert result.misses == 0
    assert result.breakdown.part_i.report_in == 2
    assert result.breakdown.part_i.report_out == 2
    assert result.breakdown.part_i.final_positioning == 0


def test_final_position_within_tolerance_earns_points() -> None:
    clock = FakeClock()
    # Fall In puts the guide at (10 + 40/24, 10); it never moves here.
    catalog = CommandCatalog([Command(0, "Fall In", "f", True, DrillOp.FALL_IN)])
    config = DrillConfig(checkpoints=(), entities=(), final_position=Point(11.5, 10.0))
    session = DrillSession(clock=clock, config=config, catalog=catalog)
    session.handle_key("Enter")
    session.handle_key("f")
    assert session.final_in_position is True
    assert session.score_breakdown().part_i.final_positioning == 2


def test_movement_into_entity_opens_collision_prompt() -> None:
    clock = FakeClock()
    session = _session(clock, entities=(FieldEntity(name="Commander", position=Point(10.0, 8.5)),))
    _fall_in_and_march(session, clock)

    _run(session, clock, 1000)
    snap = session.snapshot()
    assert snap.collision_pending
    assert snap.feedback == (
        "Movement blocked: the flight would run into the Commander. Shift+Enter to restart, Enter to continue."
    )
    blocked_at = snap.formation.position
    _run(session, clock, 200)
    assert session.formation_snapshot().position == blocked_at

    assert session.handle_key("Enter").accepted
    assert not session.snapshot().collision_pending
    assert session.phase is SessionPhase.DRILLING


def test_continue_holds_flight_until_it_turns_away() -> None:
    clock = FakeClock()
    session = _session(clock, entities=(FieldEntity(name="Commander", position=Point(10.0, 8.5)),))
    _fall_in_and_march(session, clock)
    _run(session, clock, 1000)
    assert session.snapshot().collision_pending
    blocked_at = session.formation_snapshot().position

    session.handle_key("Enter")
    _run(session, clock, 100)
    snap = session.snapshot()
    assert not snap.collision_pending
    assert snap.formation.position == blocked_at

    assert session.handle_key("ArrowRight").accepted
    _run(session, clock, 600)
    snap = session.snapshot()
    assert not snap.collision_pending
    assert snap.formation.position.x > blocked_at.x + 0.5


def test_commands_wait_for_collision_prompt() -> None:
    clock = FakeClock()
    session = _session(clock, entities=(FieldEntity(name="Commander", position=Point(10.0, 8.5)),))
    _fall_in_and_march(session, clock)
    _run(session, clock, 1000)
    collision_text = session.snapshot().feedback

    result = session.handle_key("ArrowRight")
    assert not result.accepted
    assert result.reason is RejectReason.WALL_OR_ENTITY_COLLISION
    assert result.feedback == collision_text
    snap = session.snapshot()
    assert snap.feedback == collision_text
    assert snap.completed_commands == 2
    assert snap.misses == 0


def test_field_edge_blocks_movement() -> None:
    clock = FakeClock()
    session = _session(clock)
    _fall_in_and_march(session, clock)
    _run(session, clock, 6000)
    snap = session.snapshot()
    assert snap.collision_pending
    assert "edge of the drill field" in (snap.feedback or "")
    assert snap.formation.position.y >= 0.0


def test_shift_enter_restarts_with_fresh_context() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    session.handle_key("q")
    session.handle_key("f")
    assert session.snapshot().misses == 1

    assert session.handle_key("Enter", shift=True).accepted
    snap = session.snapshot()
    assert snap.phase is SessionPhase.READY
    assert snap.misses == 0
    assert snap.event_count == 0
    assert snap.formation.drill_state is DrillState.NONE
    assert session.running_score() == 1


def test_safety_cutoff_forces_results() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    clock.advance(299.0)
    session.update()
    assert session.phase is SessionPhase.DRILLING
    assert session.time_remaining_s() == 0.0

    clock.advance(1.0)
    session.update()
    assert session.phase is SessionPhase.RESULTS
    assert session.forced_end
    assert session.current_prompt().startswith("Time expired")
    assert session.handle_key("f").reason is RejectReason.SESSION_OVER


def test_large_frame_gap_is_capped() -> None:
    clock = FakeClock()
    session = _session(clock)
    _fall_in_and_march(session, clock)
    start_y = session.formation_snapshot().position.y

    clock.advance(2.0)
    session.update()
    # Only 500 ms of travel (1 grid unit) is simulated for one frame.
    assert session.formation_snapshot().position.y == pytest.approx(start_y - 1.0)


def test_evaluation_mode_hides_feedback_and_locks_exit() -> None:
    clock = FakeClock()
    session = _session(clock, mode=DrillMode.EVALUATION)
    assert session.can_exit()
    assert session.current_prompt().startswith("Evaluation Mode")

    session.handle_key("Enter")
    assert not session.can_exit()
    assert session.current_prompt() == "Command 1 of 4"

    result = session.handle_key("q")
    assert result.reason is RejectReason.WRONG_KEY
    assert result.feedback is None
    snap = session.snapshot()
    assert snap.feedback is None
    assert snap.misses == 1
    assert snap.title == "Drill Evaluation"


def test_enter_mid_drill_is_ignored() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    result = session.handle_key("Enter")
    assert result.reason is RejectReason.WRONG_KEY
    assert session.snapshot().misses == 0


def test_time_remaining_counts_down_from_report_in() -> None:
    clock = FakeClock()
    session = _session(clock)
    assert session.time_remaining_s() is None
    clock.advance(5.0)
    session.handle_key("Enter")
    clock.advance(10.0)
    assert session.elapsed_s() == pytest.approx(10.0)
    assert session.time_remaining_s() == pytest.approx(170.0)


def test_event_timestamps_never_decrease() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    for key in ("q", "f", "w", "ArrowUp"):
        clock.advance(0.1)
        session.handle_key(key)
    stamps = [e.timestamp_ms for e in session.events()]
    assert stamps == sorted(stamps)
    assert len(stamps) == 4


def test_command_list_tracks_progress() -> None:
    clock = FakeClock()
    session = _session(clock)
    session.handle_key("Enter")
    session.handle_key("f")
    statuses = [p.status for p in session.command_list()]
    assert statuses == ["completed", "active", "pending", "pending"]


def test_invalid_config_raises() -> None:
    clock = FakeClock()
    with pytest.raises(ValueError):
        DrillSession(clock=clock, config=DrillConfig(time_limit_s=200.0, safety_cutoff_s=100.0))
    with pytest.raises(ValueError):
        DrillSession(clock=clock, config=DrillConfig(cadence_window_ms=300))
    with pytest.raises(ValueError):
        DrillSession(
            clock=clock,
            config=DrillConfig(checkpoints=(*CHECKPOINTS, Checkpoint(99, "Nowhere", Point(0.0, 0.0)))),
        )
