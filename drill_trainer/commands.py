from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import StrEnum

from .drill_core import Point


class DrillOp(StrEnum):
    """Operation a command performs on the formation."""

    FALL_IN = "fall_in"
    OPEN_RANKS = "open_ranks"
    CLOSE_RANKS = "close_ranks"
    READY_FRONT = "ready_front"
    PRESENT_ARMS = "present_arms"
    ORDER_ARMS = "order_arms"
    PARADE_REST = "parade_rest"
    ATTENTION = "attention"
    LEFT_FACE = "left_face"
    RIGHT_FACE = "right_face"
    ABOUT_FACE = "about_face"
    FORWARD_MARCH = "forward_march"
    HALT = "halt"
    RIGHT_FLANK = "right_flank"
    LEFT_FLANK = "left_flank"
    COLUMN_RIGHT = "column_right"
    COLUMN_LEFT = "column_left"
    TO_THE_REAR = "to_the_rear"
    EYES_RIGHT = "eyes_right"
    CHANGE_STEP = "change_step"
    RIGHT_STEP = "right_step"


@dataclass(frozen=True, slots=True)
class Command:
    id: int
    name: str
    trigger_key: str
    is_halt_command: bool
    op: DrillOp
    description: str = ""
    initiates_movement: bool = False
    stops_movement: bool = False
    scored: bool = True

    @property
    def display_key(self) -> str:
        return KEY_LABELS.get(self.trigger_key, self.trigger_key.upper())


@dataclass(frozen=True, slots=True)
class Checkpoint:
    command_id: int
    name: str
    target: Point
    tolerance: float = 1.0


KEY_LABELS: dict[str, str] = {
    "ArrowUp": "Up",
    "ArrowDown": "Down",
    "ArrowLeft": "Left",
    "ArrowRight": "Right",
    "Enter": "Enter",
}


def normalize_key(key: str) -> str:
    """Single characters are case-insensitive; named keys are kept as-is."""

    key = str(key)
    return key.lower() if len(key) == 1 else key


class CommandCatalog:
    """Immutable registry of drill commands in canonical order.

    Command ids must be unique and contiguous from 0; the id order is the
    sequence the session expects the commands in.
    """

    def __init__(self, commands: Iterable[Command]) -> None:
        ordered = tuple(sorted(commands, key=lambda c: c.id))
        if not ordered:
            raise ValueError("catalog must contain at least one command")
        for expected_id, cmd in enumerate(ordered):
            if cmd.id != expected_id:
                raise ValueError(f"command ids must be contiguous from 0 (missing or duplicate id near {cmd.id})")

        by_key: dict[str, list[int]] = {}
        for cmd in ordered:
            by_key.setdefault(normalize_key(cmd.trigger_key), []).append(cmd.id)

        self._commands = ordered
        self._by_key = {k: tuple(v) for k, v in by_key.items()}

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    @property
    def commands(self) -> tuple[Command, ...]:
        return self._commands

    @property
    def scored_count(self) -> int:
        return sum(1 for c in self._commands if c.scored)

    def lookup(self, command_id: int) -> Command | None:
        if not isinstance(command_id, int) or isinstance(command_id, bool):
            return None
        if 0 <= command_id < len(self._commands):
            return self._commands[command_id]
        return None

    def lookup_by_key(self, key: str) -> tuple[int, ...]:
        return self._by_key.get(normalize_key(key), ())


DEFAULT_COMMANDS: tuple[Command, ...] = (
    Command(0, "Fall In", "f", True, DrillOp.FALL_IN, "Form line formation"),
    Command(1, "Open Ranks, March", "o", True, DrillOp.OPEN_RANKS, "Spread ranks to 64-inch spacing"),
    Command(2, "Ready, Front", "r", True, DrillOp.READY_FRONT, "Return to front position"),
    Command(3, "Close Ranks, March", "c", True, DrillOp.CLOSE_RANKS, "Return ranks to 40-inch spacing"),
    Command(4, "Present Arms", "p", True, DrillOp.PRESENT_ARMS, "Present arms salute"),
    Command(5, "Order Arms", "a", True, DrillOp.ORDER_ARMS, "Return to order arms"),
    Command(6, "Parade Rest", "d", True, DrillOp.PARADE_REST, "Move to parade rest position"),
    Command(7, "Attention", "t", True, DrillOp.ATTENTION, "Return to attention"),
    Command(8, "Left Face", "l", True, DrillOp.LEFT_FACE, "Turn 90 degrees left"),
    Command(9, "About Face", "b", True, DrillOp.ABOUT_FACE, "Turn 180 degrees in place"),
    Command(
        10, "Forward, March", "ArrowUp", True, DrillOp.FORWARD_MARCH, "Begin marching forward", initiates_movement=True
    ),
    Command(11, "Right Flank, March", "ArrowRight", False, DrillOp.RIGHT_FLANK, "Pivot 90 degrees right while moving"),
    Command(12, "Left Flank, March", "ArrowLeft", False, DrillOp.LEFT_FLANK, "Pivot 90 degrees left while moving"),
    Command(13, "Column Right, March", "j", False, DrillOp.COLUMN_RIGHT, "Execute column right movement"),
    Command(14, "Forward, March", "ArrowUp", False, DrillOp.FORWARD_MARCH, "Continue marching forward"),
    Command(15, "To the Rear, March", "k", False, DrillOp.TO_THE_REAR, "Turn 180 degrees while moving"),
    Command(16, "To the Rear, March", "k", False, DrillOp.TO_THE_REAR, "Turn 180 degrees while moving"),
    Command(17, "Column Right, March", "j", False, DrillOp.COLUMN_RIGHT, "Execute column right movement"),
    Command(18, "Forward, March", "ArrowUp", False, DrillOp.FORWARD_MARCH, "Continue marching forward"),
    Command(19, "Eyes Right", "e", False, DrillOp.EYES_RIGHT, "Turn heads to the right"),
    Command(20, "Ready Front", "y", False, DrillOp.READY_FRONT, "Return heads to front"),
    Command(21, "Column Right, March", "j", False, DrillOp.COLUMN_RIGHT, "Execute column right movement"),
    Command(22, "Forward, March", "ArrowUp", False, DrillOp.FORWARD_MARCH, "Continue marching forward"),
    Command(23, "Change Step, March", "u", False, DrillOp.CHANGE_STEP, "Change marching step"),
    Command(24, "Column Right, March", "j", False, DrillOp.COLUMN_RIGHT, "Execute column right movement"),
    Command(25, "Forward, March", "ArrowUp", False, DrillOp.FORWARD_MARCH, "Continue marching forward"),
    Command(26, "Flight, Halt", "ArrowDown", False, DrillOp.HALT, "Stop marching", stops_movement=True),
    Command(27, "Left Face", "l", True, DrillOp.LEFT_FACE, "Turn 90 degrees left"),
    Command(
        28, "Right Step, March", "z", True, DrillOp.RIGHT_STEP, "Step right 12 inches per step", initiates_movement=True
    ),
    Command(29, "Flight, Halt", "ArrowDown", False, DrillOp.HALT, "Stop marching", stops_movement=True),
)

DEFAULT_CATALOG = CommandCatalog(DEFAULT_COMMANDS)

CHECKPOINTS: tuple[Checkpoint, ...] = (
    Checkpoint(command_id=14, name="First Crossover", target=Point(20.0, 20.0)),
    Checkpoint(command_id=26, name="Second Crossover", target=Point(40.0, 40.0)),
)

START_POSITION = Point(10.0, 10.0)
FINAL_POSITION = Point(40.0, 45.0)
