from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum, StrEnum


class SessionPhase(str, Enum):
    READY = "ready"
    DRILLING = "drilling"
    AWAITING_REPORT_OUT = "awaiting_report_out"
    RESULTS = "results"


class DrillMode(StrEnum):
    PRACTICE = "practice"
    EVALUATION = "evaluation"


class Facing(IntEnum):
    """Quarter-turn headings on the drill field (screen coordinates, y grows down)."""

    UP = 0
    RIGHT = 1
    DOWN = 2
    LEFT = 3

    def turned(self, quarter_turns: int) -> "Facing":
        return Facing((int(self) + int(quarter_turns)) % 4)

    @property
    def vector(self) -> tuple[int, int]:
        return _FACING_VECTORS[self]


_FACING_VECTORS: dict[Facing, tuple[int, int]] = {
    Facing.UP: (0, -1),
    Facing.RIGHT: (1, 0),
    Facing.DOWN: (0, 1),
    Facing.LEFT: (-1, 0),
}


class Shape(StrEnum):
    NONE = "none"
    LINE = "line"
    COLUMN = "column"


class DrillState(StrEnum):
    NONE = "none"
    FORMING = "forming"
    HALTED_AT_ATTENTION = "halted_at_attention"
    HALTED_AT_REST = "halted_at_rest"
    HALTED_IN_FORMATION = "halted_in_formation"
    MARCHING_FORWARD = "marching_forward"
    MARCHING_OTHER = "marching_other"
    FACING = "facing"
    COLUMN_MOVEMENT = "column_movement"
    FLANKING = "flanking"

    @property
    def is_marching(self) -> bool:
        return self in _MARCHING_STATES

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


_MARCHING_STATES = frozenset(
    {
        DrillState.MARCHING_FORWARD,
        DrillState.MARCHING_OTHER,
        DrillState.COLUMN_MOVEMENT,
        DrillState.FLANKING,
    }
)


class TimingQuality(StrEnum):
    PERFECT = "perfect"
    NORMAL = "normal"


class RejectReason(StrEnum):
    UNKNOWN_COMMAND = "unknown_command"
    INVALID_TRANSITION = "invalid_transition"
    OUT_OF_RANGE = "out_of_range"
    WALL_OR_ENTITY_COLLISION = "wall_or_entity_collision"
    WRONG_KEY = "wrong_key"
    WRONG_STATE = "wrong_state"
    OUT_OF_ORDER = "out_of_order"
    NOT_REPORTED_IN = "not_reported_in"
    SESSION_OVER = "session_over"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of a core operation: accepted, or rejected with a reason."""

    accepted: bool
    reason: RejectReason | None = None

    @classmethod
    def ok(cls) -> "Outcome":
        return cls(accepted=True)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "Outcome":
        return cls(accepted=False, reason=reason)


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float

    def offset(self, dx: float, dy: float) -> "Point":
        return Point(self.x + dx, self.y + dy)

    def distance_to(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def within(self, center: "Point", radius: float) -> bool:
        return self.distance_to(center) <= radius


def round_half_up(x: float) -> int:
    # Matches how evaluation sheets round half points.
    return int(math.floor(x + 0.5))


def format_clock(seconds: float) -> str:
    """Format a duration as M:SS (whole seconds, floored)."""

    total = max(0, int(math.floor(seconds)))
    minutes, rem = divmod(total, 60)
    return f"{minutes}:{rem:02d}"
