from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    The drill core never reads real time directly; sessions and the scoring
    engine are handed a clock so that scripted runs are reproducible.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def to_ms(seconds: float) -> int:
    return int(round(float(seconds) * 1000.0))
