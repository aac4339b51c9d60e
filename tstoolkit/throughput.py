"""Per-second throughput measurement."""

from __future__ import annotations

import time
from typing import Callable


class Throughput:
    """Accumulates bytes (or values) per wall-clock second.

    The total seen during one second becomes the reported rate once the
    next second starts; rates older than two seconds read as zero.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._per_second = 0
        self._window = 0
        self._last_update = 0
        self._mbps = 0.0

    def _now(self) -> int:
        return int(self._clock())

    def _roll(self, now: int) -> bool:
        if now != self._last_update:
            self._per_second = self._window
            self._window = 0
            self._last_update = now
            return True
        return False

    def write_value(self, value: int) -> None:
        """Add an arbitrary value to the current second."""
        if self._roll(self._now()):
            self._mbps = self._per_second / 1e6
        self._window += value

    def write(self, buf: bytes) -> None:
        """Add the length of ``buf`` to the current second."""
        if self._roll(self._now()):
            self._mbps = self._per_second * 8 / 1e6
        self._window += len(buf)

    def reset(self) -> None:
        """Zero the reported megabit rate."""
        self._mbps = 0.0

    def _expire(self) -> None:
        if self._now() > self._last_update + 2:
            self._mbps = 0.0
            self._per_second = 0
            self._window = 0

    def mbps(self) -> float:
        """Megabits per second over the last complete second."""
        self._expire()
        return self._mbps

    def bps(self) -> int:
        """Bits per second over the last complete second."""
        self._expire()
        return (self._per_second * 8) & 0xFFFFFFFF

    def value(self) -> int:
        """Total written during the last complete second."""
        self._expire()
        return self._per_second & 0xFFFFFFFF