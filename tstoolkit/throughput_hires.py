"""Timestamped per-channel samples with windowed sums and statistics.

Timestamps are integer microseconds since the epoch.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import NamedTuple

_ONE_SECOND_US = 1_000_000


def _now_us() -> int:
    return time.time_ns() // 1000


@dataclass
class _Sample:
    timestamp: int
    channel: int
    value: int


class MinMaxAvg(NamedTuple):
    minimum: int
    maximum: int
    average: int


class ThroughputHires:
    """Stores samples newest first; old ones are removed with :meth:`expire`."""

    def __init__(self) -> None:
        self._samples: deque[_Sample] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def write(self, channel: int, value: int, ts: int | None = None) -> None:
        """Record ``value`` on ``channel`` at ``ts`` (default: now)."""
        stamp = _now_us() if ts is None else ts
        self._samples.appendleft(_Sample(stamp, channel, value))

    def expire(self, ts: int | None = None) -> int:
        """Drop samples older than ``ts`` (default: one second ago); return how many."""
        if not self._samples:
            return 0
        limit = _now_us() - _ONE_SECOND_US if ts is None else ts
        kept = deque(s for s in self._samples if s.timestamp >= limit)
        expired = len(self._samples) - len(kept)
        self._samples = kept
        return expired

    def _window(self, channel: int, start: int | None, end: int | None):
        begin = _now_us() - _ONE_SECOND_US if start is None else start
        finish = _now_us() if end is None else end
        for sample in self._samples:
            if sample.channel == channel and begin <= sample.timestamp <= finish:
                yield sample.value
            if sample.timestamp < begin:
                break

    def sum_total(self, channel: int, start: int | None = None, end: int | None = None) -> int:
        """Sum of ``channel`` values between ``start`` (default one second ago) and ``end`` (default now)."""
        return sum(self._window(channel, start, end))

    def min_max_avg(self, channel: int, start: int | None = None, end: int | None = None) -> MinMaxAvg:
        """Minimum, maximum and truncated mean of ``channel`` values in the window.

        With no samples the result is ``(1 << 62, -1, -1)``.
        """
        vmin, vmax, total, count = 1 << 62, -1, 0, 0
        for value in self._window(channel, start, end):
            count += 1
            vmax = max(vmax, value)
            vmin = min(vmin, value)
            total += value
        if not count:
            return MinMaxAvg(vmin, vmax, -1)
        avg = abs(total) // count
        return MinMaxAvg(vmin, vmax, avg if total >= 0 else -avg)