"""Time-scheduled output queue for transport packet chunks.

Chunks are queued with the wall-clock time (integer microseconds since the
epoch) at which they are due. A background thread, or explicit calls to
:meth:`OutputScheduler.process`, hand every due chunk to the output callback
together with an interpolated PCR for each packet in it.
"""

from __future__ import annotations

import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from tstoolkit.tsutil import TS_PACKET_SIZE, PcrPosition, pid

DEFAULT_ITEM_LENGTH = 7 * TS_PACKET_SIZE
_GROWTH_ITEMS = 64
_IDLE_WAIT = 0.001
_BLOCKING_WAIT = 0.1

OutputCallback = Callable[[bytes, "list[PcrPosition]"], None]


def _now_us() -> int:
    return time.time_ns() // 1000


@dataclass
class QueueItem:
    """One queued chunk of packets and its schedule."""

    capacity: int
    seqno: int = 0
    data: bytes = b""
    pcr: int = -1
    ticks_per_packet: int = 0
    received_us: int = 0
    scheduled_us: int = 0

    def clear(self) -> None:
        self.data = b""
        self.pcr = -1
        self.received_us = 0
        self.scheduled_us = 0

    def pcr_positions(self) -> list[PcrPosition]:
        """A PCR for every packet in the chunk, advanced per packet."""
        return [
            PcrPosition(
                offset=offset,
                pcr=self.pcr + index * self.ticks_per_packet,
                pid=pid(self.data[offset:offset + TS_PACKET_SIZE]),
            )
            for index, offset in enumerate(
                range(0, len(self.data) - TS_PACKET_SIZE + 1, TS_PACKET_SIZE)
            )
        ]


@dataclass(frozen=True)
class SmootherStatistics:
    """Snapshot of queue sizes and memory use."""

    measured_latency_ms_hwm: int
    total_alloc_footprint_bytes: int
    total_item_growth: int
    total_items: int
    total_user_bytes: int
    busy_count: int
    free_count: int


class OutputScheduler:
    """A pool of reusable queue items and a time-ordered busy queue.

    ``last_ticks_per_packet`` is the per-packet PCR interval of the previous
    PCR interval; it spaces out chunks whose computed schedule would run
    backwards. ``pcr_head`` is the PCR of the oldest queued chunk seen by the
    last :meth:`process` and ``pcr_tail`` that of the newest appended chunk.
    """

    def __init__(
        self,
        callback: OutputCallback | None,
        items: int = 0,
        item_length_bytes: int = DEFAULT_ITEM_LENGTH,
        clock: Callable[[], int] = _now_us,
    ) -> None:
        if items < 0:
            raise ValueError("items must not be negative")
        if item_length_bytes <= 0:
            raise ValueError("item_length_bytes must be positive")
        self._callback = callback
        self._item_length = item_length_bytes
        self._clock = clock
        self._cond = threading.Condition()
        self._free: deque[QueueItem] = deque(QueueItem(item_length_bytes) for _ in range(items))
        self._busy: deque[QueueItem] = deque()

        self.blocking_writes = False
        self.verbose = False
        self.last_ticks_per_packet = 0
        self.pcr_head = -1
        self.pcr_tail = -1
        self.measured_latency_ms_hwm = 0

        self._total_user_bytes = 0
        self._total_items = items
        self._total_item_growth = 0
        self._footprint = items * item_length_bytes
        self._seqno = 0
        self._last_seqno = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._closed = False

    # -- queueing ---------------------------------------------------------

    def _statistics_locked(self) -> SmootherStatistics:
        return SmootherStatistics(
            measured_latency_ms_hwm=self.measured_latency_ms_hwm,
            total_alloc_footprint_bytes=self._footprint,
            total_item_growth=self._total_item_growth,
            total_items=self._total_items,
            total_user_bytes=self._total_user_bytes,
            busy_count=len(self._busy),
            free_count=len(self._free),
        )

    def _take_free_item(self) -> QueueItem:
        if self.blocking_writes:
            # Hold back writers that run faster than real time.
            while not self._free:
                if self._closed:
                    raise RuntimeError("scheduler is closed")
                if self.verbose:
                    s = self._statistics_locked()
                    print(
                        f"{time.ctime()}: Dev Statistics - max observed latency "
                        f"{s.measured_latency_ms_hwm:6d}(ms) alloc {s.total_alloc_footprint_bytes:8d}"
                        f"(B) used {s.total_user_bytes:8d}(B) items {s.total_items:5d} "
                        f"free {s.free_count:5d} busy {s.busy_count:5d} growth {s.total_item_growth:5d} "
                    )
                self._cond.wait(_BLOCKING_WAIT)
        elif not self._free:
            self._free.extend(QueueItem(self._item_length) for _ in range(_GROWTH_ITEMS))
            self._total_item_growth += _GROWTH_ITEMS
            self._total_items += _GROWTH_ITEMS
        return self._free.popleft()

    def append(self, data: bytes, pcr: int, ticks_per_packet: int, scheduled_us: int) -> int:
        """Queue ``data`` for output at ``scheduled_us``; return the time actually scheduled.

        A chunk is never scheduled before the chunk queued ahead of it.
        """
        if not data:
            raise ValueError("cannot queue an empty chunk")
        if self._closed:
            raise RuntimeError("scheduler is closed")

        with self._cond:
            item = self._take_free_item()

        item.received_us = self._clock()
        item.ticks_per_packet = ticks_per_packet
        if item.capacity < len(data):
            item.capacity = len(data)
            self._footprint += len(data)
        item.data = bytes(data)
        item.pcr = pcr
        self.pcr_tail = pcr
        item.scheduled_us = scheduled_us

        with self._cond:
            item.seqno = self._seqno
            self._seqno += 1
            self._total_user_bytes += len(item.data)
            if self._busy:
                last = self._busy[-1]
                if last.scheduled_us > item.scheduled_us:
                    packets = len(item.data) // TS_PACKET_SIZE
                    item.scheduled_us = last.scheduled_us + (self.last_ticks_per_packet * packets) // 27
            self._busy.append(item)
            self._cond.notify_all()
            return item.scheduled_us

    def process(self, now_us: int) -> int:
        """Send every chunk due at ``now_us`` to the callback; return how many."""
        due: list[QueueItem] = []
        with self._cond:
            if self._busy:
                self.pcr_head = self._busy[0].pcr
            while self._busy and self._busy[0].scheduled_us <= now_us:
                due.append(self._busy.popleft())

        if not due:
            return 0

        if self._callback is not None:
            for item in due:
                self._callback(item.data, item.pcr_positions())
                with self._cond:
                    self._total_user_bytes -= len(item.data)
                if self._last_seqno and self._last_seqno + 1 != item.seqno:
                    print(f"process() seq err {self._last_seqno} vs {item.seqno}")
                self._last_seqno = item.seqno

        with self._cond:
            for item in due:
                item.clear()
                self._free.append(item)
            self._cond.notify_all()
        return len(due)

    # -- queries ------------------------------------------------------------

    def statistics(self) -> SmootherStatistics:
        """Current queue and allocation figures."""
        with self._cond:
            return self._statistics_locked()

    def size(self) -> int:
        """Bytes queued and not yet delivered."""
        with self._cond:
            return max(self._total_user_bytes, 0)

    def reset(self) -> None:
        """Drop every queued chunk and forget the PCR head and tail."""
        with self._cond:
            self.pcr_head = -1
            self.pcr_tail = -1
            self._total_user_bytes = 0
            while self._busy:
                item = self._busy.popleft()
                item.clear()
                self._free.append(item)
            self._cond.notify_all()

    # -- background thread --------------------------------------------------

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._cond:
                if not self._busy:
                    self._cond.wait(_IDLE_WAIT)
                    if not self._busy:
                        continue
            if self.process(self._clock()) == 0:
                time.sleep(_IDLE_WAIT)

    def start(self) -> None:
        """Start the thread that delivers chunks when they fall due."""
        if self._closed:
            raise RuntimeError("scheduler is closed")
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="thread-brsmooth", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the thread and discard everything queued."""
        if self._closed:
            return
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._cond:
            self._closed = True
            self._free.clear()
            self._busy.clear()
            self._cond.notify_all()