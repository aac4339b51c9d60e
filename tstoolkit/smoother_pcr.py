"""Bitrate smoothing of transport streams paced by the PCRs of one pid.

Incoming packets are collected until two PCRs on the chosen pid are
present. The packets of that PCR interval are cut into chunks of at most
seven packets. Each chunk is scheduled for output at the wall-clock time
its PCR is due, plus a fixed latency. Output goes through an
:class:`~tstoolkit.output_scheduler.OutputScheduler`.
"""

from __future__ import annotations

from typing import Callable

from tstoolkit.output_scheduler import (
    DEFAULT_ITEM_LENGTH,
    OutputCallback,
    OutputScheduler,
    SmootherStatistics,
    _now_us,
)
from tstoolkit.tsutil import PCR_HZ, TS_PACKET_SIZE, query_pcrs, scr_add, scr_diff

_CHUNK_BYTES = 7 * TS_PACKET_SIZE
_MIN_LATENCY_MS = 50
_PCR_JUMP_TICKS = 15 * PCR_HZ
_TIMEBASE_RESET_SECONDS = 10
_US_PER_SECOND = 1_000_000


class PcrSmoother:
    """Re-times a transport stream so that packets leave at their PCR pace.

    ``callback(data, pcr_positions)`` receives each chunk when it falls due.
    ``clock`` returns integer microseconds since the epoch. With
    ``autostart`` the delivery thread starts at once; otherwise chunks are
    delivered by calling ``scheduler.process``.
    """

    def __init__(
        self,
        callback: OutputCallback | None,
        pcr_pid: int,
        latency_ms: int,
        items_per_second: int = 0,
        item_length_bytes: int = DEFAULT_ITEM_LENGTH,
        clock: Callable[[], int] = _now_us,
        autostart: bool = True,
    ) -> None:
        if pcr_pid <= 16 or pcr_pid > 0x1FFE:
            raise ValueError(f"pcr pid 0x{pcr_pid:04x} outside 0x0011..0x1ffe")
        if latency_ms < _MIN_LATENCY_MS:
            raise ValueError(f"latency {latency_ms}ms is below {_MIN_LATENCY_MS}ms")
        if item_length_bytes != _CHUNK_BYTES:
            raise ValueError(f"item length must be {_CHUNK_BYTES} bytes")

        self.pcr_pid = pcr_pid
        self.latency_us = latency_ms * 1000
        self._clock = clock
        self.scheduler = OutputScheduler(callback, items_per_second, item_length_bytes, clock)
        self._buffer = bytearray()

        self._walltime_first_pcr_us = 0
        self._pcr_first = -1
        self._last_ticks_per_packet = 0
        self._last_interval_ticks = 0
        self._did_pcr_reset = False
        self._last_pcr_reset_time = clock() // _US_PER_SECOND
        self.measured_latency_ms = 0
        self._closed = False

        if autostart:
            self.scheduler.start()

    @property
    def blocking_writes(self) -> bool:
        """When set, writers wait for free queue items instead of growing the pool."""
        return self.scheduler.blocking_writes

    @blocking_writes.setter
    def blocking_writes(self, value: bool) -> None:
        self.scheduler.blocking_writes = bool(value)

    @property
    def verbose(self) -> bool:
        """When set, blocked writers print queue statistics."""
        return self.scheduler.verbose

    @verbose.setter
    def verbose(self, value: bool) -> None:
        self.scheduler.verbose = bool(value)

    def _queue_chunk(self, data: bytes, pcr: int, ticks_per_packet: int) -> None:
        now = self._clock()
        if self._pcr_first == -1:
            self._pcr_first = pcr
            self._walltime_first_pcr_us = now
        ticks = scr_diff(self._pcr_first, pcr)
        scheduled = self._walltime_first_pcr_us + ticks // 27 + self.latency_us
        self.scheduler.append(data, pcr, ticks_per_packet, scheduled)

    @staticmethod
    def _report_jump(first, second) -> None:
        print("Detected significant pcr jump:")
        if first.pcr != second.pcr:
            print("  - forwards" if first.pcr < second.pcr else "  - backwards")
            print(f"  - b.pcr = {first.pcr:14d}, {first.offset:8d}, {first.pid:04x}")
            print(f"  - e.pcr = {second.pcr:14d}, {second.offset:8d}, {second.pid:04x}")

    def write(self, buf: bytes) -> None:
        """Add aligned transport packets; queue every complete PCR interval."""
        if self._closed:
            raise RuntimeError("smoother is closed")
        self._buffer += buf

        while True:
            pcrs = [p for p in query_pcrs(self._buffer) if p.pid == self.pcr_pid][:3]
            if len(pcrs) < 2:
                return
            first, second = pcrs[0], pcrs[1]

            packet_count = (second.offset - first.offset) // TS_PACKET_SIZE
            interval_ticks = scr_diff(first.pcr, second.pcr)
            ticks_per_packet = interval_ticks // packet_count

            if interval_ticks > _PCR_JUMP_TICKS:
                self._report_jump(first, second)
                self._did_pcr_reset = True
                print(
                    "Auto-correcting PCR schedule due to PCR timewrap. "
                    f"pcrIntervalPerPacketTicks {ticks_per_packet} to {self._last_ticks_per_packet}, "
                    f"pcrIntervalTicks {interval_ticks} to {self._last_interval_ticks}"
                )
                ticks_per_packet = self._last_ticks_per_packet
                interval_ticks = self._last_interval_ticks

            self.measured_latency_ms = (
                scr_diff(self.scheduler.pcr_head, self.scheduler.pcr_tail) // 27000
            )
            self.scheduler.measured_latency_ms_hwm = max(
                self.scheduler.measured_latency_ms_hwm, self.measured_latency_ms
            )

            pcr_value = first.pcr
            for start in range(first.offset, second.offset, _CHUNK_BYTES):
                chunk = bytes(self._buffer[start:min(start + _CHUNK_BYTES, second.offset)])
                self._queue_chunk(chunk, pcr_value, ticks_per_packet)
                pcr_value = scr_add(pcr_value, ticks_per_packet * (len(chunk) // TS_PACKET_SIZE))

            del self._buffer[:second.offset]

            # Periodically re-derive the timebase to avoid slow drift.
            now_s = self._clock() // _US_PER_SECOND
            if now_s >= self._last_pcr_reset_time + _TIMEBASE_RESET_SECONDS:
                self._last_pcr_reset_time = now_s
                self._did_pcr_reset = True

            self._last_ticks_per_packet = ticks_per_packet
            self._last_interval_ticks = interval_ticks
            self.scheduler.last_ticks_per_packet = ticks_per_packet

            if self._did_pcr_reset:
                self._pcr_first = -1
                self._did_pcr_reset = False

            if len(pcrs) <= 2:
                return

    def statistics(self) -> SmootherStatistics:
        """Queue and allocation figures."""
        return self.scheduler.statistics()

    def size(self) -> int:
        """Bytes queued for output and not yet delivered."""
        return self.scheduler.size()

    def reset(self) -> None:
        """Drop queued output and restart the timebase at the next PCR."""
        self._walltime_first_pcr_us = 0
        self._pcr_first = -1
        self.scheduler.reset()

    def close(self) -> None:
        """Stop delivery and discard everything queued."""
        if self._closed:
            return
        self._closed = True
        self.scheduler.close()
        self._buffer.clear()

    def __enter__(self) -> PcrSmoother:
        return self

    def __exit__(self, *args) -> None:
        self.close()