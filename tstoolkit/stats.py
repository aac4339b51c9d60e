"""Per-stream and per-pid transport stream statistics."""

from __future__ import annotations

import copy
import enum
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from tstoolkit.bitrate import BitrateCalculator
from tstoolkit.tsutil import (
    PID_NULL,
    SYNC_BYTE,
    TS_PACKET_SIZE,
    continuity_counter,
    extract_pcr,
    is_cc_in_error,
    is_payload_pusi_in_error,
    payload_unit_start_indicator,
    pid as packet_pid,
    scr_diff,
    tei_set,
    transport_scrambling_control,
)

MAX_PID = 0x2000
_PCR_40MS_TICKS = 27000 * 40
_PCR_WARMUP = 100
_IAT_WINDOW_SECONDS = 5
_FRAME_BYTES = 7 * TS_PACKET_SIZE


class NotificationEvent(enum.IntEnum):
    UNDEFINED = 0
    UPDATE_PID_PUSI_DELIVERY_TIME = 1
    UPDATE_PID_PCR_EXCEEDS_40MS = 2
    UPDATE_PID_PCR_WALLTIME = 3
    UPDATE_STREAM_CC_COUNT = 4
    UPDATE_STREAM_TEI_COUNT = 5
    UPDATE_STREAM_SCRAMBLED_COUNT = 6
    UPDATE_STREAM_MBPS = 7
    UPDATE_PCR_MBPS = 8
    UPDATE_STREAM_IAT_HWM = 9


def notification_event_name(event: int) -> str:
    """Symbolic name of a notification event, ``EVENT_UNKNOWN`` for others."""
    try:
        return f"EVENT_{NotificationEvent(event).name}"
    except ValueError:
        return "EVENT_UNKNOWN"


Callback = Callable[["NotificationEvent", "StreamStatistics", Optional["PidStatistics"]], None]


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // b
    return q if a >= 0 else -q


@dataclass
class _PcrClock:
    timebase_established: bool = False
    wall_established: bool = False
    ticks: int = 0
    base_ticks: int = 0
    base_wall_us: int = 0
    drift_us: int = 0
    drift_us_hwm: int = 0
    drift_us_lwm: int = 0


@dataclass
class PidStatistics:
    """Counters and timing for one pid."""

    pid_nr: int
    enabled: bool = False
    packet_count: int = 0
    cc_errors: int = 0
    tei_errors: int = 0
    scrambled_count: int = 0
    payload_pusi_errors: int = 0
    last_cc: int = 0
    pps: int = 0
    pps_window: int = 0
    pps_last_update: int = 0
    mbps: float = 0.0
    pusi_time_first: Optional[int] = None
    pusi_time_current: Optional[int] = None
    pusi_time_ms: int = 0
    has_pcr: bool = False
    seen_pcr: int = 0
    pcr_exceeds_40ms: int = 0
    prev_pcr_exceeds_40ms: int = 0
    last_pcr_walltime_drift_ms: int = 0
    pcr_clock: _PcrClock = field(default_factory=_PcrClock)


class StreamStatistics:
    """Aggregates packet, error, rate and timing statistics for a stream."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pids: dict[int, PidStatistics] = {}
        self._notifications: dict[NotificationEvent, Callback] = {}
        self._bitrate: BitrateCalculator | None = None

        self.packet_count = 0
        self.cc_errors = 0
        self.last_cc_error = 0
        self.tei_errors = 0
        self.scrambled_count = 0
        self.payload_pusi_errors = 0
        self.not_multiple_of_seven_errors = 0
        self.last_not_multiple_of_seven_error = 0
        self.pcr_exceeds_40ms = 0
        self.prev_pcr_exceeds_40ms = 0

        self._pps = 0
        self._pps_window = 0
        self._pps_last_update = 0
        self._mbps = 0.0

        self._bytes_per_second = 0
        self._bytes_window = 0
        self._bytes_last_update = 0
        self._a324_bps = 0
        self._a324_mbps = 0.0
        self.a324_sequence_number = 0

        self.iat_last_frame_us: int | None = None
        self.iat_cur_us = 0
        self.iat_lwm_us = 50_000_000
        self.iat_hwm_us = -1
        self._iat_accumulator = 0
        self._iat_window_time = 0
        self.iat_hwm_last_nseconds_us = 0

        self.reset()

    # -- helpers ---------------------------------------------------------

    def __getitem__(self, pidnr: int) -> PidStatistics:
        return self._pid(pidnr)

    def _pid(self, pidnr: int) -> PidStatistics:
        nr = pidnr & 0x1FFF
        entry = self._pids.get(nr)
        if entry is None:
            entry = self._pids[nr] = PidStatistics(nr)
        return entry

    def _now(self) -> tuple[int, int]:
        t = self._clock()
        return int(t), round(t * 1_000_000)

    def _notify(self, event: NotificationEvent, pid: PidStatistics | None = None) -> None:
        callback = self._notifications.get(event)
        if callback is not None:
            callback(event, self, pid)

    def _increment_cc_errors(self, ts_us: int | None = None) -> None:
        if ts_us is None:
            ts_us = self._now()[1]
        self.cc_errors += 1
        self.last_cc_error = ts_us // 1_000_000
        self._notify(NotificationEvent.UPDATE_STREAM_CC_COUNT)

    def _roll_bytes(self, now: int, length: int) -> None:
        if now != self._bytes_last_update:
            self._bytes_per_second = self._bytes_window
            self._bytes_window = 0
            self._a324_bps = self._bytes_per_second * 8
            self._a324_mbps = self._bytes_per_second * 8 / 1e6
            self._bytes_last_update = now
        self._bytes_window += length

    def _check_frame_length(self, ok: bool, now: int) -> None:
        if not ok:
            self.not_multiple_of_seven_errors += 1
            self.last_not_multiple_of_seven_error = now

    # -- callbacks -------------------------------------------------------

    def register_callback(self, event: int, callback: Callback) -> None:
        """Call ``callback(event, stream, pid)`` whenever ``event`` occurs."""
        if callback is None:
            raise ValueError("callback must not be None")
        self._notifications[NotificationEvent(event)] = callback

    def unregister_callback(self, event: int) -> None:
        """Remove the callback for ``event``."""
        self._notifications.pop(NotificationEvent(event), None)

    def unregister_callbacks(self) -> None:
        """Remove every callback."""
        self._notifications.clear()

    # -- updates ---------------------------------------------------------

    def bytestream_update(self, buf: bytes) -> None:
        """Account for an opaque byte frame (A/324 style)."""
        now, _ = self._now()
        self.packet_count += 1
        self._check_frame_length(len(buf) == _FRAME_BYTES, now)
        self._roll_bytes(now, len(buf))

    def ctp_update(self, buf: bytes) -> None:
        """Account for a CTP frame, checking its 16-bit sequence number."""
        now, ts_us = self._now()
        self._check_frame_length(len(buf) == _FRAME_BYTES, now)
        sequence_number = (buf[2] << 8) | buf[3]
        if ((self.a324_sequence_number + 1) & 0xFFFF) != sequence_number and self.packet_count:
            self._increment_cc_errors(ts_us)
        self.a324_sequence_number = sequence_number
        self.packet_count += 1
        self._roll_bytes(now, len(buf))

    def pid_update(self, pkts: bytes) -> None:
        """Account for one or more aligned transport packets."""
        now, ts = self._now()
        count = len(pkts) // TS_PACKET_SIZE
        packets = [pkts[o:o + TS_PACKET_SIZE] for o in range(0, count * TS_PACKET_SIZE, TS_PACKET_SIZE)]

        self._check_frame_length(count == 7, now)

        if self._bitrate is not None and self._bitrate.pcr_pid:
            if self._bitrate.write(pkts, self.cc_errors):
                self._notify(NotificationEvent.UPDATE_PCR_MBPS)

        for pkt in packets:
            if pkt[0] == SYNC_BYTE:
                self.packet_count += 1
            else:
                self._increment_cc_errors(ts)

        if now != self._pps_last_update:
            self._pps = self._pps_window
            self._pps_window = 0
            self._mbps = self._pps * TS_PACKET_SIZE * 8 / 1e6
            self._pps_last_update = now
            self._notify(NotificationEvent.UPDATE_STREAM_MBPS)
        self._pps_window += count

        if self.iat_last_frame_us is not None:
            self._update_iat(ts - self.iat_last_frame_us, now)

        for pkt in packets:
            self._update_pid(pkt, now, ts)

        self.iat_last_frame_us = ts

    def _update_iat(self, iat: int, now: int) -> None:
        self.iat_cur_us = iat
        if iat <= self.iat_lwm_us:
            self.iat_lwm_us = iat
        if iat >= self.iat_hwm_us:
            self.iat_hwm_us = iat
            self._notify(NotificationEvent.UPDATE_STREAM_IAT_HWM)
        if iat > self._iat_accumulator:
            self._iat_accumulator = iat
        if self._iat_window_time + _IAT_WINDOW_SECONDS <= now:
            self._iat_window_time = now
            self.iat_hwm_last_nseconds_us = self._iat_accumulator
            self._iat_accumulator = 0

    def _update_pid(self, pkt: bytes, now: int, ts: int) -> None:
        pidnr = packet_pid(pkt)
        entry = self._pid(pidnr)
        entry.enabled = True
        entry.packet_count += 1

        if is_payload_pusi_in_error(pkt):
            entry.payload_pusi_errors += 1
            self.payload_pusi_errors += 1

        if payload_unit_start_indicator(pkt):
            if entry.pusi_time_first is not None and entry.pusi_time_current is not None:
                entry.pusi_time_ms = (entry.pusi_time_current - entry.pusi_time_first) // 1000
                self._notify(NotificationEvent.UPDATE_PID_PUSI_DELIVERY_TIME, entry)
            entry.pusi_time_first = ts
        entry.pusi_time_current = ts

        if now != entry.pps_last_update:
            entry.pps = entry.pps_window
            entry.pps_window = 0
            entry.mbps = entry.pps * TS_PACKET_SIZE * 8 / 1e6
            entry.pps_last_update = now
        entry.pps_window += 1

        cc = continuity_counter(pkt)
        if is_cc_in_error(pkt, entry.last_cc) and entry.packet_count > 1 and pidnr != PID_NULL:
            entry.cc_errors += 1
            self._increment_cc_errors(ts)

        if transport_scrambling_control(pkt) != 0:
            entry.scrambled_count += 1
            self.scrambled_count += 1
            self._notify(NotificationEvent.UPDATE_STREAM_SCRAMBLED_COUNT, entry)

        entry.last_cc = cc

        if tei_set(pkt):
            entry.tei_errors += 1
            self.tei_errors += 1
            self._notify(NotificationEvent.UPDATE_STREAM_TEI_COUNT, entry)

        if entry.has_pcr:
            self._update_pcr(entry, pkt, ts)

    def _update_pcr(self, entry: PidStatistics, pkt: bytes, ts: int) -> None:
        pcr = extract_pcr(pkt)
        if pcr is None:
            return
        seen = entry.seen_pcr
        entry.seen_pcr += 1
        if seen < _PCR_WARMUP:
            return

        clk = entry.pcr_clock
        if not clk.timebase_established:
            entry.pcr_clock = clk = _PcrClock(timebase_established=True)
        if not clk.wall_established:
            clk.wall_established = True
            clk.ticks = clk.base_ticks = pcr
            clk.base_wall_us = ts

        delta = scr_diff(clk.ticks, pcr)
        entry.prev_pcr_exceeds_40ms = entry.pcr_exceeds_40ms
        self.prev_pcr_exceeds_40ms = self.pcr_exceeds_40ms
        exceeds = delta > _PCR_40MS_TICKS
        if exceeds:
            entry.pcr_exceeds_40ms += 1
            self.pcr_exceeds_40ms += 1

        clk.ticks = pcr
        pcr_elapsed_us = scr_diff(clk.base_ticks, pcr) // 27
        clk.drift_us = (ts - clk.base_wall_us) - pcr_elapsed_us
        clk.drift_us_hwm = max(clk.drift_us_hwm, clk.drift_us)
        clk.drift_us_lwm = min(clk.drift_us_lwm, clk.drift_us)
        entry.last_pcr_walltime_drift_ms = _trunc_div(clk.drift_us, 1000)

        self._notify(NotificationEvent.UPDATE_PID_PCR_WALLTIME, entry)
        if exceeds:
            self._notify(NotificationEvent.UPDATE_PID_PCR_EXCEEDS_40MS, entry)

    def reset(self) -> None:
        """Zero the stream counters and those of every pid seen so far."""
        self.packet_count = 0
        self.tei_errors = 0
        self.cc_errors = 0
        self.last_cc_error = 0
        self._mbps = 0.0
        self.not_multiple_of_seven_errors = 0
        self.last_not_multiple_of_seven_error = 0
        self.iat_lwm_us = 50_000_000
        self.iat_hwm_us = -1
        self.iat_cur_us = 0
        for entry in self._pids.values():
            if not entry.enabled:
                continue
            entry.packet_count = 0
            entry.cc_errors = 0
            entry.tei_errors = 0
            entry.mbps = 0.0
            entry.pcr_clock.drift_us_hwm = 0
            entry.pcr_clock.drift_us_lwm = 0
            entry.pcr_clock.wall_established = False
            entry.seen_pcr = 0

    def clone(self) -> StreamStatistics:
        """An independent snapshot of these statistics."""
        other = copy.copy(self)
        other._pids = {nr: copy.deepcopy(entry) for nr, entry in self._pids.items()}
        other._notifications = dict(self._notifications)
        other._bitrate = copy.deepcopy(self._bitrate)
        return other

    # -- queries ---------------------------------------------------------

    def _expire_stream(self) -> None:
        now, _ = self._now()
        if self._bytes_window and now > self._bytes_last_update + 2:
            self._a324_mbps = 0.0
            self._bytes_per_second = 0
            self._bytes_window = 0
        elif now > self._pps_last_update + 2:
            self._mbps = 0.0
            self._pps = 0
            self._pps_window = 0

    def _expire_pid(self, entry: PidStatistics) -> None:
        now, _ = self._now()
        if now > entry.pps_last_update + 2:
            entry.mbps = 0.0
            entry.pps = 0
            entry.pps_window = 0

    def stream_mbps(self) -> float:
        """Transport packet rate of the last second, in megabits."""
        self._expire_stream()
        return self._mbps

    def a324_mbps(self) -> float:
        """Byte-frame rate of the last second, in megabits."""
        self._expire_stream()
        return self._a324_mbps

    def stream_pps(self) -> int:
        """Transport packets during the last second."""
        self._expire_stream()
        return self._pps

    def stream_bps(self) -> int:
        """Transport packet rate of the last second, in bits."""
        self._expire_stream()
        return self._pps * TS_PACKET_SIZE * 8

    def a324_bps(self) -> int:
        """Byte-frame rate of the last second, in bits."""
        self._expire_stream()
        return self._a324_bps

    def pid_mbps(self, pidnr: int) -> float:
        entry = self._pid(pidnr)
        self._expire_pid(entry)
        return entry.mbps

    def pid_pps(self, pidnr: int) -> int:
        entry = self._pid(pidnr)
        self._expire_pid(entry)
        return entry.pps

    def pid_bps(self, pidnr: int) -> int:
        entry = self._pid(pidnr)
        self._expire_pid(entry)
        return entry.pps * TS_PACKET_SIZE * 8

    def padding_pct(self) -> int:
        """Share of the stream bitrate taken by null packets, in percent."""
        null_bps = self.pid_bps(PID_NULL)
        stream_bps = self.stream_bps()
        if stream_bps == 0:
            return 0
        return null_bps * 100 // stream_bps

    def pid_packet_count(self, pidnr: int) -> int:
        return self._pid(pidnr).packet_count

    def set_contains_pcr(self, pidnr: int) -> None:
        """Track PCR timing on ``pidnr`` and measure the bitrate from its PCRs."""
        self._pid(pidnr).has_pcr = True
        self._bitrate = BitrateCalculator(pidnr & 0x1FFF, self.cc_errors)

    def contains_pcr(self, pidnr: int) -> bool:
        return self._pid(pidnr).has_pcr

    def pid_pcr(self, pidnr: int) -> int:
        """Last PCR tracked on ``pidnr``, or 0 when it is not a PCR pid."""
        entry = self._pid(pidnr)
        return entry.pcr_clock.ticks if entry.has_pcr else 0

    def pid_last_update(self, pidnr: int) -> int:
        """Epoch second of the last rate update on ``pidnr``."""
        return self._pid(pidnr).pps_last_update

    def stream_did_violate_pcr_timing(self) -> bool:
        """Whether the last PCR seen exceeded a 40ms interval."""
        return self.prev_pcr_exceeds_40ms != self.pcr_exceeds_40ms

    def pid_did_violate_pcr_timing(self, pidnr: int) -> bool:
        entry = self._pid(pidnr)
        return entry.prev_pcr_exceeds_40ms != entry.pcr_exceeds_40ms

    def pid_pusi_payload_errors(self, pidnr: int) -> int:
        return self._pid(pidnr).payload_pusi_errors

    def bitrate(self) -> float:
        """Bitrate measured between PCRs, in bits per second."""
        return self._bitrate.bitrate() if self._bitrate else 0.0

    def ticks_per_packet(self) -> int:
        return self._bitrate.ticks_per_packet() if self._bitrate else 0

    def stc(self) -> int:
        return self._bitrate.stc() if self._bitrate else 0

    def format_table(self) -> str:
        """A table of packets, CC errors and rate for every pid seen."""
        lines = ["----------PID ---------Pkts -----CCErrors --Mbps"]
        for nr in sorted(self._pids):
            entry = self._pids[nr]
            if not entry.enabled:
                continue
            lines.append(f"0x{nr:04x} ({nr:4d}) {entry.packet_count:13d} {entry.cc_errors:13d} {entry.mbps:6.02f}")
        return "\n".join(lines) + "\n"