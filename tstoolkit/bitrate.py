"""Transport stream bitrate measured between two PCRs of one pid."""

from __future__ import annotations

from tstoolkit.tsutil import TS_PACKET_SIZE, extract_pcr, pid, scr_diff


class BitrateCalculator:
    """Counts packets between two consecutive PCRs and derives the bitrate.

    Once a measurement is made the calculator starts over, so the bitrate
    is refreshed on every PCR interval. Between PCRs the system time clock
    advances by ``ticks_per_packet`` for every packet written.
    """

    def __init__(self, pcr_pid: int, cc_errors: int = 0) -> None:
        self.pcr_pid = pcr_pid & 0x1FFF
        self._cc_errors_last_write = cc_errors
        self._bitrate = 0.0
        self._ticks_per_pcr = 0
        self._ticks_per_packet = 0
        self._stc = 0
        self.reset()

    def reset(self) -> None:
        """Restart the search for a PCR pair; the last results are kept."""
        self._pcr_first: int | None = None
        self._pcr_second: int | None = None
        self._packets_inbetween = 0
        self._running = True

    def write(self, pkts: bytes, cc_errors: int) -> bool:
        """Feed aligned packets; ``cc_errors`` is the stream's current CC error count.

        Returns True when a new measurement completed during this call.
        A change in ``cc_errors`` since the previous call restarts the measurement.
        """
        complete = False
        count = len(pkts) // TS_PACKET_SIZE
        self._stc += count * self._ticks_per_packet

        if not self._running:
            return False

        for offset in range(0, count * TS_PACKET_SIZE, TS_PACKET_SIZE):
            pkt = pkts[offset:offset + TS_PACKET_SIZE]

            if self._cc_errors_last_write != cc_errors:
                self.reset()
                self._cc_errors_last_write = cc_errors
                return False

            if self._pcr_first is not None and self._pcr_second is None:
                self._packets_inbetween += 1

            if self._pcr_first is None and pid(pkt) != self.pcr_pid:
                continue

            value = extract_pcr(pkt)
            if value is not None:
                if self._pcr_first is None:
                    self._pcr_first = value
                    self._packets_inbetween = 0
                else:
                    self._pcr_second = value
                    self._stc = value

            if self._pcr_first is not None and self._pcr_second is not None:
                ticks = scr_diff(self._pcr_first, self._pcr_second)
                time_ms = ticks / 27000.0
                if time_ms:
                    self._bitrate = (1000.0 / time_ms) * self._packets_inbetween * 188 * 8
                else:
                    self._bitrate = float("inf")
                self._ticks_per_pcr = ticks
                self._ticks_per_packet = ticks // self._packets_inbetween
                complete = True
                self.reset()

        return complete

    def bitrate(self) -> float:
        """Last measured bitrate in bits per second."""
        return self._bitrate

    def ticks_per_packet(self) -> int:
        """27MHz ticks one packet was worth in the last measurement."""
        return self._ticks_per_packet

    def stc(self) -> int:
        """System time clock: the last PCR, advanced per packet since."""
        return self._stc