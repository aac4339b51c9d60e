import threading

import pytest

from tstoolkit.smoother_pcr import PcrSmoother
from tstoolkit.tsutil import TS_PACKET_SIZE, extract_pcr, pid

PCR_PID = 0x100
START_US = 1_700_000_000_000_000
LATENCY_MS = 100
TICKS_PER_PACKET = 27000


def make_packet(pidnr, cc, pcr=None, fill=0):
    pkt = bytearray([0xFF] * TS_PACKET_SIZE)
    pkt[0] = 0x47
    pkt[1] = (pidnr >> 8) & 0x1F
    pkt[2] = pidnr & 0xFF
    if pcr is None:
        pkt[3] = 0x10 | (cc & 0x0F)
        pkt[4] = fill & 0xFF
    else:
        pkt[3] = 0x30 | (cc & 0x0F)
        pkt[4] = 7
        pkt[5] = 0x10
        base, ext = divmod(pcr, 300)
        pkt[6] = (base >> 25) & 0xFF
        pkt[7] = (base >> 17) & 0xFF
        pkt[8] = (base >> 9) & 0xFF
        pkt[9] = (base >> 1) & 0xFF
        pkt[10] = ((base & 1) << 7) | 0x7E | ((ext >> 8) & 1)
        pkt[11] = ext & 0xFF
    return bytes(pkt)


def make_stream(pcr_values, spacing=10):
    packets = []
    for index, value in enumerate(pcr_values):
        packets.append(make_packet(PCR_PID, len(packets), pcr=value))
        for _ in range(spacing - 1):
            packets.append(make_packet(PCR_PID, len(packets), fill=len(packets)))
        del index
    return packets


class Collector:
    def __init__(self):
        self.chunks = []
        self.event = threading.Event()

    def __call__(self, data, positions):
        self.chunks.append((data, positions))
        self.event.set()


def make_smoother(collector=None):
    return PcrSmoother(
        collector,
        PCR_PID,
        LATENCY_MS,
        items_per_second=8,
        clock=lambda: START_US,
        autostart=False,
    )


def base_pcrs(count):
    return [1_000_000 + i * 10 * TICKS_PER_PACKET for i in range(count)]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"pcr_pid": 16, "latency_ms": 100},
        {"pcr_pid": 0x1FFF, "latency_ms": 100},
        {"pcr_pid": PCR_PID, "latency_ms": 49},
        {"pcr_pid": PCR_PID, "latency_ms": 100, "item_length_bytes": 188},
    ],
)
def test_invalid_configuration_rejected(kwargs):
    with pytest.raises(ValueError):
        PcrSmoother(None, autostart=False, **kwargs)


def test_single_pcr_queues_nothing():
    with make_smoother() as smoother:
        smoother.write(b"".join(make_stream(base_pcrs(1))))
        assert smoother.size() == 0
        assert smoother.statistics().busy_count == 0


def test_complete_intervals_are_queued():
    packets = make_stream(base_pcrs(3))
    with make_smoother() as smoother:
        smoother.write(b"".join(packets))
        # Two full PCR intervals; the packets after the third PCR wait.
        assert smoother.size() == 20 * TS_PACKET_SIZE
        stats = smoother.statistics()
        assert stats.busy_count == 4
        assert stats.total_user_bytes == 20 * TS_PACKET_SIZE


def test_delivery_order_and_content():
    packets = make_stream(base_pcrs(3))
    collector = Collector()
    with make_smoother(collector) as smoother:
        smoother.write(b"".join(packets))
        delivered = smoother.scheduler.process(START_US + 10**9)
        assert delivered == 4
        assert b"".join(data for data, _ in collector.chunks) == b"".join(packets[:20])
        assert all(len(data) <= 7 * TS_PACKET_SIZE for data, _ in collector.chunks)
        assert smoother.size() == 0


def test_pcr_positions_are_interpolated():
    pcrs = base_pcrs(3)
    collector = Collector()
    with make_smoother(collector) as smoother:
        smoother.write(b"".join(make_stream(pcrs)))
        smoother.scheduler.process(START_US + 10**9)
    positions = [p for _, chunk in collector.chunks for p in chunk]
    assert len(positions) == 20
    assert [p.pcr for p in positions] == [pcrs[0] + i * TICKS_PER_PACKET for i in range(20)]
    assert all(p.pid == PCR_PID for p in positions)
    assert positions[10].pcr == extract_pcr(make_stream(pcrs)[10])


def test_first_chunk_due_after_latency():
    collector = Collector()
    with make_smoother(collector) as smoother:
        smoother.write(b"".join(make_stream(base_pcrs(2))))
        latency_us = LATENCY_MS * 1000
        assert smoother.scheduler.process(START_US + latency_us - 1) == 0
        assert smoother.scheduler.process(START_US + latency_us) == 1
        assert len(collector.chunks) == 1


def test_incremental_writes_match_single_write():
    packets = make_stream(base_pcrs(4))
    one, many = Collector(), Collector()
    with make_smoother(one) as a, make_smoother(many) as b:
        a.write(b"".join(packets))
        for pkt in packets:
            b.write(pkt)
        a.scheduler.process(START_US + 10**9)
        b.scheduler.process(START_US + 10**9)
    assert b"".join(d for d, _ in one.chunks) == b"".join(d for d, _ in many.chunks)


def test_other_pid_pcrs_are_ignored():
    packets = make_stream(base_pcrs(2))
    foreign = make_packet(0x200, 0, pcr=5_000_000)
    with make_smoother() as smoother:
        smoother.write(foreign + b"".join(packets[:10]))
        assert smoother.size() == 0
        smoother.write(b"".join(packets[10:]))
        assert smoother.size() == 10 * TS_PACKET_SIZE


def test_pcr_jump_uses_previous_interval():
    first = 1_000_000
    pcrs = [first, first + 10 * TICKS_PER_PACKET, first + 10 * TICKS_PER_PACKET + 20 * 27_000_000]
    collector = Collector()
    with make_smoother(collector) as smoother:
        smoother.write(b"".join(make_stream(pcrs + [pcrs[2] + 10 * TICKS_PER_PACKET])))
        smoother.scheduler.process(START_US + 10**12)
    positions = [p for _, chunk in collector.chunks for p in chunk]
    second_interval = positions[10:20]
    steps = {b.pcr - a.pcr for a, b in zip(second_interval, second_interval[1:])}
    assert steps == {TICKS_PER_PACKET}


def test_reset_returns_items_to_pool():
    with make_smoother() as smoother:
        smoother.write(b"".join(make_stream(base_pcrs(3))))
        before = smoother.statistics()
        smoother.reset()
        after = smoother.statistics()
        assert smoother.size() == 0
        assert after.busy_count == 0
        assert after.free_count == before.free_count + before.busy_count


def test_write_after_close_raises():
    smoother = make_smoother()
    smoother.close()
    with pytest.raises(RuntimeError):
        smoother.write(make_packet(PCR_PID, 0))


def test_background_delivery():
    collector = Collector()
    with PcrSmoother(collector, PCR_PID, 50, items_per_second=4) as smoother:
        smoother.write(b"".join(make_stream(base_pcrs(2), spacing=3)))
        assert collector.event.wait(5.0)
    data, positions = collector.chunks[0]
    assert pid(data) == PCR_PID
    assert positions[0].offset == 0
    assert len(data) == 3 * TS_PACKET_SIZE


def test_blocking_writes_flag_reaches_scheduler():
    with make_smoother() as smoother:
        smoother.blocking_writes = True
        smoother.verbose = True
        assert smoother.scheduler.blocking_writes is True
        assert smoother.blocking_writes is True
        assert smoother.scheduler.verbose is True