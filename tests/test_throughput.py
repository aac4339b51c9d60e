import pytest

from tstoolkit.throughput import Throughput


class FakeClock:
    def __init__(self, t):
        self.t = t

    def __call__(self):
        return self.t


def make(t=100):
    clock = FakeClock(t)
    return Throughput(clock=clock), clock


def test_starts_at_zero():
    tp, _ = make()
    assert tp.value() == 0
    assert tp.bps() == 0
    assert tp.mbps() == 0


def test_rate_reported_after_second_rolls():
    tp, clock = make()
    tp.write(bytes(1000))
    assert tp.value() == 0
    clock.t += 1
    tp.write(b"")
    assert tp.value() == 1000
    assert tp.bps() == tp.value() * 8
    assert tp.mbps() == pytest.approx(tp.bps() / 1e6)


def test_writes_in_same_second_accumulate():
    tp, clock = make()
    tp.write(bytes(300))
    tp.write(bytes(200))
    clock.t += 1
    tp.write(b"")
    assert tp.value() == 300 + 200


def test_write_value_rate_is_not_bit_scaled():
    tp, clock = make()
    tp.write_value(5_000_000)
    clock.t += 1
    tp.write_value(0)
    assert tp.value() == 5_000_000
    assert tp.mbps() == pytest.approx(tp.value() / 1e6)


def test_stale_rate_expires():
    tp, clock = make()
    tp.write(bytes(1000))
    clock.t += 1
    tp.write(b"")
    clock.t += 3
    assert tp.value() == 0
    assert tp.mbps() == 0


def test_reset_clears_mbps():
    tp, clock = make()
    tp.write(bytes(1000))
    clock.t += 1
    tp.write(b"")
    assert tp.mbps() > 0
    tp.reset()
    assert tp.mbps() == 0