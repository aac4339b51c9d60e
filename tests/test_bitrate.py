from tstoolkit.bitrate import BitrateCalculator
from tstoolkit.tsutil import extract_pcr

PCR_PID = 0x100
FIRST_PCR = 27_000_000
SECOND_PCR = FIRST_PCR + 2_700_000  # 100 ms later


def packet(pid, cc=0, pcr=None):
    pkt = bytearray(188)
    pkt[0] = 0x47
    pkt[1] = (pid >> 8) & 0x1F
    pkt[2] = pid & 0xFF
    afc = 3 if pcr is not None else 1
    pkt[3] = (afc << 4) | (cc & 0x0F)
    if pcr is not None:
        base, ext = divmod(pcr, 300)
        pkt[4] = 7
        pkt[5] = 0x10
        pkt[6] = (base >> 25) & 0xFF
        pkt[7] = (base >> 17) & 0xFF
        pkt[8] = (base >> 9) & 0xFF
        pkt[9] = (base >> 1) & 0xFF
        pkt[10] = ((base & 1) << 7) | 0x7E | ((ext >> 8) & 1)
        pkt[11] = ext & 0xFF
    return bytes(pkt)


def interval():
    pkts = [packet(PCR_PID, 0, FIRST_PCR)]
    pkts += [packet(0x200, i) for i in range(9)]
    pkts.append(packet(PCR_PID, 1, SECOND_PCR))
    return b"".join(pkts)


def test_helper_packet_carries_pcr():
    assert extract_pcr(packet(PCR_PID, 0, SECOND_PCR)) == SECOND_PCR


def test_measures_bitrate_between_two_pcrs():
    calc = BitrateCalculator(PCR_PID)
    assert calc.write(interval(), 0) is True
    assert calc.bitrate() == 150400.0
    assert calc.ticks_per_packet() == 270000
    assert calc.stc() == SECOND_PCR


def test_no_measurement_without_two_pcrs():
    calc = BitrateCalculator(PCR_PID)
    assert calc.write(packet(PCR_PID, 0, FIRST_PCR), 0) is False
    assert calc.bitrate() == 0.0
    assert calc.ticks_per_packet() == 0


def test_other_pid_pcrs_do_not_start_measurement():
    calc = BitrateCalculator(PCR_PID)
    buf = packet(0x300, 0, FIRST_PCR) + packet(0x300, 1, SECOND_PCR)
    assert calc.write(buf, 0) is False
    assert calc.bitrate() == 0.0


def test_cc_error_change_restarts_measurement():
    calc = BitrateCalculator(PCR_PID)
    assert calc.write(interval(), 3) is False
    assert calc.bitrate() == 0.0
    # With the error count stable, the next interval measures.
    assert calc.write(interval(), 3) is True
    assert calc.bitrate() > 0


def test_stc_advances_per_packet_after_measurement():
    calc = BitrateCalculator(PCR_PID)
    calc.write(interval(), 0)
    filler = b"".join(packet(0x200, i) for i in range(7))
    calc.write(filler, 0)
    assert calc.stc() == SECOND_PCR + 7 * calc.ticks_per_packet()


def test_reset_keeps_results():
    calc = BitrateCalculator(PCR_PID)
    calc.write(interval(), 0)
    before = calc.bitrate()
    calc.reset()
    assert calc.bitrate() == before