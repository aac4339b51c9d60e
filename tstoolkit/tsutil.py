"""MPEG transport stream packet field access and clock arithmetic."""

from __future__ import annotations

from dataclasses import dataclass

TS_PACKET_SIZE = 188
SYNC_BYTE = 0x47
PID_NULL = 0x1FFF

PCR_HZ = 27_000_000
PTS_HZ = 90_000
PTS_MAX = 1 << 33
SCR_MAX = PTS_MAX * 300


@dataclass
class PcrPosition:
    """A PCR found in a buffer: byte offset of its packet, value (27MHz) and pid."""

    offset: int
    pcr: int
    pid: int


def pid(pkt: bytes) -> int:
    """The 13-bit packet identifier."""
    return ((pkt[1] & 0x1F) << 8) | pkt[2]


def continuity_counter(pkt: bytes) -> int:
    """The 4-bit continuity counter."""
    return pkt[3] & 0x0F


def adaptation_field_control(pkt: bytes) -> int:
    """The 2-bit adaptation field control value."""
    return (pkt[3] >> 4) & 0x03


def payload_unit_start_indicator(pkt: bytes) -> bool:
    """True when the payload unit start indicator is set."""
    return bool(pkt[1] & 0x40)


def transport_scrambling_control(pkt: bytes) -> int:
    """The 2-bit transport scrambling control value."""
    return (pkt[3] >> 6) & 0x03


def tei_set(pkt: bytes) -> bool:
    """True when the transport error indicator is set."""
    return bool(pkt[1] & 0x80)


def sync_present(pkt: bytes) -> bool:
    """True when the packet starts with the 0x47 sync byte."""
    return len(pkt) > 0 and pkt[0] == SYNC_BYTE


def extract_pcr(pkt: bytes) -> int | None:
    """Return the packet's PCR in 27MHz ticks, or None when it carries none."""
    if len(pkt) < 12 or not adaptation_field_control(pkt) & 0x02:
        return None
    if pkt[4] == 0 or not pkt[5] & 0x10:
        return None
    base = (pkt[6] << 25) | (pkt[7] << 17) | (pkt[8] << 9) | (pkt[9] << 1) | (pkt[10] >> 7)
    ext = ((pkt[10] & 0x01) << 8) | pkt[11]
    return base * 300 + ext


def scr_diff(a: int, b: int) -> int:
    """Ticks from ``a`` forward to ``b`` on the wrapping 27MHz clock."""
    return (b - a) % SCR_MAX


def scr_add(a: int, b: int) -> int:
    """Add ``b`` ticks to ``a`` on the wrapping 27MHz clock."""
    return (a + b) % SCR_MAX


def pts_diff(a: int, b: int) -> int:
    """Ticks from ``a`` forward to ``b`` on the wrapping 90kHz clock."""
    return (b - a) % PTS_MAX


def is_cc_in_error(pkt: bytes, old_cc: int) -> bool:
    """Decide whether the packet's continuity counter breaks from ``old_cc``."""
    adap = adaptation_field_control(pkt)
    cc = continuity_counter(pkt)
    if old_cc == cc:
        # Without payload the counter must not advance; with payload a repeat is an error.
        return adap in (1, 3)
    return ((old_cc + 1) & 0x0F) != cc


def is_payload_pusi_in_error(pkt: bytes) -> bool:
    """True when PUSI is set on a packet that carries no payload."""
    return adaptation_field_control(pkt) in (0, 2) and payload_unit_start_indicator(pkt)


def query_pcrs(buf: bytes) -> list[PcrPosition]:
    """Every PCR carried by the aligned packets of ``buf``, in order."""
    found = []
    for offset in range(0, len(buf) - TS_PACKET_SIZE + 1, TS_PACKET_SIZE):
        pkt = buf[offset:offset + TS_PACKET_SIZE]
        if not sync_present(pkt):
            continue
        value = extract_pcr(pkt)
        if value is not None:
            found.append(PcrPosition(offset, value, pid(pkt)))
    return found