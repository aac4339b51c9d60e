"""Latency timestamp records carried in user-data SEI payloads.

Layout (all big endian): a 16 byte UUID followed by nine 6-byte fields.
Each field holds a 32-bit value split as ``HH HH 81 LL LL 81``; the 0x81
delimiters prevent long runs of zero bits.

Fields:
 1 frame counter
 2/3 time received from hardware (seconds / microseconds)
 4/5 time sent to compressor (seconds / microseconds)
 6/7 time exit from compressor (seconds / microseconds)
 8/9 time exit from udp transmitter (seconds / microseconds)
"""

from __future__ import annotations

import time

SEI_BIT_DELIMITER = 0x81

SEI_TIMESTAMP_UUID = bytes(
    [0x59, 0x96, 0xFF, 0x28, 0x17, 0xCA, 0x41, 0x96,
     0x8D, 0xE3, 0xE5, 0x3F, 0xE2, 0xF9, 0x92, 0xAE]
)

FIELD_COUNT = 9
FIELD_LENGTH = 6
PAYLOAD_LENGTH = len(SEI_TIMESTAMP_UUID) + FIELD_COUNT * FIELD_LENGTH


def _field_offset(nr: int) -> int:
    if not 1 <= nr <= FIELD_COUNT:
        raise ValueError(f"field number {nr} outside 1..{FIELD_COUNT}")
    return len(SEI_TIMESTAMP_UUID) + (nr - 1) * FIELD_LENGTH


def new_payload() -> bytearray:
    """Return a zeroed payload that starts with the timestamp UUID."""
    buf = bytearray(PAYLOAD_LENGTH)
    buf[: len(SEI_TIMESTAMP_UUID)] = SEI_TIMESTAMP_UUID
    return buf


def init_payload(buf: bytearray) -> None:
    """Zero ``buf`` and write the UUID at its start."""
    if len(buf) < PAYLOAD_LENGTH:
        raise ValueError(f"buffer of {len(buf)} bytes is shorter than {PAYLOAD_LENGTH}")
    buf[:] = bytes(len(buf))
    buf[: len(SEI_TIMESTAMP_UUID)] = SEI_TIMESTAMP_UUID


def field_set(buf: bytearray, nr: int, value: int) -> None:
    """Store the 32-bit ``value`` in field ``nr`` (1-based)."""
    offset = _field_offset(nr)
    if len(buf) - offset < FIELD_LENGTH:
        raise ValueError(f"buffer too short for field {nr}")
    value &= 0xFFFFFFFF
    buf[offset:offset + FIELD_LENGTH] = bytes(
        [
            (value >> 24) & 0xFF,
            (value >> 16) & 0xFF,
            SEI_BIT_DELIMITER,
            (value >> 8) & 0xFF,
            value & 0xFF,
            SEI_BIT_DELIMITER,
        ]
    )


def field_get(buf: bytes, nr: int) -> int:
    """Read the 32-bit value of field ``nr`` (1-based)."""
    offset = _field_offset(nr)
    if len(buf) - offset < FIELD_LENGTH:
        raise ValueError(f"buffer too short for field {nr}")
    b = buf[offset:offset + FIELD_LENGTH]
    return (b[0] << 24) | (b[1] << 16) | (b[3] << 8) | b[4]


def find_uuid(buf: bytes) -> int:
    """Return the index of the timestamp UUID in ``buf``, or -1."""
    if len(buf) < PAYLOAD_LENGTH:
        return -1
    return bytes(buf).find(SEI_TIMESTAMP_UUID)


def timeval_query(buf: bytes, nr: int) -> tuple[int, int]:
    """Return ``(seconds, microseconds)`` stored in fields ``nr`` and ``nr + 1``."""
    return field_get(buf, nr), field_get(buf, nr + 1)


def timeval_set(buf: bytearray, nr: int, t: tuple[int, int] | None = None) -> None:
    """Store ``(seconds, microseconds)`` (default: now) in fields ``nr`` and ``nr + 1``."""
    if t is None:
        seconds, micros = divmod(time.time_ns() // 1000, 1_000_000)
    else:
        seconds, micros = t
    field_set(buf, nr, seconds)
    field_set(buf, nr + 1, micros)


def codec_latency_ms(buf: bytes) -> int:
    """Milliseconds between compressor entry (fields 4/5) and exit (fields 6/7)."""
    begin_s, begin_us = timeval_query(buf, 4)
    end_s, end_us = timeval_query(buf, 6)
    diff_us = (end_s * 1_000_000 + end_us) - (begin_s * 1_000_000 + begin_us)
    millis = abs(diff_us) // 1000
    return millis if diff_us >= 0 else -millis


def hexdump(buf: bytes) -> str:
    """Return a one-line hex rendering of the payload, grouped by field."""
    parts = []
    uuid_len = len(SEI_TIMESTAMP_UUID)
    group = 0
    for i, byte in enumerate(buf[:PAYLOAD_LENGTH], start=1):
        parts.append(f"{byte:02x} ")
        if i == uuid_len:
            parts.append(" ")
        if i > uuid_len:
            if group == 2:
                parts.append(" ")
                group = 0
            else:
                group += 1
    return "".join(parts)