"""16-bit ones'-complement checksum used by the inner packet."""

from __future__ import annotations

USHRT_MAX = 0xFFFF


def checksum16(data: bytes) -> int:
    """Compute the packet checksum over ``data``.

    Sums the data as little-endian 16-bit words (a trailing odd byte is
    padded with zero), folds the carries back into 16 bits and returns
    the ones' complement.
    """
    total = 0
    for i in range(0, len(data) - 1, 2):
        total += data[i] | (data[i + 1] << 8)
    if len(data) % 2:
        total += data[-1]

    while total > USHRT_MAX:
        total = (total & USHRT_MAX) + (total >> 16)

    return ~total & USHRT_MAX
