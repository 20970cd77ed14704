"""Frame checksum used by the bus servo protocol.

The device firmware sums the covered bytes into a wider accumulator,
inverts it and keeps the low byte. There is no polynomial or seed.
"""

from __future__ import annotations


def checksum(data: bytes) -> int:
    """Return the one's-complement low byte of the sum of ``data``.

    >>> hex(checksum(bytes([0x01, 0x07, 0x01, 0xF4, 0x01, 0xE8, 0x03])))
    '0x16'
    """
    return ~sum(data) & 0xFF
