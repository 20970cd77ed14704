"""Frame builder, validator and parser for the bus servo serial protocol.

Frame layout::

    +----------+---------+--------+---------+------------------+----------+
    | Header   | Address | Length | Command |     Payload      | Checksum |
    | 2 bytes  | 1 byte  | 1 byte | 1 byte  |    0-4 bytes     |  1 byte  |
    +----------+---------+--------+---------+------------------+----------+

- Header: 0x55 0x55
- Address: servo id 1-253, or 254 for broadcast
- Length: 3 + payload size (command, payload and checksum, plus one)
- Payload: multi-byte fields are little-endian
- Checksum: low byte of the inverted sum of address through last payload byte

A complete frame is therefore ``length + 3`` bytes long.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..utils.checksum import checksum

HEADER = b"\x55\x55"
HEADER_SIZE = 4  # header(2) + address(1) + length(1)
LENGTH_OVERHEAD = 3
MAX_PAYLOAD_SIZE = 4
MIN_FRAME_SIZE = HEADER_SIZE + 2  # command + checksum


@dataclass(frozen=True)
class Frame:
    """A parsed protocol frame."""

    address: int
    command: int
    payload: bytes = b""

    @property
    def length(self) -> int:
        """Value of the length field for this frame."""
        return len(self.payload) + LENGTH_OVERHEAD

    def __repr__(self) -> str:
        return (
            f"Frame(address={self.address}, command=0x{self.command:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def build_frame(address: int, command: int, payload: bytes = b"") -> bytes:
    """Build a complete frame ready to be written to the bus.

    Args:
        address: Servo id (0-254).
        command: Single-byte command id.
        payload: Command-specific payload, at most 4 bytes.

    Returns:
        The encoded frame, ``len(payload) + 6`` bytes long.
    """
    if not 0 <= address <= 0xFE:
        raise ValueError(f"Servo address must be 0-254, got {address}")
    if not 0 <= command <= 0xFF:
        raise ValueError(f"Command id must be 0-255, got {command}")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload must be at most {MAX_PAYLOAD_SIZE} bytes, got {len(payload)}"
        )

    body = bytes([address, len(payload) + LENGTH_OVERHEAD, command]) + payload
    return HEADER + body + bytes([checksum(body)])


def frame_checksum(frame: bytes) -> int:
    """Compute the checksum a frame should carry.

    Covers the bytes from the address through the last payload byte, as
    delimited by the frame's own length field.
    """
    return checksum(frame[2 : frame[3] + 2])


def validate_frame(frame: bytes, command: int, payload_size: int) -> bool:
    """Check a received frame against the reply expected for a command.

    Args:
        frame: The raw bytes received from the bus.
        command: Command id the reply must echo.
        payload_size: Number of payload bytes the reply must carry.

    Returns:
        ``True`` only if the header, length field, byte count, command byte
        and checksum all match.
    """
    expected_length = payload_size + LENGTH_OVERHEAD

    if len(frame) < MIN_FRAME_SIZE:
        return False
    if frame[:2] != HEADER:
        return False
    if frame[3] != expected_length:
        return False
    if len(frame) != expected_length + 3:
        return False
    if frame[4] != command:
        return False
    return frame[-1] == frame_checksum(frame)


def parse_frame(data: bytes) -> Frame | None:
    """Parse raw bytes into a Frame.

    Returns:
        A ``Frame`` if the bytes hold exactly one well-formed frame,
        or ``None`` if the header, size or checksum is wrong.
    """
    if len(data) < MIN_FRAME_SIZE:
        return None

    if data[:2] != HEADER:
        return None

    length = data[3]
    if length < LENGTH_OVERHEAD or len(data) != length + 3:
        return None

    if data[-1] != frame_checksum(data):
        return None

    return Frame(address=data[2], command=data[4], payload=bytes(data[5:-1]))
