"""Reply payload decoders.

Every decoder takes the payload of an already validated reply frame and
returns a typed value. A payload of the wrong size or an enum byte the
firmware never sends raises ``ValueError``.
"""

from __future__ import annotations

import struct

from ..models.servo import (
    LedError,
    Limit,
    LoadMode,
    Mode,
    ModeRead,
    MoveTime,
    PowerLed,
)

_U8 = struct.Struct("<B")
_I8 = struct.Struct("<b")
_U16 = struct.Struct("<H")
_I16 = struct.Struct("<h")
_U16_PAIR = struct.Struct("<HH")
_I16_PAIR = struct.Struct("<hh")
_MODE = struct.Struct("<Bxh")  # mode, reserved, speed


def _unpack(layout: struct.Struct, payload: bytes) -> tuple:
    if len(payload) != layout.size:
        raise ValueError(
            f"Expected {layout.size}-byte payload, got {len(payload)}"
        )
    return layout.unpack(payload)


def parse_u8(payload: bytes) -> int:
    return _unpack(_U8, payload)[0]


def parse_i8(payload: bytes) -> int:
    return _unpack(_I8, payload)[0]


def parse_u16(payload: bytes) -> int:
    return _unpack(_U16, payload)[0]


def parse_i16(payload: bytes) -> int:
    return _unpack(_I16, payload)[0]


def parse_move_time(payload: bytes) -> MoveTime:
    """Parse a move-time reply: position and time, both unsigned."""
    position, time_ms = _unpack(_U16_PAIR, payload)
    return MoveTime(position=position, time_ms=time_ms)


def parse_angle_limit(payload: bytes) -> Limit:
    """Parse an angle limit reply (signed 16-bit pair)."""
    min_limit, max_limit = _unpack(_I16_PAIR, payload)
    return Limit(min_limit=min_limit, max_limit=max_limit)


def parse_vin_limit(payload: bytes) -> Limit:
    """Parse an input voltage limit reply (unsigned millivolts)."""
    min_limit, max_limit = _unpack(_U16_PAIR, payload)
    return Limit(min_limit=min_limit, max_limit=max_limit)


def parse_mode(payload: bytes) -> ModeRead:
    """Parse a servo/motor mode reply.

    The second byte is reserved and ignored.
    """
    mode, speed = _unpack(_MODE, payload)
    return ModeRead(mode=Mode(mode), speed=speed)


def parse_load_mode(payload: bytes) -> LoadMode:
    return LoadMode(parse_u8(payload))


def parse_power_led(payload: bytes) -> PowerLed:
    return PowerLed(parse_u8(payload))


def parse_led_error(payload: bytes) -> LedError:
    """Parse the LED warning mask into three independent flags."""
    return LedError.from_byte(parse_u8(payload))
