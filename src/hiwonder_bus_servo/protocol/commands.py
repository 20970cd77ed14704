"""Command ids and the per-command encode/decode table.

Each command is described once by an immutable ``CommandDescriptor``:
its request fields and wire layout, the clamping rules applied to those
fields, and for read commands the reply size and decoder. Frames are
always built fresh from a descriptor; nothing is cached between calls.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable

from ..models.servo import LedError, Mode
from .framing import build_frame
from .parser import (
    parse_angle_limit,
    parse_i8,
    parse_i16,
    parse_led_error,
    parse_load_mode,
    parse_mode,
    parse_move_time,
    parse_power_led,
    parse_u8,
    parse_u16,
    parse_vin_limit,
)

MIN_ADDRESS = 1
MAX_ADDRESS = 253
BROADCAST_ADDRESS = 254


class Command(IntEnum):
    """Command identifiers."""

    MOVE_TIME_WRITE = 1
    MOVE_TIME_READ = 2
    MOVE_TIME_WAIT_WRITE = 7
    MOVE_TIME_WAIT_READ = 8
    MOVE_START = 11
    MOVE_STOP = 12
    ID_WRITE = 13
    ID_READ = 14
    ANGLE_OFFSET_ADJUST = 17
    ANGLE_OFFSET_WRITE = 18
    ANGLE_OFFSET_READ = 19
    ANGLE_LIMIT_WRITE = 20
    ANGLE_LIMIT_READ = 21
    VIN_LIMIT_WRITE = 22
    VIN_LIMIT_READ = 23
    TEMP_MAX_LIMIT_WRITE = 24
    TEMP_MAX_LIMIT_READ = 25
    TEMP_READ = 26
    VIN_READ = 27
    POS_READ = 28
    SERVO_OR_MOTOR_MODE_WRITE = 29
    SERVO_OR_MOTOR_MODE_READ = 30
    LOAD_OR_UNLOAD_WRITE = 31
    LOAD_OR_UNLOAD_READ = 32
    LED_CTRL_WRITE = 33
    LED_CTRL_READ = 34
    LED_ERROR_WRITE = 35
    LED_ERROR_READ = 36


@dataclass(frozen=True)
class Clamp:
    """Clamping rule for one request field.

    ``low`` and ``high`` are fixed bounds. ``above`` names another field
    whose (already clamped) value this one must exceed by at least one;
    it is applied last, so it wins over ``high``.
    """

    field: str
    low: int | None = None
    high: int | None = None
    above: str | None = None

    def apply(self, params: dict[str, Any]) -> int:
        value = params[self.field]
        if self.low is not None:
            value = max(value, self.low)
        if self.high is not None:
            value = min(value, self.high)
        if self.above is not None:
            value = max(value, params[self.above] + 1)
        return value


@dataclass(frozen=True)
class CommandDescriptor:
    """Immutable description of one protocol command."""

    command: Command
    fields: tuple[str, ...] = ()
    layout: str = ""
    clamps: tuple[Clamp, ...] = ()
    prepare: Callable[[dict[str, Any]], tuple] | None = None
    reply_size: int = 0
    decode: Callable[[bytes], Any] | None = None
    broadcast: bool = False

    @property
    def request_size(self) -> int:
        return struct.calcsize("<" + self.layout)

    @property
    def is_read(self) -> bool:
        return self.decode is not None

    def clamp(self, **params: Any) -> dict[str, Any]:
        """Apply the clamping rules, in table order, to the request fields."""
        if set(params) != set(self.fields):
            raise TypeError(
                f"{self.command.name} takes {list(self.fields)}, "
                f"got {sorted(params)}"
            )
        values = dict(params)
        for rule in self.clamps:
            values[rule.field] = rule.apply(values)
        return values

    def encode(self, **params: Any) -> bytes:
        """Clamp the parameters and pack them into a request payload."""
        values = self.clamp(**params)
        if self.prepare is not None:
            packed = self.prepare(values)
        else:
            packed = tuple(values[name] for name in self.fields)
        try:
            return struct.pack("<" + self.layout, *packed)
        except struct.error as e:
            raise ValueError(f"{self.command.name}: {e}") from e

    def build(self, address: int, **params: Any) -> bytes:
        """Build a complete request frame for ``address``."""
        return build_frame(address, self.command, self.encode(**params))

    def decode_reply(self, payload: bytes) -> Any:
        """Decode the payload of a validated reply frame."""
        if self.decode is None:
            raise ValueError(f"{self.command.name} has no reply")
        return self.decode(payload)


def _mode_values(values: dict[str, Any]) -> tuple:
    # Speed only means something in motor mode.
    mode = Mode(values["mode"])
    speed = values["speed"] if mode == Mode.MOTOR else 0
    return (mode, speed)


def _led_error_values(values: dict[str, Any]) -> tuple:
    flags = LedError(
        over_temperature=bool(values["over_temperature"]),
        over_voltage=bool(values["over_voltage"]),
        stall=bool(values["stall"]),
    )
    return (flags.to_byte(),)


_MOVE_FIELDS = ("position", "time_ms")
_MOVE_CLAMPS = (Clamp("position", low=0, high=1000),)
_LIMIT_FIELDS = ("min_limit", "max_limit")

CATALOG: dict[Command, CommandDescriptor] = {
    d.command: d
    for d in (
        CommandDescriptor(
            Command.MOVE_TIME_WRITE, _MOVE_FIELDS, "HH", clamps=_MOVE_CLAMPS
        ),
        CommandDescriptor(
            Command.MOVE_TIME_READ, reply_size=4, decode=parse_move_time
        ),
        CommandDescriptor(
            Command.MOVE_TIME_WAIT_WRITE, _MOVE_FIELDS, "HH", clamps=_MOVE_CLAMPS
        ),
        CommandDescriptor(
            Command.MOVE_TIME_WAIT_READ, reply_size=4, decode=parse_move_time
        ),
        CommandDescriptor(Command.MOVE_START),
        CommandDescriptor(Command.MOVE_STOP),
        CommandDescriptor(Command.ID_WRITE, ("new_id",), "B", broadcast=True),
        CommandDescriptor(
            Command.ID_READ, reply_size=1, decode=parse_u8, broadcast=True
        ),
        CommandDescriptor(Command.ANGLE_OFFSET_ADJUST, ("delta",), "b"),
        CommandDescriptor(Command.ANGLE_OFFSET_WRITE),
        CommandDescriptor(
            Command.ANGLE_OFFSET_READ, reply_size=1, decode=parse_i8
        ),
        CommandDescriptor(
            Command.ANGLE_LIMIT_WRITE,
            _LIMIT_FIELDS,
            "hh",
            clamps=(
                Clamp("min_limit", low=0, high=999),
                Clamp("max_limit", high=1000, above="min_limit"),
            ),
        ),
        CommandDescriptor(
            Command.ANGLE_LIMIT_READ, reply_size=4, decode=parse_angle_limit
        ),
        CommandDescriptor(
            Command.VIN_LIMIT_WRITE,
            _LIMIT_FIELDS,
            "HH",
            clamps=(
                Clamp("min_limit", low=4500, high=11999),
                Clamp("max_limit", high=12000, above="min_limit"),
            ),
        ),
        CommandDescriptor(
            Command.VIN_LIMIT_READ, reply_size=4, decode=parse_vin_limit
        ),
        CommandDescriptor(
            Command.TEMP_MAX_LIMIT_WRITE,
            ("max_temp",),
            "B",
            clamps=(Clamp("max_temp", low=50, high=100),),
        ),
        CommandDescriptor(
            Command.TEMP_MAX_LIMIT_READ, reply_size=1, decode=parse_u8
        ),
        CommandDescriptor(Command.TEMP_READ, reply_size=1, decode=parse_u8),
        CommandDescriptor(Command.VIN_READ, reply_size=2, decode=parse_u16),
        CommandDescriptor(Command.POS_READ, reply_size=2, decode=parse_i16),
        CommandDescriptor(
            Command.SERVO_OR_MOTOR_MODE_WRITE,
            ("mode", "speed"),
            "Bxh",
            clamps=(Clamp("speed", low=-1000, high=1000),),
            prepare=_mode_values,
        ),
        CommandDescriptor(
            Command.SERVO_OR_MOTOR_MODE_READ, reply_size=4, decode=parse_mode
        ),
        CommandDescriptor(Command.LOAD_OR_UNLOAD_WRITE, ("load_mode",), "B"),
        CommandDescriptor(
            Command.LOAD_OR_UNLOAD_READ, reply_size=1, decode=parse_load_mode
        ),
        CommandDescriptor(Command.LED_CTRL_WRITE, ("power_led",), "B"),
        CommandDescriptor(
            Command.LED_CTRL_READ, reply_size=1, decode=parse_power_led
        ),
        CommandDescriptor(
            Command.LED_ERROR_WRITE,
            ("over_temperature", "over_voltage", "stall"),
            "B",
            prepare=_led_error_values,
        ),
        CommandDescriptor(
            Command.LED_ERROR_READ, reply_size=1, decode=parse_led_error
        ),
    )
}


def build_command(command: Command, address: int, **params: Any) -> bytes:
    """Build a request frame for any catalogued command.

    Args:
        command: Command to encode.
        address: Target servo id, or ``BROADCAST_ADDRESS``.
        **params: The command's request fields, before clamping.
    """
    return CATALOG[Command(command)].build(address, **params)
