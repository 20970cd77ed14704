"""Typed values exchanged with a bus servo.

Positions are in units of 0.24 degrees (1000 = 240 degrees), times in
milliseconds, voltages in millivolts and temperatures in degrees Celsius.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import IntEnum

OVER_TEMPERATURE_BIT = 0x01
OVER_VOLTAGE_BIT = 0x02
STALL_BIT = 0x04


class Mode(IntEnum):
    """Position (servo) or continuous rotation (motor) control."""

    SERVO = 0
    MOTOR = 1


class LoadMode(IntEnum):
    """Whether the servo holds its position with torque."""

    UNLOAD = 0
    LOAD = 1


class PowerLed(IntEnum):
    """Power LED state. The firmware uses 0 for on."""

    ON = 0
    OFF = 1


@dataclass(frozen=True)
class MoveTime:
    """Target position and the time allowed to reach it."""

    position: int
    time_ms: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Limit:
    """A min/max pair, used for both angle and input voltage limits."""

    min_limit: int
    max_limit: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ModeRead:
    """Control mode and, in motor mode, the rotation speed."""

    mode: Mode = Mode.SERVO
    speed: int = 0

    def to_dict(self) -> dict:
        return {"mode": self.mode.name.lower(), "speed": self.speed}


@dataclass(frozen=True)
class LedError:
    """Fault conditions the LED is configured to flash for."""

    over_temperature: bool = False
    over_voltage: bool = False
    stall: bool = False

    def to_byte(self) -> int:
        return (
            (OVER_TEMPERATURE_BIT if self.over_temperature else 0)
            | (OVER_VOLTAGE_BIT if self.over_voltage else 0)
            | (STALL_BIT if self.stall else 0)
        )

    @classmethod
    def from_byte(cls, value: int) -> LedError:
        return cls(
            over_temperature=bool(value & OVER_TEMPERATURE_BIT),
            over_voltage=bool(value & OVER_VOLTAGE_BIT),
            stall=bool(value & STALL_BIT),
        )

    def to_dict(self) -> dict:
        return asdict(self)
