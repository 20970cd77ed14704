"""High-level client for one servo on the bus.

Method names follow the command names of the servo's communication
protocol; parameters and results use plain integers, enums and small
dataclasses instead of raw bytes.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import CorruptedMessageError
from .models.servo import (
    LedError,
    Limit,
    LoadMode,
    Mode,
    ModeRead,
    MoveTime,
    PowerLed,
)
from .protocol.commands import (
    BROADCAST_ADDRESS,
    CATALOG,
    MAX_ADDRESS,
    MIN_ADDRESS,
    Command,
)
from .transport.serial_connection import DEFAULT_BAUDRATE, DEFAULT_PORT
from .transport.session import MAX_POLL_ITERATIONS, TransportSession

logger = logging.getLogger(__name__)


def _check_address(address: int, allow_broadcast: bool = True) -> int:
    if MIN_ADDRESS <= address <= MAX_ADDRESS:
        return address
    if allow_broadcast and address == BROADCAST_ADDRESS:
        return address
    raise ValueError(
        f"Servo address must be {MIN_ADDRESS}-{MAX_ADDRESS}"
        + (f" or {BROADCAST_ADDRESS}" if allow_broadcast else "")
        + f", got {address}"
    )


class ServoClient:
    """Binds a servo address to the session that owns the bus.

    The client takes over ``session``; the object passed in is retired.

    Write commands are fire-and-forget: they succeed once the frame has
    been sent. Read commands return a decoded value or raise one of
    ``HeaderTimeoutError``, ``PayloadTimeoutError`` or
    ``CorruptedMessageError``. Nothing is retried.

    Usage::

        with ServoClient.open(address=1, port="/dev/ttyUSB0") as servo:
            servo.move_time_write(500, 1000)
            print(servo.pos_read())
    """

    def __init__(self, session: TransportSession, address: int) -> None:
        self._address = _check_address(address)
        self._session = session.move()

    @classmethod
    def open(
        cls,
        address: int,
        port: str = DEFAULT_PORT,
        baudrate: int = DEFAULT_BAUDRATE,
        max_poll_iterations: int = MAX_POLL_ITERATIONS,
    ) -> ServoClient:
        """Open the serial port and bind a client to ``address``."""
        return cls(TransportSession.open(port, baudrate, max_poll_iterations), address)

    @property
    def address(self) -> int:
        return self._address

    @address.setter
    def address(self, value: int) -> None:
        self._address = _check_address(value)

    @property
    def session(self) -> TransportSession:
        return self._session

    def move(self) -> ServoClient:
        """Transfer the session to a new client bound to the same address."""
        return ServoClient(self._session, self._address)

    def close(self) -> None:
        self._session.close()

    def __copy__(self):
        raise TypeError("ServoClient cannot be copied; use move()")

    def __deepcopy__(self, memo):
        raise TypeError("ServoClient cannot be copied; use move()")

    def __enter__(self) -> ServoClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ServoClient(address={self._address})"

    # ─── GENERIC WRITE / READ ─────────────────────────────────────────

    def _target(self, command: Command) -> int:
        if self._address == BROADCAST_ADDRESS and not CATALOG[command].broadcast:
            raise ValueError(
                f"{command.name} cannot be sent to the broadcast address"
            )
        return self._address

    def _write(self, command: Command, **params: Any) -> None:
        frame = CATALOG[command].build(self._target(command), **params)
        self._session.send(frame)

    def _read(self, command: Command, address: int | None = None) -> Any:
        descriptor = CATALOG[command]
        if address is None:
            address = self._target(command)
        result = self._session.exchange(
            descriptor.build(address), command, descriptor.reply_size
        )
        frame = result.raise_for_status()
        try:
            return descriptor.decode_reply(frame.payload)
        except ValueError as e:
            raise CorruptedMessageError(
                f"Undecodable {command.name} reply: {frame.payload.hex(' ')}"
            ) from e

    # ─── MOTION ───────────────────────────────────────────────────────

    def move_time_write(self, position: int, time_ms: int = 0) -> None:
        """Start moving to ``position`` (0-1000), taking ``time_ms`` to get there.

        Out-of-range positions are clamped. A time too short for the
        servo results in a move at maximum speed.
        """
        self._write(Command.MOVE_TIME_WRITE, position=position, time_ms=time_ms)

    def move_time_read(self) -> MoveTime:
        return self._read(Command.MOVE_TIME_READ)

    def move_time_wait_write(self, position: int, time_ms: int = 0) -> None:
        """Preload a move that starts on ``move_start``."""
        self._write(Command.MOVE_TIME_WAIT_WRITE, position=position, time_ms=time_ms)

    def move_time_wait_read(self) -> MoveTime:
        return self._read(Command.MOVE_TIME_WAIT_READ)

    def move_start(self) -> None:
        self._write(Command.MOVE_START)

    def move_stop(self) -> None:
        self._write(Command.MOVE_STOP)

    # ─── ADDRESS ──────────────────────────────────────────────────────

    def id_write(self, new_id: int) -> None:
        """Assign a new id to the servo.

        Sent to the bound address, which may be broadcast when the
        current id is unknown. A client bound to a specific id follows
        the servo to its new id.
        """
        _check_address(new_id, allow_broadcast=False)
        self._write(Command.ID_WRITE, new_id=new_id)
        if self._address != BROADCAST_ADDRESS:
            logger.debug("Servo %d renamed to %d", self._address, new_id)
            self._address = new_id

    def id_read(self) -> int:
        """Read the id of the servo on the bus.

        Always sent to the broadcast address, so only one servo should
        be connected.
        """
        return self._read(Command.ID_READ, address=BROADCAST_ADDRESS)

    # ─── CALIBRATION ──────────────────────────────────────────────────

    def angle_offset_adjust(self, delta: int) -> None:
        """Set the position offset (-128..127, 0.24 degree units) until reset."""
        self._write(Command.ANGLE_OFFSET_ADJUST, delta=delta)

    def angle_offset_write(self) -> None:
        """Persist the current offset in the servo's flash."""
        self._write(Command.ANGLE_OFFSET_WRITE)

    def angle_offset_read(self) -> int:
        return self._read(Command.ANGLE_OFFSET_READ)

    # ─── LIMITS ───────────────────────────────────────────────────────

    def angle_limit_write(self, min_limit: int, max_limit: int) -> None:
        """Set the angle limits (persistent).

        ``min_limit`` is clamped to [0, 999] and ``max_limit`` to
        [min_limit + 1, 1000].
        """
        self._write(
            Command.ANGLE_LIMIT_WRITE, min_limit=min_limit, max_limit=max_limit
        )

    def angle_limit_read(self) -> Limit:
        return self._read(Command.ANGLE_LIMIT_READ)

    def vin_limit_write(self, min_limit: int, max_limit: int) -> None:
        """Set the input voltage limits in mV (persistent).

        ``min_limit`` is clamped to [4500, 11999] and ``max_limit`` to
        [min_limit + 1, 12000]. Outside them the servo drops torque.
        """
        self._write(Command.VIN_LIMIT_WRITE, min_limit=min_limit, max_limit=max_limit)

    def vin_limit_read(self) -> Limit:
        return self._read(Command.VIN_LIMIT_READ)

    def temp_max_limit_write(self, max_temp: int = 85) -> None:
        """Set the over-temperature limit, clamped to [50, 100] degrees C."""
        self._write(Command.TEMP_MAX_LIMIT_WRITE, max_temp=max_temp)

    def temp_max_limit_read(self) -> int:
        return self._read(Command.TEMP_MAX_LIMIT_READ)

    # ─── TELEMETRY ────────────────────────────────────────────────────

    def temp_read(self) -> int:
        """Current temperature in degrees C."""
        return self._read(Command.TEMP_READ)

    def vin_read(self) -> int:
        """Current input voltage in mV."""
        return self._read(Command.VIN_READ)

    def pos_read(self) -> int:
        """Current position. Can be slightly negative near the end stop."""
        return self._read(Command.POS_READ)

    # ─── MODES ────────────────────────────────────────────────────────

    def servo_or_motor_mode_write(self, mode: Mode = Mode.SERVO, speed: int = 0) -> None:
        """Switch between position control and continuous rotation.

        ``speed`` (clamped to [-1000, 1000]) is only sent in motor mode.
        """
        self._write(Command.SERVO_OR_MOTOR_MODE_WRITE, mode=mode, speed=speed)

    def servo_or_motor_mode_read(self) -> ModeRead:
        return self._read(Command.SERVO_OR_MOTOR_MODE_READ)

    def load_or_unload_write(self, load_mode: LoadMode = LoadMode.LOAD) -> None:
        self._write(Command.LOAD_OR_UNLOAD_WRITE, load_mode=LoadMode(load_mode))

    def load_or_unload_read(self) -> LoadMode:
        return self._read(Command.LOAD_OR_UNLOAD_READ)

    # ─── LED ──────────────────────────────────────────────────────────

    def led_ctrl_write(self, power_led: PowerLed = PowerLed.ON) -> None:
        self._write(Command.LED_CTRL_WRITE, power_led=PowerLed(power_led))

    def led_ctrl_read(self) -> PowerLed:
        return self._read(Command.LED_CTRL_READ)

    def led_error_write(
        self,
        over_temperature: bool = True,
        over_voltage: bool = True,
        stall: bool = True,
    ) -> None:
        """Choose which faults make the LED flash."""
        self._write(
            Command.LED_ERROR_WRITE,
            over_temperature=over_temperature,
            over_voltage=over_voltage,
            stall=stall,
        )

    def led_error_read(self) -> LedError:
        return self._read(Command.LED_ERROR_READ)
