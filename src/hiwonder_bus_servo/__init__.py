"""Driver for Hiwonder / LewanSoul serial bus servos.

Quick start::

    from hiwonder_bus_servo import ServoClient

    with ServoClient.open(address=1, port="/dev/ttyAMA0") as servo:
        servo.move_time_write(500, 1000)
        print(servo.pos_read(), servo.vin_read())
"""

from .client import ServoClient
from .errors import (
    BusServoError,
    CorruptedMessageError,
    ExchangeError,
    HeaderTimeoutError,
    PayloadTimeoutError,
    TransportOpenError,
)
from .models import LedError, Limit, LoadMode, Mode, ModeRead, MoveTime, PowerLed
from .protocol import BROADCAST_ADDRESS, CATALOG, Command, build_command
from .transport import OwnedHandle, SerialConnection, TransportSession

__version__ = "0.1.0"
