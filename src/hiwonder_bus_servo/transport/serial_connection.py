"""UART connection to the servo bus.

Bus servos share a single half-duplex line, usually wired to the host's
primary UART (``/dev/ttyAMA0`` on a Raspberry Pi) through a buffer board.
The port is opened non-blocking so the session can busy-poll the number
of waiting bytes instead of sleeping in ``read``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import serial

from ..errors import TransportOpenError

logger = logging.getLogger(__name__)

DEFAULT_PORT = "/dev/ttyAMA0"
DEFAULT_BAUDRATE = 115200


class Transport(Protocol):
    """Byte-level operations a session needs from the bus."""

    def write(self, data: bytes) -> int: ...

    def bytes_available(self) -> int: ...

    def read_byte(self) -> int: ...

    def flush_input(self) -> None: ...

    def close(self) -> None: ...


@dataclass
class PortInfo:
    """Parameters of an opened serial port."""

    port: str = DEFAULT_PORT
    baudrate: int = DEFAULT_BAUDRATE


class SerialConnection:
    """Manages the serial port the servos are attached to.

    Usage::

        conn = SerialConnection("/dev/ttyUSB0")
        conn.open()
        conn.write(frame_bytes)
        if conn.bytes_available():
            byte = conn.read_byte()
        conn.close()
    """

    def __init__(
        self,
        port: str = DEFAULT_PORT,
        baudrate: int = DEFAULT_BAUDRATE,
    ) -> None:
        self._port_info = PortInfo(port=port, baudrate=baudrate)
        self._serial: serial.Serial | None = None

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def port_info(self) -> PortInfo:
        return self._port_info

    def open(self) -> PortInfo:
        """Open the serial port.

        Returns:
            PortInfo describing the opened port.

        Raises:
            TransportOpenError: If the device cannot be opened.
        """
        if self.connected:
            return self._port_info

        try:
            self._serial = serial.Serial(
                port=self._port_info.port,
                baudrate=self._port_info.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
                write_timeout=1.0,
            )
        except (serial.SerialException, ValueError) as e:
            raise TransportOpenError(
                f"Could not open serial device {self._port_info.port} "
                f"at {self._port_info.baudrate} baud: {e}"
            ) from e

        logger.info(
            "Opened %s at %d baud",
            self._port_info.port,
            self._port_info.baudrate,
        )
        return self._port_info

    def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return

        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning("Error closing serial port: %s", e)
        finally:
            self._serial = None
            logger.info("Closed %s", self._port_info.port)

    def _require_port(self) -> serial.Serial:
        if not self.connected:
            raise ConnectionError("Serial port is not open")
        return self._serial

    def write(self, data: bytes) -> int:
        """Write raw bytes to the bus.

        Returns:
            Number of bytes written.

        Raises:
            ConnectionError: If the port is not open.
        """
        written = self._require_port().write(data)
        return len(data) if written is None else written

    def bytes_available(self) -> int:
        """Number of received bytes waiting in the input buffer."""
        return self._require_port().in_waiting

    def read_byte(self) -> int:
        """Read one byte that is already waiting in the input buffer.

        Raises:
            IOError: If no byte is available.
        """
        data = self._require_port().read(1)
        if not data:
            raise IOError("No byte available on the serial port")
        return data[0]

    def flush_input(self) -> None:
        """Discard any stale bytes waiting in the input buffer."""
        self._require_port().reset_input_buffer()

    def __repr__(self) -> str:
        state = "open" if self.connected else "closed"
        return (
            f"SerialConnection({self._port_info.port!r}, "
            f"{self._port_info.baudrate}, {state})"
        )


def open_connection(
    port: str = DEFAULT_PORT,
    baudrate: int = DEFAULT_BAUDRATE,
) -> SerialConnection:
    """Open a serial connection, raising ``TransportOpenError`` on failure."""
    conn = SerialConnection(port, baudrate)
    conn.open()
    return conn
