"""Tests for the pyserial-backed bus connection."""

from unittest.mock import MagicMock, patch

import pytest
import serial

from hiwonder_bus_servo.errors import TransportOpenError
from hiwonder_bus_servo.transport.serial_connection import (
    DEFAULT_BAUDRATE,
    DEFAULT_PORT,
    SerialConnection,
    open_connection,
)

SERIAL_CLS = "hiwonder_bus_servo.transport.serial_connection.serial.Serial"


@pytest.fixture
def port():
    mock_port = MagicMock()
    mock_port.is_open = True
    with patch(SERIAL_CLS, return_value=mock_port) as mock_cls:
        mock_port.cls = mock_cls
        yield mock_port


def test_defaults():
    conn = SerialConnection()
    assert conn.port_info.port == DEFAULT_PORT == "/dev/ttyAMA0"
    assert conn.port_info.baudrate == DEFAULT_BAUDRATE == 115200
    assert not conn.connected


def test_open_configures_non_blocking_port(port):
    conn = SerialConnection("/dev/ttyUSB0", 57600)
    info = conn.open()

    assert conn.connected
    assert info.port == "/dev/ttyUSB0"
    kwargs = port.cls.call_args.kwargs
    assert kwargs["port"] == "/dev/ttyUSB0"
    assert kwargs["baudrate"] == 57600
    assert kwargs["timeout"] == 0
    assert kwargs["bytesize"] == serial.EIGHTBITS
    assert kwargs["parity"] == serial.PARITY_NONE
    assert kwargs["stopbits"] == serial.STOPBITS_ONE


def test_open_twice_is_noop(port):
    conn = SerialConnection()
    conn.open()
    conn.open()
    assert port.cls.call_count == 1


def test_open_failure_raises_transport_error():
    with patch(SERIAL_CLS, side_effect=serial.SerialException("no such device")):
        with pytest.raises(TransportOpenError, match="no such device"):
            open_connection("/dev/missing")


def test_transport_open_error_is_connection_error():
    assert issubclass(TransportOpenError, ConnectionError)


def test_byte_operations(port):
    port.in_waiting = 3
    port.read.return_value = b"\x55"
    port.write.return_value = 6

    conn = open_connection()
    assert conn.write(b"\x55\x55\x01\x03\x1c\xdf") == 6
    assert conn.bytes_available() == 3
    assert conn.read_byte() == 0x55
    conn.flush_input()

    port.read.assert_called_once_with(1)
    port.reset_input_buffer.assert_called_once()


def test_read_byte_with_nothing_waiting(port):
    port.read.return_value = b""
    conn = open_connection()
    with pytest.raises(IOError):
        conn.read_byte()


def test_operations_require_open_port():
    conn = SerialConnection()
    with pytest.raises(ConnectionError):
        conn.write(b"\x00")
    with pytest.raises(ConnectionError):
        conn.bytes_available()


def test_close(port):
    conn = open_connection()
    conn.close()
    port.close.assert_called_once()
    assert not conn.connected
    conn.close()
    port.close.assert_called_once()


def test_close_error_is_logged(port, caplog):
    port.close.side_effect = serial.SerialException("gone")
    conn = open_connection()
    conn.close()
    assert not conn.connected
    assert "gone" in caplog.text


def test_repr(port):
    conn = SerialConnection("/dev/ttyS0", 9600)
    assert repr(conn) == "SerialConnection('/dev/ttyS0', 9600, closed)"
    conn.open()
    assert "open" in repr(conn)
