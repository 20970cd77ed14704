"""Transport layer: serial port, exclusive ownership and exchanges."""

from .handle import OwnedHandle
from .serial_connection import SerialConnection, Transport
from .session import ExchangeResult, ExchangeStatus, TransportSession
