"""Exceptions raised by the bus servo driver."""

from __future__ import annotations


class BusServoError(Exception):
    """Base class for all driver errors."""


class TransportOpenError(BusServoError, ConnectionError):
    """The serial device could not be opened."""


class ExchangeError(BusServoError):
    """A request/response exchange did not yield a valid reply."""


class HeaderTimeoutError(ExchangeError, TimeoutError):
    """Fewer than 4 reply bytes arrived within the polling bound."""


class PayloadTimeoutError(ExchangeError, TimeoutError):
    """The rest of the reply did not arrive within the polling bound."""


class CorruptedMessageError(ExchangeError):
    """The reply arrived but its length, command or checksum is wrong."""
