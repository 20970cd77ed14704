"""Synchronous request/response exchange over the servo bus.

A session owns the bus transport and runs one exchange at a time::

    IDLE -> SENDING -> AWAITING_HEADER -> AWAITING_PAYLOAD
         -> {VALIDATED | TIMED_OUT | CORRUPTED} -> IDLE

Waiting for a reply is a busy loop over ``bytes_available()`` bounded by
an iteration count, not a clock. It never sleeps or yields: a control
loop gets its reply within well under a millisecond at the cost of one
core spinning while it waits. Wall-clock duration of a timeout therefore
depends on host speed.

The session does not lock. Callers sharing it between threads must
serialize access themselves; starting an exchange while another is in
progress raises ``RuntimeError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import (
    CorruptedMessageError,
    HeaderTimeoutError,
    PayloadTimeoutError,
)
from ..protocol.framing import HEADER_SIZE, Frame, parse_frame, validate_frame
from .handle import OwnedHandle
from .serial_connection import (
    DEFAULT_BAUDRATE,
    DEFAULT_PORT,
    Transport,
    open_connection,
)

logger = logging.getLogger(__name__)

MAX_POLL_ITERATIONS = 20000


class SessionState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_HEADER = "awaiting_header"
    AWAITING_PAYLOAD = "awaiting_payload"


class ExchangeStatus(Enum):
    """Outcome of one exchange."""

    OK = "ok"
    HEADER_TIMEOUT = "header_timeout"
    PAYLOAD_TIMEOUT = "payload_timeout"
    CORRUPTED = "corrupted"


_STATUS_ERRORS = {
    ExchangeStatus.HEADER_TIMEOUT: (
        HeaderTimeoutError,
        "Unable to retrieve message header from servo",
    ),
    ExchangeStatus.PAYLOAD_TIMEOUT: (
        PayloadTimeoutError,
        "Unable to retrieve message content from servo",
    ),
    ExchangeStatus.CORRUPTED: (
        CorruptedMessageError,
        "Corrupted message received",
    ),
}


@dataclass(frozen=True)
class ExchangeResult:
    """Result of ``TransportSession.exchange``.

    ``frame`` is set only when ``status`` is ``OK``; ``raw`` holds
    whatever bytes were received, for diagnostics.
    """

    status: ExchangeStatus
    frame: Frame | None = None
    raw: bytes = b""

    @property
    def ok(self) -> bool:
        return self.status is ExchangeStatus.OK

    def raise_for_status(self) -> Frame:
        """Return the reply frame, or raise the error matching the status."""
        if self.ok:
            return self.frame
        error, message = _STATUS_ERRORS[self.status]
        if self.raw:
            message = f"{message}: {self.raw.hex(' ')}"
        raise error(message)


class TransportSession:
    """Half-duplex, one-request-at-a-time exchange over a bus transport.

    Args:
        handle: Owned handle to the transport. The session takes over
            the handle; the caller must not keep using it.
        max_poll_iterations: Busy-wait bound for each receive step.
    """

    def __init__(
        self,
        handle: OwnedHandle[Transport],
        max_poll_iterations: int = MAX_POLL_ITERATIONS,
    ) -> None:
        if max_poll_iterations < 0:
            raise ValueError(
                f"max_poll_iterations must be >= 0, got {max_poll_iterations}"
            )
        self._handle = handle.move()
        self._max_poll_iterations = max_poll_iterations
        self._state = SessionState.IDLE
        self._last_status: ExchangeStatus | None = None

    @classmethod
    def open(
        cls,
        port: str = DEFAULT_PORT,
        baudrate: int = DEFAULT_BAUDRATE,
        max_poll_iterations: int = MAX_POLL_ITERATIONS,
    ) -> TransportSession:
        """Open the serial port and return a session owning it."""
        return cls(OwnedHandle(open_connection(port, baudrate)), max_poll_iterations)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_status(self) -> ExchangeStatus | None:
        """Outcome of the most recent exchange, ``None`` before the first."""
        return self._last_status

    @property
    def max_poll_iterations(self) -> int:
        return self._max_poll_iterations

    @property
    def transport(self) -> Transport:
        return self._handle.resource

    @property
    def is_open(self) -> bool:
        return self._handle.valid

    def _require_idle(self) -> None:
        if self._state is not SessionState.IDLE:
            raise RuntimeError(
                f"Exchange already in progress (state: {self._state.value})"
            )

    # ─── STEPS ────────────────────────────────────────────────────────

    def _write(self, frame: bytes) -> None:
        self._state = SessionState.SENDING
        logger.debug("TX %s", frame.hex(" "))
        self.transport.write(frame)

    def _poll(self, count: int) -> bool:
        transport = self.transport
        for _ in range(self._max_poll_iterations):
            if transport.bytes_available() >= count:
                return True
        return transport.bytes_available() >= count

    def _read(self, count: int) -> bytes:
        transport = self.transport
        return bytes(transport.read_byte() for _ in range(count))

    def send(self, frame: bytes) -> None:
        """Write a complete encoded frame to the bus. No reply is read."""
        self._require_idle()
        try:
            self._write(frame)
        finally:
            self._state = SessionState.IDLE

    def _receive_header(self) -> bytes:
        self._state = SessionState.AWAITING_HEADER
        if not self._poll(HEADER_SIZE):
            raise HeaderTimeoutError("Unable to retrieve message header from servo")
        return self._read(HEADER_SIZE)

    def _receive_payload(self, length: int) -> bytes:
        self._state = SessionState.AWAITING_PAYLOAD
        remaining = max(length - 1, 0)
        if not self._poll(remaining):
            raise PayloadTimeoutError("Unable to retrieve message content from servo")
        return self._read(remaining)

    def receive_header(self) -> bytes:
        """Wait for and read the header, address and length bytes.

        Raises:
            HeaderTimeoutError: If fewer than 4 bytes arrive within the
                polling bound.
        """
        self._require_idle()
        try:
            return self._receive_header()
        finally:
            self._state = SessionState.IDLE

    def receive_payload(self, length: int) -> bytes:
        """Wait for and read the ``length - 1`` bytes after the length field.

        Those are the command byte, the payload and the checksum.

        Raises:
            PayloadTimeoutError: If they do not arrive within the polling
                bound.
        """
        self._require_idle()
        try:
            return self._receive_payload(length)
        finally:
            self._state = SessionState.IDLE

    # ─── EXCHANGE ─────────────────────────────────────────────────────

    def exchange(
        self,
        request: bytes,
        command: int,
        reply_size: int,
    ) -> ExchangeResult:
        """Send a request and collect its validated reply.

        Args:
            request: Complete encoded request frame.
            command: Command id the reply must carry.
            reply_size: Payload size the reply must carry.

        Returns:
            An ``ExchangeResult``; timeouts and corruption are reported
            through its status rather than raised.
        """
        self._require_idle()
        raw = b""
        try:
            self.transport.flush_input()
            self._write(request)
            raw = self._receive_header()
            raw += self._receive_payload(raw[3])
        except HeaderTimeoutError:
            return self._finish(ExchangeStatus.HEADER_TIMEOUT, raw=raw)
        except PayloadTimeoutError:
            return self._finish(ExchangeStatus.PAYLOAD_TIMEOUT, raw=raw)
        finally:
            self._state = SessionState.IDLE

        if not validate_frame(raw, command, reply_size):
            return self._finish(ExchangeStatus.CORRUPTED, raw=raw)

        return self._finish(ExchangeStatus.OK, frame=parse_frame(raw), raw=raw)

    def _finish(
        self,
        status: ExchangeStatus,
        frame: Frame | None = None,
        raw: bytes = b"",
    ) -> ExchangeResult:
        self._last_status = status
        if status is ExchangeStatus.OK:
            logger.debug("RX %s", raw.hex(" "))
        else:
            logger.debug(
                "Exchange failed (%s), received: %s",
                status.value,
                raw.hex(" ") if raw else "(nothing)",
            )
        return ExchangeResult(status=status, frame=frame, raw=raw)

    # ─── OWNERSHIP ────────────────────────────────────────────────────

    def move(self) -> TransportSession:
        """Transfer the transport to a new session and retire this one."""
        self._require_idle()
        return TransportSession(self._handle, self._max_poll_iterations)

    def close(self) -> None:
        """Close the transport. Closing a moved or closed session is a no-op."""
        self._handle.close()

    def __copy__(self):
        raise TypeError("TransportSession cannot be copied; use move()")

    def __deepcopy__(self, memo):
        raise TypeError("TransportSession cannot be copied; use move()")

    def __enter__(self) -> TransportSession:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
