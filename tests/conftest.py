"""Shared fixtures: a scripted in-memory stand-in for the serial bus."""

from __future__ import annotations

import pytest

from hiwonder_bus_servo.client import ServoClient
from hiwonder_bus_servo.protocol.framing import build_frame
from hiwonder_bus_servo.transport.handle import OwnedHandle
from hiwonder_bus_servo.transport.session import TransportSession

POLL_ITERATIONS = 50


class FakeTransport:
    """Records written frames and plays back queued replies.

    Each queued reply becomes readable when the next frame is written,
    mimicking a servo answering a request.
    """

    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.replies: list[bytes] = []
        self.rx = bytearray()
        self.available_cap: int | None = None
        self.available_calls = 0
        self.flushes = 0
        self.closed = False
        self.on_write = None

    def queue_reply(self, data: bytes) -> None:
        self.replies.append(bytes(data))

    def queue_frame(self, command: int, payload: bytes = b"", address: int = 1) -> None:
        self.queue_reply(build_frame(address, command, payload))

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.on_write is not None:
            self.on_write()
        if self.replies:
            self.rx += self.replies.pop(0)
        return len(data)

    def bytes_available(self) -> int:
        self.available_calls += 1
        if self.available_cap is not None:
            return min(len(self.rx), self.available_cap)
        return len(self.rx)

    def read_byte(self) -> int:
        if not self.rx:
            raise IOError("no data")
        return self.rx.pop(0)

    def flush_input(self) -> None:
        self.flushes += 1
        self.rx.clear()

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(transport) -> TransportSession:
    return TransportSession(OwnedHandle(transport), max_poll_iterations=POLL_ITERATIONS)


@pytest.fixture
def client(session) -> ServoClient:
    return ServoClient(session, address=1)
