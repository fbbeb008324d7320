"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import queue
import threading
from types import SimpleNamespace

import pytest
import serial

from boardlink.transport import SerialManager


class FakeSerial:
    """In-memory stand-in for serial.Serial.

    Records every write, serves reads from a queue fed by the test, and
    raises queued exceptions from ``read`` to simulate device errors.
    """

    def __init__(self, port=None, timeout=None, write_timeout=None, **kwargs):
        self.port = port
        self.timeout = timeout
        self.write_timeout = write_timeout
        self.kwargs = kwargs
        self.is_open = True
        self.writes: list[bytes] = []
        self.fail_on_write: int | None = None
        self.write_error: Exception = serial.SerialTimeoutException("Write timeout")
        self.close_error: Exception | None = None
        self.close_calls = 0
        self.cancel_calls = 0
        self._rx: queue.Queue = queue.Queue()

    @property
    def in_waiting(self) -> int:
        if not self.is_open:
            raise serial.SerialException("Attempting to use a port that is not open")
        return 0

    def feed(self, item) -> None:
        """Queue bytes (or an exception) for the receive thread."""
        self._rx.put(item)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise serial.SerialException("Attempting to use a port that is not open")
        try:
            item = self._rx.get(timeout=self.timeout or 0.01)
        except queue.Empty:
            return b""
        if isinstance(item, Exception):
            raise item
        return item

    def cancel_read(self) -> None:
        self.cancel_calls += 1
        self._rx.put(b"")

    def write(self, data: bytes) -> int:
        if self.fail_on_write is not None and len(self.writes) + 1 == self.fail_on_write:
            raise self.write_error
        self.writes.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.close_calls += 1
        self.is_open = False
        if self.close_error is not None:
            raise self.close_error


class FakeSerialFactory:
    """Callable used as ``serial_factory``; keeps every handle it creates."""

    def __init__(self) -> None:
        self.created: list[FakeSerial] = []
        self.error: Exception | None = None
        self._lock = threading.Lock()

    def __call__(self, **kwargs) -> FakeSerial:
        if self.error is not None:
            raise self.error
        handle = FakeSerial(**kwargs)
        with self._lock:
            self.created.append(handle)
        return handle

    @property
    def last(self) -> FakeSerial:
        return self.created[-1]


def make_port(device: str = "/dev/ttyUSB0", vid: int | None = 0x10C4, pid: int | None = 0xEA60,
              description: str = "CP2102 USB to UART Bridge Controller"):
    """Build an object shaped like serial.tools.list_ports_common.ListPortInfo."""
    return SimpleNamespace(device=device, vid=vid, pid=pid, description=description)


@pytest.fixture
def serial_factory() -> FakeSerialFactory:
    return FakeSerialFactory()


@pytest.fixture
def esp32_port():
    return make_port()


@pytest.fixture
def manager(serial_factory: FakeSerialFactory, esp32_port):
    """SerialManager wired to a fake port list and fake serial handles."""
    mgr = SerialManager(
        port_lister=lambda: [esp32_port],
        serial_factory=serial_factory,
        read_timeout=0.01,
    )
    yield mgr
    if mgr.link is not None:
        mgr.disconnect()


@pytest.fixture
def port_factory():
    return make_port
