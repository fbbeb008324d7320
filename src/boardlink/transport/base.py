"""Serial line configuration and the open-link record."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import serial

from boardlink.exceptions import InvalidOptionError
from boardlink.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BAUD_RATE = 115200

_PARITY_MAP = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
}

_BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

_STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}


class Parity(StrEnum):
    """Serial parity setting."""
    NONE = "none"
    EVEN = "even"
    ODD = "odd"


class FlowControl(StrEnum):
    """Serial flow control setting."""
    NONE = "none"
    HARDWARE = "hardware"


class LinkState(StrEnum):
    """Lifecycle state of a serial link."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class SerialOptions:
    """Line parameters used when opening a port. Defaults are 115200 8N1."""

    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = 8
    stop_bits: float = 1
    parity: Parity = Parity.NONE
    flow_control: FlowControl = FlowControl.NONE

    def __post_init__(self) -> None:
        if not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise InvalidOptionError(f"baud_rate must be a positive integer, got {self.baud_rate!r}")
        if self.data_bits not in _BYTESIZE_MAP:
            raise InvalidOptionError(f"data_bits must be one of 5-8, got {self.data_bits!r}")
        if self.stop_bits not in _STOPBITS_MAP:
            raise InvalidOptionError(f"stop_bits must be 1, 1.5 or 2, got {self.stop_bits!r}")
        try:
            object.__setattr__(self, "parity", Parity(self.parity))
            object.__setattr__(self, "flow_control", FlowControl(self.flow_control))
        except ValueError as exc:
            raise InvalidOptionError(str(exc)) from exc

    def with_overrides(self, **overrides: Any) -> SerialOptions:
        """Return a copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise InvalidOptionError(f"Unknown serial option(s): {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **changes)

    def to_serial_kwargs(self) -> dict[str, Any]:
        """Translate to keyword arguments for ``serial.Serial``."""
        return {
            "baudrate": self.baud_rate,
            "bytesize": _BYTESIZE_MAP[self.data_bits],
            "stopbits": _STOPBITS_MAP[self.stop_bits],
            "parity": _PARITY_MAP[self.parity.value],
            "rtscts": self.flow_control is FlowControl.HARDWARE,
            "xonxoff": False,
        }


@dataclass
class SerialLink:
    """One open connection to a physical device.

    The reader and writer are each acquired once when the link opens and
    released exactly once; releasing twice is a no-op.
    """

    handle: serial.Serial
    device: str
    options: SerialOptions
    usb_vendor_id: int | None = None
    usb_product_id: int | None = None
    state: LinkState = LinkState.CONNECTING
    reader_held: bool = field(default=False, init=False)
    writer_held: bool = field(default=False, init=False)
    stop_reading: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    reader_thread: threading.Thread | None = field(default=None, init=False, repr=False)
    _resource_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is LinkState.CONNECTED and bool(getattr(self.handle, "is_open", False))

    def acquire_reader(self) -> None:
        with self._resource_lock:
            if self.reader_held:
                raise RuntimeError(f"Reader already acquired on {self.device}")
            self.reader_held = True

    def acquire_writer(self) -> None:
        with self._resource_lock:
            if self.writer_held:
                raise RuntimeError(f"Writer already acquired on {self.device}")
            self.writer_held = True

    def release_reader(self) -> bool:
        """Release the reader. Returns False if it was already released."""
        with self._resource_lock:
            if not self.reader_held:
                return False
            self.reader_held = False
        logger.debug("serial_reader_released", device=self.device)
        return True

    def release_writer(self) -> bool:
        """Release the writer. Returns False if it was already released."""
        with self._resource_lock:
            if not self.writer_held:
                return False
            self.writer_held = False
        logger.debug("serial_writer_released", device=self.device)
        return True
