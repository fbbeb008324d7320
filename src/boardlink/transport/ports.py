"""Serial port enumeration and selection.

A port selector stands in for the host's device chooser: it is handed the
enumerated ports and returns the one to open, or None when nothing should
be opened.
"""

from __future__ import annotations

import os
from typing import Callable, Sequence

import serial
from serial.tools import list_ports as _list_ports
from serial.tools.list_ports_common import ListPortInfo

from boardlink.models.board import PortInfo, is_known_board

PortLister = Callable[[], Sequence[ListPortInfo]]
PortSelector = Callable[[Sequence[ListPortInfo]], "ListPortInfo | None"]

# os.name values pyserial ships a native backend for
_SUPPORTED_OS_NAMES = frozenset({"nt", "posix"})


def is_supported() -> bool:
    """Return True if this host can open serial ports through pyserial."""
    return os.name in _SUPPORTED_OS_NAMES and hasattr(serial, "Serial")


def enumerate_ports() -> list[ListPortInfo]:
    """Return the serial ports the OS currently reports."""
    return sorted(_list_ports.comports(), key=lambda p: p.device)


def to_port_info(port: ListPortInfo) -> PortInfo:
    return PortInfo.from_ids(
        port.vid,
        port.pid,
        device=port.device,
        description=port.description or "",
    )


def list_ports(lister: PortLister = enumerate_ports) -> list[PortInfo]:
    """List available ports with their board labels."""
    return [to_port_info(p) for p in lister()]


def select_known_board(ports: Sequence[ListPortInfo]) -> ListPortInfo | None:
    """Pick the first port whose VID/PID is in the board table."""
    for port in ports:
        if is_known_board(port.vid, port.pid):
            return port
    return None


def select_first(ports: Sequence[ListPortInfo]) -> ListPortInfo | None:
    return ports[0] if ports else None


def select_by_device(device: str) -> PortSelector:
    """Build a selector that matches an exact OS device path."""

    def _select(ports: Sequence[ListPortInfo]) -> ListPortInfo | None:
        for port in ports:
            if port.device == device:
                return port
        return None

    return _select
