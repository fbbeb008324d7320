"""Serial transport layer: line options, port selection, connection manager."""

from boardlink.transport.base import (
    FlowControl,
    LinkState,
    Parity,
    SerialLink,
    SerialOptions,
)
from boardlink.transport.ports import (
    is_supported,
    list_ports,
    select_by_device,
    select_first,
    select_known_board,
)
from boardlink.transport.serial_manager import SerialManager

__all__ = [
    "FlowControl",
    "LinkState",
    "Parity",
    "SerialLink",
    "SerialManager",
    "SerialOptions",
    "is_supported",
    "list_ports",
    "select_by_device",
    "select_first",
    "select_known_board",
]
