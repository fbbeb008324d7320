"""Board identification from USB vendor/product identifiers."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

UNKNOWN_BOARD = "Unknown Board"


class BoardFamily(StrEnum):
    """Board families the upload path knows about."""
    ESP32 = "esp32"
    RP2040 = "rp2040"
    ARDUINO = "arduino"

    @property
    def runs_micropython(self) -> bool:
        return self in (BoardFamily.ESP32, BoardFamily.RP2040)


# Keyed by "0x%04X" vendor id, then product id
BOARD_TABLE: dict[str, dict[str, str]] = {
    # ESP32 dev boards behind USB-UART bridges
    "0x10C4": {"0xEA60": "ESP32 (CP2102)"},
    "0x1A86": {"0x7523": "ESP32 (CH340)"},
    # Arduino
    "0x2341": {
        "0x0043": "Arduino Uno",
        "0x0001": "Arduino Uno",
        "0x0010": "Arduino Mega 2560",
    },
    # RP2040
    "0x2E8A": {"0x0005": "Raspberry Pi Pico"},
}


def format_usb_id(value: int | None) -> str | None:
    """Render a USB id as an uppercase 4-digit hex string with 0x prefix."""
    if value is None:
        return None
    return f"0x{value:04X}"


def identify_board(vendor_id: int | None, product_id: int | None) -> str:
    """Return the board label for an exact (vendor, product) pair.

    An unmapped vendor, or an unmapped product under a known vendor, both
    resolve to ``UNKNOWN_BOARD``.
    """
    products = BOARD_TABLE.get(format_usb_id(vendor_id) or "")
    if products is None:
        return UNKNOWN_BOARD
    return products.get(format_usb_id(product_id) or "", UNKNOWN_BOARD)


def is_known_board(vendor_id: int | None, product_id: int | None) -> bool:
    return identify_board(vendor_id, product_id) != UNKNOWN_BOARD


class PortInfo(BaseModel):
    """USB identity of a serial port and the board behind it."""

    device: str = Field(default="", description="OS device path, e.g. /dev/ttyUSB0 or COM3")
    description: str = Field(default="", description="Port description reported by the OS")
    usb_vendor_id: int | None = Field(default=None, description="USB vendor ID")
    usb_product_id: int | None = Field(default=None, description="USB product ID")
    board_type: str = Field(default=UNKNOWN_BOARD, description="Board label from the VID/PID table")

    @classmethod
    def from_ids(
        cls,
        vendor_id: int | None,
        product_id: int | None,
        device: str = "",
        description: str = "",
    ) -> PortInfo:
        return cls(
            device=device,
            description=description,
            usb_vendor_id=vendor_id,
            usb_product_id=product_id,
            board_type=identify_board(vendor_id, product_id),
        )
