"""Pydantic data models for boardlink."""

from boardlink.models.board import (
    BOARD_TABLE,
    UNKNOWN_BOARD,
    BoardFamily,
    PortInfo,
    identify_board,
)

__all__ = [
    "BOARD_TABLE",
    "BoardFamily",
    "PortInfo",
    "UNKNOWN_BOARD",
    "identify_board",
]
