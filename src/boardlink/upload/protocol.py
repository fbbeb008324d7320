"""MicroPython REPL control bytes and program framing.

Reference: MicroPython docs, "The MicroPython Interactive Interpreter Mode
(aka REPL)", raw mode section.
"""

from __future__ import annotations

import math

# Ctrl-C: interrupt the running program
INTERRUPT = b"\x03"

# Ctrl-A: enter raw REPL, source is buffered without echo
ENTER_RAW_MODE = b"\x01"

# Ctrl-D: in raw mode, execute the buffered source
EXECUTE = b"\x04"

# Ctrl-B: leave raw mode, back to the friendly REPL
EXIT_RAW_MODE = b"\x02"

LINE_TERMINATOR = "\n"


def split_program(program_text: str) -> list[str]:
    """Split program text into the lines sent during transfer.

    Only ``\\n`` separates lines; an empty program has no lines.
    """
    if not program_text:
        return []
    return program_text.split(LINE_TERMINATOR)


def frame_line(line: str) -> str:
    return line + LINE_TERMINATOR


def transfer_percent(index: int, total: int) -> int:
    """Progress for line ``index`` (0-based) of ``total``, in [30, 80).

    Computed in floating point, so a few pairs land one below the exact
    integer quotient, e.g. (29, 50) gives 58.
    """
    return 30 + math.floor(index / total * 50)
