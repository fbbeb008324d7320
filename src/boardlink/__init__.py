"""boardlink - push generated MicroPython programs onto a board over serial."""

__version__ = "0.1.0"
