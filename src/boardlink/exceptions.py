"""Exception hierarchy for serial link and upload failures."""

from __future__ import annotations


class BoardlinkError(Exception):
    """Base exception for all boardlink errors."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class UnsupportedPlatformError(BoardlinkError):
    """The host has no usable serial port facility."""


class InvalidOptionError(BoardlinkError):
    """A serial line parameter or timing value is out of range."""


class TransportError(BoardlinkError):
    """Error in the serial transport layer."""


class NoPortSelectedError(TransportError):
    """Port selection was cancelled or matched no device."""


class PortBusyError(TransportError):
    """The device is already held open by another process."""


class NotConnectedError(TransportError):
    """The operation needs an open serial link and there is none."""


class AlreadyConnectedError(TransportError):
    """A serial link is already open on this manager."""


class SerialIOError(TransportError):
    """Read, write, open or close failed at the transport."""


class UploadError(BoardlinkError):
    """Base exception for upload operations."""


class ProtocolAbortError(UploadError):
    """An upload phase failed after bytes were already sent.

    The device state is indeterminate; it may still be in raw mode with a
    partial program buffered.
    """


class UploadCancelledError(ProtocolAbortError):
    """The upload was cancelled between or during protocol phases."""


class UploadInProgressError(UploadError):
    """Another upload is already running on the same serial link."""


class UnsupportedBoardError(UploadError):
    """The board family cannot take a text upload."""
