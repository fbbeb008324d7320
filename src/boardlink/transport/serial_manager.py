"""Serial connection manager.

Owns at most one open serial link: port selection, open/close, a background
receive thread, serialized writes, and board identification. It knows nothing
about the upload protocol.

Usage:
    manager = SerialManager(port_selector=select_by_device("/dev/ttyUSB0"))
    manager.on_receive(lambda text: print(text, end=""))
    manager.connect()
    manager.send("print('hi')\\r\\n")
    manager.disconnect()
"""

from __future__ import annotations

import codecs
import errno
import os
import threading
from typing import Any, Callable

import serial

from boardlink.exceptions import (
    AlreadyConnectedError,
    BoardlinkError,
    NoPortSelectedError,
    NotConnectedError,
    PortBusyError,
    SerialIOError,
    UnsupportedPlatformError,
    UploadInProgressError,
)
from boardlink.models.board import PortInfo
from boardlink.transport import ports
from boardlink.transport.base import LinkState, SerialLink, SerialOptions
from boardlink.transport.ports import PortLister, PortSelector
from boardlink.utils.logging import get_logger

logger = get_logger(__name__)

ReceiveCallback = Callable[[str], None]
ErrorCallback = Callable[[BaseException], None]
DisconnectCallback = Callable[[], None]
SerialFactory = Callable[..., serial.Serial]

# Poll interval for the receive thread; bounds how long a stop request waits
READ_POLL_S = 0.1
WRITE_TIMEOUT_S = 2.0
READER_JOIN_TIMEOUT_S = 2.0

_BUSY_ERRNOS = frozenset({errno.EBUSY, errno.EACCES, errno.EAGAIN})
_BUSY_MARKERS = ("access is denied", "resource busy", "exclusively lock", "in use")


def _is_busy_error(exc: BaseException) -> bool:
    """Return True if an open failure means another process holds the port."""
    if getattr(exc, "errno", None) in _BUSY_ERRNOS:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _BUSY_MARKERS)


class SerialManager:
    """Manages a single serial link to a development board.

    Observers are single-slot: registering a callback replaces the previous
    one of the same kind, and passing None clears it.
    """

    def __init__(
        self,
        port_selector: PortSelector = ports.select_known_board,
        port_lister: PortLister = ports.enumerate_ports,
        serial_factory: SerialFactory = serial.Serial,
        read_timeout: float = READ_POLL_S,
        write_timeout: float = WRITE_TIMEOUT_S,
    ) -> None:
        self._port_selector = port_selector
        self._port_lister = port_lister
        self._serial_factory = serial_factory
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._session_lock = threading.Lock()
        self._link: SerialLink | None = None
        self._session: object | None = None

        self._receive_callback: ReceiveCallback | None = None
        self._error_callback: ErrorCallback | None = None
        self._disconnect_callback: DisconnectCallback | None = None

    # --- Capability / state ---

    @staticmethod
    def is_supported() -> bool:
        """Return True if the host can open serial ports."""
        return ports.is_supported()

    def is_connected(self) -> bool:
        link = self._link
        return link is not None and link.is_open

    @property
    def link(self) -> SerialLink | None:
        return self._link

    def get_port_info(self) -> PortInfo | None:
        """Return USB identity and board label of the open port, or None."""
        link = self._link
        if link is None:
            return None
        return PortInfo.from_ids(
            link.usb_vendor_id,
            link.usb_product_id,
            device=link.device,
        )

    # --- Observers ---

    def on_receive(self, callback: ReceiveCallback | None) -> None:
        self._receive_callback = callback

    def on_error(self, callback: ErrorCallback | None) -> None:
        self._error_callback = callback

    def on_disconnect(self, callback: DisconnectCallback | None) -> None:
        self._disconnect_callback = callback

    # --- Connect / disconnect ---

    def connect(self, options: SerialOptions | None = None, **overrides: Any) -> PortInfo:
        """Select a port, open it, and start the receive thread.

        Args:
            options: Line parameters; defaults to 115200 8N1, no flow control.
            **overrides: Individual ``SerialOptions`` fields to replace.

        Returns:
            Identity of the opened port.

        Raises:
            UnsupportedPlatformError: The host cannot open serial ports.
            AlreadyConnectedError: A link is already open.
            NoPortSelectedError: The selector returned no port.
            PortBusyError: Another process holds the port.
            SerialIOError: Any other enumeration or open failure.
        """
        if not self.is_supported():
            raise self._report(
                UnsupportedPlatformError("Serial ports are not supported on this host")
            )

        merged = (options or SerialOptions()).with_overrides(**overrides)

        # observers run only after the lock is released so they may call back in
        try:
            with self._lock:
                if self._link is not None:
                    raise AlreadyConnectedError(f"Already connected to {self._link.device}")

                try:
                    candidates = list(self._port_lister())
                except (serial.SerialException, OSError) as exc:
                    raise SerialIOError(f"Port enumeration failed: {exc}", cause=exc) from exc

                chosen = self._port_selector(candidates)
                if chosen is None:
                    raise NoPortSelectedError("No serial port selected")

                logger.info(
                    "serial_connecting",
                    device=chosen.device,
                    baud_rate=merged.baud_rate,
                    candidates=len(candidates),
                )
                handle = self._open(chosen.device, merged)

                link = SerialLink(
                    handle=handle,
                    device=chosen.device,
                    options=merged,
                    usb_vendor_id=chosen.vid,
                    usb_product_id=chosen.pid,
                )
                link.state = LinkState.CONNECTED
                self._link = link
                self._start_reader(link)
                link.acquire_writer()
                info = PortInfo.from_ids(
                    link.usb_vendor_id,
                    link.usb_product_id,
                    device=link.device,
                )
        except BoardlinkError as exc:
            self._report(exc)
            raise

        logger.info("serial_connected", device=link.device, board=info.board_type)
        return info

    def disconnect(self) -> None:
        """Stop the receive thread, release resources and close the port.

        Cleanup is best effort: every release step is attempted and the
        manager always ends disconnected. A failure of the final close is
        raised as ``SerialIOError`` afterwards.
        """
        with self._lock:
            link = self._detach()
        if link is None:
            return

        logger.info("serial_disconnecting", device=link.device)
        close_error = self._close_link(link)
        self._invoke(self._disconnect_callback)

        if close_error is not None:
            raise self._report(
                SerialIOError(f"Failed to close {link.device}: {close_error}", cause=close_error)
            ) from close_error
        logger.info("serial_disconnected", device=link.device)

    def __enter__(self) -> SerialManager:
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()

    # --- Write ---

    def send(self, data: str | bytes) -> None:
        """Write ``data`` to the board in one write call.

        Text is UTF-8 encoded; control characters pass through as single
        bytes. Writes from different threads never interleave.

        Raises:
            NotConnectedError: No open link; nothing is written.
            SerialIOError: The write or flush failed.
        """
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)

        try:
            with self._write_lock:
                link = self._link
                if link is None or not link.is_open or not link.writer_held:
                    raise NotConnectedError("Board is not connected")
                try:
                    link.handle.write(payload)
                    link.handle.flush()
                except (serial.SerialException, OSError) as exc:
                    raise SerialIOError(f"Write to {link.device} failed: {exc}", cause=exc) from exc
        except BoardlinkError as exc:
            self._report(exc)
            raise

        logger.debug("serial_sent", size=len(payload), data=payload[:64])

    # --- Upload session slot ---

    def begin_session(self, session: object) -> None:
        """Claim the single upload slot for this link.

        Raises:
            UploadInProgressError: Another session holds the slot.
        """
        with self._session_lock:
            if self._session is not None:
                raise UploadInProgressError("An upload is already in progress on this link")
            self._session = session

    def end_session(self, session: object) -> None:
        with self._session_lock:
            if self._session is session:
                self._session = None

    @property
    def active_session(self) -> object | None:
        return self._session

    # --- Internals ---

    def _open(self, device: str, options: SerialOptions) -> serial.Serial:
        kwargs = options.to_serial_kwargs()
        if os.name == "posix":
            kwargs["exclusive"] = True
        try:
            return self._serial_factory(
                port=device,
                timeout=self._read_timeout,
                write_timeout=self._write_timeout,
                **kwargs,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            if _is_busy_error(exc):
                raise PortBusyError(f"Port {device} is already in use", cause=exc) from exc
            raise SerialIOError(f"Could not open {device}: {exc}", cause=exc) from exc

    def _start_reader(self, link: SerialLink) -> None:
        link.acquire_reader()
        thread = threading.Thread(
            target=self._read_loop,
            args=(link,),
            name=f"boardlink-reader-{link.device}",
            daemon=True,
        )
        link.reader_thread = thread
        thread.start()

    def _read_loop(self, link: SerialLink) -> None:
        """Deliver received chunks until stopped, closed, or a read fails."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        failure: BaseException | None = None
        try:
            while not link.stop_reading.is_set():
                try:
                    chunk = link.handle.read(max(1, link.handle.in_waiting))
                except (serial.SerialException, OSError) as exc:
                    if not link.stop_reading.is_set():
                        failure = exc
                    break
                if not chunk:
                    continue
                text = decoder.decode(chunk)
                if text:
                    logger.debug("serial_received", size=len(chunk))
                    self._invoke(self._receive_callback, text)
        finally:
            link.release_reader()

        if failure is not None:
            self._on_read_failure(link, failure)

    def _on_read_failure(self, link: SerialLink, exc: BaseException) -> None:
        logger.error("serial_read_failed", device=link.device, error=str(exc))
        self._report(SerialIOError(f"Read from {link.device} failed: {exc}", cause=exc))

        with self._lock:
            owned = self._link is link
            if owned:
                self._detach()
        if not owned:
            return

        close_error = self._close_link(link)
        if close_error is not None:
            logger.warning("serial_close_after_read_error_failed", device=link.device, error=str(close_error))
        self._invoke(self._disconnect_callback)

    def _detach(self) -> SerialLink | None:
        """Unhook the current link; caller holds ``self._lock``."""
        link = self._link
        if link is None:
            return None
        link.state = LinkState.CLOSING
        link.stop_reading.set()
        self._link = None
        return link

    def _close_link(self, link: SerialLink) -> BaseException | None:
        """Release reader, writer and port, continuing past individual failures.

        Returns the close error, if any.
        """
        try:
            link.handle.cancel_read()
        except (AttributeError, serial.SerialException, OSError) as exc:
            logger.debug("serial_cancel_read_failed", device=link.device, error=str(exc))

        thread = link.reader_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=READER_JOIN_TIMEOUT_S)
            if thread.is_alive():
                logger.warning("serial_reader_join_timeout", device=link.device)

        link.release_reader()
        link.release_writer()

        close_error: BaseException | None = None
        try:
            link.handle.close()
        except (serial.SerialException, OSError) as exc:
            close_error = exc
        link.state = LinkState.CLOSED
        return close_error

    def _report(self, exc: BoardlinkError) -> BoardlinkError:
        """Deliver ``exc`` to the error observer and hand it back for raising."""
        self._invoke(self._error_callback, exc)
        return exc

    def _invoke(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("serial_callback_failed", callback=getattr(callback, "__name__", repr(callback)))
