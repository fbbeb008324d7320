"""Raw-REPL upload controller.

Drives the open-loop MicroPython protocol over a connected SerialManager:
interrupt the running program, enter raw mode, stream the program line by
line, execute it, and restore the normal REPL. Nothing is read back from the
device; each phase is followed by a fixed pause instead.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable

from boardlink.exceptions import (
    BoardlinkError,
    NotConnectedError,
    ProtocolAbortError,
    UnsupportedBoardError,
    UploadCancelledError,
    UploadError,
)
from boardlink.models.board import BoardFamily
from boardlink.transport.serial_manager import SerialManager
from boardlink.upload import protocol
from boardlink.upload.models import (
    UploadOutcome,
    UploadPhase,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadTiming,
)
from boardlink.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[UploadProgress], None]
CompleteCallback = Callable[[], None]
ErrorCallback = Callable[[BoardlinkError], None]


class FirmwareUploader:
    """Uploads program text to a board through a SerialManager.

    Only one upload runs per link at a time. Observers are single-slot,
    like the SerialManager ones.

    Usage:
        uploader = FirmwareUploader(manager)
        uploader.set_progress_callback(lambda p: print(p.percent, p.message))
        uploader.upload_micropython("from machine import Pin\\nPin(2, Pin.OUT).value(1)")
    """

    def __init__(
        self,
        serial_manager: SerialManager,
        timing: UploadTiming | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._manager = serial_manager
        self._timing = timing or UploadTiming()
        self._sleep = sleep

        self._progress_callback: ProgressCallback | None = None
        self._complete_callback: CompleteCallback | None = None
        self._error_callback: ErrorCallback | None = None

    @property
    def timing(self) -> UploadTiming:
        return self._timing

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        self._progress_callback = callback

    def set_complete_callback(self, callback: CompleteCallback | None) -> None:
        self._complete_callback = callback

    def set_error_callback(self, callback: ErrorCallback | None) -> None:
        self._error_callback = callback

    # --- Public operations ---

    def upload_micropython(
        self,
        program_text: str,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Push ``program_text`` into the raw REPL and run it.

        Args:
            program_text: Complete program; split on ``\\n`` for transfer.
            cancel: Optional event; when set, the upload stops before the
                next byte goes out and raises ``UploadCancelledError``.

        Raises:
            NotConnectedError: The link is not open; nothing was sent.
            UploadInProgressError: Another upload is running on this link.
            ProtocolAbortError: A phase failed after bytes were sent; the
                device may be left in raw mode.
        """
        session = UploadSession(program_text=program_text)
        self._begin(session)
        try:
            return self._run_micropython(session, cancel)
        finally:
            self._manager.end_session(session)

    def upload_binary_image(
        self,
        image: bytes,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Placeholder for boards that need a compiled firmware image.

        NOT FUNCTIONAL: only a soft reset reaches the device. The transfer
        and verify phases are fixed pauses and no image byte is written.
        The returned result has ``simulated=True``.
        """
        session = UploadSession(program_text="")
        self._begin(session)
        try:
            logger.warning(
                "binary_upload_simulated",
                image_size=len(image),
                detail="no image data is written to the device",
            )
            try:
                self._report(session, UploadPhase.START, "Starting image upload (simulated)...", 0)
                self._report(session, UploadPhase.RESET, "Resetting board...", 20)
                self.reset_board(cancel)
                self._report(
                    session,
                    UploadPhase.SIMULATED_TRANSFER,
                    "Simulating image transfer (no data sent)...",
                    40,
                )
                self._pause(self._timing.image_transfer_ms, cancel)
                self._report(session, UploadPhase.SIMULATED_VERIFY, "Simulating verification...", 80)
                self._pause(self._timing.image_verify_ms, cancel)
                session.outcome = UploadOutcome.SUCCESS
                self._report(session, UploadPhase.DONE, "Simulated upload finished", 100)
            except Exception as exc:
                error = self._fail(session, exc)
                if error is exc:
                    raise
                raise error from exc

            self._invoke(self._complete_callback)
            return session.result(simulated=True)
        finally:
            self._manager.end_session(session)

    def upload_program(
        self,
        board_family: BoardFamily,
        program_text: str,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Upload using the path that fits ``board_family``."""
        family = BoardFamily(board_family)
        if not family.runs_micropython:
            exc = UnsupportedBoardError(
                f"{family.value} boards need a compiled image; text upload is not available"
            )
            self._invoke(self._error_callback, UploadError(f"Upload failed: {exc}", cause=exc))
            raise exc
        return self.upload_micropython(program_text, cancel)

    def reset_board(self, cancel: threading.Event | None = None) -> None:
        """Soft reset by interrupting the running program. Best effort."""
        try:
            self._manager.send(protocol.INTERRUPT)
        except BoardlinkError as exc:
            logger.warning("board_reset_failed", error=str(exc))
            return
        self._pause(self._timing.reset_settle_ms, cancel)

    # --- Protocol ---

    def _run_micropython(
        self,
        session: UploadSession,
        cancel: threading.Event | None,
    ) -> UploadResult:
        timing = self._timing
        lines = protocol.split_program(session.program_text)
        total = len(lines)
        logger.info("upload_started", lines=total, size=len(session.program_text))

        try:
            self._report(session, UploadPhase.START, "Starting upload...", 0)

            self._report(session, UploadPhase.INTERRUPT, "Interrupting running program...", 10)
            self._send(session, protocol.INTERRUPT, cancel)
            self._pause(timing.interrupt_gap_ms, cancel)
            self._send(session, protocol.INTERRUPT, cancel)
            self._pause(timing.interrupt_settle_ms, cancel)

            self._report(session, UploadPhase.RAW_MODE, "Entering raw REPL...", 20)
            self._send(session, protocol.ENTER_RAW_MODE, cancel)
            self._pause(timing.raw_mode_settle_ms, cancel)

            for index, line in enumerate(lines):
                self._send(session, protocol.frame_line(line), cancel)
                session.lines_sent += 1
                self._report(
                    session,
                    UploadPhase.TRANSFER,
                    f"Sending code... ({index + 1}/{total})",
                    protocol.transfer_percent(index, total),
                )
                self._pause(timing.line_delay_ms, cancel)

            self._report(session, UploadPhase.EXECUTE, "Running code...", 85)
            self._send(session, protocol.EXECUTE, cancel)
            self._pause(timing.execute_settle_ms, cancel)

            self._report(session, UploadPhase.RESTORE, "Restoring normal REPL...", 95)
            self._send(session, protocol.EXIT_RAW_MODE, cancel)
            self._pause(timing.restore_settle_ms, cancel)

            session.outcome = UploadOutcome.SUCCESS
            self._report(session, UploadPhase.DONE, "Upload complete!", 100)
        except Exception as exc:
            error = self._fail(session, exc)
            if error is exc:
                raise
            raise error from exc

        logger.info(
            "upload_completed",
            lines=session.lines_sent,
            bytes=session.bytes_sent,
            elapsed_s=round(session.elapsed_s, 3),
        )
        self._invoke(self._complete_callback)
        return session.result()

    def _begin(self, session: UploadSession) -> None:
        try:
            if not self._manager.is_connected():
                raise NotConnectedError("Board is not connected")
            self._manager.begin_session(session)
        except BoardlinkError as exc:
            self._invoke(self._error_callback, UploadError(f"Upload failed: {exc}", cause=exc))
            raise

    def _send(
        self,
        session: UploadSession,
        data: str | bytes,
        cancel: threading.Event | None,
    ) -> None:
        self._check_cancel(cancel)
        self._manager.send(data)
        session.bytes_sent += len(data.encode("utf-8") if isinstance(data, str) else data)

    def _pause(self, ms: int, cancel: threading.Event | None) -> None:
        """Wait at least ``ms``; a set ``cancel`` aborts instead of shortening it."""
        seconds = ms / 1000
        if cancel is None:
            self._sleep(seconds)
            return
        if cancel.wait(seconds):
            raise UploadCancelledError("Upload cancelled")

    @staticmethod
    def _check_cancel(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise UploadCancelledError("Upload cancelled")

    def _report(self, session: UploadSession, phase: UploadPhase, message: str, percent: int) -> None:
        progress = session.advance(phase, message, percent)
        logger.debug("upload_progress", phase=phase.value, percent=progress.percent)
        self._invoke(self._progress_callback, progress)

    def _fail(self, session: UploadSession, exc: Exception) -> Exception:
        """Record the failure, notify the error observer once, and pick what to raise.

        Once bytes have gone out the caller gets a ``ProtocolAbortError``;
        before that the original error is raised unchanged.
        """
        cancelled = isinstance(exc, UploadCancelledError)
        session.outcome = UploadOutcome.CANCELLED if cancelled else UploadOutcome.ERROR
        message = f"Upload failed: {exc}"

        if isinstance(exc, ProtocolAbortError) or session.bytes_sent == 0:
            to_raise: Exception = exc
            reported = UploadError(message, cause=exc)
        else:
            to_raise = ProtocolAbortError(message, cause=exc)
            reported = to_raise

        logger.error(
            "upload_failed",
            phase=session.phase.value,
            percent=session.percent,
            bytes_sent=session.bytes_sent,
            error=str(exc),
        )
        self._invoke(self._error_callback, reported)
        return to_raise

    def _invoke(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("upload_callback_failed")
