"""MicroPython raw-REPL upload over a serial link."""

from boardlink.upload.models import (
    UploadOutcome,
    UploadPhase,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadTiming,
)
from boardlink.upload.uploader import FirmwareUploader

__all__ = [
    "FirmwareUploader",
    "UploadOutcome",
    "UploadPhase",
    "UploadProgress",
    "UploadResult",
    "UploadSession",
    "UploadTiming",
]
