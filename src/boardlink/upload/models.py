"""Upload session state, progress events and protocol timing."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields
from enum import StrEnum

from pydantic import BaseModel, Field

from boardlink.exceptions import InvalidOptionError


class UploadPhase(StrEnum):
    """Protocol phases, in the order they run."""
    START = "start"
    INTERRUPT = "interrupt"
    RAW_MODE = "raw_mode"
    TRANSFER = "transfer"
    EXECUTE = "execute"
    RESTORE = "restore"
    DONE = "done"
    # binary image placeholder path
    RESET = "reset"
    SIMULATED_TRANSFER = "simulated_transfer"
    SIMULATED_VERIFY = "simulated_verify"


class UploadOutcome(StrEnum):
    """Terminal outcome of an upload session."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class UploadProgress(BaseModel):
    """A single progress event."""

    phase: UploadPhase
    message: str
    percent: int = Field(ge=0, le=100)


class UploadResult(BaseModel):
    """Summary returned by a finished upload."""

    outcome: UploadOutcome
    lines_sent: int = 0
    bytes_sent: int = 0
    simulated: bool = Field(
        default=False,
        description="True when no data actually reached the device",
    )
    elapsed_s: float = 0.0


@dataclass(frozen=True)
class UploadTiming:
    """Fixed pauses of the open-loop protocol, in milliseconds.

    The device never acknowledges a phase, so each pause is the minimum time
    allowed before the next control byte goes out.
    """

    interrupt_gap_ms: int = 100
    interrupt_settle_ms: int = 500
    raw_mode_settle_ms: int = 300
    line_delay_ms: int = 50
    execute_settle_ms: int = 500
    restore_settle_ms: int = 300
    reset_settle_ms: int = 100
    image_transfer_ms: int = 2000
    image_verify_ms: int = 1000

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value < 0:
                raise InvalidOptionError(f"{f.name} must be >= 0, got {value}")

    @classmethod
    def immediate(cls) -> UploadTiming:
        """All pauses zero; for simulators and tests."""
        return cls(**{f.name: 0 for f in fields(cls)})


@dataclass
class UploadSession:
    """State of one in-flight upload; discarded once it finishes."""

    program_text: str
    phase: UploadPhase = UploadPhase.START
    percent: int = 0
    message: str = ""
    outcome: UploadOutcome = UploadOutcome.PENDING
    lines_sent: int = 0
    bytes_sent: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, phase: UploadPhase, message: str, percent: int) -> UploadProgress:
        """Move to ``phase``; percent never goes backwards within a session."""
        self.phase = phase
        self.message = message
        self.percent = max(self.percent, percent)
        return UploadProgress(phase=phase, message=message, percent=self.percent)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at

    def result(self, simulated: bool = False) -> UploadResult:
        return UploadResult(
            outcome=self.outcome,
            lines_sent=self.lines_sent,
            bytes_sent=self.bytes_sent,
            simulated=simulated,
            elapsed_s=round(self.elapsed_s, 3),
        )
