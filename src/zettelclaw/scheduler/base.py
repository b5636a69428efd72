"""Job client interface for the external agent scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class JobErrorCode(str, Enum):
    """Failure kinds surfaced by job clients."""

    CLI_NOT_FOUND = "CLI_NOT_FOUND"
    COMMAND_FAILED = "COMMAND_FAILED"
    INVALID_JSON = "INVALID_JSON"
    SCHEDULING_FAILED = "SCHEDULING_FAILED"
    JOB_FAILED = "JOB_FAILED"
    TIMEOUT = "TIMEOUT"


class JobError(RuntimeError):
    """Scheduler error with a stable code and optional diagnostic details."""

    def __init__(self, code: JobErrorCode, message: str, details: str | None = None) -> None:
        super().__init__(f"[{code.value}] {message}")
        self.code = code
        self.details = details

    def describe(self) -> str:
        """Render the message with details appended, for task error lists."""

        if self.details and self.details.strip():
            return f"{self} ({self.details.strip()})"
        return str(self)


@dataclass(slots=True)
class SubmitOptions:
    """Scheduling parameters for one agent job."""

    session_name: str
    model: str | None = None
    session_target: str = "isolated"
    timeout_seconds: int = 1_800
    delete_after_run: bool = False
    announce: bool = False


@dataclass(slots=True)
class ScheduledJob:
    """Identifier of a submitted job and the transport that accepted it."""

    job_id: str
    mode: str


class JobClient(Protocol):
    """Protocol implemented by scheduler clients."""

    def submit(self, payload: str, options: SubmitOptions) -> ScheduledJob:
        """Schedule an agent run of ``payload`` and return its job id."""

    def await_completion(self, job_id: str, timeout_seconds: float) -> str:
        """Block until the job finishes and return its free-text summary."""

    def remove(self, job_id: str) -> None:
        """Delete the job, ignoring every error."""
