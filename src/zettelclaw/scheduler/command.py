"""Subprocess runner for the OpenClaw CLI."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of one CLI invocation."""

    status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.status == 0

    def failure_detail(self, args: Sequence[str]) -> str:
        """Best available explanation for a non-zero exit."""

        stderr = self.stderr.strip()
        if stderr:
            return stderr
        stdout = self.stdout.strip()
        if stdout:
            return stdout
        return f"{' '.join(args)} exited with code {self.status}"


CommandRunner = Callable[[Sequence[str], float], CommandResult]


class CommandRunError(RuntimeError):
    """CLI invocation error with a hint whether the executable is missing."""

    def __init__(self, message: str, *, not_found: bool) -> None:
        super().__init__(message)
        self.not_found = not_found


def run_command(argv: Sequence[str], timeout_seconds: float) -> CommandResult:
    """Run ``argv`` to completion and capture text output.

    Raises ``CommandRunError`` when the process cannot be started or does not
    finish within ``timeout_seconds``; a non-zero exit is returned, not raised.
    """

    try:
        completed = subprocess.run(  # noqa: S603
            list(argv),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as error:
        raise CommandRunError(f"Command not found: {argv[0]}", not_found=True) from error
    except subprocess.TimeoutExpired as error:
        raise CommandRunError(
            f"{' '.join(argv[:3])} timed out after {timeout_seconds:.0f}s",
            not_found=False,
        ) from error
    except OSError as error:
        raise CommandRunError(f"Failed to start {argv[0]}: {error}", not_found=False) from error

    return CommandResult(
        status=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
