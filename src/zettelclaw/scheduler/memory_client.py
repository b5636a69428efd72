"""In-process job client that resolves jobs through a Python callable."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from zettelclaw.scheduler.base import ScheduledJob, SubmitOptions
from zettelclaw.scheduler.models import ModelInfo


@dataclass(slots=True)
class SubmittedJob:
    """One job recorded by ``InMemoryJobClient``."""

    job_id: str
    payload: str
    options: SubmitOptions


JobHandler = Callable[[SubmittedJob], str]


class InMemoryJobClient:
    """Job client double: ``await_completion`` returns whatever the handler returns.

    The handler runs on the awaiting thread and may raise ``JobError`` to
    simulate scheduler failures. Submissions and removals are recorded in
    order for assertions.
    """

    def __init__(self, handler: JobHandler, *, models: Sequence[ModelInfo] = ()) -> None:
        self._handler = handler
        self.models = list(models)
        self._lock = threading.Lock()
        self._counter = 0
        self._jobs: dict[str, SubmittedJob] = {}
        self.submitted: list[SubmittedJob] = []
        self.removed: list[str] = []

    def submit(self, payload: str, options: SubmitOptions) -> ScheduledJob:
        with self._lock:
            self._counter += 1
            job = SubmittedJob(job_id=f"job-{self._counter}", payload=payload, options=options)
            self._jobs[job.job_id] = job
            self.submitted.append(job)
        return ScheduledJob(job_id=job.job_id, mode="memory")

    def await_completion(self, job_id: str, timeout_seconds: float) -> str:  # noqa: ARG002
        with self._lock:
            job = self._jobs[job_id]
        return self._handler(job)

    def remove(self, job_id: str) -> None:
        with self._lock:
            self.removed.append(job_id)

    def submissions_for(self, session_name: str) -> list[SubmittedJob]:
        with self._lock:
            return [job for job in self.submitted if job.options.session_name == session_name]

    def list_models(self) -> list[ModelInfo]:
        return list(self.models)
