"""Job clients for the external agent scheduler."""

from zettelclaw.scheduler.base import (
    JobClient,
    JobError,
    JobErrorCode,
    ScheduledJob,
    SubmitOptions,
)
from zettelclaw.scheduler.memory_client import InMemoryJobClient, SubmittedJob
from zettelclaw.scheduler.models import ModelCatalog, ModelInfo, resolve_requested_model
from zettelclaw.scheduler.openclaw import OpenClawJobClient

__all__ = [
    "InMemoryJobClient",
    "JobClient",
    "JobError",
    "JobErrorCode",
    "ModelCatalog",
    "ModelInfo",
    "OpenClawJobClient",
    "ScheduledJob",
    "SubmitOptions",
    "SubmittedJob",
    "resolve_requested_model",
]
