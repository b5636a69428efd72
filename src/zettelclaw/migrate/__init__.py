"""Migration of legacy OpenClaw memory files into a Zettelclaw vault."""

from zettelclaw.migrate.extraction import ExtractionParseError, ExtractionSchema, parse_extraction
from zettelclaw.migrate.models import (
    MigrateExtraction,
    MigratePipelineOptions,
    MigratePipelineResult,
    MigrateRunState,
    MigrateTask,
    MigrateTaskKind,
    PipelineStage,
    StoredTaskResult,
)
from zettelclaw.migrate.pipeline import MigratePipelineError, MigratePipelineRunner
from zettelclaw.migrate.state import RunStateStore, build_run_key

__all__ = [
    "ExtractionParseError",
    "ExtractionSchema",
    "MigrateExtraction",
    "MigratePipelineError",
    "MigratePipelineOptions",
    "MigratePipelineResult",
    "MigratePipelineRunner",
    "MigrateRunState",
    "MigrateTask",
    "MigrateTaskKind",
    "PipelineStage",
    "RunStateStore",
    "StoredTaskResult",
    "build_run_key",
    "parse_extraction",
]
