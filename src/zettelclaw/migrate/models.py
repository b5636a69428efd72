"""Domain models for memory migration runs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

RUN_STATE_VERSION = 2


class MigrateTaskKind(str, Enum):
    """Source file flavour; selects the task prompt template."""

    DAILY = "daily"
    OTHER = "other"


class PipelineStage(str, Enum):
    """Stages of one pipeline invocation."""

    LOADING = "loading"
    DISPATCHING = "dispatching"
    SYNTHESIZING = "synthesizing"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class MigrateTask:
    """One memory file to migrate."""

    id: str
    relative_path: str
    basename: str
    source_path: Path
    kind: MigrateTaskKind


@dataclass(slots=True)
class MigrateExtraction:
    """Structured record parsed from one job summary."""

    summary: str
    status: str = "ok"
    source_file: str | None = None
    created_wikilinks: list[str] = field(default_factory=list)
    created_notes: list[str] = field(default_factory=list)
    updated_notes: list[str] = field(default_factory=list)
    journal_days_touched: list[str] = field(default_factory=list)
    deleted_source: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"summary": self.summary, "status": self.status}
        if self.source_file is not None:
            payload["source_file"] = self.source_file
        for key in ("created_wikilinks", "created_notes", "updated_notes", "journal_days_touched"):
            values = getattr(self, key)
            if values:
                payload[key] = list(values)
        if self.deleted_source:
            payload["deleted_source"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> MigrateExtraction | None:
        """Rebuild from stored JSON; returns ``None`` for malformed entries."""

        if not isinstance(payload, dict):
            return None
        summary = payload.get("summary")
        if not isinstance(summary, str):
            return None
        source_file = payload.get("source_file")
        return cls(
            summary=summary,
            status="error" if payload.get("status") == "error" else "ok",
            source_file=source_file if isinstance(source_file, str) else None,
            created_wikilinks=_string_list(payload.get("created_wikilinks")),
            created_notes=_string_list(payload.get("created_notes")),
            updated_notes=_string_list(payload.get("updated_notes")),
            journal_days_touched=_string_list(payload.get("journal_days_touched")),
            deleted_source=payload.get("deleted_source") is True,
        )


@dataclass(slots=True)
class StoredTaskResult:
    """Completed task record kept in the run state."""

    task_id: str
    relative_path: str
    extraction: MigrateExtraction
    completed_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "relative_path": self.relative_path,
            "extraction": self.extraction.to_dict(),
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> StoredTaskResult | None:
        if not isinstance(payload, dict):
            return None
        task_id = payload.get("task_id")
        relative_path = payload.get("relative_path")
        completed_at = payload.get("completed_at")
        if not (
            isinstance(task_id, str)
            and isinstance(relative_path, str)
            and isinstance(completed_at, str)
        ):
            return None
        extraction = MigrateExtraction.from_dict(payload.get("extraction"))
        if extraction is None:
            return None
        return cls(
            task_id=task_id,
            relative_path=relative_path,
            extraction=extraction,
            completed_at=completed_at,
        )


@dataclass(slots=True)
class MigrateRunState:
    """Persisted, resumable progress of one migration run."""

    run_key: str
    workspace_path: str
    vault_path: str
    model: str
    created_at: str
    updated_at: str
    completed: dict[str, StoredTaskResult] = field(default_factory=dict)
    final_synthesis_completed: bool = False
    final_synthesis_summary: str | None = None
    cleanup_completed: bool = False
    version: int = RUN_STATE_VERSION

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": self.version,
            "run_key": self.run_key,
            "workspace_path": self.workspace_path,
            "vault_path": self.vault_path,
            "model": self.model,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed": {key: value.to_dict() for key, value in self.completed.items()},
            "final_synthesis_completed": self.final_synthesis_completed,
            "cleanup_completed": self.cleanup_completed,
        }
        if self.final_synthesis_summary is not None:
            payload["final_synthesis_summary"] = self.final_synthesis_summary
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> MigrateRunState | None:
        """Parse a stored document; ``None`` when it is unusable as a whole.

        Individual malformed completed entries are dropped rather than
        invalidating the document.
        """

        if not isinstance(payload, dict) or payload.get("version") != RUN_STATE_VERSION:
            return None
        text_fields = ("run_key", "workspace_path", "vault_path", "model", "created_at", "updated_at")
        if not all(isinstance(payload.get(name), str) for name in text_fields):
            return None
        completed_raw = payload.get("completed")
        if not isinstance(completed_raw, dict):
            return None

        completed: dict[str, StoredTaskResult] = {}
        for key, entry in completed_raw.items():
            parsed = StoredTaskResult.from_dict(entry)
            if parsed is not None:
                completed[str(key)] = parsed

        summary = payload.get("final_synthesis_summary")
        return cls(
            run_key=payload["run_key"],
            workspace_path=payload["workspace_path"],
            vault_path=payload["vault_path"],
            model=payload["model"],
            created_at=payload["created_at"],
            updated_at=payload["updated_at"],
            completed=completed,
            final_synthesis_completed=payload.get("final_synthesis_completed") is True,
            final_synthesis_summary=summary if isinstance(summary, str) else None,
            cleanup_completed=payload.get("cleanup_completed") is True,
        )


@dataclass(slots=True)
class MigratePipelineOptions:
    """Inputs of one pipeline invocation."""

    workspace_path: Path
    memory_path: Path
    vault_path: Path
    model: str
    state_path: Path
    tasks: list[MigrateTask]
    notes_folder: str = "01 Notes"
    journal_folder: str = "03 Journal"
    parallel_jobs: int | None = None
    extraction_schema: str = "minimal"
    on_progress: Callable[[str], None] | None = None
    on_debug: Callable[[str], None] | None = None


@dataclass(slots=True)
class MigratePipelineResult:
    """Aggregated outcome returned by the pipeline."""

    total_tasks: int
    processed_tasks: int
    skipped_tasks: int
    failed_tasks: int
    failed_task_errors: list[str]
    final_synthesis_summary: str
    state_path: Path
    cleanup_performed: bool
    completed_results: list[StoredTaskResult]
    stage: PipelineStage = PipelineStage.DONE


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, str)]
