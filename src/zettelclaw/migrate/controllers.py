"""CLI controller for migration commands."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from pathlib import Path

from zettelclaw.config import Settings
from zettelclaw.migrate.backups import backup_workspace
from zettelclaw.migrate.models import MigratePipelineOptions, MigratePipelineResult
from zettelclaw.migrate.pipeline import PRIVATE_STATE_DIRNAME, MigratePipelineRunner
from zettelclaw.migrate.sources import build_migrate_tasks, summarize_memory
from zettelclaw.migrate.state import RunStateStore
from zettelclaw.migrate.vault import detect_vault_layout
from zettelclaw.scheduler.models import resolve_requested_model
from zettelclaw.scheduler.openclaw import OpenClawJobClient

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILENAME = "migrate-state.json"
MEMORY_DIRNAME = "memory"

_SENTINEL = object()


@dataclass(slots=True)
class MigrateRunCommand:
    """Input for ``migrate run``; unset fields fall back to environment settings."""

    workspace_path: Path | None = None
    vault_path: Path | None = None
    model: str | None = None
    state_path: Path | None = None
    parallel_jobs: int | None = None
    extraction_schema: str | None = None
    verbose: bool = False


@dataclass(slots=True)
class MigrateStatusCommand:
    """Input for ``migrate status``."""

    workspace_path: Path | None = None
    state_path: Path | None = None


class MigrateCliController:
    """CLI controller for memory migration."""

    def run(self, command: MigrateRunCommand) -> Iterator[str]:
        """Run the migration pipeline, yielding progress lines as they happen.

        The vault layout is checked and the workspace memory is backed up
        before any job is scheduled. Pipeline and configuration errors are
        re-raised after the progress emitted so far has been yielded.
        """

        settings = _apply_overrides(Settings.from_env(), command)
        settings.validate_for_migrate()
        if settings.vault_path is None:
            raise ValueError("Vault path is required: pass --vault or set ZETTELCLAW_VAULT_PATH.")
        layout = detect_vault_layout(
            settings.vault_path,
            notes_folder=settings.migrate.notes_folder,
            journal_folder=settings.migrate.journal_folder,
        )

        workspace_path = settings.workspace_path
        memory_path = workspace_path / MEMORY_DIRNAME
        state_path = command.state_path or default_state_path(workspace_path)
        summary = summarize_memory(memory_path)

        yield f"Workspace: {workspace_path}"
        yield (
            f"Vault: {settings.vault_path} "
            f"(notes: {layout.notes_folder}, journal: {layout.journal_folder})"
        )
        if not summary.files:
            yield f"No memory files found in {memory_path}; nothing to migrate."
            return
        yield (
            f"Found {len(summary.files)} memory files "
            f"({len(summary.daily_files)} daily, {len(summary.other_files)} other; "
            f"dates {summary.date_range})"
        )

        lines: queue.Queue[str | object] = queue.Queue()
        started_at = time.monotonic()

        def on_debug(message: str) -> None:
            if command.verbose:
                elapsed_ms = (time.monotonic() - started_at) * 1000
                lines.put(f"[verbose +{format_elapsed_ms(elapsed_ms)}] {message}")

        yield backup_workspace(workspace_path, memory_path, on_debug=on_debug).describe()

        job_client = _build_job_client(settings, on_debug)
        model = ""
        if settings.model:
            selected = resolve_requested_model(job_client.list_models(), settings.model)
            model = selected.key
            yield f"Using model: {selected.display_name}"

        options = MigratePipelineOptions(
            workspace_path=workspace_path,
            memory_path=memory_path,
            vault_path=settings.vault_path,
            notes_folder=layout.notes_folder,
            journal_folder=layout.journal_folder,
            model=model,
            state_path=state_path,
            tasks=build_migrate_tasks(summary.files),
            parallel_jobs=settings.migrate.parallel_jobs,
            extraction_schema=settings.migrate.extraction_schema,
            on_progress=lines.put,
            on_debug=on_debug,
        )
        runner = MigratePipelineRunner(job_client, settings.migrate)
        result_holder: list[MigratePipelineResult] = []
        error_holder: list[Exception] = []

        def _run() -> None:
            try:
                result_holder.append(runner.run(options))
            except Exception as exc:  # noqa: BLE001
                error_holder.append(exc)
            finally:
                lines.put(_SENTINEL)

        worker_thread = threading.Thread(target=_run, daemon=True, name="migrate-pipeline")
        worker_thread.start()
        while True:
            item = lines.get()
            if item is _SENTINEL:
                break
            yield str(item)
        worker_thread.join(timeout=10)

        if error_holder:
            raise error_holder[0]
        if result_holder:
            yield from _format_run_result(result_holder[0])

    def status(self, command: MigrateStatusCommand) -> list[str]:
        """Describe the saved run state without touching it."""

        settings = Settings.from_env()
        workspace_path = command.workspace_path or settings.workspace_path
        state_path = command.state_path or default_state_path(workspace_path)
        state = RunStateStore(state_path).read_existing()
        if state is None:
            return [f"No migration state found at {state_path}"]

        return [
            f"State: {state_path}",
            f"Run key: {state.run_key[:12]}",
            f"Workspace: {state.workspace_path}",
            f"Vault: {state.vault_path}",
            f"Model: {state.model or 'default'}",
            f"Completed tasks: {len(state.completed)}",
            f"Final synthesis: {'done' if state.final_synthesis_completed else 'pending'}",
            f"Cleanup: {'done' if state.cleanup_completed else 'pending'}",
            f"Created: {state.created_at}",
            f"Updated: {state.updated_at}",
        ]


def default_state_path(workspace_path: Path) -> Path:
    return workspace_path / PRIVATE_STATE_DIRNAME / DEFAULT_STATE_FILENAME


def format_elapsed_ms(value: float) -> str:
    """Compact elapsed time: ``850ms``, ``1.5s``, ``2m3.0s``."""

    if value < 0:
        return "0ms"
    if value < 1_000:
        return f"{int(value)}ms"
    seconds = value / 1_000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m{seconds - minutes * 60:.1f}s"


def _build_job_client(settings: Settings, on_debug: Callable[[str], None]) -> OpenClawJobClient:
    return OpenClawJobClient(
        executable=settings.scheduler.openclaw_executable,
        poll_interval_seconds=settings.migrate.poll_interval_seconds,
        command_timeout_seconds=settings.scheduler.command_timeout_seconds,
        poll_command_timeout_seconds=settings.scheduler.poll_command_timeout_seconds,
        on_debug=on_debug,
    )


def _apply_overrides(settings: Settings, command: MigrateRunCommand) -> Settings:
    migrate = settings.migrate
    if command.parallel_jobs is not None:
        migrate = replace(migrate, parallel_jobs=command.parallel_jobs)
    if command.extraction_schema is not None:
        migrate = replace(migrate, extraction_schema=command.extraction_schema.strip().lower())
    return replace(
        settings,
        workspace_path=(command.workspace_path or settings.workspace_path).expanduser(),
        vault_path=command.vault_path.expanduser() if command.vault_path else settings.vault_path,
        model=command.model or settings.model,
        migrate=migrate,
    )


def _format_run_result(result: MigratePipelineResult) -> Iterator[str]:
    yield (
        "Migration finished: "
        f"total={result.total_tasks} processed={result.processed_tasks} "
        f"skipped={result.skipped_tasks} failed={result.failed_tasks}"
    )
    if result.failed_task_errors:
        yield "Failed files:"
        for error in result.failed_task_errors:
            yield f"  - {error}"
    if result.final_synthesis_summary:
        yield f"Final synthesis: {result.final_synthesis_summary.strip()}"
    if result.cleanup_performed:
        yield "Memory directory cleared."
    else:
        yield "Memory directory kept; re-run the migration to retry failed files."
    yield f"State: {result.state_path}"
