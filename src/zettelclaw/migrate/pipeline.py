"""Migration pipeline: dispatch per-file jobs, synthesize, then clear the memory store."""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from zettelclaw.config import MigrateSettings
from zettelclaw.migrate.extraction import parse_extraction
from zettelclaw.migrate.models import (
    MigrateExtraction,
    MigratePipelineOptions,
    MigratePipelineResult,
    MigrateTask,
    PipelineStage,
    StoredTaskResult,
)
from zettelclaw.migrate.prompts import (
    SYNTHESIS_SESSION_NAME,
    TASK_SESSION_NAME,
    build_synthesis_prompt,
    build_task_prompt,
    normalize_wikilink_token,
    unique_strings,
    wikilink_title_from_token,
)
from zettelclaw.migrate.state import RunStateStore, build_run_key, utc_now_iso
from zettelclaw.scheduler.base import JobClient, JobError, JobErrorCode, SubmitOptions
from zettelclaw.scheduler.failure_classifier import find_synthesis_conflict

logger = logging.getLogger(__name__)

PRIVATE_STATE_DIRNAME = ".zettelclaw"
FALLBACK_SYNTHESIS_FILENAME = "final-synthesis-fallback.md"
REQUIRED_SYNTHESIS_FILES = ("MEMORY.md", "USER.md")


class MigratePipelineError(RuntimeError):
    """Pipeline-level failure that aborts the whole run."""

    def __init__(self, stage: PipelineStage, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class TaskMigrationError(RuntimeError):
    """One task's job finished but its outcome is not acceptable."""


class WikilinkIndex:
    """Known note titles shared by all workers; readers may see a slightly stale view."""

    def __init__(self, titles: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._titles: dict[str, str] = {}
        self.add_titles(titles)

    def add_titles(self, titles: Iterable[str]) -> None:
        with self._lock:
            for title in unique_strings(titles):
                self._titles.setdefault(title.lower(), title)

    def merge_extraction(self, extraction: MigrateExtraction) -> None:
        titles: list[str] = []
        for token in extraction.created_wikilinks:
            title = wikilink_title_from_token(token)
            if title:
                titles.append(title)
        for note_path in [*extraction.created_notes, *extraction.updated_notes]:
            normalized = normalize_wikilink_token(note_path)
            title = wikilink_title_from_token(normalized) if normalized else None
            if title:
                titles.append(title)
        self.add_titles(titles)

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._titles.values(), key=str.lower)


@dataclass(slots=True)
class _DispatchProgress:
    """Counters shared by the worker threads of one dispatch round."""

    pending: list[MigrateTask]
    skipped: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    cursor: int = 0
    active: int = 0
    settled: int = 0
    processed: int = 0
    failures: list[str] = field(default_factory=list)
    fatal_error: JobError | None = None

    def claim(self) -> MigrateTask | None:
        with self.lock:
            if self.fatal_error is not None or self.cursor >= len(self.pending):
                return None
            task = self.pending[self.cursor]
            self.cursor += 1
            self.active += 1
            return task

    def settle(self, *, error: str | None = None) -> str:
        with self.lock:
            self.active -= 1
            self.settled += 1
            if error is None:
                self.processed += 1
            else:
                self.failures.append(error)
            return self.format_line()

    def format_line(self) -> str:
        return (
            f"Progress: {self.settled}/{len(self.pending)} files complete "
            f"({len(self.failures)} failed, {self.active} active, {self.skipped} skipped)"
        )


class MigratePipelineRunner:
    """Run the memory migration pipeline against a job client.

    Stages: load the resumable run state, fan pending tasks out over worker
    threads, run one cross-task synthesis job, then clear the memory
    directory. Completed tasks are persisted as they finish so an aborted
    run can be resumed with the same inputs.
    """

    def __init__(self, job_client: JobClient, settings: MigrateSettings | None = None) -> None:
        self._job_client = job_client
        self._settings = settings or MigrateSettings()
        self.stage = PipelineStage.LOADING

    def run(self, options: MigratePipelineOptions) -> MigratePipelineResult:
        """Execute every stage; raises on pipeline-level failure with the state left resumable."""

        self.stage = PipelineStage.LOADING
        try:
            result = self._run(options)
        except Exception:
            logger.error("Migration pipeline failed during %s stage", self.stage.value)
            self.stage = PipelineStage.FAILED
            raise
        self.stage = PipelineStage.DONE
        return result

    def _run(self, options: MigratePipelineOptions) -> MigratePipelineResult:  # noqa: C901
        emit = _make_emitter(options.on_progress)
        debug = _make_emitter(options.on_debug, level=logging.DEBUG)
        tasks = list(options.tasks)

        run_key = build_run_key(
            workspace_path=str(options.workspace_path),
            vault_path=str(options.vault_path),
            model=options.model,
            task_ids=[task.id for task in tasks],
        )
        identity = {
            "run_key": run_key,
            "workspace_path": str(options.workspace_path),
            "vault_path": str(options.vault_path),
            "model": options.model,
        }
        store = RunStateStore(options.state_path)
        state = store.load(**identity)
        if state.cleanup_completed and tasks:
            logger.info("Previous run already cleaned up; starting a fresh run in %s", store.path)
            store.reset(**identity)

        index = WikilinkIndex(_list_note_titles(options.vault_path / options.notes_folder))
        for stored in store.state.completed.values():
            index.merge_extraction(stored.extraction)

        pending = [task for task in tasks if not store.is_completed(task.id)]
        progress = _DispatchProgress(pending=pending, skipped=len(tasks) - len(pending))
        debug(
            f"Loaded run {run_key[:12]}: {len(tasks)} tasks, {len(pending)} pending, "
            f"{progress.skipped} already migrated",
        )

        self.stage = PipelineStage.DISPATCHING
        if pending:
            self._dispatch(
                options=options,
                store=store,
                index=index,
                progress=progress,
                emit=emit,
                debug=debug,
            )
            store.save()
            if progress.fatal_error is not None:
                raise progress.fatal_error
            if progress.processed and store.state.final_synthesis_completed:
                debug(
                    f"{progress.processed} task(s) completed since the last synthesis; "
                    "running it again",
                )
                store.clear_final_synthesis()

        completed_results = store.completed_results(tasks)
        if not completed_results:
            raise MigratePipelineError(
                PipelineStage.DISPATCHING,
                "Migration produced no successful task results "
                f"({len(progress.failures)} failed); nothing to synthesize.",
            )

        self.stage = PipelineStage.SYNTHESIZING
        if not store.state.final_synthesis_completed:
            emit("Running final MEMORY.md/USER.md synthesis")
            summary = self._run_final_synthesis(
                options=options,
                completed_results=completed_results,
                debug=debug,
            )
            missing = [
                str(options.workspace_path / name)
                for name in REQUIRED_SYNTHESIS_FILES
                if not (options.workspace_path / name).exists()
            ]
            if missing:
                raise MigratePipelineError(
                    PipelineStage.SYNTHESIZING,
                    f"Final synthesis did not produce required file updates: {', '.join(missing)}",
                )
            store.mark_final_synthesis(summary)

        self.stage = PipelineStage.CLEANING
        if progress.failures:
            logger.warning(
                "Skipping memory cleanup: %d task(s) failed in this run",
                len(progress.failures),
            )
        elif not store.state.cleanup_completed:
            emit("Clearing migrated workspace memory directory")
            _clear_memory_directory(options.memory_path)
            store.mark_cleanup()

        final_state = store.state
        return MigratePipelineResult(
            total_tasks=len(tasks),
            processed_tasks=progress.processed,
            skipped_tasks=progress.skipped,
            failed_tasks=len(progress.failures),
            failed_task_errors=list(progress.failures),
            final_synthesis_summary=final_state.final_synthesis_summary or "",
            state_path=options.state_path,
            cleanup_performed=final_state.cleanup_completed,
            completed_results=store.completed_results(tasks),
            stage=PipelineStage.DONE,
        )

    # -- dispatch -------------------------------------------------------------

    def _dispatch(
        self,
        *,
        options: MigratePipelineOptions,
        store: RunStateStore,
        index: WikilinkIndex,
        progress: _DispatchProgress,
        emit: Callable[[str], None],
        debug: Callable[[str], None],
    ) -> None:
        worker_count = resolve_parallel_jobs(options.parallel_jobs, len(progress.pending))
        emit(progress.format_line())

        def worker() -> None:
            while True:
                task = progress.claim()
                if task is None:
                    return
                error_line: str | None = None
                try:
                    extraction = self._migrate_task(task, options=options, index=index)
                    store.record_completion(
                        StoredTaskResult(
                            task_id=task.id,
                            relative_path=task.relative_path,
                            extraction=extraction,
                            completed_at=utc_now_iso(),
                        ),
                    )
                    index.merge_extraction(extraction)
                except JobError as error:
                    if error.code == JobErrorCode.CLI_NOT_FOUND:
                        with progress.lock:
                            first_fatal = progress.fatal_error is None
                            progress.fatal_error = progress.fatal_error or error
                            in_flight = progress.active - 1
                        if first_fatal:
                            debug(
                                f"{error}; no further tasks will start, "
                                f"waiting for {in_flight} in-flight task(s) to finish",
                            )
                    error_line = f"{task.relative_path}: {error.describe()}"
                except Exception as error:  # noqa: BLE001
                    error_line = f"{task.relative_path}: {error}"
                if error_line is not None:
                    logger.warning("Task failed: %s", error_line)
                emit(progress.settle(error=error_line))

        threads = [
            threading.Thread(target=worker, name=f"migrate-worker-{number}", daemon=True)
            for number in range(1, worker_count + 1)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def _migrate_task(
        self,
        task: MigrateTask,
        *,
        options: MigratePipelineOptions,
        index: WikilinkIndex,
    ) -> MigrateExtraction:
        prompt = build_task_prompt(
            task,
            workspace_path=options.workspace_path,
            vault_path=options.vault_path,
            notes_folder=options.notes_folder,
            journal_folder=options.journal_folder,
            wikilink_titles=index.snapshot(),
            extraction_schema=options.extraction_schema,
            wikilink_index_cap=self._settings.wikilink_index_cap,
        )
        summary = self._submit_and_wait(prompt, session_name=TASK_SESSION_NAME, model=options.model)
        extraction = parse_extraction(summary, task, options.extraction_schema)

        if extraction.status == "error":
            raise TaskMigrationError(extraction.summary or "Sub-agent reported error status.")
        if task.source_path.exists():
            raise TaskMigrationError(f"Source file was not deleted: {task.relative_path}")
        return extraction

    def _submit_and_wait(self, payload: str, *, session_name: str, model: str) -> str:
        scheduled = self._job_client.submit(
            payload,
            SubmitOptions(
                session_name=session_name,
                model=model or None,
                timeout_seconds=self._settings.task_timeout_seconds,
            ),
        )
        try:
            return self._job_client.await_completion(
                scheduled.job_id,
                self._settings.wait_timeout_seconds,
            )
        finally:
            self._job_client.remove(scheduled.job_id)

    # -- synthesis ------------------------------------------------------------

    def _run_final_synthesis(
        self,
        *,
        options: MigratePipelineOptions,
        completed_results: Sequence[StoredTaskResult],
        debug: Callable[[str], None],
    ) -> str:
        prompt = build_synthesis_prompt(
            workspace_path=options.workspace_path,
            vault_path=options.vault_path,
            notes_folder=options.notes_folder,
            journal_folder=options.journal_folder,
            model=options.model,
            completed_results=completed_results,
            summaries_max_chars=self._settings.summaries_max_chars,
        )
        attempts = max(1, self._settings.synthesis_attempts)
        summary = ""
        conflict: str | None = None

        for attempt in range(1, attempts + 1):
            try:
                summary = self._submit_and_wait(
                    prompt,
                    session_name=SYNTHESIS_SESSION_NAME,
                    model=options.model,
                )
            except JobError as error:
                raise MigratePipelineError(
                    PipelineStage.SYNTHESIZING,
                    f"Final synthesis failed: {error.describe()}",
                ) from error
            conflict = find_synthesis_conflict(summary)
            if conflict is None:
                return summary
            logger.warning(
                "Final synthesis attempt %d/%d hit an edit conflict: %s",
                attempt,
                attempts,
                conflict,
            )
            debug(f"Final synthesis attempt {attempt}/{attempts} reported: {conflict}")

        fallback_path = options.workspace_path / PRIVATE_STATE_DIRNAME / FALLBACK_SYNTHESIS_FILENAME
        fallback_path.parent.mkdir(parents=True, exist_ok=True)
        fallback_path.write_text(summary, encoding="utf-8")
        raise MigratePipelineError(
            PipelineStage.SYNTHESIZING,
            f"Final synthesis could not apply its edits after {attempts} attempts ({conflict}). "
            f"Saved fallback summary to {fallback_path}; review it and update MEMORY.md and "
            "USER.md manually, then re-run the migration.",
        )


def resolve_parallel_jobs(value: int | None, pending_count: int) -> int:
    """Worker count: the configured parallelism bounded to ``[1, pending_count]``."""

    if pending_count <= 0 or value is None:
        return 1
    return max(1, min(int(value), pending_count))


def _make_emitter(
    sink: Callable[[str], None] | None,
    *,
    level: int = logging.INFO,
) -> Callable[[str], None]:
    def emit(message: str) -> None:
        logger.log(level, message)
        if sink is not None:
            sink(message)

    return emit


def _list_note_titles(notes_path: Path) -> list[str]:
    if not notes_path.is_dir():
        return []
    titles = [
        path.stem
        for path in sorted(notes_path.rglob("*"))
        if path.is_file() and path.suffix.lower() == ".md"
    ]
    return unique_strings(titles)


def _clear_memory_directory(memory_path: Path) -> None:
    memory_path.mkdir(parents=True, exist_ok=True)
    for entry in memory_path.iterdir():
        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink(missing_ok=True)
        except OSError as error:
            logger.warning("Could not remove %s: %s", entry, error)

    remaining = sorted(entry.name for entry in memory_path.iterdir())
    if remaining:
        raise MigratePipelineError(
            PipelineStage.CLEANING,
            f"Could not fully clear memory directory: {memory_path} "
            f"(remaining: {', '.join(remaining)})",
        )
