from __future__ import annotations

import json
import threading

import allure
import pytest

from zettelclaw.config import MigrateSettings
from zettelclaw.migrate.models import MigrateExtraction, PipelineStage, StoredTaskResult
from zettelclaw.migrate.pipeline import (
    MigratePipelineError,
    MigratePipelineRunner,
    WikilinkIndex,
    resolve_parallel_jobs,
)
from zettelclaw.migrate.prompts import SYNTHESIS_SESSION_NAME, TASK_SESSION_NAME
from zettelclaw.migrate.state import RunStateStore, build_run_key
from zettelclaw.scheduler.base import JobError, JobErrorCode
from zettelclaw.scheduler.memory_client import InMemoryJobClient

pytestmark = [
    allure.epic("Memory Migration"),
    allure.feature("Pipeline Orchestration"),
]

CONFLICT_SUMMARY = "Edit failed: Could not find the exact text to replace in MEMORY.md"


def _seed_completed(layout, tasks, *, completed, model="anthropic/claude-haiku"):
    store = RunStateStore(layout.state_path)
    store.load(
        run_key=build_run_key(
            workspace_path=str(layout.workspace),
            vault_path=str(layout.vault),
            model=model,
            task_ids=[task.id for task in tasks],
        ),
        workspace_path=str(layout.workspace),
        vault_path=str(layout.vault),
        model=model,
    )
    for task in completed:
        store.record_completion(
            StoredTaskResult(
                task_id=task.id,
                relative_path=task.relative_path,
                extraction=MigrateExtraction(summary=f"Earlier {task.relative_path}"),
                completed_at="2026-01-01T00:00:00.000Z",
            ),
        )
    return store


def test_full_success_synthesizes_and_clears_memory(layout) -> None:
    tasks = [layout.add_memory_file("2026-01-01.md"), layout.add_memory_file("people.md")]
    (layout.memory / "attachments").mkdir()
    (layout.memory / "attachments" / "image.png").write_bytes(b"png")
    client = InMemoryJobClient(layout.handler())
    progress: list[str] = []

    result = MigratePipelineRunner(client).run(layout.options(tasks, on_progress=progress.append))

    assert result.total_tasks == 2
    assert result.processed_tasks == 2
    assert result.skipped_tasks == 0
    assert result.failed_tasks == 0
    assert result.cleanup_performed is True
    assert result.stage == PipelineStage.DONE
    assert result.final_synthesis_summary == "Updated MEMORY.md and USER.md."
    assert list(layout.memory.iterdir()) == []
    assert [item.relative_path for item in result.completed_results] == [
        "2026-01-01.md",
        "people.md",
    ]
    assert progress[0] == "Progress: 0/2 files complete (0 failed, 0 active, 0 skipped)"
    assert "Progress: 2/2 files complete (0 failed, 0 active, 0 skipped)" in progress

    stored = json.loads(layout.state_path.read_text(encoding="utf-8"))
    assert stored["final_synthesis_completed"] is True
    assert stored["cleanup_completed"] is True
    assert set(stored["completed"]) == {task.id for task in tasks}


def test_every_job_is_removed_after_waiting(layout) -> None:
    tasks = [layout.add_memory_file("a.md"), layout.add_memory_file("b.md")]
    client = InMemoryJobClient(layout.handler(failing={"b.md"}))

    MigratePipelineRunner(client).run(layout.options(tasks))

    assert sorted(client.removed) == sorted(job.job_id for job in client.submitted)


def test_all_tasks_failing_raises_without_synthesis(layout) -> None:
    tasks = [layout.add_memory_file("a.md"), layout.add_memory_file("b.md")]
    client = InMemoryJobClient(layout.handler(failing={"a.md", "b.md"}))
    runner = MigratePipelineRunner(client)

    with pytest.raises(MigratePipelineError, match="Migration produced no successful task results"):
        runner.run(layout.options(tasks))

    assert runner.stage == PipelineStage.FAILED
    assert client.submissions_for(SYNTHESIS_SESSION_NAME) == []
    assert (layout.memory / "a.md").exists()
    assert (layout.memory / "b.md").exists()


def test_partial_success_synthesizes_but_keeps_memory(layout) -> None:
    good = layout.add_memory_file("good.md")
    bad = layout.add_memory_file("bad.md")
    client = InMemoryJobClient(layout.handler(failing={"bad.md"}))

    result = MigratePipelineRunner(client).run(layout.options([good, bad]))

    assert result.processed_tasks == 1
    assert result.failed_tasks == 1
    assert result.failed_task_errors == [
        "bad.md: [JOB_FAILED] Cron job job-2 finished with status 'error'. (agent crashed)",
    ]
    assert result.final_synthesis_summary == "Updated MEMORY.md and USER.md."
    assert result.cleanup_performed is False
    assert not good.source_path.exists()
    assert bad.source_path.exists()
    assert len(client.submissions_for(SYNTHESIS_SESSION_NAME)) == 1


def test_resume_skips_completed_tasks(layout) -> None:
    first = layout.add_memory_file("first.md")
    second = layout.add_memory_file("second.md")
    first.source_path.unlink()
    _seed_completed(layout, [first, second], completed=[first])
    client = InMemoryJobClient(layout.handler())

    result = MigratePipelineRunner(client).run(layout.options([first, second]))

    task_jobs = client.submissions_for(TASK_SESSION_NAME)
    assert len(task_jobs) == 1
    assert "second.md" in task_jobs[0].payload
    assert result.skipped_tasks == 1
    assert result.processed_tasks == 1
    stored = {item.task_id: item for item in result.completed_results}
    assert stored[first.id].extraction.summary == "Earlier first.md"
    assert stored[first.id].completed_at == "2026-01-01T00:00:00.000Z"


def test_changed_model_invalidates_saved_progress(layout) -> None:
    first = layout.add_memory_file("first.md")
    second = layout.add_memory_file("second.md")
    _seed_completed(layout, [first, second], completed=[first], model="openai/gpt-4o")
    client = InMemoryJobClient(layout.handler())

    result = MigratePipelineRunner(client).run(layout.options([first, second]))

    assert result.skipped_tasks == 0
    assert len(client.submissions_for(TASK_SESSION_NAME)) == 2
    assert stored_summaries(result) == {"first.md": "Migrated first.md", "second.md": "Migrated second.md"}


def stored_summaries(result) -> dict[str, str]:
    return {item.relative_path: item.extraction.summary for item in result.completed_results}


def test_synthesis_conflict_retries_then_saves_fallback(layout) -> None:
    tasks = [layout.add_memory_file("a.md")]
    client = InMemoryJobClient(layout.handler(synthesis_summary=CONFLICT_SUMMARY))

    with pytest.raises(MigratePipelineError, match="Saved fallback summary") as exc_info:
        MigratePipelineRunner(client).run(layout.options(tasks))

    assert exc_info.value.stage == PipelineStage.SYNTHESIZING
    assert len(client.submissions_for(SYNTHESIS_SESSION_NAME)) == 2
    fallback = layout.workspace / ".zettelclaw" / "final-synthesis-fallback.md"
    assert "Could not find the exact text to replace" in fallback.read_text(encoding="utf-8")
    stored = json.loads(layout.state_path.read_text(encoding="utf-8"))
    assert stored["final_synthesis_completed"] is False
    assert tasks[0].id in stored["completed"]


def test_synthesis_conflict_recovers_on_retry(layout) -> None:
    tasks = [layout.add_memory_file("a.md")]
    summaries = iter([CONFLICT_SUMMARY, "Rewrote MEMORY.md."])
    task_handler = layout.handler()

    def handler(job):
        if job.options.session_name == SYNTHESIS_SESSION_NAME:
            layout.write_synthesis_outputs()
            return next(summaries)
        return task_handler(job)

    result = MigratePipelineRunner(InMemoryJobClient(handler)).run(layout.options(tasks))

    assert result.final_synthesis_summary == "Rewrote MEMORY.md."
    assert result.cleanup_performed is True


def test_missing_synthesis_outputs_fail_the_run(layout) -> None:
    tasks = [layout.add_memory_file("a.md")]
    (layout.workspace / "MEMORY.md").write_text("# Memory\n", encoding="utf-8")
    client = InMemoryJobClient(layout.handler(write_outputs=False))

    with pytest.raises(MigratePipelineError, match="USER.md") as exc_info:
        MigratePipelineRunner(client).run(layout.options(tasks))

    assert "MEMORY.md" not in str(exc_info.value)
    assert (layout.memory).exists()


def test_completed_synthesis_is_not_repeated(layout) -> None:
    first = layout.add_memory_file("first.md")
    first.source_path.unlink()
    store = _seed_completed(layout, [first], completed=[first])
    store.mark_final_synthesis("Earlier synthesis")
    client = InMemoryJobClient(layout.handler())

    result = MigratePipelineRunner(client).run(layout.options([first]))

    assert client.submitted == []
    assert result.final_synthesis_summary == "Earlier synthesis"
    assert result.cleanup_performed is True


def test_new_results_after_a_synthesis_trigger_it_again(layout) -> None:
    good = layout.add_memory_file("good.md")
    bad = layout.add_memory_file("bad.md")
    first_client = InMemoryJobClient(layout.handler(failing={"bad.md"}))
    first = MigratePipelineRunner(first_client).run(layout.options([good, bad]))
    assert first.cleanup_performed is False

    client = InMemoryJobClient(layout.handler(synthesis_summary="Reconciled every file."))
    debug_lines: list[str] = []

    result = MigratePipelineRunner(client).run(
        layout.options([good, bad], on_debug=debug_lines.append),
    )

    synthesis_jobs = client.submissions_for(SYNTHESIS_SESSION_NAME)
    assert result.skipped_tasks == 1
    assert result.processed_tasks == 1
    assert len(synthesis_jobs) == 1
    assert "Migrated bad.md" in synthesis_jobs[0].payload
    assert "Migrated good.md" in synthesis_jobs[0].payload
    assert result.final_synthesis_summary == "Reconciled every file."
    assert result.cleanup_performed is True
    assert any("completed since the last synthesis" in line for line in debug_lines)
    saved = json.loads(layout.state_path.read_text(encoding="utf-8"))
    assert saved["final_synthesis_summary"] == "Reconciled every file."


def test_finished_run_starts_over_when_tasks_are_supplied(layout) -> None:
    first = layout.add_memory_file("first.md")
    store = _seed_completed(layout, [first], completed=[first])
    store.mark_final_synthesis("Earlier synthesis")
    store.mark_cleanup()
    client = InMemoryJobClient(layout.handler())

    result = MigratePipelineRunner(client).run(layout.options([first]))

    assert result.skipped_tasks == 0
    assert len(client.submissions_for(TASK_SESSION_NAME)) == 1
    assert result.final_synthesis_summary == "Updated MEMORY.md and USER.md."


def test_source_left_behind_counts_as_failure(layout) -> None:
    kept = layout.add_memory_file("kept.md")
    moved = layout.add_memory_file("moved.md")

    def handler(job):
        if job.options.session_name == SYNTHESIS_SESSION_NAME:
            layout.write_synthesis_outputs()
            return "done"
        if "moved.md" in job.payload:
            moved.source_path.unlink()
        return '{"summary": "Migrated"}'

    result = MigratePipelineRunner(InMemoryJobClient(handler)).run(layout.options([kept, moved]))

    assert result.failed_task_errors == ["kept.md: Source file was not deleted: kept.md"]
    assert result.cleanup_performed is False


def test_unparsable_reply_counts_as_failure(layout) -> None:
    good = layout.add_memory_file("good.md")
    chatty = layout.add_memory_file("chatty.md")
    task_handler = layout.handler()

    def handler(job):
        if "chatty.md" in job.payload and job.options.session_name == TASK_SESSION_NAME:
            chatty.source_path.unlink()
            return "All done, migrated everything!"
        return task_handler(job)

    result = MigratePipelineRunner(InMemoryJobClient(handler)).run(layout.options([good, chatty]))

    assert result.failed_task_errors == [
        "chatty.md: Could not parse migration sub-agent output for chatty.md.",
    ]


def test_rich_schema_error_status_fails_task(layout) -> None:
    good = layout.add_memory_file("good.md")
    broken = layout.add_memory_file("broken.md")
    task_handler = layout.handler()

    def handler(job):
        if "broken.md" in job.payload and job.options.session_name == TASK_SESSION_NAME:
            return json.dumps({"status": "error", "summary": "File is encrypted"})
        return task_handler(job)

    result = MigratePipelineRunner(InMemoryJobClient(handler)).run(
        layout.options([good, broken], extraction_schema="rich"),
    )

    assert result.failed_task_errors == ["broken.md: File is encrypted"]


def test_rich_schema_wikilinks_reach_later_prompts(layout) -> None:
    first = layout.add_memory_file("a-first.md")
    second = layout.add_memory_file("b-second.md")

    def handler(job):
        if job.options.session_name == SYNTHESIS_SESSION_NAME:
            layout.write_synthesis_outputs()
            return "done"
        if "a-first.md" in job.payload:
            first.source_path.unlink()
            return json.dumps(
                {"summary": "Split notes", "createdWikilinks": ["[[Coffee Rituals]]"]},
            )
        second.source_path.unlink()
        return json.dumps({"summary": "Moved"})

    client = InMemoryJobClient(handler)
    MigratePipelineRunner(client).run(
        layout.options([first, second], extraction_schema="rich", parallel_jobs=1),
    )

    second_prompt = client.submissions_for(TASK_SESSION_NAME)[1].payload
    assert "- [[Coffee Rituals]]" in second_prompt


def test_missing_cli_stops_dispatch_and_propagates(layout) -> None:
    tasks = [layout.add_memory_file(f"{name}.md") for name in ("a", "b", "c")]

    def handler(job):
        raise JobError(JobErrorCode.CLI_NOT_FOUND, "openclaw CLI was not found on PATH.")

    client = InMemoryJobClient(handler)
    debug_lines: list[str] = []

    with pytest.raises(JobError) as exc_info:
        MigratePipelineRunner(client).run(
            layout.options(tasks, parallel_jobs=1, on_debug=debug_lines.append),
        )

    assert exc_info.value.code == JobErrorCode.CLI_NOT_FOUND
    assert len(client.submitted) == 1
    assert any(
        "no further tasks will start, waiting for 0 in-flight task(s)" in line
        for line in debug_lines
    )


def test_workers_run_tasks_concurrently(layout) -> None:
    tasks = [layout.add_memory_file("a.md"), layout.add_memory_file("b.md")]
    barrier = threading.Barrier(2, timeout=5)
    client = InMemoryJobClient(layout.handler(before_task=lambda _path: barrier.wait()))

    result = MigratePipelineRunner(client).run(layout.options(tasks, parallel_jobs=2))

    assert result.processed_tasks == 2
    assert result.failed_tasks == 0


def test_many_workers_persist_every_completion(layout) -> None:
    tasks = [layout.add_memory_file(f"note-{index:02d}.md") for index in range(12)]
    client = InMemoryJobClient(layout.handler())
    settings = MigrateSettings(parallel_jobs=4)

    result = MigratePipelineRunner(client, settings).run(layout.options(tasks, parallel_jobs=4))

    assert result.processed_tasks == 12
    stored = json.loads(layout.state_path.read_text(encoding="utf-8"))
    assert len(stored["completed"]) == 12
    task_ids = {job.job_id for job in client.submissions_for(TASK_SESSION_NAME)}
    assert len(task_ids) == 12


def test_resolve_parallel_jobs_bounds() -> None:
    assert resolve_parallel_jobs(8, 3) == 3
    assert resolve_parallel_jobs(2, 10) == 2
    assert resolve_parallel_jobs(0, 10) == 1
    assert resolve_parallel_jobs(None, 10) == 1
    assert resolve_parallel_jobs(4, 0) == 1


def test_wikilink_index_merges_titles_from_notes_and_links() -> None:
    index = WikilinkIndex(["Alpha", "alpha", " Beta "])
    index.merge_extraction(
        MigrateExtraction(
            summary="",
            created_wikilinks=["[[Gamma|g]]"],
            created_notes=["01 Notes/Delta.md"],
            updated_notes=["01 Notes/Alpha.md"],
        ),
    )

    assert index.snapshot() == ["Alpha", "Beta", "Delta", "Gamma"]
