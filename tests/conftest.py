"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import pytest

from zettelclaw.migrate.models import MigratePipelineOptions, MigrateTask, MigrateTaskKind
from zettelclaw.migrate.prompts import SYNTHESIS_SESSION_NAME
from zettelclaw.migrate.sources import is_daily_file
from zettelclaw.scheduler.base import JobError, JobErrorCode
from zettelclaw.scheduler.memory_client import SubmittedJob

_SOURCE_LINE = re.compile(r"^Source \(relative to memory/\): (.+)$", re.MULTILINE)

DEFAULT_SYNTHESIS_SUMMARY = "Updated MEMORY.md and USER.md."


def source_relative_path(payload: str) -> str:
    match = _SOURCE_LINE.search(payload)
    assert match is not None, "task payload does not name its source file"
    return match.group(1).strip()


@dataclass(slots=True)
class MigrationLayout:
    """Workspace + vault directories for pipeline and CLI tests."""

    workspace: Path
    memory: Path
    vault: Path
    state_path: Path

    def add_memory_file(self, relative_path: str, content: str = "- remembered\n") -> MigrateTask:
        path = self.memory / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        basename = path.name
        return MigrateTask(
            id=f"task-{relative_path}",
            relative_path=relative_path,
            basename=basename,
            source_path=path,
            kind=MigrateTaskKind.DAILY if is_daily_file(basename) else MigrateTaskKind.OTHER,
        )

    def add_note(self, title: str) -> None:
        notes = self.vault / "01 Notes"
        notes.mkdir(parents=True, exist_ok=True)
        (notes / f"{title}.md").write_text(f"# {title}\n", encoding="utf-8")

    def options(self, tasks: list[MigrateTask], **overrides) -> MigratePipelineOptions:
        values = {
            "workspace_path": self.workspace,
            "memory_path": self.memory,
            "vault_path": self.vault,
            "model": "anthropic/claude-haiku",
            "state_path": self.state_path,
            "tasks": tasks,
            "parallel_jobs": 1,
        }
        values.update(overrides)
        return MigratePipelineOptions(**values)

    def write_synthesis_outputs(self) -> None:
        (self.workspace / "MEMORY.md").write_text("# Memory\n", encoding="utf-8")
        (self.workspace / "USER.md").write_text("# User\n", encoding="utf-8")

    def handler(
        self,
        *,
        failing: Iterable[str] = (),
        synthesis_summary: str = DEFAULT_SYNTHESIS_SUMMARY,
        write_outputs: bool = True,
        before_task: Callable[[str], None] | None = None,
    ) -> Callable[[SubmittedJob], str]:
        """Job handler that behaves like a well-mannered migration agent."""

        failing_paths = set(failing)

        def _handle(job: SubmittedJob) -> str:
            if job.options.session_name == SYNTHESIS_SESSION_NAME:
                if write_outputs:
                    self.write_synthesis_outputs()
                return synthesis_summary

            relative_path = source_relative_path(job.payload)
            if before_task is not None:
                before_task(relative_path)
            if relative_path in failing_paths:
                raise JobError(
                    JobErrorCode.JOB_FAILED,
                    f"Cron job {job.job_id} finished with status 'error'.",
                    "agent crashed",
                )
            (self.memory / relative_path).unlink()
            return json.dumps({"summary": f"Migrated {relative_path}"})

        return _handle


@pytest.fixture(autouse=True)
def _isolate_zettelclaw_env(monkeypatch):
    """Keep developer ZETTELCLAW_* variables out of tests."""

    for name in list(os.environ):
        if name.startswith("ZETTELCLAW_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def layout(tmp_path: Path) -> MigrationLayout:
    workspace = tmp_path / "workspace"
    memory = workspace / "memory"
    vault = tmp_path / "vault"
    memory.mkdir(parents=True)
    (vault / "01 Notes").mkdir(parents=True)
    (vault / "03 Journal").mkdir(parents=True)
    return MigrationLayout(
        workspace=workspace,
        memory=memory,
        vault=vault,
        state_path=workspace / ".zettelclaw" / "migrate-state.json",
    )
