"""Durable, resumable record of completed migration tasks."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from zettelclaw.migrate.models import MigrateRunState, MigrateTask, StoredTaskResult

logger = logging.getLogger(__name__)

RUN_KEY_SALT = "zettelclaw-migrate-v3"


def build_run_key(
    *,
    workspace_path: str,
    vault_path: str,
    model: str,
    task_ids: Sequence[str],
) -> str:
    """SHA-1 fingerprint of the run identity and the ordered task ids."""

    digest = hashlib.sha1()  # noqa: S324
    for part in (workspace_path, vault_path, model, RUN_KEY_SALT, str(len(task_ids)), *task_ids):
        digest.update(part.encode("utf-8"))
    return digest.hexdigest()


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunStateStore:
    """Run state bound to one JSON file.

    Every mutator updates the in-memory state and rewrites the file while
    holding the same lock, so concurrent workers never interleave writes.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._state: MigrateRunState | None = None

    @property
    def state(self) -> MigrateRunState:
        if self._state is None:
            raise RuntimeError("Run state is not loaded; call load() first.")
        return self._state

    def load(
        self,
        *,
        run_key: str,
        workspace_path: str,
        vault_path: str,
        model: str,
    ) -> MigrateRunState:
        """Load the stored state, or start fresh when absent, unreadable or for another run."""

        stored = self._read()
        with self._lock:
            if stored is not None and stored.run_key == run_key:
                self._state = stored
                logger.info(
                    "Resuming migration state %s with %d completed tasks",
                    self.path,
                    len(stored.completed),
                )
            else:
                if stored is not None:
                    logger.info("Ignoring migration state %s: run fingerprint changed", self.path)
                now = utc_now_iso()
                self._state = MigrateRunState(
                    run_key=run_key,
                    workspace_path=workspace_path,
                    vault_path=vault_path,
                    model=model,
                    created_at=now,
                    updated_at=now,
                )
            return self._state

    def read_existing(self) -> MigrateRunState | None:
        """Read the file without binding it, for status reporting."""

        return self._read()

    def reset(
        self,
        *,
        run_key: str,
        workspace_path: str,
        vault_path: str,
        model: str,
    ) -> None:
        with self._lock:
            now = utc_now_iso()
            self._state = MigrateRunState(
                run_key=run_key,
                workspace_path=workspace_path,
                vault_path=vault_path,
                model=model,
                created_at=now,
                updated_at=now,
            )
            self._write_locked()

    def record_completion(self, result: StoredTaskResult) -> None:
        with self._lock:
            state = self.state
            state.completed[result.task_id] = result
            state.updated_at = result.completed_at
            self._write_locked()

    def mark_final_synthesis(self, summary: str) -> None:
        with self._lock:
            state = self.state
            state.final_synthesis_completed = True
            state.final_synthesis_summary = summary
            state.updated_at = utc_now_iso()
            self._write_locked()

    def clear_final_synthesis(self) -> None:
        """Forget a synthesis that predates newly completed tasks."""

        with self._lock:
            state = self.state
            state.final_synthesis_completed = False
            state.final_synthesis_summary = None
            state.updated_at = utc_now_iso()
            self._write_locked()

    def mark_cleanup(self) -> None:
        with self._lock:
            state = self.state
            state.cleanup_completed = True
            state.updated_at = utc_now_iso()
            self._write_locked()

    def save(self) -> None:
        with self._lock:
            self._write_locked()

    def is_completed(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self.state.completed

    def completed_count(self) -> int:
        with self._lock:
            return len(self.state.completed)

    def completed_results(self, tasks: Sequence[MigrateTask]) -> list[StoredTaskResult]:
        """Stored results for ``tasks``, in task order."""

        with self._lock:
            completed = self.state.completed
            return [completed[task.id] for task in tasks if task.id in completed]

    def _read(self) -> MigrateRunState | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as error:
            logger.warning("Could not read migration state %s: %s", self.path, error)
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Migration state %s is not valid JSON; starting fresh", self.path)
            return None
        return MigrateRunState.from_dict(payload)

    def _write_locked(self) -> None:
        state = self.state
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(
            json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)
