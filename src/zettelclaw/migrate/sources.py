"""Enumerate legacy memory files and turn them into migration tasks."""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from pathlib import Path

from zettelclaw.migrate.models import MigrateTask, MigrateTaskKind

_DAILY_FILENAME = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$")


@dataclass(frozen=True, slots=True)
class MemoryFile:
    """Markdown file found under the workspace memory directory."""

    relative_path: str
    basename: str
    source_path: Path
    size_bytes: int
    mtime_ms: float


@dataclass(slots=True)
class MemorySummary:
    files: list[MemoryFile]
    daily_files: list[MemoryFile]
    other_files: list[MemoryFile]
    date_range: str


def is_daily_file(filename: str) -> bool:
    return _DAILY_FILENAME.match(filename) is not None


def collect_memory_files(memory_path: Path) -> list[MemoryFile]:
    """All ``.md`` files below ``memory_path``, sorted by forward-slash relative path."""

    if not memory_path.is_dir():
        return []
    files: list[MemoryFile] = []
    for path in memory_path.rglob("*"):
        if not (path.is_file() and path.suffix.lower() == ".md"):
            continue
        stat = path.stat()
        files.append(
            MemoryFile(
                relative_path=path.relative_to(memory_path).as_posix(),
                basename=path.name,
                source_path=path,
                size_bytes=stat.st_size,
                mtime_ms=stat.st_mtime_ns / 1_000_000,
            ),
        )
    return sorted(files, key=lambda item: item.relative_path)


def summarize_memory(memory_path: Path) -> MemorySummary:
    files = collect_memory_files(memory_path)
    daily = [item for item in files if is_daily_file(item.basename)]
    other = [item for item in files if not is_daily_file(item.basename)]
    days = sorted(item.basename[:10] for item in daily)
    date_range = f"{days[0]} -> {days[-1]}" if days else "n/a"
    return MemorySummary(files=files, daily_files=daily, other_files=other, date_range=date_range)


def build_task_id(memory_file: MemoryFile) -> str:
    """Stable id that changes when the file is edited."""

    digest = hashlib.sha1()  # noqa: S324
    digest.update(memory_file.relative_path.encode("utf-8"))
    digest.update(str(memory_file.size_bytes).encode("utf-8"))
    digest.update(str(math.floor(memory_file.mtime_ms)).encode("utf-8"))
    return digest.hexdigest()


def build_migrate_tasks(files: list[MemoryFile]) -> list[MigrateTask]:
    return [
        MigrateTask(
            id=build_task_id(item),
            relative_path=item.relative_path,
            basename=item.basename,
            source_path=item.source_path,
            kind=MigrateTaskKind.DAILY if is_daily_file(item.basename) else MigrateTaskKind.OTHER,
        )
        for item in files
    ]
