"""Backups of workspace memory taken before a migration run touches it."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

BACKUP_MAX_ATTEMPTS = 10_000
BACKUP_SUFFIX = ".bak"


class BackupError(OSError):
    """A backup could not be written; the migration must not start."""


@dataclass(slots=True)
class WorkspaceBackup:
    """Paths written by ``backup_workspace``."""

    memory_dir: Path
    memory_file: Path | None = None
    user_file: Path | None = None

    def describe(self) -> str:
        targets: list[str] = []
        if self.user_file is not None:
            targets.append("USER.md")
        if self.memory_file is not None:
            targets.append("MEMORY.md")
        targets.append("memory/ dir")
        return f"Backed up {format_conjoined_list(targets)}"


def choose_backup_path(
    directory: Path,
    base_label: str,
    *,
    max_attempts: int = BACKUP_MAX_ATTEMPTS,
) -> Path:
    """``<label>``, then ``<label>.1``, ``<label>.2`` ... whichever is free first."""

    for index in range(max_attempts):
        label = base_label if index == 0 else f"{base_label}.{index}"
        candidate = directory / label
        if not candidate.exists() and not candidate.is_symlink():
            return candidate
    raise BackupError(
        f"Could not find an available backup path under {directory} after {max_attempts} attempts",
    )


def backup_workspace(
    workspace_path: Path,
    memory_path: Path,
    *,
    on_debug: Callable[[str], None] | None = None,
) -> WorkspaceBackup:
    """Copy ``memory/`` and any ``MEMORY.md``/``USER.md`` next to themselves.

    Existing backups are never overwritten. Raises ``BackupError`` on the
    first copy that fails.
    """

    debug = on_debug or (lambda _msg: None)

    memory_backup = choose_backup_path(workspace_path, f"{memory_path.name}{BACKUP_SUFFIX}")
    debug(f"Backing up memory directory from {memory_path} to {memory_backup}")
    try:
        shutil.copytree(memory_path, memory_backup, symlinks=True)
    except OSError as error:
        raise BackupError(f"Could not back up memory directory: {error}") from error

    backup = WorkspaceBackup(memory_dir=memory_backup)
    backup.memory_file = _backup_file(workspace_path / "MEMORY.md", debug)
    backup.user_file = _backup_file(workspace_path / "USER.md", debug)
    logger.info("%s in %s", backup.describe(), workspace_path)
    return backup


def format_conjoined_list(items: list[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    if len(items) == 2:  # noqa: PLR2004
        return f"{items[0]} and {items[1]}"
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def _backup_file(source: Path, debug: Callable[[str], None]) -> Path | None:
    if not source.exists():
        return None
    target = choose_backup_path(source.parent, f"{source.name}{BACKUP_SUFFIX}")
    debug(f"Backing up {source.name} to {target}")
    try:
        shutil.copy2(source, target)
    except OSError as error:
        raise BackupError(f"Could not back up {source.name}: {error}") from error
    return target
