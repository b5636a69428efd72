"""Runtime configuration for the memory migration pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

EXTRACTION_SCHEMAS = ("minimal", "rich")


@dataclass(slots=True)
class MigrateSettings:
    """Migration pipeline tunables."""

    parallel_jobs: int = 8
    task_timeout_seconds: int = 1_800
    wait_timeout_seconds: float = 1_900.0
    poll_interval_seconds: float = 3.0
    synthesis_attempts: int = 2
    summaries_max_chars: int = 56_000
    wikilink_index_cap: int = 40
    extraction_schema: str = "minimal"
    notes_folder: str | None = None
    journal_folder: str | None = None


@dataclass(slots=True)
class SchedulerSettings:
    """External job scheduler settings."""

    openclaw_executable: str = "openclaw"
    command_timeout_seconds: float = 60.0
    poll_command_timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    workspace_path: Path = Path("~/.openclaw/workspace").expanduser()
    vault_path: Path | None = None
    model: str | None = None
    migrate: MigrateSettings = field(default_factory=MigrateSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults matching a stock OpenClaw install."""

        vault_raw = os.getenv("ZETTELCLAW_VAULT_PATH", "").strip()
        model_raw = os.getenv("ZETTELCLAW_MODEL", "").strip()
        return cls(
            workspace_path=Path(
                os.getenv("ZETTELCLAW_WORKSPACE_PATH", "~/.openclaw/workspace"),
            ).expanduser(),
            vault_path=Path(vault_raw).expanduser() if vault_raw else None,
            model=model_raw or None,
            migrate=MigrateSettings(
                parallel_jobs=_env_int("ZETTELCLAW_MIGRATE_PARALLEL_JOBS", 8),
                task_timeout_seconds=_env_int("ZETTELCLAW_MIGRATE_TASK_TIMEOUT_SECONDS", 1800),
                wait_timeout_seconds=_env_float(
                    "ZETTELCLAW_MIGRATE_WAIT_TIMEOUT_SECONDS",
                    1900.0,
                ),
                poll_interval_seconds=_env_float(
                    "ZETTELCLAW_MIGRATE_POLL_INTERVAL_SECONDS",
                    3.0,
                ),
                synthesis_attempts=_env_int("ZETTELCLAW_MIGRATE_SYNTHESIS_ATTEMPTS", 2),
                summaries_max_chars=_env_int("ZETTELCLAW_MIGRATE_SUMMARIES_MAX_CHARS", 56000),
                wikilink_index_cap=_env_int("ZETTELCLAW_MIGRATE_WIKILINK_INDEX_CAP", 40),
                extraction_schema=os.getenv(
                    "ZETTELCLAW_MIGRATE_EXTRACTION_SCHEMA",
                    "minimal",
                )
                .strip()
                .lower(),
                notes_folder=os.getenv("ZETTELCLAW_NOTES_FOLDER", "").strip() or None,
                journal_folder=os.getenv("ZETTELCLAW_JOURNAL_FOLDER", "").strip() or None,
            ),
            scheduler=SchedulerSettings(
                openclaw_executable=os.getenv("ZETTELCLAW_OPENCLAW_EXECUTABLE", "openclaw"),
                command_timeout_seconds=_env_float(
                    "ZETTELCLAW_OPENCLAW_COMMAND_TIMEOUT_SECONDS",
                    60.0,
                ),
                poll_command_timeout_seconds=_env_float(
                    "ZETTELCLAW_OPENCLAW_POLL_TIMEOUT_SECONDS",
                    30.0,
                ),
            ),
        )

    def validate_for_migrate(self) -> None:
        """Raise configuration error if migration settings are unusable."""

        migrate = self.migrate
        if migrate.parallel_jobs < 1:
            raise ValueError("ZETTELCLAW_MIGRATE_PARALLEL_JOBS must be >= 1.")
        if migrate.task_timeout_seconds <= 0:
            raise ValueError("ZETTELCLAW_MIGRATE_TASK_TIMEOUT_SECONDS must be > 0.")
        if migrate.wait_timeout_seconds <= 0:
            raise ValueError("ZETTELCLAW_MIGRATE_WAIT_TIMEOUT_SECONDS must be > 0.")
        if migrate.poll_interval_seconds < 0:
            raise ValueError("ZETTELCLAW_MIGRATE_POLL_INTERVAL_SECONDS must be >= 0.")
        if migrate.synthesis_attempts < 1:
            raise ValueError("ZETTELCLAW_MIGRATE_SYNTHESIS_ATTEMPTS must be >= 1.")
        if migrate.summaries_max_chars <= 0:
            raise ValueError("ZETTELCLAW_MIGRATE_SUMMARIES_MAX_CHARS must be > 0.")
        if migrate.wikilink_index_cap <= 0:
            raise ValueError("ZETTELCLAW_MIGRATE_WIKILINK_INDEX_CAP must be > 0.")
        if migrate.extraction_schema not in EXTRACTION_SCHEMAS:
            raise ValueError(
                "ZETTELCLAW_MIGRATE_EXTRACTION_SCHEMA must be one of: "
                f"{', '.join(EXTRACTION_SCHEMAS)} (got {migrate.extraction_schema!r}).",
            )
        if not self.scheduler.openclaw_executable.strip():
            raise ValueError("ZETTELCLAW_OPENCLAW_EXECUTABLE must not be empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
