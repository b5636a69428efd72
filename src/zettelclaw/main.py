"""CLI entrypoint for zettelclaw."""

import logging
from collections.abc import Iterable
from pathlib import Path

import rich_click as click

from zettelclaw import __version__
from zettelclaw.config import EXTRACTION_SCHEMAS
from zettelclaw.migrate.controllers import (
    MigrateCliController,
    MigrateRunCommand,
    MigrateStatusCommand,
)
from zettelclaw.migrate.extraction import ExtractionParseError
from zettelclaw.migrate.pipeline import MigratePipelineError
from zettelclaw.scheduler.base import JobError

click.rich_click.USE_MARKDOWN = True
MIGRATE_CONTROLLER = MigrateCliController()


@click.group()
@click.version_option(version=__version__, prog_name="zettelclaw")
def zettelclaw() -> None:
    """Zettelclaw CLI."""

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")


@zettelclaw.group()
def migrate() -> None:
    """Migrate OpenClaw workspace memory into a Zettelclaw vault."""


@migrate.command("run")
@click.option(
    "--workspace",
    "workspace_path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="OpenClaw workspace (default: ZETTELCLAW_WORKSPACE_PATH or ~/.openclaw/workspace).",
)
@click.option(
    "--vault",
    "vault_path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Zettelclaw vault root (default: ZETTELCLAW_VAULT_PATH).",
)
@click.option("--model", default=None, help="Model used by migration agents.")
@click.option(
    "--state-path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Run state file (default: <workspace>/.zettelclaw/migrate-state.json).",
)
@click.option(
    "--parallel-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Concurrent migration jobs (default: ZETTELCLAW_MIGRATE_PARALLEL_JOBS or 8).",
)
@click.option(
    "--extraction-schema",
    type=click.Choice(EXTRACTION_SCHEMAS, case_sensitive=False),
    default=None,
    help="Expected shape of agent replies.",
)
@click.option("--verbose", is_flag=True, default=False, help="Print scheduler diagnostics.")
def migrate_run(  # noqa: PLR0913
    workspace_path: Path | None,
    vault_path: Path | None,
    model: str | None,
    state_path: Path | None,
    parallel_jobs: int | None,
    extraction_schema: str | None,
    verbose: bool,
) -> None:
    """Migrate every memory file, synthesize MEMORY.md/USER.md, then clear memory/."""

    try:
        _emit_lines(
            MIGRATE_CONTROLLER.run(
                MigrateRunCommand(
                    workspace_path=workspace_path,
                    vault_path=vault_path,
                    model=model,
                    state_path=state_path,
                    parallel_jobs=parallel_jobs,
                    extraction_schema=extraction_schema,
                    verbose=verbose,
                ),
            ),
        )
    except JobError as error:
        raise click.ClickException(error.describe()) from error
    except (MigratePipelineError, ExtractionParseError, ValueError, OSError) as error:
        raise click.ClickException(str(error)) from error


@migrate.command("status")
@click.option(
    "--workspace",
    "workspace_path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="OpenClaw workspace (default: ZETTELCLAW_WORKSPACE_PATH or ~/.openclaw/workspace).",
)
@click.option(
    "--state-path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Run state file (default: <workspace>/.zettelclaw/migrate-state.json).",
)
def migrate_status(workspace_path: Path | None, state_path: Path | None) -> None:
    """Show the saved migration run state."""

    try:
        lines = MIGRATE_CONTROLLER.status(
            MigrateStatusCommand(workspace_path=workspace_path, state_path=state_path),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    zettelclaw()
