"""Prompt templates for migration sub-agent jobs and the final synthesis job."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from zettelclaw.migrate.models import MigrateTask, MigrateTaskKind, StoredTaskResult

TASK_SESSION_NAME = "zettelclaw-migrate-subagent"
SYNTHESIS_SESSION_NAME = "zettelclaw-migrate-synthesis"

DEFAULT_WIKILINK_INDEX_CAP = 40
DEFAULT_SUMMARIES_MAX_CHARS = 56_000

_RELEVANCE_TOKEN_RE = re.compile(r"[a-z]{3,}")
_WIKILINK_INNER_RE = re.compile(r"\[\[([^\[\]]+)\]\]")
_MD_SUFFIX_RE = re.compile(r"\.md$", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]+$")

_VAULT_RULES = """
Vault rules:
- Vault root: {vault_path}
- Atomic notes live in "{notes_folder}/", one idea per note, titled as a claim or concept.
- Journal entries live in "{journal_folder}/" as YYYY-MM-DD.md files.
- Link related notes with [[Wikilinks]]. Prefer linking to an existing note over creating a duplicate.
- Never modify files outside the vault, except deleting the source file named below.

Existing note titles you may link to:
{wikilink_index}
"""

_OUTPUT_CONTRACT_MINIMAL = """
When you are done, reply with ONLY this JSON object and nothing else:
{{"summary": "<one or two sentences describing what you migrated>"}}
"""

_OUTPUT_CONTRACT_RICH = """
When you are done, reply with a JSON object of this shape:
{{
  "sourceFile": "{source_relative_path}",
  "status": "ok",
  "summary": "<one or two sentences describing what you migrated>",
  "createdWikilinks": ["[[Note Title]]"],
  "createdNotes": ["{notes_folder}/Note Title.md"],
  "updatedNotes": [],
  "journalDaysTouched": ["YYYY-MM-DD"],
  "deletedSource": true
}}
Use "status": "error" with an explanation in "summary" if you could not migrate the file.
"""

DAILY_TASK_TEMPLATE = (
    """\
You are migrating one legacy OpenClaw daily memory file into a Zettelclaw vault.

Workspace: {workspace_path}
Source file: {source_path}
Source (relative to memory/): {source_relative_path}
Day: {day}

Steps:
1. Read the source file in full.
2. Append the day's events, decisions and open questions to the journal entry
   "{journal_folder}/{day}.md", creating it if needed.
3. Extract durable knowledge (facts, preferences, decisions worth keeping) into
   atomic notes under "{notes_folder}/", updating existing notes when the idea already exists.
4. Link the journal entry and the notes to each other with wikilinks.
5. Delete the source file {source_path} once everything is saved.
"""
    + _VAULT_RULES
)

OTHER_TASK_TEMPLATE = (
    """\
You are migrating one legacy OpenClaw memory file ({file_basename}) into a Zettelclaw vault.

Workspace: {workspace_path}
Source file: {source_path}
Source (relative to memory/): {source_relative_path}

Steps:
1. Read the source file in full.
2. Split its content into atomic notes under "{notes_folder}/", one idea per note,
   updating existing notes when the idea already exists.
3. If the file describes dated events, add short entries to the matching
   "{journal_folder}/YYYY-MM-DD.md" journal files and link them to the notes.
4. Delete the source file {source_path} once everything is saved.
"""
    + _VAULT_RULES
)

FINAL_SYNTHESIS_TEMPLATE = """\
You are finishing a migration of OpenClaw memory into a Zettelclaw vault.

Workspace: {workspace_path}
Vault: {vault_path}
Notes folder: {notes_folder}
Journal folder: {journal_folder}
Model used by migration agents: {model}

Every legacy memory file has already been migrated by a sub-agent. Their reports:
{task_summaries}

Tasks:
1. Rewrite {workspace_path}/MEMORY.md as a concise index of durable knowledge,
   pointing to vault notes with [[Wikilinks]] instead of repeating their content.
2. Update {workspace_path}/USER.md with stable facts and preferences about the user
   that appear in the reports.
3. Do not edit vault notes or delete any files.

Reply with a short plain-text summary of what you changed.
"""


def build_task_prompt(  # noqa: PLR0913
    task: MigrateTask,
    *,
    workspace_path: Path,
    vault_path: Path,
    notes_folder: str,
    journal_folder: str,
    wikilink_titles: Iterable[str],
    extraction_schema: str = "minimal",
    wikilink_index_cap: int = DEFAULT_WIKILINK_INDEX_CAP,
) -> str:
    """Render the per-file payload for one migration job."""

    template = DAILY_TASK_TEMPLATE if task.kind == MigrateTaskKind.DAILY else OTHER_TASK_TEMPLATE
    contract = _OUTPUT_CONTRACT_RICH if extraction_schema == "rich" else _OUTPUT_CONTRACT_MINIMAL
    day = task.basename[:10] if task.kind == MigrateTaskKind.DAILY else ""
    titles = select_wikilink_titles(
        wikilink_titles,
        relevance_tokens=relevance_tokens(task),
        cap=wikilink_index_cap,
    )
    return (template + contract).format(
        vault_path=vault_path,
        workspace_path=workspace_path,
        notes_folder=notes_folder,
        journal_folder=journal_folder,
        source_path=task.source_path,
        source_relative_path=task.relative_path,
        file_basename=task.basename,
        day=day,
        wikilink_index=format_wikilink_index(titles),
    )


def build_synthesis_prompt(  # noqa: PLR0913
    *,
    workspace_path: Path,
    vault_path: Path,
    notes_folder: str,
    journal_folder: str,
    model: str,
    completed_results: Sequence[StoredTaskResult],
    summaries_max_chars: int = DEFAULT_SUMMARIES_MAX_CHARS,
) -> str:
    """Render the cross-task synthesis payload."""

    return FINAL_SYNTHESIS_TEMPLATE.format(
        workspace_path=workspace_path,
        vault_path=vault_path,
        notes_folder=notes_folder,
        journal_folder=journal_folder,
        model=model,
        task_summaries=serialize_task_summaries(completed_results, max_chars=summaries_max_chars),
    )


def relevance_tokens(task: MigrateTask) -> set[str]:
    """Lowercase alphabetic tokens (3+ chars) from the task's path and basename."""

    tokens: set[str] = set()
    for value in (task.relative_path, task.basename):
        stem = _EXTENSION_RE.sub("", value.strip())
        tokens.update(_RELEVANCE_TOKEN_RE.findall(stem.lower()))
    return tokens


def select_wikilink_titles(
    titles: Iterable[str],
    *,
    relevance_tokens: set[str],
    cap: int = DEFAULT_WIKILINK_INDEX_CAP,
) -> list[str]:
    """Sorted unique titles, biased towards ones sharing a token with the task when capped."""

    ordered = sorted(unique_strings(titles), key=str.lower)
    if len(ordered) <= cap:
        return ordered

    relevant: list[str] = []
    rest: list[str] = []
    for title in ordered:
        lowered = title.lower()
        if any(token in lowered for token in relevance_tokens):
            relevant.append(title)
        else:
            rest.append(title)
    return (relevant + rest)[:cap]


def format_wikilink_index(titles: Iterable[str]) -> str:
    unique = unique_strings(titles)
    if not unique:
        return "- n/a"
    return "\n".join(f"- [[{title}]]" for title in unique)


def serialize_task_summaries(
    results: Sequence[StoredTaskResult],
    *,
    max_chars: int = DEFAULT_SUMMARIES_MAX_CHARS,
) -> str:
    """One line per completed task, sorted by path and cut off at ``max_chars``."""

    lines: list[str] = []
    consumed = 0
    for result in sorted(results, key=lambda item: item.relative_path):
        line = _summary_line(result)
        if consumed + len(line) + 1 > max_chars:
            lines.append(f"- ... truncated after {len(lines)} files to stay within prompt budget.")
            break
        lines.append(line)
        consumed += len(line) + 1

    if not lines:
        return "- n/a"
    return "\n".join(lines)


def _summary_line(result: StoredTaskResult) -> str:
    extraction = result.extraction
    summary = collapse_whitespace(extraction.summary) or "n/a"
    parts = [f"- {result.relative_path} | summary: {summary}"]
    if extraction.created_wikilinks:
        parts.append(f"links: {', '.join(extraction.created_wikilinks)}")
    if extraction.created_notes:
        parts.append(f"created: {', '.join(extraction.created_notes)}")
    if extraction.updated_notes:
        parts.append(f"updated: {', '.join(extraction.updated_notes)}")
    return " | ".join(parts)


def wikilink_title_from_token(value: str) -> str | None:
    """Extract a bare note title from ``[[Title|alias]]``, ``folder/Title.md`` and similar."""

    trimmed = value.strip()
    if not trimmed:
        return None
    match = _WIKILINK_INNER_RE.search(trimmed)
    candidate = match.group(1) if match else trimmed
    candidate = candidate.split("|", 1)[0].split("#", 1)[0]
    candidate = candidate.split("/")[-1].strip()
    title = _MD_SUFFIX_RE.sub("", candidate).strip()
    return title or None


def normalize_wikilink_token(value: str) -> str | None:
    title = wikilink_title_from_token(value)
    return f"[[{title}]]" if title else None


def collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


def unique_strings(values: Iterable[str]) -> list[str]:
    """Trimmed non-empty values, first occurrence wins, compared case-insensitively."""

    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        trimmed = value.strip()
        if not trimmed:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        output.append(trimmed)
    return output
