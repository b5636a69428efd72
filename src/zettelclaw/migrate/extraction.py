"""Recover structured extraction records from free-text job summaries."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from zettelclaw.migrate.models import MigrateExtraction, MigrateTask
from zettelclaw.migrate.prompts import collapse_whitespace, normalize_wikilink_token, unique_strings

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_JOURNAL_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LOOSE_LIST_SPLIT = re.compile(r"\r?\n|,")


class ExtractionSchema(str, Enum):
    """Accepted shapes of a migration job reply."""

    MINIMAL = "minimal"
    RICH = "rich"


class ExtractionParseError(ValueError):
    """Raised when no extraction could be recovered from a job summary."""

    def __init__(self, relative_path: str) -> None:
        super().__init__(f"Could not parse migration sub-agent output for {relative_path}.")
        self.relative_path = relative_path


class _MinimalExtractionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    summary: str

    @field_validator("summary")
    @classmethod
    def _collapse_summary(cls, value: str) -> str:
        collapsed = collapse_whitespace(value)
        if not collapsed:
            raise ValueError("summary must not be empty")
        return collapsed


class _RichExtractionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sourceFile", "source_file", "file"),
    )
    status: str = "ok"
    summary: str = Field(default="", validation_alias=AliasChoices("summary", "Summary"))
    created_wikilinks: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("createdWikilinks", "created_wikilinks", "Created Wikilinks"),
    )
    created_notes: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("createdNotes", "created_notes", "Created Notes"),
    )
    updated_notes: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("updatedNotes", "updated_notes", "Updated Notes"),
    )
    journal_days_touched: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "journalDaysTouched",
            "journal_days_touched",
            "Journal Days Touched",
        ),
    )
    deleted_source: bool = Field(
        default=False,
        validation_alias=AliasChoices("deletedSource", "deleted_source"),
    )

    @field_validator("source_file", mode="before")
    @classmethod
    def _source_file(cls, value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() == "error":
            return "error"
        return "ok"

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        return collapse_whitespace(value) if isinstance(value, str) else ""

    @field_validator(
        "created_wikilinks",
        "created_notes",
        "updated_notes",
        "journal_days_touched",
        mode="before",
    )
    @classmethod
    def _loose_list(cls, value: Any) -> list[str]:
        if isinstance(value, list):
            return [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]
        if isinstance(value, str):
            return _split_loose_list(value)
        return []

    @field_validator("deleted_source", mode="before")
    @classmethod
    def _deleted_source(cls, value: Any) -> bool:
        return value is True

    def to_extraction(self, fallback_source_file: str) -> MigrateExtraction:
        return MigrateExtraction(
            summary=self.summary,
            status=self.status,
            source_file=self.source_file or fallback_source_file,
            created_wikilinks=_normalize_wikilinks(self.created_wikilinks),
            created_notes=unique_strings(path.replace("\\", "/") for path in self.created_notes),
            updated_notes=unique_strings(path.replace("\\", "/") for path in self.updated_notes),
            journal_days_touched=unique_strings(
                day for day in self.journal_days_touched if _JOURNAL_DAY.match(day.strip())
            ),
            deleted_source=self.deleted_source,
        )


def parse_extraction(
    raw: str,
    task: MigrateTask,
    schema: ExtractionSchema | str = ExtractionSchema.MINIMAL,
) -> MigrateExtraction:
    """Parse a job summary into an extraction record.

    JSON candidates are tried first (whole text, fenced blocks, outermost
    braces). The rich schema additionally accepts ``Summary:`` style sections
    and, as a last resort, the whole text as the summary.
    """

    schema = ExtractionSchema(schema)
    for candidate in collect_json_candidates(raw):
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        extraction = _validate_payload(payload, task=task, schema=schema)
        if extraction is not None:
            return extraction

    if schema == ExtractionSchema.RICH:
        sectioned = _parse_section_style(raw, task=task)
        if sectioned is not None:
            return sectioned
        normalized = collapse_whitespace(raw)
        if normalized:
            return MigrateExtraction(summary=normalized, source_file=task.relative_path)

    raise ExtractionParseError(task.relative_path)


def collect_json_candidates(raw: str) -> list[str]:
    candidates: list[str] = []
    trimmed = raw.strip()
    if trimmed:
        candidates.append(trimmed)

    for match in _FENCED_BLOCK.finditer(raw):
        body = match.group(1).strip()
        if body:
            candidates.append(body)

    start = raw.find("{")
    end = raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start : end + 1].strip())

    return unique_strings(candidates)


def _validate_payload(
    payload: Any,
    *,
    task: MigrateTask,
    schema: ExtractionSchema,
) -> MigrateExtraction | None:
    if not isinstance(payload, dict) or not payload:
        return None
    try:
        if schema == ExtractionSchema.MINIMAL:
            minimal = _MinimalExtractionPayload.model_validate(payload)
            return MigrateExtraction(summary=minimal.summary, source_file=task.relative_path)
        rich = _RichExtractionPayload.model_validate(payload)
    except ValidationError:
        return None
    return rich.to_extraction(task.relative_path)


def _parse_section_style(raw: str, *, task: MigrateTask) -> MigrateExtraction | None:
    summary_line = ""
    links: list[str] = []
    in_links = False

    for raw_line in raw.replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        lowered = line.lower()
        if lowered.startswith("summary:"):
            summary_line = line[len("summary:") :].strip()
            in_links = False
            continue
        if lowered.startswith("created wikilinks:"):
            remainder = line[len("created wikilinks:") :].strip()
            if remainder:
                links.extend(_split_loose_list(remainder))
            in_links = True
            continue
        if in_links:
            if line.startswith("- "):
                links.append(line[2:].strip())
                continue
            if "[[" in line:
                links.extend(_split_loose_list(line))
                continue
            in_links = False

    normalized_links = _normalize_wikilinks(links)
    summary = collapse_whitespace(summary_line)
    if not summary and not normalized_links:
        return None
    return MigrateExtraction(
        summary=summary,
        source_file=task.relative_path,
        created_wikilinks=normalized_links,
    )


def _normalize_wikilinks(values: list[str]) -> list[str]:
    tokens = (normalize_wikilink_token(value) for value in values)
    return unique_strings(token for token in tokens if token)


def _split_loose_list(value: str) -> list[str]:
    entries = (re.sub(r"^-\s*", "", part).strip() for part in _LOOSE_LIST_SPLIT.split(value))
    return [entry for entry in entries if entry]
