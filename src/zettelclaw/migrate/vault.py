"""Zettelclaw vault layout detection."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

NOTES_FOLDER_CANDIDATES = ("01 Notes", "Notes")
JOURNAL_FOLDER_CANDIDATES = (
    "03 Journal",
    "02 Journal",
    "02 Daily",
    "03 Daily",
    "Daily",
    "Journal",
)


@dataclass(slots=True)
class VaultLayout:
    notes_folder: str
    journal_folder: str


def detect_existing_folder(vault_path: Path, candidates: Sequence[str]) -> str | None:
    """First candidate that is a directory inside the vault."""

    for folder in candidates:
        if (vault_path / folder).is_dir():
            return folder
    return None


def detect_vault_layout(
    vault_path: Path,
    *,
    notes_folder: str | None = None,
    journal_folder: str | None = None,
) -> VaultLayout:
    """Find the notes and journal folders, preferring explicitly configured names.

    Raises ``ValueError`` when the vault is missing or either folder cannot be found.
    """

    if not vault_path.is_dir():
        raise ValueError(f"Could not find a Zettelclaw vault at {vault_path}.")

    notes = detect_existing_folder(
        vault_path,
        (notes_folder,) if notes_folder else NOTES_FOLDER_CANDIDATES,
    )
    journal = detect_existing_folder(
        vault_path,
        (journal_folder,) if journal_folder else JOURNAL_FOLDER_CANDIDATES,
    )
    if notes is None or journal is None:
        raise ValueError(
            f"Could not detect notes/journal folders in {vault_path}. Is this a Zettelclaw vault?",
        )
    return VaultLayout(notes_folder=notes, journal_folder=journal)
