from __future__ import annotations

from pathlib import Path

import allure

from zettelclaw.migrate.models import (
    MigrateExtraction,
    MigrateTask,
    MigrateTaskKind,
    StoredTaskResult,
)
from zettelclaw.migrate.prompts import (
    build_synthesis_prompt,
    build_task_prompt,
    format_wikilink_index,
    normalize_wikilink_token,
    relevance_tokens,
    select_wikilink_titles,
    serialize_task_summaries,
    wikilink_title_from_token,
)

pytestmark = [
    allure.epic("Memory Migration"),
    allure.feature("Prompt Building"),
]

WORKSPACE = Path("/home/user/.openclaw/workspace")
VAULT = Path("/home/user/vault")


def _task(relative_path: str, kind: MigrateTaskKind = MigrateTaskKind.OTHER) -> MigrateTask:
    return MigrateTask(
        id=f"task-{relative_path}",
        relative_path=relative_path,
        basename=relative_path.rsplit("/", 1)[-1],
        source_path=WORKSPACE / "memory" / relative_path,
        kind=kind,
    )


def _result(relative_path: str, summary: str, **extra) -> StoredTaskResult:
    return StoredTaskResult(
        task_id=f"task-{relative_path}",
        relative_path=relative_path,
        extraction=MigrateExtraction(summary=summary, **extra),
        completed_at="2026-01-01T00:00:00.000Z",
    )


def _render(task: MigrateTask, titles: list[str], **kwargs) -> str:
    return build_task_prompt(
        task,
        workspace_path=WORKSPACE,
        vault_path=VAULT,
        notes_folder="01 Notes",
        journal_folder="03 Journal",
        wikilink_titles=titles,
        **kwargs,
    )


def test_daily_prompt_includes_day_and_journal_entry() -> None:
    prompt = _render(_task("2026-02-03.md", MigrateTaskKind.DAILY), ["Coffee"])

    assert "Day: 2026-02-03" in prompt
    assert '"03 Journal/2026-02-03.md"' in prompt
    assert f"Source file: {WORKSPACE / 'memory' / '2026-02-03.md'}" in prompt
    assert "- [[Coffee]]" in prompt
    assert '{"summary": "<one or two sentences' in prompt


def test_other_prompt_names_the_file_and_has_no_day() -> None:
    prompt = _render(_task("people/family.md"), [])

    assert "(family.md)" in prompt
    assert "Source (relative to memory/): people/family.md" in prompt
    assert "Day:" not in prompt
    assert "- n/a" in prompt


def test_rich_prompt_asks_for_structured_reply() -> None:
    prompt = _render(_task("people/family.md"), [], extraction_schema="rich")

    assert '"sourceFile": "people/family.md"' in prompt
    assert '"createdNotes": ["01 Notes/Note Title.md"]' in prompt


def test_wikilink_index_lists_unique_titles() -> None:
    assert format_wikilink_index([]) == "- n/a"
    assert format_wikilink_index(["  ", "Alpha", "alpha", "Beta "]) == "- [[Alpha]]\n- [[Beta]]"


def test_small_title_sets_are_sorted_case_insensitively() -> None:
    titles = select_wikilink_titles(["beta", "Alpha", "gamma"], relevance_tokens=set(), cap=40)

    assert titles == ["Alpha", "beta", "gamma"]


def test_large_title_sets_put_relevant_titles_first() -> None:
    titles = [f"Topic {index:02d}" for index in range(50)] + ["Garden Plan", "Vegetable garden"]

    selected = select_wikilink_titles(titles, relevance_tokens={"garden"}, cap=5)

    assert selected == ["Garden Plan", "Vegetable garden", "Topic 00", "Topic 01", "Topic 02"]


def test_relevance_tokens_come_from_path_and_basename() -> None:
    tokens = relevance_tokens(_task("projects/garden-ideas.md"))

    assert tokens == {"projects", "garden", "ideas"}
    assert relevance_tokens(_task("2026-01-01.md", MigrateTaskKind.DAILY)) == set()


def test_task_prompt_caps_the_wikilink_index() -> None:
    titles = [f"Topic {index:02d}" for index in range(60)]

    prompt = _render(_task("notes.md"), titles, wikilink_index_cap=40)

    assert prompt.count("- [[Topic") == 40


def test_summaries_are_sorted_and_single_line() -> None:
    text = serialize_task_summaries(
        [
            _result("b.md", "second\n  file"),
            _result("a.md", "", created_wikilinks=["[[A]]"], created_notes=["01 Notes/A.md"]),
        ],
    )

    assert text.splitlines() == [
        "- a.md | summary: n/a | links: [[A]] | created: 01 Notes/A.md",
        "- b.md | summary: second file",
    ]


def test_summaries_are_truncated_with_marker() -> None:
    results = [_result(f"{index:02d}.md", "x" * 50) for index in range(10)]

    text = serialize_task_summaries(results, max_chars=200)

    lines = text.splitlines()
    assert lines[-1] == "- ... truncated after 2 files to stay within prompt budget."
    assert len(lines) == 3


def test_empty_summaries_render_placeholder() -> None:
    assert serialize_task_summaries([]) == "- n/a"


def test_synthesis_prompt_mentions_model_and_summaries() -> None:
    prompt = build_synthesis_prompt(
        workspace_path=WORKSPACE,
        vault_path=VAULT,
        notes_folder="01 Notes",
        journal_folder="03 Journal",
        model="anthropic/claude-haiku",
        completed_results=[_result("a.md", "Moved things")],
    )

    assert "Model used by migration agents: anthropic/claude-haiku" in prompt
    assert "- a.md | summary: Moved things" in prompt
    assert f"{WORKSPACE}/MEMORY.md" in prompt


def test_wikilink_token_helpers() -> None:
    assert wikilink_title_from_token("[[Alpha|alias]]") == "Alpha"
    assert wikilink_title_from_token("[[Alpha#Heading]]") == "Alpha"
    assert wikilink_title_from_token("01 Notes/Alpha.md") == "Alpha"
    assert wikilink_title_from_token("   ") is None
    assert normalize_wikilink_token("01 Notes/Beta.MD") == "[[Beta]]"
    assert normalize_wikilink_token(".md") is None
