"""Deterministic classification of finished-run errors and synthesis summaries."""

from __future__ import annotations

from dataclasses import dataclass

_DELIVERY_FAILURE_PATTERNS: tuple[str, ...] = (
    "cron delivery target is missing",
    "cron announce delivery failed",
    "delivery target is missing",
)
_SYNTHESIS_CONFLICT_PATTERNS: tuple[str, ...] = (
    "could not find the exact text to replace",
)


@dataclass(slots=True)
class FinishedRunClassification:
    """Outcome of a finished run as seen by the job client."""

    succeeded: bool
    delivery_failure: bool
    matched_pattern: str | None
    detail: str


def classify_finished_run(*, status: str | None, summary: str, error: str) -> FinishedRunClassification:
    """Decide whether a finished run produced a usable summary.

    Runs whose only problem was announcing the result still count as
    successful when they left a non-empty summary behind.
    """

    normalized_status = (status or "ok").strip().lower()
    if normalized_status == "ok":
        return FinishedRunClassification(
            succeeded=True,
            delivery_failure=False,
            matched_pattern=None,
            detail="",
        )

    error_text = error.strip()
    summary_text = summary if summary.strip() else ""
    pattern = _first_match(error_text.lower(), _DELIVERY_FAILURE_PATTERNS)
    if pattern is not None and summary_text:
        return FinishedRunClassification(
            succeeded=True,
            delivery_failure=True,
            matched_pattern=pattern,
            detail=error_text,
        )

    return FinishedRunClassification(
        succeeded=False,
        delivery_failure=pattern is not None,
        matched_pattern=pattern,
        detail=error_text or summary_text.strip() or "no summary",
    )


def find_synthesis_conflict(summary: str) -> str | None:
    """Return the conflict signature found in a synthesis summary, if any."""

    return _first_match(summary.lower(), _SYNTHESIS_CONFLICT_PATTERNS)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
