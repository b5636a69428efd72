"""Models available to scheduled agent runs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Protocol

from zettelclaw.scheduler.base import JobError, JobErrorCode

ALIAS_TAG_PREFIX = "alias:"
DEFAULT_TAG = "default"


@dataclass(slots=True)
class ModelInfo:
    """One entry of ``openclaw models list``."""

    key: str
    name: str
    alias: str | None = None
    is_default: bool = False

    @property
    def label(self) -> str:
        return f"{self.key} ({self.alias})" if self.alias else self.key

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.alias})" if self.alias else self.name


class ModelCatalog(Protocol):
    """Source of the models a scheduler can run."""

    def list_models(self) -> list[ModelInfo]:
        """Return configured models; may be empty."""


def parse_models(stdout: str) -> list[ModelInfo]:
    """Parse ``models list --json`` output, dropping entries without a key."""

    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as error:
        raise JobError(
            JobErrorCode.INVALID_JSON,
            "OpenClaw returned invalid model JSON.",
            str(error),
        ) from error
    raw_models = payload.get("models") if isinstance(payload, dict) else None
    if not isinstance(raw_models, list):
        return []

    models: list[ModelInfo] = []
    for raw in raw_models:
        if not isinstance(raw, dict):
            continue
        key = raw.get("key")
        if not isinstance(key, str) or not key:
            continue
        name = raw.get("name")
        raw_tags = raw.get("tags")
        tags = (
            [tag for tag in raw_tags if isinstance(tag, str)] if isinstance(raw_tags, list) else []
        )
        alias = next(
            (tag[len(ALIAS_TAG_PREFIX) :] for tag in tags if tag.startswith(ALIAS_TAG_PREFIX)),
            "",
        )
        models.append(
            ModelInfo(
                key=key,
                name=name if isinstance(name, str) and name else key,
                alias=alias or None,
                is_default=DEFAULT_TAG in tags,
            ),
        )
    return models


def resolve_requested_model(models: list[ModelInfo], requested: str) -> ModelInfo:
    """Match ``requested`` against key, alias or name, case-insensitively."""

    if not models:
        raise ValueError("OpenClaw returned no models.")
    wanted = requested.strip().lower()
    for model in models:
        candidates = {
            value.strip().lower()
            for value in (model.key, model.alias, model.name)
            if value and value.strip()
        }
        if wanted in candidates:
            return model
    available = ", ".join(model.label for model in models)
    raise ValueError(f"Model not found: {requested}. Available models: {available}")
