"""Recorded side effects and undo reports."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EffectType(StrEnum):
    """Effect types with built-in reversal handlers. The set is open."""

    CONTENT_MODIFIED = "content_modified"
    ATTRIBUTE_SET = "attribute_set"
    ARTIFACT_CREATED = "artifact_created"


class Effect(BaseModel):
    """A reversible mutation recorded by a step, in execution order."""

    model_config = ConfigDict(extra="allow")

    type: str
    target: dict[str, Any] = Field(default_factory=dict)
    previous_value: Any = None


class UndoStatus(StrEnum):
    REVERTED = "reverted"
    SKIPPED = "skipped"
    FAILED = "failed"


class EffectResult(BaseModel):
    status: UndoStatus
    type: str
    reason: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class UndoReport(BaseModel):
    success: bool
    reverted: list[EffectResult] = Field(default_factory=list)
    skipped: list[EffectResult] = Field(default_factory=list)
    failed: list[EffectResult] = Field(default_factory=list)
    error: str = ""


class JobUndoStatus(StrEnum):
    UNDONE = "undone"
    WOULD_UNDO = "would_undo"
    ALREADY_UNDONE = "already_undone"
    UNSUPPORTED = "unsupported"
    NO_EFFECTS = "no_effects"


class JobUndoOutcome(BaseModel):
    job_id: str
    status: JobUndoStatus
    task_type: str = ""
    effects: list[dict[str, Any]] = Field(default_factory=list)
    report: UndoReport | None = None
