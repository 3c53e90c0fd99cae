"""Invariant report schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ViolationRead(BaseModel):
    """Serialized invariant violation."""

    invariant: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime


class InvariantReport(BaseModel):
    """Per-entity invariant audit."""

    passed: bool
    violations: list[ViolationRead] = Field(default_factory=list)


class CriticalCheckResult(BaseModel):
    """Result of one system-wide check."""

    check: str
    passed: bool
    message: str | None = None
    error: str | None = None


class CriticalReport(BaseModel):
    """System-wide invariant audit."""

    all_passed: bool
    results: list[CriticalCheckResult] = Field(default_factory=list)


class GhostMember(BaseModel):
    """Orphaned workspace membership."""

    member_id: str
    user_id: str
    workspace_id: str
    reason: Literal["WORKSPACE_NOT_FOUND", "USER_NOT_IN_ORG"]


class CleanupResult(BaseModel):
    """Outcome of a ghost member cleanup."""

    deleted: int
    errors: list[str] = Field(default_factory=list)
