"""Error journal data models."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class ErrorType(str, Enum):
    """Classification of a journaled error."""

    operational = "operational"
    external_dependency = "external_dependency"
    budget_exceeded = "budget_exceeded"
    quality_issue = "quality_issue"
    integration_gap = "integration_gap"


class ErrorEntry(BaseModel):
    """What a caller reports to ``ErrorJournal.log_error``."""

    error_type: ErrorType = Field(
        description="Classification of the failure.",
    )
    service: str = Field(
        description="Originating service name, e.g. 'regeneration'.",
    )
    operation: str = Field(
        description="Originating operation name, e.g. 'generate_context'.",
    )
    message: str = Field(
        description="Human-readable failure message.",
    )
    stack_trace: str | None = Field(
        default=None,
        description="Formatted traceback when one was available.",
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured context for the failure.",
    )
    pattern_id: str | None = Field(
        default=None,
        description="Stable tag for known failure shapes, e.g. 'empty_summary'.",
    )


class ErrorRecord(ErrorEntry):
    """A persisted error with its set-once resolution fields."""

    id: str = Field(
        default_factory=lambda: f"err_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as err_{uuid4_hex}.",
    )
    created_at: float = Field(
        default_factory=time.time,
        description="Unix epoch when the error was journaled.",
    )
    resolution: str | None = Field(
        default=None,
        description="How the error was resolved.",
    )
    resolved_at: float | None = Field(
        default=None,
        description="Unix epoch of resolution; set at most once.",
    )
    auto_fixed: bool = Field(
        default=False,
        description="True when resolved by the self-anneal cycle.",
    )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


class ErrorPattern(BaseModel):
    """Unresolved errors sharing one (error_type, service, operation) triple."""

    error_type: ErrorType
    service: str
    operation: str
    pattern_id: str | None = None
    count: int
    latest_message: str
    first_seen: float
    last_seen: float
    error_ids: list[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.error_type.value}::{self.service}::{self.operation}"


class ErrorSummary(BaseModel):
    """Counts over a journal window."""

    window_hours: float
    total: int = 0
    unresolved: int = 0
    auto_fixed: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_service: dict[str, int] = Field(default_factory=dict)
    recurring_patterns: list[ErrorPattern] = Field(default_factory=list)
