"""Pydantic result models for the MCP tool surface.

Every tool answers with a model carrying ``status`` (ok, rejected,
not_found, error), an ``error_code`` and a ``message`` instead of
raising. FastMCP v2 serializes Pydantic models automatically.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import Field

from cortexmcp.context.schemas import ContextResponse
from cortexmcp.context.schemas import RefreshResult
from cortexmcp.crm.schemas import Contact
from cortexmcp.crm.schemas import Handoff
from cortexmcp.crm.schemas import Interaction
from cortexmcp.engine.schemas import TokenUsage
from cortexmcp.journal.schemas import ErrorPattern
from cortexmcp.journal.schemas import ErrorRecord
from cortexmcp.journal.schemas import ErrorSummary
from cortexmcp.usage.schemas import BudgetCheckResult
from cortexmcp.usage.schemas import UsageSummary


class ToolResult(BaseModel):
    """Common status envelope."""

    status: str = Field(
        default="ok",
        description="Outcome: ok, rejected, not_found or error.",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable failure code when status is not ok.",
    )
    message: str | None = Field(
        default=None,
        description="Human-readable failure detail.",
    )


# ---------------------------------------------------------------------------
# Contacts and interactions
# ---------------------------------------------------------------------------


class ContactResult(ToolResult):
    contact: Contact | None = None


class LogInteractionResult(ToolResult):
    interaction: Interaction | None = None
    token_usage: TokenUsage | None = None
    context_refresh_triggered: bool = False


class InteractionListResult(ToolResult):
    interactions: list[Interaction] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class GetContextResult(ToolResult):
    contact_id: str
    briefing: ContextResponse | None = None


class RefreshContextResult(ToolResult):
    contact_id: str
    refresh: RefreshResult | None = None
    budget: BudgetCheckResult | None = None


# ---------------------------------------------------------------------------
# Handoffs
# ---------------------------------------------------------------------------


class HandoffToolResult(ToolResult):
    handoff: Handoff | None = None
    token_usage: TokenUsage | None = None
    context_refresh_scheduled: bool = False


class HandoffListResult(ToolResult):
    handoffs: list[Handoff] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors, usage and self-anneal
# ---------------------------------------------------------------------------


class ErrorSummaryResult(ToolResult):
    summary: ErrorSummary | None = None


class ErrorPatternsResult(ToolResult):
    window_hours: float
    patterns: list[ErrorPattern] = Field(default_factory=list)


class RecentErrorsResult(ToolResult):
    window_hours: float
    errors: list[ErrorRecord] = Field(default_factory=list)


class ResolveErrorsResult(ToolResult):
    resolved_count: int = 0


class BudgetResult(ToolResult):
    budget: BudgetCheckResult | None = None


class UsageSummaryResult(ToolResult):
    usage: UsageSummary | None = None


class SelfAnnealResult(ToolResult):
    patterns_found: int = 0
    resolved_count: int = 0
    learnings: list[str] = Field(default_factory=list)
    appended: int = 0
    phase_errors: dict[str, str] = Field(default_factory=dict)


class HealthResult(ToolResult):
    redis: bool = False
    scheduler_running: bool = False
    background_tasks: int = 0
    latency: dict[str, dict[str, Any]] = Field(default_factory=dict)
