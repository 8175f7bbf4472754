"""Token usage ledger entries and budget results."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel
from pydantic import Field


class UsageEntry(BaseModel):
    """A single immutable ledger line."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the tokens were spent.",
    )
    agent: str
    model: str
    operation: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    contact_id: str | None = None
    interaction_id: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageBreakdown(BaseModel):
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


class UsageSummary(BaseModel):
    """Aggregate usage since a point in time."""

    since: float
    until: float | None = None
    total: UsageBreakdown = Field(default_factory=UsageBreakdown)
    by_agent: dict[str, UsageBreakdown] = Field(default_factory=dict)
    by_model: dict[str, UsageBreakdown] = Field(default_factory=dict)


class BudgetRecommendation(str, Enum):
    proceed = "proceed"
    use_smaller_model = "use_smaller_model"
    alert_human = "alert_human"
    defer = "defer"


class BudgetCheckResult(BaseModel):
    agent: str
    daily_budget: int
    used_today: int
    remaining: int
    percent_used: float
    within_budget: bool
    recommendation: BudgetRecommendation


class BudgetExceededError(Exception):
    """Raised when an agent has no token budget left for today."""

    def __init__(self, result: BudgetCheckResult) -> None:
        super().__init__(
            f"Daily token budget exhausted for agent {result.agent}: "
            f"{result.used_today}/{result.daily_budget}"
        )
        self.result = result
