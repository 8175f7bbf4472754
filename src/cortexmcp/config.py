"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
Components never read the environment themselves; only the process
entrypoint builds these from env vars.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


@dataclass(frozen=True)
class LLMConfig:
    """Summarizer provider settings and token pricing."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.2
    max_tokens: int = 1000
    timeout_seconds: float = 30.0
    # USD per million tokens
    input_cost_per_million: float = 1.0
    output_cost_per_million: float = 5.0


@dataclass(frozen=True)
class ContextConfig:
    """Context cache staleness and regeneration limits."""

    staleness_hours: float = 24.0
    context_interaction_limit: int = 20
    handoff_interaction_limit: int = 10
    level2_interaction_limit: int = 10
    level3_interaction_limit: int = 50
    header_token_count: int = 50
    context_ttl_hours: float | None = None
    agent_name: str = "cortex"

    def __post_init__(self) -> None:
        if self.staleness_hours <= 0:
            raise ValueError("staleness_hours must be positive")
        if self.context_interaction_limit < 1 or self.handoff_interaction_limit < 1:
            raise ValueError("interaction limits must be at least 1")


@dataclass(frozen=True)
class JournalConfig:
    """Error journal windows and pattern thresholds."""

    default_window_hours: float = 24.0
    recent_window_hours: float = 4.0
    recurring_threshold: int = 3
    escalation_threshold: int = 5
    rate_limit_marker: str = "rate_limit"


@dataclass(frozen=True)
class AnnealConfig:
    """Self-anneal cycle windows and audit sweep thresholds."""

    window_hours: float = 4.0
    # Output quality sweep
    quality_sample_size: int = 10
    min_summary_length: int = 20
    # Staleness-under-load sweep
    active_lookback_hours: float = 48.0
    stale_context_hours: float = 48.0
    active_contact_limit: int = 50
    # Coordination backlog sweep
    handoff_overdue_hours: float = 4.0
    handoff_stuck_hours: float = 24.0
    escalation_urgencies: tuple[str, ...] = ("high", "critical")


@dataclass(frozen=True)
class RefreshConfig:
    """Pacing for the nightly batch refresh and stale cleanup."""

    batch_size: int = 10
    batch_delay_seconds: float = 2.0
    active_days: int = 30
    cleanup_after_days: int = 7
    inactive_days: int = 30

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds must not be negative")


@dataclass(frozen=True)
class ScheduleConfig:
    """Cadences (seconds) of the background jobs."""

    handoff_reminder_seconds: float = 2 * 3600
    self_anneal_seconds: float = 4 * 3600
    stale_cleanup_seconds: float = 6 * 3600
    nightly_refresh_seconds: float = 24 * 3600
    usage_report_seconds: float = 24 * 3600


@dataclass(frozen=True)
class KnowledgeConfig:
    """Location and layout of the shared knowledge document."""

    file_path: str = "directives/cortex.md"
    marker: str = "## Learnings & Edge Cases"
    deduplicate: bool = True


@dataclass(frozen=True)
class BudgetConfig:
    """Daily token budgets per agent."""

    default_daily_token_budget: int = 100_000
    agent_budgets: dict[str, int] = field(default_factory=dict)
    cache_ttl_seconds: float = 30.0
    smaller_model_threshold: float = 0.90
    alert_threshold: float = 0.95

    def budget_for(self, agent: str) -> int:
        return self.agent_budgets.get(agent, self.default_daily_token_budget)


@dataclass(frozen=True)
class UsageConfig:
    """Settings for the JSONL usage ledger."""

    file_path: str = "cortex_usage.jsonl"
    enabled: bool = True
