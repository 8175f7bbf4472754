"""Unit tests for configuration dataclasses."""

from dataclasses import FrozenInstanceError

import pytest

from cortexmcp.config import AnnealConfig
from cortexmcp.config import BudgetConfig
from cortexmcp.config import ContextConfig
from cortexmcp.config import JournalConfig
from cortexmcp.config import KnowledgeConfig
from cortexmcp.config import LLMConfig
from cortexmcp.config import RefreshConfig
from cortexmcp.config import ScheduleConfig


# ---------------------------------------------------------------------------
# LLMConfig
# ---------------------------------------------------------------------------


class TestLLMConfig:
    def test_defaults(self):
        cfg = LLMConfig()
        assert cfg.provider == "openai"
        assert cfg.model == "gpt-4o-mini"
        assert cfg.api_key is None
        assert cfg.base_url == "https://api.openai.com/v1"
        assert cfg.temperature == 0.2
        assert cfg.timeout_seconds == 30.0

    def test_frozen(self):
        cfg = LLMConfig()
        with pytest.raises(FrozenInstanceError):
            cfg.model = "other"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# ContextConfig
# ---------------------------------------------------------------------------


class TestContextConfig:
    def test_defaults(self):
        cfg = ContextConfig()
        assert cfg.staleness_hours == 24.0
        assert cfg.context_interaction_limit == 20
        assert cfg.handoff_interaction_limit == 10
        assert cfg.level2_interaction_limit == 10
        assert cfg.level3_interaction_limit == 50
        assert cfg.header_token_count == 50

    def test_rejects_non_positive_staleness(self):
        with pytest.raises(ValueError, match="staleness_hours"):
            ContextConfig(staleness_hours=0)

    def test_rejects_zero_interaction_limit(self):
        with pytest.raises(ValueError, match="interaction limits"):
            ContextConfig(context_interaction_limit=0)


# ---------------------------------------------------------------------------
# Journal / anneal
# ---------------------------------------------------------------------------


class TestJournalConfig:
    def test_defaults(self):
        cfg = JournalConfig()
        assert cfg.default_window_hours == 24.0
        assert cfg.recent_window_hours == 4.0
        assert cfg.recurring_threshold == 3
        assert cfg.escalation_threshold == 5
        assert cfg.rate_limit_marker == "rate_limit"


class TestAnnealConfig:
    def test_defaults(self):
        cfg = AnnealConfig()
        assert cfg.window_hours == 4.0
        assert cfg.quality_sample_size == 10
        assert cfg.min_summary_length == 20
        assert cfg.stale_context_hours == 48.0
        assert cfg.handoff_overdue_hours == 4.0
        assert cfg.handoff_stuck_hours == 24.0
        assert cfg.escalation_urgencies == ("high", "critical")


# ---------------------------------------------------------------------------
# Refresh / schedule
# ---------------------------------------------------------------------------


class TestRefreshConfig:
    def test_defaults(self):
        cfg = RefreshConfig()
        assert cfg.batch_size == 10
        assert cfg.batch_delay_seconds == 2.0
        assert cfg.active_days == 30

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError, match="batch_size"):
            RefreshConfig(batch_size=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError, match="batch_delay_seconds"):
            RefreshConfig(batch_delay_seconds=-1)


class TestScheduleConfig:
    def test_cadences(self):
        cfg = ScheduleConfig()
        assert cfg.handoff_reminder_seconds == 2 * 3600
        assert cfg.self_anneal_seconds == 4 * 3600
        assert cfg.stale_cleanup_seconds == 6 * 3600
        assert cfg.nightly_refresh_seconds == 24 * 3600


# ---------------------------------------------------------------------------
# Knowledge / budget
# ---------------------------------------------------------------------------


class TestKnowledgeConfig:
    def test_defaults(self):
        cfg = KnowledgeConfig()
        assert cfg.marker == "## Learnings & Edge Cases"
        assert cfg.deduplicate is True


class TestBudgetConfig:
    def test_default_budget_applies_to_unknown_agent(self):
        cfg = BudgetConfig()
        assert cfg.budget_for("support") == 100_000

    def test_agent_override(self):
        cfg = BudgetConfig(agent_budgets={"sales": 5_000})
        assert cfg.budget_for("sales") == 5_000
        assert cfg.budget_for("support") == 100_000

    def test_agent_budgets_not_shared_between_instances(self):
        assert BudgetConfig().agent_budgets is not BudgetConfig().agent_budgets
