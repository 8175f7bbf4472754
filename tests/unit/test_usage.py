"""Unit tests for the usage ledger and budget guard."""

from __future__ import annotations

from datetime import datetime
from datetime import timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from cortexmcp.cache import TTLCache
from cortexmcp.config import BudgetConfig
from cortexmcp.config import UsageConfig
from cortexmcp.journal import ErrorType
from cortexmcp.usage import BudgetExceededError
from cortexmcp.usage import BudgetGuard
from cortexmcp.usage import BudgetRecommendation
from cortexmcp.usage import UsageEntry
from cortexmcp.usage import UsageLedger
from cortexmcp.usage.budget import recommend
from cortexmcp.usage.budget import utc_day_start

NOW = datetime(2026, 10, 18, 15, tzinfo=timezone.utc).timestamp()
TODAY = datetime(2026, 10, 18, tzinfo=timezone.utc).timestamp()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(tmp_path: Path, *, enabled: bool = True) -> UsageConfig:
    return UsageConfig(file_path=str(tmp_path / "usage" / "ledger.jsonl"), enabled=enabled)


def _entry(
    agent: str = "sales",
    *,
    timestamp: float = NOW,
    input_tokens: int = 100,
    output_tokens: int = 50,
    model: str = "m",
) -> UsageEntry:
    return UsageEntry(
        timestamp=timestamp,
        agent=agent,
        model=model,
        operation="summarize_interaction",
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=0.001,
    )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TestUsageLedger:
    async def test_record_then_read(self, tmp_path):
        ledger = UsageLedger(_config(tmp_path))

        assert await ledger.record(_entry()) is True
        assert await ledger.record(_entry("support")) is True

        entries = await ledger.read_entries()
        assert [e.agent for e in entries] == ["sales", "support"]

    async def test_disabled_ledger_writes_nothing(self, tmp_path):
        ledger = UsageLedger(_config(tmp_path, enabled=False))
        assert await ledger.record(_entry()) is False
        assert await ledger.read_entries() == []

    async def test_missing_file_reads_empty(self, tmp_path):
        assert await UsageLedger(_config(tmp_path)).read_entries() == []

    async def test_malformed_lines_skipped(self, tmp_path):
        config = _config(tmp_path)
        ledger = UsageLedger(config)
        await ledger.record(_entry())
        with open(config.file_path, "a") as fh:
            fh.write("not json\n")
        await ledger.record(_entry())

        assert len(await ledger.read_entries()) == 2

    async def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        ledger = UsageLedger(UsageConfig(file_path=str(blocker / "ledger.jsonl")))

        assert await ledger.record(_entry()) is False

    async def test_filters_and_tokens_used(self, tmp_path):
        ledger = UsageLedger(_config(tmp_path))
        await ledger.record(_entry(timestamp=TODAY - 10))
        await ledger.record(_entry(timestamp=TODAY + 10))
        await ledger.record(_entry("support", timestamp=TODAY + 20))

        assert await ledger.tokens_used("sales", TODAY) == 150
        assert len(await ledger.read_entries(until=TODAY)) == 1

    async def test_summary_groups_by_agent_and_model(self, tmp_path):
        ledger = UsageLedger(_config(tmp_path))
        await ledger.record(_entry(model="a"))
        await ledger.record(_entry(model="b"))
        await ledger.record(_entry("support", model="a"))

        summary = await ledger.summary(TODAY)

        assert summary.total.calls == 3
        assert summary.total.input_tokens == 300
        assert summary.by_agent["sales"].calls == 2
        assert summary.by_model["a"].output_tokens == 100
        assert summary.total.cost_usd == pytest.approx(0.003)


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class TestRecommend:
    @pytest.mark.parametrize(
        ("used", "expected"),
        [
            (0, BudgetRecommendation.proceed),
            (899, BudgetRecommendation.proceed),
            (900, BudgetRecommendation.use_smaller_model),
            (949, BudgetRecommendation.use_smaller_model),
            (950, BudgetRecommendation.alert_human),
            (999, BudgetRecommendation.alert_human),
            (1000, BudgetRecommendation.defer),
            (1500, BudgetRecommendation.defer),
        ],
    )
    def test_thresholds(self, used, expected):
        assert recommend(used, 1000) == expected


def test_utc_day_start():
    assert utc_day_start(NOW) == TODAY


def _make_guard(used: int, *, budget: int = 1000):
    ledger = AsyncMock()
    ledger.tokens_used.return_value = used
    journal = AsyncMock()
    guard = BudgetGuard(
        ledger,
        journal,
        BudgetConfig(agent_budgets={"sales": budget}),
        cache=TTLCache(30),
        clock=lambda: NOW,
    )
    return guard, ledger, journal


class TestBudgetGuard:
    async def test_check_within_budget(self):
        guard, ledger, _ = _make_guard(400)

        result = await guard.check_budget("sales")

        ledger.tokens_used.assert_awaited_once_with("sales", TODAY)
        assert result.daily_budget == 1000
        assert result.used_today == 400
        assert result.remaining == 600
        assert result.percent_used == 40.0
        assert result.within_budget is True
        assert result.recommendation == BudgetRecommendation.proceed

    async def test_estimate_counts_against_remaining(self):
        guard, _, _ = _make_guard(400)
        assert (await guard.check_budget("sales", 700)).within_budget is False
        assert (await guard.check_budget("sales", 500)).within_budget is True

    async def test_usage_cached_per_agent_and_day(self):
        guard, ledger, _ = _make_guard(400)
        await guard.check_budget("sales")
        await guard.check_budget("sales")
        assert ledger.tokens_used.await_count == 1

    async def test_enforce_rejects_and_journals(self):
        guard, _, journal = _make_guard(1000)

        with pytest.raises(BudgetExceededError) as excinfo:
            await guard.enforce("sales", "refresh_context")

        assert excinfo.value.result.recommendation == BudgetRecommendation.defer
        assert excinfo.value.result.remaining == 0
        entry = journal.log_error.await_args.args[0]
        assert entry.error_type == ErrorType.budget_exceeded
        assert entry.service == "budget_guard"
        assert entry.operation == "refresh_context"
        assert entry.pattern_id == "budget_exceeded"

    async def test_enforce_passes_within_budget(self):
        guard, _, journal = _make_guard(10)
        result = await guard.enforce("sales", "refresh_context")
        assert result.within_budget
        journal.log_error.assert_not_called()

    async def test_enforce_proceeds_when_ledger_unreadable(self):
        guard, ledger, journal = _make_guard(0)
        ledger.tokens_used.side_effect = OSError("disk gone")

        assert await guard.enforce("sales", "refresh_context") is None
        journal.log_error.assert_not_called()
