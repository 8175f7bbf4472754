"""Unit tests for the remediation decision table and engine."""

from __future__ import annotations

from unittest.mock import AsyncMock

from cortexmcp.anneal import AutoRemediationEngine
from cortexmcp.anneal import choose_remediation
from cortexmcp.anneal import RemediationAction
from cortexmcp.config import JournalConfig
from cortexmcp.journal import ErrorPattern
from cortexmcp.journal import ErrorType


def _make_pattern(
    error_type: ErrorType = ErrorType.operational,
    count: int = 3,
    message: str = "something broke",
    **kwargs,
) -> ErrorPattern:
    defaults: dict = {
        "error_type": error_type,
        "service": "regeneration",
        "operation": "generate_context",
        "count": count,
        "latest_message": message,
        "first_seen": 1.0,
        "last_seen": 2.0,
        "error_ids": [f"err_{i}" for i in range(count)],
    }
    defaults.update(kwargs)
    return ErrorPattern(**defaults)


class TestChooseRemediation:
    def test_rate_limit_reduces_batch_size(self):
        pattern = _make_pattern(
            ErrorType.external_dependency,
            message="rate_limit: provider HTTP 429",
        )
        remediation = choose_remediation(pattern)
        assert remediation.action == RemediationAction.reduce_batch_size
        assert remediation.resolves
        assert "rate limit hit 3x" in remediation.learning.text

    def test_external_dependency_without_marker_falls_through(self):
        pattern = _make_pattern(ErrorType.external_dependency, count=3, message="timeout")
        assert choose_remediation(pattern) is None

    def test_budget_exceeded_raises_budget(self):
        pattern = _make_pattern(ErrorType.budget_exceeded, operation="refresh_context")
        remediation = choose_remediation(pattern)
        assert remediation.action == RemediationAction.raise_token_budget
        assert remediation.resolves
        assert "Budget exceeded 3x for refresh_context" in remediation.learning.text

    def test_quality_below_escalation_threshold_ignored(self):
        pattern = _make_pattern(ErrorType.quality_issue, count=4)
        assert choose_remediation(pattern) is None

    def test_quality_at_escalation_threshold_escalates_model(self):
        pattern = _make_pattern(ErrorType.quality_issue, count=5)
        remediation = choose_remediation(pattern)
        assert remediation.action == RemediationAction.escalate_model
        assert remediation.resolves

    def test_other_frequent_pattern_flagged_without_resolution(self):
        pattern = _make_pattern(ErrorType.operational, count=6, message="x" * 300)
        remediation = choose_remediation(pattern)
        assert remediation.action == RemediationAction.flag_only
        assert not remediation.resolves
        assert "x" * 100 in remediation.learning.text
        assert "x" * 101 not in remediation.learning.text

    def test_learning_key_is_stable_per_pattern(self):
        a = choose_remediation(_make_pattern(ErrorType.budget_exceeded, count=3))
        b = choose_remediation(_make_pattern(ErrorType.budget_exceeded, count=9))
        assert a.learning.pattern_key == b.learning.pattern_key
        assert a.learning.text != b.learning.text


class TestAutoRemediationEngine:
    async def test_resolves_exactly_the_pattern_members(self):
        journal = AsyncMock()
        journal.resolve_errors.return_value = 3
        engine = AutoRemediationEngine(journal, JournalConfig())
        pattern = _make_pattern(ErrorType.budget_exceeded)

        outcomes = await engine.apply([pattern])

        assert len(outcomes) == 1
        assert outcomes[0].resolved_count == 3
        kwargs = journal.resolve_errors.await_args.kwargs
        assert kwargs["error_ids"] == pattern.error_ids
        assert kwargs["auto_fixed"] is True

    async def test_below_recurring_threshold_skipped(self):
        journal = AsyncMock()
        engine = AutoRemediationEngine(journal, JournalConfig())

        outcomes = await engine.apply([_make_pattern(ErrorType.budget_exceeded, count=2)])

        assert outcomes == []
        journal.resolve_errors.assert_not_called()

    async def test_flag_only_does_not_resolve(self):
        journal = AsyncMock()
        engine = AutoRemediationEngine(journal, JournalConfig())

        outcomes = await engine.apply([_make_pattern(ErrorType.operational, count=5)])

        assert outcomes[0].remediation.action == RemediationAction.flag_only
        assert outcomes[0].resolved_count == 0
        journal.resolve_errors.assert_not_called()
