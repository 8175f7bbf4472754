"""Unit tests for the self-anneal cycle orchestration."""

from __future__ import annotations

from unittest.mock import AsyncMock

from cortexmcp.anneal import Learning
from cortexmcp.anneal import Remediation
from cortexmcp.anneal import RemediationAction
from cortexmcp.anneal import RemediationOutcome
from cortexmcp.anneal import SelfAnnealCycle
from cortexmcp.config import AnnealConfig
from cortexmcp.journal import ErrorPattern
from cortexmcp.journal import ErrorType


def _pattern() -> ErrorPattern:
    return ErrorPattern(
        error_type=ErrorType.budget_exceeded,
        service="budget_guard",
        operation="refresh_context",
        count=3,
        latest_message="over",
        first_seen=1.0,
        last_seen=2.0,
        error_ids=["err_1", "err_2", "err_3"],
    )


def _make_cycle():
    journal = AsyncMock()
    journal.error_patterns.return_value = [_pattern()]
    remediation = AsyncMock()
    remediation.apply.return_value = [
        RemediationOutcome(
            pattern=_pattern(),
            remediation=Remediation(
                action=RemediationAction.raise_token_budget,
                learning=Learning(text="raise budget", pattern_key="budget"),
                resolution="logged",
            ),
            resolved_count=3,
        )
    ]
    auditor = AsyncMock()
    auditor.check_summary_quality.return_value = [
        Learning(text="empty summaries", pattern_key="empty_summary")
    ]
    auditor.check_context_staleness.return_value = []
    auditor.check_handoff_backlog.return_value = []
    knowledge = AsyncMock()
    knowledge.append_learnings.return_value = 2
    cycle = SelfAnnealCycle(
        journal, remediation, auditor, knowledge, AnnealConfig(), clock=lambda: 100.0
    )
    return cycle, journal, remediation, auditor, knowledge


class TestSelfAnnealCycle:
    async def test_runs_phases_in_order_and_reports(self):
        cycle, journal, remediation, auditor, knowledge = _make_cycle()

        report = await cycle.run()

        journal.error_patterns.assert_awaited_once_with(4.0)
        remediation.apply.assert_awaited_once()
        assert [p.key for p in remediation.apply.await_args.args[0]] == [
            _pattern().key
        ]
        assert report.resolved_count == 3
        assert [l.text for l in report.learnings] == ["raise budget", "empty summaries"]
        knowledge.append_learnings.assert_awaited_once()
        assert report.appended == 2
        assert report.phase_errors == {}
        assert report.failed is False
        assert report.finished_at == 100.0

    async def test_failing_phase_does_not_stop_later_phases(self):
        cycle, journal, _, auditor, knowledge = _make_cycle()
        auditor.check_summary_quality.side_effect = RuntimeError("sample failed")

        report = await cycle.run()

        assert report.phase_errors == {"summary_quality": "sample failed"}
        auditor.check_context_staleness.assert_awaited_once()
        auditor.check_handoff_backlog.assert_awaited_once()
        knowledge.append_learnings.assert_awaited_once()
        entry = journal.log_error.await_args.args[0]
        assert entry.error_type == ErrorType.operational
        assert entry.service == "self_anneal"
        assert entry.operation == "summary_quality"

    async def test_detect_failure_leaves_remediation_with_no_patterns(self):
        cycle, journal, remediation, _, _ = _make_cycle()
        journal.error_patterns.side_effect = RuntimeError("redis down")
        remediation.apply.return_value = []

        report = await cycle.run()

        assert "detect_patterns" in report.phase_errors
        remediation.apply.assert_awaited_once_with([])

    async def test_no_learnings_skips_knowledge_sink(self):
        cycle, journal, remediation, auditor, knowledge = _make_cycle()
        journal.error_patterns.return_value = []
        remediation.apply.return_value = []
        auditor.check_summary_quality.return_value = []

        report = await cycle.run()

        knowledge.append_learnings.assert_not_called()
        assert report.appended == 0
