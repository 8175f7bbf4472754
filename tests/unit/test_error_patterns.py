"""Unit tests for error pattern grouping (pure functions, no Redis)."""

from __future__ import annotations

from cortexmcp.journal import ErrorRecord
from cortexmcp.journal import ErrorType
from cortexmcp.journal import group_error_patterns
from cortexmcp.journal import recurring_patterns


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_record(
    created_at: float,
    *,
    error_type: ErrorType = ErrorType.external_dependency,
    service: str = "regeneration",
    operation: str = "generate_context",
    message: str = "boom",
    **kwargs,
) -> ErrorRecord:
    return ErrorRecord(
        error_type=error_type,
        service=service,
        operation=operation,
        message=message,
        created_at=created_at,
        **kwargs,
    )


class TestGroupErrorPatterns:
    def test_empty_input(self):
        assert group_error_patterns([]) == []

    def test_groups_by_triple_and_sorts_by_count(self):
        records = [_make_record(100.0 + i, message=f"m{i}") for i in range(5)]
        records.append(
            _make_record(
                200.0,
                error_type=ErrorType.operational,
                service="self_anneal",
                operation="detect_patterns",
            )
        )

        patterns = group_error_patterns(records)

        assert len(patterns) == 2
        first, second = patterns
        assert first.count == 5
        assert first.service == "regeneration"
        assert first.first_seen == 100.0
        assert first.last_seen == 104.0
        assert first.latest_message == "m4"
        assert len(first.error_ids) == 5
        assert second.count == 1
        assert second.error_type == ErrorType.operational

    def test_ties_broken_by_most_recent(self):
        records = [
            _make_record(10.0, service="a"),
            _make_record(20.0, service="b"),
        ]
        patterns = group_error_patterns(records)
        assert [p.service for p in patterns] == ["b", "a"]

    def test_latest_non_null_pattern_id_wins(self):
        records = [
            _make_record(1.0, pattern_id="first"),
            _make_record(2.0, pattern_id="second"),
            _make_record(3.0),
        ]
        (pattern,) = group_error_patterns(records)
        assert pattern.pattern_id == "second"

    def test_unordered_input_uses_timestamps(self):
        records = [
            _make_record(30.0, message="newest"),
            _make_record(10.0, message="oldest"),
        ]
        (pattern,) = group_error_patterns(records)
        assert pattern.first_seen == 10.0
        assert pattern.latest_message == "newest"

    def test_key_is_triple(self):
        (pattern,) = group_error_patterns([_make_record(1.0)])
        assert pattern.key == "external_dependency::regeneration::generate_context"


class TestRecurringPatterns:
    def test_threshold_inclusive(self):
        records = [_make_record(float(i), service="a") for i in range(3)]
        records += [_make_record(float(i), service="b") for i in range(2)]
        patterns = group_error_patterns(records)

        recurring = recurring_patterns(patterns, threshold=3)

        assert [p.service for p in recurring] == ["a"]
