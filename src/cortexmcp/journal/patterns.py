"""Pattern detection over journaled errors.

Pure functions: the journal loads the records, these group them.
"""

from __future__ import annotations

from collections.abc import Iterable

from cortexmcp.journal.schemas import ErrorPattern
from cortexmcp.journal.schemas import ErrorRecord


def group_error_patterns(records: Iterable[ErrorRecord]) -> list[ErrorPattern]:
    """Group *records* by (error_type, service, operation).

    Each group carries its count, first/last seen timestamps, the most
    recent message and the most recent non-null pattern tag. Groups are
    returned by count descending, most recently seen first on ties.
    """
    groups: dict[tuple[str, str, str], list[ErrorRecord]] = {}
    for record in records:
        key = (record.error_type.value, record.service, record.operation)
        groups.setdefault(key, []).append(record)

    patterns: list[ErrorPattern] = []
    for members in groups.values():
        members.sort(key=lambda r: r.created_at)
        latest = members[-1]
        pattern_id = next(
            (r.pattern_id for r in reversed(members) if r.pattern_id), None
        )
        patterns.append(
            ErrorPattern(
                error_type=latest.error_type,
                service=latest.service,
                operation=latest.operation,
                pattern_id=pattern_id,
                count=len(members),
                latest_message=latest.message,
                first_seen=members[0].created_at,
                last_seen=latest.created_at,
                error_ids=[r.id for r in members],
            )
        )

    patterns.sort(key=lambda p: (-p.count, -p.last_seen))
    return patterns


def recurring_patterns(
    patterns: Iterable[ErrorPattern], threshold: int = 3
) -> list[ErrorPattern]:
    """Return the patterns whose count reaches *threshold*."""
    return [p for p in patterns if p.count >= threshold]
