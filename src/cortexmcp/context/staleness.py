"""Cache invalidation rule for context records."""

from __future__ import annotations

from cortexmcp.context.schemas import ContextRecord


def is_context_stale(
    record: ContextRecord | None,
    current_interaction_count: int,
    *,
    now: float,
    staleness_hours: float = 24.0,
    force_refresh: bool = False,
) -> bool:
    """Decide whether *record* must be regenerated before it is served.

    Stale when there is no record, a refresh is forced, the interaction
    count drifted since generation, or the record outlived
    *staleness_hours*. Records without a stored count skip the drift check.
    """
    if record is None or force_refresh:
        return True
    if (
        record.interaction_count_at_generation is not None
        and record.interaction_count_at_generation != current_interaction_count
    ):
        return True
    return now - record.generated_at > staleness_hours * 3600
