"""Bodies of the scheduled background jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field

from cortexmcp.config import AnnealConfig
from cortexmcp.config import RefreshConfig
from cortexmcp.context.manager import ContextCacheManager
from cortexmcp.context.store import ContextStore
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.handoffs import HandoffStore
from cortexmcp.crm.schemas import Handoff
from cortexmcp.usage.budget import utc_day_start
from cortexmcp.usage.ledger import UsageLedger
from cortexmcp.usage.schemas import UsageSummary

logger = logging.getLogger(__name__)

_DAY = 24 * 3600


@dataclass
class RefreshRunResult:
    """Outcome of one nightly refresh run."""

    total: int = 0
    refreshed: int = 0
    failed: int = 0
    failed_contact_ids: list[str] = field(default_factory=list)


async def nightly_context_refresh(
    contacts: ContactStore,
    manager: ContextCacheManager,
    config: RefreshConfig | None = None,
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> RefreshRunResult:
    """Regenerate context for recently active contacts in paced batches.

    Contacts touched within ``active_days`` are refreshed
    ``batch_size`` at a time with ``batch_delay_seconds`` between
    batches. A failed contact is counted and left for the next run; the
    pipeline has already journaled the failure.
    """
    cfg = config or RefreshConfig()
    active = await contacts.list_active(
        clock() - cfg.active_days * _DAY, limit=10_000
    )
    result = RefreshRunResult(total=len(active))
    logger.info("nightly refresh starting contacts=%d", len(active))

    for offset in range(0, len(active), cfg.batch_size):
        if offset:
            await sleep(cfg.batch_delay_seconds)
        batch = active[offset : offset + cfg.batch_size]
        outcomes = await asyncio.gather(
            *(manager.refresh_context(c.id) for c in batch),
            return_exceptions=True,
        )
        for contact, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                result.failed += 1
                result.failed_contact_ids.append(contact.id)
                logger.warning(
                    "nightly refresh failed contact=%s: %s", contact.id, outcome
                )
            else:
                result.refreshed += 1

    logger.info(
        "nightly refresh done refreshed=%d failed=%d",
        result.refreshed,
        result.failed,
    )
    return result


async def stale_context_cleanup(
    contexts: ContextStore,
    contacts: ContactStore,
    config: RefreshConfig | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> int:
    """Delete old context records of long-inactive contacts.

    A record is deleted when it was generated more than
    ``cleanup_after_days`` ago and its contact is inactive: touched
    before ``inactive_days`` ago, never touched, or gone from the store.
    Returns the number of records deleted.
    """
    cfg = config or RefreshConfig()
    now = clock()
    old_ids = await contexts.generated_before(now - cfg.cleanup_after_days * _DAY)
    if not old_ids:
        return 0
    inactive_before = now - cfg.inactive_days * _DAY
    known = await contacts.get_many(old_ids)

    deleted = 0
    for contact_id in old_ids:
        contact = known.get(contact_id)
        if (
            contact is not None
            and contact.last_touch_at is not None
            and contact.last_touch_at >= inactive_before
        ):
            continue
        if await contexts.delete(contact_id):
            deleted += 1
    logger.info("stale context cleanup deleted=%d", deleted)
    return deleted


async def handoff_reminder(
    handoffs: HandoffStore,
    config: AnnealConfig | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> list[Handoff]:
    """Warn about pending handoffs past the overdue threshold.

    Returns the overdue handoffs, most urgent first.
    """
    cfg = config or AnnealConfig()
    now = clock()
    overdue = await handoffs.list_pending_older_than(
        now - cfg.handoff_overdue_hours * 3600
    )
    overdue.sort(key=lambda h: (h.urgency_rank, h.created_at))
    for handoff in overdue:
        logger.warning(
            "handoff %s pending %.1fh urgency=%s contact=%s to=%s",
            handoff.id,
            (now - handoff.created_at) / 3600,
            handoff.urgency.value,
            handoff.contact_id,
            handoff.to_agent or handoff.to_human_id,
        )
    return overdue


async def daily_usage_report(
    ledger: UsageLedger,
    *,
    clock: Callable[[], float] = time.time,
) -> UsageSummary:
    """Log token usage for the previous UTC day, per agent."""
    today = utc_day_start(clock())
    summary = await ledger.summary(today - _DAY, until=today)
    logger.info(
        "usage for previous day: calls=%d tokens=%d cost_usd=%.4f",
        summary.total.calls,
        summary.total.input_tokens + summary.total.output_tokens,
        summary.total.cost_usd,
    )
    for agent, breakdown in sorted(summary.by_agent.items()):
        logger.info(
            "usage agent=%s calls=%d tokens=%d cost_usd=%.4f",
            agent,
            breakdown.calls,
            breakdown.input_tokens + breakdown.output_tokens,
            breakdown.cost_usd,
        )
    return summary
