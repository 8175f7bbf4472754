"""Quality auditor: sweeps that look for degenerate output and backlog.

Each sweep journals at most one aggregated ``quality_issue`` record per
finding (never one per offending item) and returns the matching
learnings for the knowledge sink.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from cortexmcp.anneal.knowledge import Learning
from cortexmcp.config import AnnealConfig
from cortexmcp.context.schemas import ContextRecord
from cortexmcp.context.store import ContextStore
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.handoffs import HandoffStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.schemas import Contact
from cortexmcp.crm.schemas import Handoff
from cortexmcp.journal import ErrorEntry
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorType

logger = logging.getLogger(__name__)

EMPTY_SUMMARY = "empty_summary"
SHORT_SUMMARY = "short_summary"
STALE_CONTEXT = "stale_context"
OVERDUE_ESCALATION_HANDOFF = "overdue_escalation_handoff"
STUCK_HANDOFF = "stuck_handoff"

# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------


def count_degenerate_summaries(
    summaries: Iterable[str | None], min_length: int = 20
) -> tuple[int, int]:
    """Return ``(empty, short)`` counts; a blank summary is only empty."""
    empty = short = 0
    for summary in summaries:
        if summary is None or not summary.strip():
            empty += 1
        elif len(summary) < min_length:
            short += 1
    return empty, short


def is_stale_under_load(
    contact: Contact,
    record: ContextRecord | None,
    *,
    now: float,
    stale_hours: float = 48.0,
) -> bool:
    """Missing record, or record older than *stale_hours* while the
    contact's touch age is smaller than the record's age."""
    if record is None:
        return True
    context_age = now - record.generated_at
    touch_age = now - (contact.last_touch_at or 0.0)
    return context_age > stale_hours * 3600 and touch_age < context_age


def split_overdue_handoffs(
    handoffs: Iterable[Handoff],
    *,
    now: float,
    stuck_hours: float = 24.0,
    escalation_urgencies: Iterable[str] = ("high", "critical"),
) -> tuple[list[Handoff], list[Handoff]]:
    """Split already-overdue pending handoffs into ``(escalations, stuck)``.

    Every escalation-tier handoff is returned; normal-tier ones only once
    older than *stuck_hours*.
    """
    urgent = set(escalation_urgencies)
    escalations: list[Handoff] = []
    stuck: list[Handoff] = []
    for handoff in handoffs:
        if handoff.urgency.value in urgent:
            escalations.append(handoff)
        elif now - handoff.created_at > stuck_hours * 3600:
            stuck.append(handoff)
    return escalations, stuck


# ---------------------------------------------------------------------------
# Auditor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Finding:
    service: str
    operation: str
    pattern_id: str
    text: str
    context: dict[str, Any]


class QualityAuditor:
    """Runs the output-quality, staleness and handoff-backlog sweeps."""

    def __init__(
        self,
        journal: ErrorJournal,
        contacts: ContactStore,
        interactions: InteractionLog,
        contexts: ContextStore,
        handoffs: HandoffStore,
        config: AnnealConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._journal = journal
        self._contacts = contacts
        self._interactions = interactions
        self._contexts = contexts
        self._handoffs = handoffs
        self._config = config or AnnealConfig()
        self._clock = clock

    async def check_summary_quality(self) -> list[Learning]:
        """Sample the latest summarized interactions for empty/short output."""
        cfg = self._config
        sample = await self._interactions.list_recent_summarized(
            cfg.quality_sample_size
        )
        if not sample:
            return []
        empty, short = count_degenerate_summaries(
            (i.summary for i in sample), cfg.min_summary_length
        )

        findings: list[_Finding] = []
        if empty:
            findings.append(
                _Finding(
                    service="summarizer",
                    operation="summarize_interaction",
                    pattern_id=EMPTY_SUMMARY,
                    text=(
                        f"Found {empty} empty summaries in the last {len(sample)} "
                        "summarized interactions. The summarizer may be returning "
                        "empty output for very short inputs."
                    ),
                    context={"sample_size": len(sample), "empty_count": empty},
                )
            )
        if short:
            findings.append(
                _Finding(
                    service="summarizer",
                    operation="summarize_interaction",
                    pattern_id=SHORT_SUMMARY,
                    text=(
                        f"Found {short} summaries under {cfg.min_summary_length} "
                        f"characters in the last {len(sample)} summarized "
                        "interactions. Consider tightening the summary prompt."
                    ),
                    context={"sample_size": len(sample), "short_count": short},
                )
            )
        return await self._report(findings)

    async def check_context_staleness(self) -> list[Learning]:
        """Count recently active contacts whose context is stale or missing."""
        cfg = self._config
        now = self._clock()
        active = await self._contacts.list_active(
            now - cfg.active_lookback_hours * 3600, limit=cfg.active_contact_limit
        )
        if not active:
            return []
        records = await self._contexts.get_many([c.id for c in active])
        stale = sum(
            1
            for contact in active
            if is_stale_under_load(
                contact,
                records.get(contact.id),
                now=now,
                stale_hours=cfg.stale_context_hours,
            )
        )
        if not stale:
            return []
        return await self._report(
            [
                _Finding(
                    service="context_cache",
                    operation="context_staleness_check",
                    pattern_id=STALE_CONTEXT,
                    text=(
                        f"Found {stale}/{len(active)} active contacts with stale "
                        "or missing context. The nightly refresh may need tuning."
                    ),
                    context={"active_contacts": len(active), "stale_count": stale},
                )
            ]
        )

    async def check_handoff_backlog(self) -> list[Learning]:
        """Flag overdue escalations and stuck normal-priority handoffs."""
        cfg = self._config
        now = self._clock()
        overdue = await self._handoffs.list_pending_older_than(
            now - cfg.handoff_overdue_hours * 3600
        )
        escalations, stuck = split_overdue_handoffs(
            overdue,
            now=now,
            stuck_hours=cfg.handoff_stuck_hours,
            escalation_urgencies=cfg.escalation_urgencies,
        )

        findings: list[_Finding] = []
        if escalations:
            findings.append(
                _Finding(
                    service="handoffs",
                    operation="handoff_backlog_check",
                    pattern_id=OVERDUE_ESCALATION_HANDOFF,
                    text=(
                        f"{len(escalations)} high/critical handoff(s) pending over "
                        f"{cfg.handoff_overdue_hours:g} hours. Immediate attention "
                        "required."
                    ),
                    context={"handoff_ids": [h.id for h in escalations]},
                )
            )
        if stuck:
            findings.append(
                _Finding(
                    service="handoffs",
                    operation="handoff_backlog_check",
                    pattern_id=STUCK_HANDOFF,
                    text=(
                        f"{len(stuck)} normal-priority handoff(s) pending over "
                        f"{cfg.handoff_stuck_hours:g} hours. They may be stuck."
                    ),
                    context={"handoff_ids": [h.id for h in stuck]},
                )
            )
        return await self._report(findings)

    async def _report(self, findings: list[_Finding]) -> list[Learning]:
        learnings: list[Learning] = []
        for finding in findings:
            logger.info("quality finding %s: %s", finding.pattern_id, finding.text)
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.quality_issue,
                    service=finding.service,
                    operation=finding.operation,
                    message=finding.text,
                    pattern_id=finding.pattern_id,
                    context=finding.context,
                )
            )
            learnings.append(
                Learning(text=finding.text, pattern_key=finding.pattern_id)
            )
        return learnings
