"""Coordination records (handoffs) and the handoff service.

Handoffs are stored as JSON strings keyed by ``cortex:handoff:{id}``.
The sorted set ``cortex:handoffs:pending`` indexes pending handoffs and
``cortex:contact_handoffs:{contact_id}`` a contact's handoffs, both
scored by ``created_at``.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from redis.asyncio import Redis  # type: ignore[import-untyped]

from cortexmcp.config import ContextConfig
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.interactions import SUMMARIZER_RATE_LIMIT
from cortexmcp.crm.schemas import Handoff
from cortexmcp.crm.schemas import HandoffNotFoundError
from cortexmcp.crm.schemas import HandoffStatus
from cortexmcp.crm.schemas import HandoffUrgency
from cortexmcp.engine.schemas import TokenUsage
from cortexmcp.engine.summarizer import Summarizer
from cortexmcp.engine.summarizer import SummarizerError
from cortexmcp.jobs.scheduler import BackgroundTasks
from cortexmcp.journal import ErrorEntry
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorType
from cortexmcp.usage import UsageEntry
from cortexmcp.usage import UsageLedger

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "cortex"
_HANDOFF_KEY = f"{_PREFIX}:handoff"
_PENDING_KEY = f"{_PREFIX}:handoffs:pending"
_CONTACT_INDEX_KEY = f"{_PREFIX}:contact_handoffs"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class HandoffStore:
    """Persistence for handoff records."""

    def __init__(
        self, redis: Redis, *, clock: Callable[[], float] = time.time
    ) -> None:
        self._redis = redis
        self._clock = clock

    async def create(self, handoff: Handoff) -> Handoff:
        pipe = self._redis.pipeline(transaction=True)
        pipe.set(f"{_HANDOFF_KEY}:{handoff.id}", handoff.model_dump_json())
        pipe.zadd(
            f"{_CONTACT_INDEX_KEY}:{handoff.contact_id}",
            {handoff.id: handoff.created_at},
        )
        if handoff.status == HandoffStatus.pending:
            pipe.zadd(_PENDING_KEY, {handoff.id: handoff.created_at})
        await pipe.execute()
        return handoff

    async def get(self, handoff_id: str) -> Handoff | None:
        data = await self._redis.get(f"{_HANDOFF_KEY}:{handoff_id}")
        if data is None:
            return None
        return Handoff.model_validate_json(data)

    async def latest_for_contact(self, contact_id: str) -> Handoff | None:
        ids = await self._redis.zrevrange(f"{_CONTACT_INDEX_KEY}:{contact_id}", 0, 0)
        if not ids:
            return None
        return await self.get(_decode(ids[0]))

    async def list_pending(
        self,
        *,
        to_agent: str | None = None,
        to_human_id: str | None = None,
        urgency: HandoffUrgency | None = None,
    ) -> list[Handoff]:
        """Pending handoffs, most urgent first, oldest first within urgency."""
        ids = await self._redis.zrange(_PENDING_KEY, 0, -1)
        handoffs = await self._load([_decode(i) for i in ids])
        if to_agent is not None:
            handoffs = [h for h in handoffs if h.to_agent == to_agent]
        if to_human_id is not None:
            handoffs = [h for h in handoffs if h.to_human_id == to_human_id]
        if urgency is not None:
            handoffs = [h for h in handoffs if h.urgency == urgency]
        handoffs.sort(key=lambda h: (h.urgency_rank, h.created_at))
        return handoffs

    async def list_pending_older_than(self, cutoff: float) -> list[Handoff]:
        """Pending handoffs created at or before *cutoff*, oldest first."""
        ids = await self._redis.zrangebyscore(_PENDING_KEY, "-inf", cutoff)
        return await self._load([_decode(i) for i in ids])

    async def update_status(self, handoff_id: str, status: HandoffStatus) -> Handoff:
        """Move a handoff to *status*, stamping accept/complete times."""
        handoff = await self.get(handoff_id)
        if handoff is None:
            raise HandoffNotFoundError(handoff_id)
        changes: dict[str, Any] = {"status": status}
        if status == HandoffStatus.accepted:
            changes["accepted_at"] = self._clock()
        elif status == HandoffStatus.completed:
            changes["completed_at"] = self._clock()
        updated = handoff.model_copy(update=changes)

        pipe = self._redis.pipeline(transaction=True)
        pipe.set(f"{_HANDOFF_KEY}:{handoff_id}", updated.model_dump_json())
        if status == HandoffStatus.pending:
            pipe.zadd(_PENDING_KEY, {handoff_id: updated.created_at})
        else:
            pipe.zrem(_PENDING_KEY, handoff_id)
        await pipe.execute()
        return updated

    async def _load(self, ids: list[str]) -> list[Handoff]:
        if not ids:
            return []
        rows = await self._redis.mget([f"{_HANDOFF_KEY}:{i}" for i in ids])
        return [Handoff.model_validate_json(r) for r in rows if r is not None]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class HandoffResult(BaseModel):
    """Outcome of creating a handoff."""

    handoff: Handoff
    token_usage: TokenUsage | None = None
    context_refresh_scheduled: bool = False


class HandoffService:
    """Creates handoffs and transfers contact ownership.

    After a handoff is stored, the contact's context is refreshed in a
    background task spawned through ``BackgroundTasks``: the caller does
    not observe its failure.
    """

    def __init__(
        self,
        contacts: ContactStore,
        interactions: InteractionLog,
        handoffs: HandoffStore,
        summarizer: Summarizer,
        journal: ErrorJournal,
        ledger: UsageLedger,
        background: BackgroundTasks,
        *,
        refresh_context: Callable[[str], Awaitable[object]] | None = None,
        load_context: Callable[[str], Awaitable[Any]] | None = None,
        config: ContextConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._contacts = contacts
        self._interactions = interactions
        self._handoffs = handoffs
        self._summarizer = summarizer
        self._journal = journal
        self._ledger = ledger
        self._background = background
        self._refresh_context = refresh_context
        self._load_context = load_context
        self._config = config or ContextConfig()
        self._clock = clock

    async def create_handoff(
        self,
        contact_id: str,
        from_agent: str,
        reason: str,
        *,
        to_agent: str | None = None,
        to_human_id: str | None = None,
        reason_detail: str | None = None,
        suggested_action: str | None = None,
        urgency: HandoffUrgency = HandoffUrgency.normal,
        metadata: dict[str, Any] | None = None,
    ) -> HandoffResult:
        if to_agent is None and to_human_id is None:
            raise ValueError("A handoff needs to_agent or to_human_id")
        contact = await self._contacts.require(contact_id)

        existing = await self._load_context(contact_id) if self._load_context else None
        recent = await self._interactions.list_recent(
            contact_id, self._config.handoff_interaction_limit
        )
        try:
            briefing, usage = await self._summarizer.generate_handoff_context(
                from_agent=from_agent,
                to_agent=to_agent,
                reason=reason,
                reason_detail=reason_detail,
                contact=contact,
                interactions=recent,
                existing_summary=getattr(existing, "summary", None),
                existing_key_facts=getattr(existing, "key_facts", None),
            )
        except SummarizerError as exc:
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.external_dependency,
                    service="handoffs",
                    operation="generate_handoff_context",
                    message=str(exc),
                    stack_trace=traceback.format_exc(),
                    pattern_id=SUMMARIZER_RATE_LIMIT if exc.rate_limited else None,
                    context={"contact_id": contact_id, "from_agent": from_agent},
                )
            )
            raise

        handoff = await self._handoffs.create(
            Handoff(
                contact_id=contact_id,
                from_agent=from_agent,
                to_agent=to_agent,
                to_human_id=to_human_id,
                reason=reason,
                reason_detail=reason_detail,
                context_summary=briefing,
                suggested_action=suggested_action,
                urgency=urgency,
                metadata=metadata or {},
                created_at=self._clock(),
            )
        )

        if to_agent is not None:
            await self._contacts.update(
                contact_id, owner_agent=to_agent, owner_human_id=None
            )
        else:
            await self._contacts.update(
                contact_id, owner_human_id=to_human_id, owner_agent=None
            )

        await self._ledger.record(
            UsageEntry(
                agent=from_agent,
                model=usage.model,
                operation="generate_handoff_context",
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost_usd=usage.cost_usd,
                contact_id=contact_id,
            )
        )

        scheduled = False
        if self._refresh_context is not None:
            self._background.spawn(
                f"handoff-refresh:{contact_id}",
                self._refresh_context(contact_id),
            )
            scheduled = True
        logger.info(
            "handoff id=%s contact=%s %s -> %s",
            handoff.id,
            contact_id,
            from_agent,
            to_agent or to_human_id,
        )
        return HandoffResult(
            handoff=handoff,
            token_usage=usage,
            context_refresh_scheduled=scheduled,
        )

    async def update_handoff(self, handoff_id: str, status: HandoffStatus) -> Handoff:
        return await self._handoffs.update_status(handoff_id, status)
