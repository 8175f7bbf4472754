"""Append-only interaction log and the interaction logging service.

Interactions are stored as JSON strings keyed by
``cortex:interaction:{id}``. The sorted set
``cortex:contact_interactions:{contact_id}`` lists a contact's
interactions (score = ``created_at``); its cardinality is the live
interaction count used for context staleness. The sorted set
``cortex:interactions:summarized`` indexes interactions that carried
raw content and a summary, for output-quality sampling.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from redis.asyncio import Redis  # type: ignore[import-untyped]

from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.schemas import Interaction
from cortexmcp.engine.schemas import TokenUsage
from cortexmcp.engine.summarizer import Summarizer
from cortexmcp.engine.summarizer import SummarizerError
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
_INTERACTION_KEY = f"{_PREFIX}:interaction"
_CONTACT_INDEX_KEY = f"{_PREFIX}:contact_interactions"
_SUMMARIZED_KEY = f"{_PREFIX}:interactions:summarized"

# Pattern tag for summarizer rate limits, shared with context regeneration
SUMMARIZER_RATE_LIMIT = "summarizer_rate_limit"

REFRESH_SENTIMENTS = frozenset({"escalation", "negative"})
REFRESH_TYPES = frozenset({"ticket_resolved", "order_placed", "refund_processed"})

MAX_LIST_LIMIT = 100


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class InteractionLog:
    """Append-only per-contact interaction history."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def append(self, interaction: Interaction) -> str:
        pipe = self._redis.pipeline(transaction=True)
        pipe.set(
            f"{_INTERACTION_KEY}:{interaction.id}", interaction.model_dump_json()
        )
        pipe.zadd(
            f"{_CONTACT_INDEX_KEY}:{interaction.contact_id}",
            {interaction.id: interaction.created_at},
        )
        if interaction.raw_content and interaction.summary is not None:
            pipe.zadd(_SUMMARIZED_KEY, {interaction.id: interaction.created_at})
        await pipe.execute()
        return interaction.id

    async def get(self, interaction_id: str) -> Interaction | None:
        data = await self._redis.get(f"{_INTERACTION_KEY}:{interaction_id}")
        if data is None:
            return None
        return Interaction.model_validate_json(data)

    async def count(self, contact_id: str) -> int:
        """Live number of interactions logged for *contact_id*."""
        return int(await self._redis.zcard(f"{_CONTACT_INDEX_KEY}:{contact_id}"))

    async def list_recent(
        self,
        contact_id: str,
        limit: int = 20,
        *,
        agent: str | None = None,
        type: str | None = None,
        since: float | None = None,
    ) -> list[Interaction]:
        """Newest-first interactions for *contact_id*, optionally filtered."""
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        key = f"{_CONTACT_INDEX_KEY}:{contact_id}"
        if agent is None and type is None and since is None:
            ids = await self._redis.zrevrange(key, 0, limit - 1)
        else:
            ids = await self._redis.zrevrangebyscore(
                key, "+inf", since if since is not None else "-inf"
            )
        interactions = await self._load([_decode(i) for i in ids])
        if agent is not None:
            interactions = [i for i in interactions if i.agent == agent]
        if type is not None:
            interactions = [i for i in interactions if i.type == type]
        return interactions[:limit]

    async def list_recent_summarized(self, limit: int = 10) -> list[Interaction]:
        """Newest interactions that had raw content and a summary."""
        ids = await self._redis.zrevrange(_SUMMARIZED_KEY, 0, limit - 1)
        return await self._load([_decode(i) for i in ids])

    async def _load(self, ids: list[str]) -> list[Interaction]:
        if not ids:
            return []
        rows = await self._redis.mget([f"{_INTERACTION_KEY}:{i}" for i in ids])
        return [Interaction.model_validate_json(r) for r in rows if r is not None]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class InteractionResult(BaseModel):
    """Outcome of logging one interaction."""

    interaction: Interaction
    token_usage: TokenUsage | None = None
    context_refresh_triggered: bool = False


class InteractionService:
    """Logs interactions, auto-summarizing raw content when needed."""

    def __init__(
        self,
        contacts: ContactStore,
        log: InteractionLog,
        summarizer: Summarizer,
        journal: ErrorJournal,
        ledger: UsageLedger,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._contacts = contacts
        self._log = log
        self._summarizer = summarizer
        self._journal = journal
        self._ledger = ledger
        self._clock = clock

    async def log_interaction(
        self,
        contact_id: str,
        agent: str,
        type: str,
        *,
        human_id: str | None = None,
        direction: str | None = None,
        subject: str | None = None,
        raw_content: str | None = None,
        summary: str | None = None,
        sentiment: str | None = None,
        key_points: list[str] | None = None,
        intent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InteractionResult:
        """Append an interaction and touch its contact.

        Raw content without a summary is summarized first; a failing
        summarizer is journaled and the interaction is stored without one.
        """
        await self._contacts.require(contact_id)

        usage: TokenUsage | None = None
        if raw_content and not summary:
            try:
                digest, usage = await self._summarizer.summarize_interaction(
                    type, subject, raw_content
                )
            except SummarizerError as exc:
                logger.warning(
                    "Auto-summarize failed for contact=%s: %s", contact_id, exc
                )
                await self._journal.log_error(
                    ErrorEntry(
                        error_type=ErrorType.external_dependency,
                        service="interactions",
                        operation="summarize_interaction",
                        message=str(exc),
                        stack_trace=traceback.format_exc(),
                        pattern_id=SUMMARIZER_RATE_LIMIT if exc.rate_limited else None,
                        context={
                            "contact_id": contact_id,
                            "agent": agent,
                            "type": type,
                            "error_code": exc.code,
                        },
                    )
                )
            else:
                summary = digest.summary
                sentiment = digest.sentiment
                key_points = digest.key_points
                intent = digest.intent

        interaction = Interaction(
            contact_id=contact_id,
            agent=agent,
            human_id=human_id,
            type=type,
            direction=direction,
            subject=subject,
            raw_content=raw_content,
            summary=summary,
            sentiment=sentiment,
            key_points=key_points or [],
            intent=intent,
            metadata=metadata or {},
            token_count=usage.total_tokens if usage else 0,
            created_at=self._clock(),
        )
        await self._log.append(interaction)
        await self._contacts.touch(contact_id, interaction.created_at)

        if usage is not None:
            await self._ledger.record(
                UsageEntry(
                    agent=agent,
                    model=usage.model,
                    operation="summarize_interaction",
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost_usd=usage.cost_usd,
                    contact_id=contact_id,
                    interaction_id=interaction.id,
                )
            )

        return InteractionResult(
            interaction=interaction,
            token_usage=usage,
            context_refresh_triggered=(
                sentiment in REFRESH_SENTIMENTS or type in REFRESH_TYPES
            ),
        )
