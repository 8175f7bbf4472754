"""Context cache manager: serve briefings, regenerating stale ones.

Reads are served from the cached ``ContextRecord`` when it is fresh;
otherwise the regeneration pipeline runs synchronously first. A failed
regeneration propagates to the caller; there is no fallback to the stale
record at this layer.

Two overlapping regenerations for one contact are not serialized: both
run, and the last write wins.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from cortexmcp.config import ContextConfig
from cortexmcp.context.regeneration import RegenerationPipeline
from cortexmcp.context.schemas import ContactHeader
from cortexmcp.context.schemas import ContextBody
from cortexmcp.context.schemas import ContextRecord
from cortexmcp.context.schemas import ContextResponse
from cortexmcp.context.schemas import LastHandoff
from cortexmcp.context.schemas import RecentInteraction
from cortexmcp.context.schemas import RefreshResult
from cortexmcp.context.staleness import is_context_stale
from cortexmcp.context.store import ContextStore
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.handoffs import HandoffStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.schemas import Contact

logger = logging.getLogger(__name__)

MIN_LEVEL = 0
MAX_LEVEL = 3


def build_header(contact: Contact) -> ContactHeader:
    return ContactHeader(
        name=contact.name,
        company=contact.company_name,
        email=contact.email,
        stage=contact.stage,
        last_touch=contact.last_touch_at,
        last_touch_agent=contact.owner_agent,
    )


class ContextCacheManager:
    """Owns the per-contact briefing cache."""

    def __init__(
        self,
        contacts: ContactStore,
        interactions: InteractionLog,
        handoffs: HandoffStore,
        store: ContextStore,
        pipeline: RegenerationPipeline,
        config: ContextConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._contacts = contacts
        self._interactions = interactions
        self._handoffs = handoffs
        self._store = store
        self._pipeline = pipeline
        self._config = config or ContextConfig()
        self._clock = clock

    async def get_context(
        self,
        contact_id: str,
        level: int = 1,
        *,
        force_refresh: bool = False,
    ) -> ContextResponse:
        """Return the briefing for *contact_id* at *level* (0-3).

        Level 0 is the contact header only and never touches the cache.
        Levels 1+ add the cached briefing, regenerated first when stale.
        Levels 2+ add recent interactions (10 or 50) and the latest
        handoff.

        Raises ``ContactNotFoundError``, ``ValueError`` for an unknown
        level, and ``RegenerationError`` when a needed regeneration fails.
        """
        if not MIN_LEVEL <= level <= MAX_LEVEL:
            raise ValueError(f"level must be between {MIN_LEVEL} and {MAX_LEVEL}")
        contact = await self._contacts.require(contact_id)
        header = build_header(contact)

        if level == 0:
            return ContextResponse(
                contact_id=contact_id,
                level=0,
                header=header,
                token_count=self._config.header_token_count,
            )

        record = await self._store.get(contact_id)
        live_count = await self._interactions.count(contact_id)
        regenerated = False
        if is_context_stale(
            record,
            live_count,
            now=self._clock(),
            staleness_hours=self._config.staleness_hours,
            force_refresh=force_refresh,
        ):
            logger.debug("context stale contact=%s; regenerating", contact_id)
            record = await self._pipeline.regenerate(contact, live_count)
            regenerated = True

        response = ContextResponse(
            contact_id=contact_id,
            level=level,
            header=header,
            context=ContextBody.from_record(record),
            token_count=record.token_count,
            generated_at=record.generated_at,
            is_stale=False,
            regenerated=regenerated,
        )
        if level >= 2:
            await self._attach_history(response, level)
        return response

    async def refresh_context(self, contact_id: str) -> RefreshResult:
        """Unconditionally regenerate the briefing for *contact_id*."""
        contact = await self._contacts.require(contact_id)
        previous = await self._store.get(contact_id)
        live_count = await self._interactions.count(contact_id)
        record = await self._pipeline.regenerate(contact, live_count)
        return RefreshResult(
            contact_id=contact_id,
            previous_generated_at=previous.generated_at if previous else None,
            new_generated_at=record.generated_at,
            token_count=record.token_count,
        )

    async def cached_record(self, contact_id: str) -> ContextRecord | None:
        """The stored record as-is, without staleness checks."""
        return await self._store.get(contact_id)

    async def _attach_history(self, response: ContextResponse, level: int) -> None:
        limit = (
            self._config.level2_interaction_limit
            if level == 2
            else self._config.level3_interaction_limit
        )
        recent = await self._interactions.list_recent(response.contact_id, limit)
        response.recent_interactions = [
            RecentInteraction(
                id=i.id,
                agent=i.agent,
                type=i.type,
                summary=i.summary,
                sentiment=i.sentiment,
                date=i.created_at,
            )
            for i in recent
        ]
        handoff = await self._handoffs.latest_for_contact(response.contact_id)
        if handoff is not None:
            response.last_handoff = LastHandoff(
                id=handoff.id,
                from_agent=handoff.from_agent,
                to_agent=handoff.to_agent,
                to_human_id=handoff.to_human_id,
                reason=handoff.reason,
                urgency=handoff.urgency.value,
                status=handoff.status.value,
                date=handoff.created_at,
            )
