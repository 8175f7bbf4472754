"""Regeneration pipeline: contact snapshot + recent history -> ContextRecord.

Failures are journaled and then raised to whatever triggered the
regeneration; the previously cached record is left untouched.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Callable

from cortexmcp.config import ContextConfig
from cortexmcp.context.schemas import ContextRecord
from cortexmcp.context.store import ContextStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.interactions import SUMMARIZER_RATE_LIMIT
from cortexmcp.crm.schemas import Contact
from cortexmcp.engine.summarizer import Summarizer
from cortexmcp.engine.summarizer import SummarizerError
from cortexmcp.journal import ErrorEntry
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorType
from cortexmcp.usage import UsageEntry
from cortexmcp.usage import UsageLedger

logger = logging.getLogger(__name__)


class RegenerationError(Exception):
    """Regenerating a contact's context failed; nothing was persisted."""

    def __init__(
        self,
        contact_id: str,
        message: str,
        *,
        code: str | None = None,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.contact_id = contact_id
        self.code = code
        self.rate_limited = rate_limited


class RegenerationPipeline:
    """Builds and persists a fresh ``ContextRecord`` for one contact."""

    def __init__(
        self,
        interactions: InteractionLog,
        summarizer: Summarizer,
        store: ContextStore,
        journal: ErrorJournal,
        ledger: UsageLedger,
        config: ContextConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._interactions = interactions
        self._summarizer = summarizer
        self._store = store
        self._journal = journal
        self._ledger = ledger
        self._config = config or ContextConfig()
        self._clock = clock

    async def regenerate(
        self,
        contact: Contact,
        interaction_count: int,
        *,
        interaction_limit: int | None = None,
    ) -> ContextRecord:
        """Regenerate and persist the record for *contact*.

        *interaction_count* is the live count observed by the caller; it
        is stored with the record for later drift checks.
        """
        limit = interaction_limit or self._config.context_interaction_limit
        try:
            recent = await self._interactions.list_recent(contact.id, limit)
            summary, usage = await self._summarizer.generate_working_context(
                contact, recent
            )
        except SummarizerError as exc:
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.external_dependency,
                    service="regeneration",
                    operation="generate_context",
                    message=str(exc),
                    stack_trace=traceback.format_exc(),
                    pattern_id=SUMMARIZER_RATE_LIMIT if exc.rate_limited else None,
                    context={"contact_id": contact.id, "error_code": exc.code},
                )
            )
            raise RegenerationError(
                contact.id,
                f"Context generation failed for {contact.id}: {exc}",
                code=exc.code,
                rate_limited=exc.rate_limited,
            ) from exc
        except Exception as exc:
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.operational,
                    service="regeneration",
                    operation="generate_context",
                    message=f"{type(exc).__name__}: {exc}",
                    stack_trace=traceback.format_exc(),
                    context={"contact_id": contact.id},
                )
            )
            raise RegenerationError(
                contact.id,
                f"Context generation failed for {contact.id}: {exc}",
                code="generation_error",
            ) from exc

        now = self._clock()
        ttl = self._config.context_ttl_hours
        record = ContextRecord(
            contact_id=contact.id,
            summary=summary.summary,
            key_facts=summary.key_facts,
            current_status=summary.current_status,
            recommended_tone=summary.recommended_tone,
            open_threads=summary.open_threads,
            churn_risk_score=summary.churn_risk_score,
            upsell_potential_score=summary.upsell_potential_score,
            risk_factors=summary.risk_factors,
            opportunity_factors=summary.opportunity_factors,
            interaction_count_at_generation=interaction_count,
            generated_at=now,
            expires_at=now + ttl * 3600 if ttl is not None else None,
            token_count=usage.total_tokens,
            model=usage.model,
        )

        try:
            await self._store.put(record)
        except Exception as exc:
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.operational,
                    service="regeneration",
                    operation="persist_context",
                    message=str(exc),
                    stack_trace=traceback.format_exc(),
                    context={"contact_id": contact.id},
                )
            )
            raise RegenerationError(
                contact.id,
                f"Persisting context failed for {contact.id}: {exc}",
                code="storage_error",
            ) from exc

        await self._ledger.record(
            UsageEntry(
                agent=self._config.agent_name,
                model=usage.model,
                operation="generate_context",
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost_usd=usage.cost_usd,
                contact_id=contact.id,
            )
        )
        logger.info(
            "regenerated context contact=%s interactions=%d tokens=%d",
            contact.id,
            len(recent),
            record.token_count,
        )
        return record
