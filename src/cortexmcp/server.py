"""Cortex — FastMCP v2 server exposing shared contact memory to agents.

Tools delegate to the context cache, CRM services, error journal and
usage ledger (Redis + JSONL backed). Call ``configure(redis_url=...)``
before using the server.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]
from redis.exceptions import RedisError

from cortexmcp.anneal import AutoRemediationEngine
from cortexmcp.anneal import KnowledgeSink
from cortexmcp.anneal import QualityAuditor
from cortexmcp.anneal import SelfAnnealCycle
from cortexmcp.cache import TTLCache
from cortexmcp.config import AnnealConfig
from cortexmcp.config import BudgetConfig
from cortexmcp.config import ContextConfig
from cortexmcp.config import JournalConfig
from cortexmcp.config import KnowledgeConfig
from cortexmcp.config import LLMConfig
from cortexmcp.config import RefreshConfig
from cortexmcp.config import ScheduleConfig
from cortexmcp.config import UsageConfig
from cortexmcp.context import ContextCacheManager
from cortexmcp.context import ContextStore
from cortexmcp.context import RegenerationError
from cortexmcp.context import RegenerationPipeline
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.handoffs import HandoffService
from cortexmcp.crm.handoffs import HandoffStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.interactions import InteractionService
from cortexmcp.crm.schemas import ContactNotFoundError
from cortexmcp.crm.schemas import HandoffNotFoundError
from cortexmcp.crm.schemas import HandoffStatus
from cortexmcp.crm.schemas import HandoffUrgency
from cortexmcp.engine import build_llm_adapter
from cortexmcp.engine import LLMAdapter
from cortexmcp.engine import Summarizer
from cortexmcp.engine import SummarizerError
from cortexmcp.jobs.scheduler import BackgroundTasks
from cortexmcp.jobs.scheduler import JobScheduler
from cortexmcp.jobs.tasks import daily_usage_report
from cortexmcp.jobs.tasks import handoff_reminder
from cortexmcp.jobs.tasks import nightly_context_refresh
from cortexmcp.jobs.tasks import stale_context_cleanup
from cortexmcp.journal import ErrorJournal
from cortexmcp.observability import LatencyRecorder
from cortexmcp.schemas import BudgetResult
from cortexmcp.schemas import ContactResult
from cortexmcp.schemas import ErrorPatternsResult
from cortexmcp.schemas import ErrorSummaryResult
from cortexmcp.schemas import GetContextResult
from cortexmcp.schemas import HandoffListResult
from cortexmcp.schemas import HandoffToolResult
from cortexmcp.schemas import HealthResult
from cortexmcp.schemas import InteractionListResult
from cortexmcp.schemas import LogInteractionResult
from cortexmcp.schemas import RecentErrorsResult
from cortexmcp.schemas import RefreshContextResult
from cortexmcp.schemas import ResolveErrorsResult
from cortexmcp.schemas import SelfAnnealResult
from cortexmcp.schemas import UsageSummaryResult
from cortexmcp.usage import BudgetExceededError
from cortexmcp.usage import BudgetGuard
from cortexmcp.usage import UsageLedger
from cortexmcp.usage.budget import utc_day_start

mcp = FastMCP("Cortex")

_latency = LatencyRecorder()

# ---------------------------------------------------------------------------
# Runtime (set via configure())
# ---------------------------------------------------------------------------


@dataclass
class Runtime:
    """Every component the tools and jobs talk to, wired together."""

    redis: Redis
    contacts: ContactStore
    interactions: InteractionLog
    handoffs: HandoffStore
    contexts: ContextStore
    journal: ErrorJournal
    ledger: UsageLedger
    budget: BudgetGuard
    context_manager: ContextCacheManager
    interaction_service: InteractionService
    handoff_service: HandoffService
    cycle: SelfAnnealCycle
    background: BackgroundTasks
    scheduler: JobScheduler


def build_runtime(
    redis: Redis,
    summarizer: Summarizer,
    *,
    context_config: ContextConfig | None = None,
    journal_config: JournalConfig | None = None,
    anneal_config: AnnealConfig | None = None,
    refresh_config: RefreshConfig | None = None,
    schedule_config: ScheduleConfig | None = None,
    knowledge_config: KnowledgeConfig | None = None,
    budget_config: BudgetConfig | None = None,
    usage_config: UsageConfig | None = None,
    clock: Callable[[], float] = time.time,
) -> Runtime:
    """Wire stores, services, the self-anneal cycle and the job scheduler."""
    context_cfg = context_config or ContextConfig()
    anneal_cfg = anneal_config or AnnealConfig()
    refresh_cfg = refresh_config or RefreshConfig()
    schedule_cfg = schedule_config or ScheduleConfig()
    budget_cfg = budget_config or BudgetConfig()

    journal = ErrorJournal(redis, journal_config, clock=clock)
    ledger = UsageLedger(usage_config)
    contacts = ContactStore(redis, clock=clock)
    interactions = InteractionLog(redis)
    handoffs = HandoffStore(redis, clock=clock)
    contexts = ContextStore(redis)
    background = BackgroundTasks()

    pipeline = RegenerationPipeline(
        interactions, summarizer, contexts, journal, ledger, context_cfg, clock=clock
    )
    manager = ContextCacheManager(
        contacts, interactions, handoffs, contexts, pipeline, context_cfg, clock=clock
    )
    cycle = SelfAnnealCycle(
        journal,
        AutoRemediationEngine(journal, journal.config),
        QualityAuditor(
            journal, contacts, interactions, contexts, handoffs, anneal_cfg, clock=clock
        ),
        KnowledgeSink(knowledge_config, clock=clock),
        anneal_cfg,
        clock=clock,
    )

    scheduler = JobScheduler(latency=_latency)
    scheduler.add(
        "handoff_reminder",
        schedule_cfg.handoff_reminder_seconds,
        lambda: handoff_reminder(handoffs, anneal_cfg, clock=clock),
    )
    scheduler.add("self_anneal", schedule_cfg.self_anneal_seconds, cycle.run)
    scheduler.add(
        "stale_context_cleanup",
        schedule_cfg.stale_cleanup_seconds,
        lambda: stale_context_cleanup(contexts, contacts, refresh_cfg, clock=clock),
    )
    scheduler.add(
        "nightly_context_refresh",
        schedule_cfg.nightly_refresh_seconds,
        lambda: nightly_context_refresh(contacts, manager, refresh_cfg, clock=clock),
    )
    scheduler.add(
        "daily_usage_report",
        schedule_cfg.usage_report_seconds,
        lambda: daily_usage_report(ledger, clock=clock),
    )

    return Runtime(
        redis=redis,
        contacts=contacts,
        interactions=interactions,
        handoffs=handoffs,
        contexts=contexts,
        journal=journal,
        ledger=ledger,
        budget=BudgetGuard(
            ledger,
            journal,
            budget_cfg,
            cache=TTLCache(budget_cfg.cache_ttl_seconds),
            clock=clock,
        ),
        context_manager=manager,
        interaction_service=InteractionService(
            contacts, interactions, summarizer, journal, ledger, clock=clock
        ),
        handoff_service=HandoffService(
            contacts,
            interactions,
            handoffs,
            summarizer,
            journal,
            ledger,
            background,
            refresh_context=manager.refresh_context,
            load_context=manager.cached_record,
            config=context_cfg,
            clock=clock,
        ),
        cycle=cycle,
        background=background,
        scheduler=scheduler,
    )


_runtime: Runtime | None = None


async def configure(
    redis_url: str = "redis://localhost:6379",
    *,
    llm_config: LLMConfig | None = None,
    llm_adapter: LLMAdapter | None = None,
    context_config: ContextConfig | None = None,
    journal_config: JournalConfig | None = None,
    anneal_config: AnnealConfig | None = None,
    refresh_config: RefreshConfig | None = None,
    schedule_config: ScheduleConfig | None = None,
    knowledge_config: KnowledgeConfig | None = None,
    budget_config: BudgetConfig | None = None,
    usage_config: UsageConfig | None = None,
    start_scheduler: bool = False,
    clock: Callable[[], float] = time.time,
) -> Runtime:
    """Initialize the backends and wire every component.

    Must be called before the MCP tools can function. Reconfiguring
    shuts the previous runtime down first.
    """
    global _runtime
    if _runtime is not None:
        try:
            await shutdown()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            _runtime = None

    llm_cfg = llm_config or LLMConfig()
    adapter = llm_adapter or build_llm_adapter(llm_cfg)
    runtime = build_runtime(
        Redis.from_url(redis_url),
        Summarizer(adapter, llm_cfg),
        context_config=context_config,
        journal_config=journal_config,
        anneal_config=anneal_config,
        refresh_config=refresh_config,
        schedule_config=schedule_config,
        knowledge_config=knowledge_config,
        budget_config=budget_config,
        usage_config=usage_config,
        clock=clock,
    )
    if start_scheduler:
        runtime.scheduler.start()
    _runtime = runtime
    return runtime


async def shutdown() -> None:
    """Stop jobs, cancel background work and close the Redis client."""
    global _runtime
    runtime = _runtime
    _runtime = None
    if runtime is None:
        return
    await runtime.scheduler.stop()
    await runtime.background.cancel_all()
    await runtime.redis.aclose()


def _get_runtime() -> Runtime:
    """Return the configured runtime or raise."""
    if _runtime is None:
        raise RuntimeError("Cortex not configured. Call configure() first.")
    return _runtime


async def _reset_stores() -> None:
    """Flush the Redis database — exposed for test cleanup."""
    if _runtime is not None:
        await _runtime.redis.flushdb()


def _observe(operation: str, start: float, ok: bool) -> None:
    _latency.record(
        operation=f"tool.{operation}",
        duration_ms=(perf_counter() - start) * 1000,
        ok=ok,
    )


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


_PERIOD_SECONDS = {"day": 24 * 3600, "week": 7 * 24 * 3600, "month": 30 * 24 * 3600}


# ---------------------------------------------------------------------------
# Tools: contacts and interactions
# ---------------------------------------------------------------------------


@mcp.tool
async def upsert_contact(
    email: str,
    name: str | None = None,
    company_name: str | None = None,
    phone: str | None = None,
    stage: str | None = None,
    source: str | None = None,
    owner_agent: str | None = None,
    owner_human_id: str | None = None,
    tags: list[str] | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> ContactResult:
    """Create a contact keyed by email, or merge the given fields into it."""
    start = perf_counter()
    ok = False
    try:
        try:
            contact = await _get_runtime().contacts.upsert_by_email(
                email,
                name=name,
                company_name=company_name,
                phone=phone,
                stage=stage,
                source=source,
                owner_agent=owner_agent,
                owner_human_id=owner_human_id,
                tags=tags,
                custom_fields=custom_fields,
            )
        except ValidationError as exc:
            return ContactResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        ok = True
        return ContactResult(contact=contact)
    finally:
        _observe("upsert_contact", start, ok)


@mcp.tool
async def get_contact(contact_id: str) -> ContactResult:
    """Fetch one contact by id."""
    start = perf_counter()
    ok = False
    try:
        contact = await _get_runtime().contacts.get(contact_id)
        if contact is None:
            return ContactResult(
                status="not_found",
                error_code="contact_not_found",
                message=f"Contact not found: {contact_id}",
            )
        ok = True
        return ContactResult(contact=contact)
    finally:
        _observe("get_contact", start, ok)


@mcp.tool
async def log_interaction(
    contact_id: str,
    agent: str,
    type: str,
    human_id: str | None = None,
    direction: str | None = None,
    subject: str | None = None,
    raw_content: str | None = None,
    summary: str | None = None,
    sentiment: str | None = None,
    key_points: list[str] | None = None,
    intent: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LogInteractionResult:
    """Log an interaction with a contact.

    Raw content without a summary is summarized automatically.
    """
    start = perf_counter()
    ok = False
    try:
        try:
            result = await _get_runtime().interaction_service.log_interaction(
                contact_id,
                agent,
                type,
                human_id=human_id,
                direction=direction,
                subject=subject,
                raw_content=raw_content,
                summary=summary,
                sentiment=sentiment,
                key_points=key_points,
                intent=intent,
                metadata=metadata,
            )
        except ContactNotFoundError as exc:
            return LogInteractionResult(
                status="not_found", error_code="contact_not_found", message=str(exc)
            )
        except ValidationError as exc:
            return LogInteractionResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        ok = True
        return LogInteractionResult(
            interaction=result.interaction,
            token_usage=result.token_usage,
            context_refresh_triggered=result.context_refresh_triggered,
        )
    finally:
        _observe("log_interaction", start, ok)


@mcp.tool
async def list_interactions(
    contact_id: str,
    limit: int = 20,
    agent: str | None = None,
    type: str | None = None,
    since: float | None = None,
    include_raw: bool = False,
) -> InteractionListResult:
    """List a contact's interactions, newest first (limit capped at 100)."""
    start = perf_counter()
    ok = False
    try:
        interactions = await _get_runtime().interactions.list_recent(
            contact_id, limit, agent=agent, type=type, since=since
        )
        if not include_raw:
            interactions = [
                i.model_copy(update={"raw_content": None}) for i in interactions
            ]
        ok = True
        return InteractionListResult(interactions=interactions)
    finally:
        _observe("list_interactions", start, ok)


# ---------------------------------------------------------------------------
# Tools: context
# ---------------------------------------------------------------------------


@mcp.tool
async def get_context(
    contact_id: str,
    level: int = 1,
    refresh: bool = False,
) -> GetContextResult:
    """Return the briefing for a contact.

    Levels: 0 header only, 1 cached briefing, 2 adds the 10 most recent
    interactions and the last handoff, 3 widens history to 50. A stale
    briefing is regenerated before it is returned.
    """
    start = perf_counter()
    ok = False
    try:
        manager = _get_runtime().context_manager
        try:
            briefing = await manager.get_context(
                contact_id, level, force_refresh=refresh
            )
        except ContactNotFoundError as exc:
            return GetContextResult(
                contact_id=contact_id,
                status="not_found",
                error_code="contact_not_found",
                message=str(exc),
            )
        except ValueError as exc:
            return GetContextResult(
                contact_id=contact_id,
                status="rejected",
                error_code="validation_error",
                message=str(exc),
            )
        except RegenerationError as exc:
            return GetContextResult(
                contact_id=contact_id,
                status="error",
                error_code="rate_limited" if exc.rate_limited else "regeneration_failed",
                message=str(exc),
            )
        ok = True
        return GetContextResult(contact_id=contact_id, briefing=briefing)
    finally:
        _observe("get_context", start, ok)


@mcp.tool
async def refresh_context(contact_id: str, agent: str | None = None) -> RefreshContextResult:
    """Force regeneration of a contact's briefing.

    When ``agent`` is given, its daily token budget is checked first.
    """
    start = perf_counter()
    ok = False
    try:
        runtime = _get_runtime()
        budget = None
        if agent:
            try:
                budget = await runtime.budget.enforce(agent, "refresh_context")
            except BudgetExceededError as exc:
                return RefreshContextResult(
                    contact_id=contact_id,
                    status="rejected",
                    error_code="budget_exceeded",
                    message=str(exc),
                    budget=exc.result,
                )
        try:
            refreshed = await runtime.context_manager.refresh_context(contact_id)
        except ContactNotFoundError as exc:
            return RefreshContextResult(
                contact_id=contact_id,
                status="not_found",
                error_code="contact_not_found",
                message=str(exc),
            )
        except RegenerationError as exc:
            return RefreshContextResult(
                contact_id=contact_id,
                status="error",
                error_code="rate_limited" if exc.rate_limited else "regeneration_failed",
                message=str(exc),
                budget=budget,
            )
        ok = True
        return RefreshContextResult(
            contact_id=contact_id, refresh=refreshed, budget=budget
        )
    finally:
        _observe("refresh_context", start, ok)


# ---------------------------------------------------------------------------
# Tools: handoffs
# ---------------------------------------------------------------------------


@mcp.tool
async def create_handoff(
    contact_id: str,
    from_agent: str,
    reason: str,
    to_agent: str | None = None,
    to_human_id: str | None = None,
    reason_detail: str | None = None,
    suggested_action: str | None = None,
    urgency: str = "normal",
    metadata: dict[str, Any] | None = None,
) -> HandoffToolResult:
    """Hand a contact over to another agent or a human.

    Builds a handoff briefing, transfers ownership and refreshes the
    contact's context in the background.
    """
    start = perf_counter()
    ok = False
    try:
        try:
            level = HandoffUrgency(urgency)
        except ValueError:
            return HandoffToolResult(
                status="rejected",
                error_code="validation_error",
                message=f"Unknown urgency: {urgency}",
            )
        try:
            result = await _get_runtime().handoff_service.create_handoff(
                contact_id,
                from_agent,
                reason,
                to_agent=to_agent,
                to_human_id=to_human_id,
                reason_detail=reason_detail,
                suggested_action=suggested_action,
                urgency=level,
                metadata=metadata,
            )
        except ContactNotFoundError as exc:
            return HandoffToolResult(
                status="not_found", error_code="contact_not_found", message=str(exc)
            )
        except ValueError as exc:
            return HandoffToolResult(
                status="rejected", error_code="validation_error", message=str(exc)
            )
        except SummarizerError as exc:
            return HandoffToolResult(
                status="error",
                error_code="rate_limited" if exc.rate_limited else "summarizer_failed",
                message=str(exc),
            )
        ok = True
        return HandoffToolResult(
            handoff=result.handoff,
            token_usage=result.token_usage,
            context_refresh_scheduled=result.context_refresh_scheduled,
        )
    finally:
        _observe("create_handoff", start, ok)


@mcp.tool
async def list_pending_handoffs(
    agent: str | None = None,
    human_id: str | None = None,
    urgency: str | None = None,
) -> HandoffListResult:
    """List pending handoffs, most urgent first."""
    start = perf_counter()
    ok = False
    try:
        try:
            level = HandoffUrgency(urgency) if urgency else None
        except ValueError:
            return HandoffListResult(
                status="rejected",
                error_code="validation_error",
                message=f"Unknown urgency: {urgency}",
            )
        handoffs = await _get_runtime().handoffs.list_pending(
            to_agent=agent, to_human_id=human_id, urgency=level
        )
        ok = True
        return HandoffListResult(handoffs=handoffs)
    finally:
        _observe("list_pending_handoffs", start, ok)


@mcp.tool
async def update_handoff(handoff_id: str, status: str) -> HandoffToolResult:
    """Accept, complete or reject a handoff."""
    start = perf_counter()
    ok = False
    try:
        try:
            new_status = HandoffStatus(status)
        except ValueError:
            return HandoffToolResult(
                status="rejected",
                error_code="validation_error",
                message=f"Unknown handoff status: {status}",
            )
        try:
            handoff = await _get_runtime().handoff_service.update_handoff(
                handoff_id, new_status
            )
        except HandoffNotFoundError as exc:
            return HandoffToolResult(
                status="not_found", error_code="handoff_not_found", message=str(exc)
            )
        ok = True
        return HandoffToolResult(handoff=handoff)
    finally:
        _observe("update_handoff", start, ok)


# ---------------------------------------------------------------------------
# Tools: error journal
# ---------------------------------------------------------------------------


@mcp.tool
async def get_error_summary(hours: float = 24.0) -> ErrorSummaryResult:
    """Summarize journaled errors of the last ``hours``."""
    start = perf_counter()
    ok = False
    try:
        summary = await _get_runtime().journal.error_summary(hours)
        ok = True
        return ErrorSummaryResult(summary=summary)
    finally:
        _observe("get_error_summary", start, ok)


@mcp.tool
async def get_error_patterns(hours: float = 24.0) -> ErrorPatternsResult:
    """Group unresolved errors of the last ``hours`` by type/service/operation."""
    start = perf_counter()
    ok = False
    try:
        patterns = await _get_runtime().journal.error_patterns(hours)
        ok = True
        return ErrorPatternsResult(window_hours=hours, patterns=patterns)
    finally:
        _observe("get_error_patterns", start, ok)


@mcp.tool
async def get_recent_errors(hours: float = 4.0, limit: int = 100) -> RecentErrorsResult:
    """List errors journaled in the last ``hours``, newest first."""
    start = perf_counter()
    ok = False
    try:
        errors = await _get_runtime().journal.recent_errors(hours, limit=limit)
        ok = True
        return RecentErrorsResult(window_hours=hours, errors=errors)
    finally:
        _observe("get_recent_errors", start, ok)


@mcp.tool
async def resolve_errors(
    resolution: str,
    pattern_id: str | None = None,
    error_ids: list[str] | None = None,
    auto_fixed: bool = False,
) -> ResolveErrorsResult:
    """Resolve unresolved errors by pattern tag or by ids.

    Already-resolved errors are left untouched.
    """
    start = perf_counter()
    ok = False
    try:
        if pattern_id is None and not error_ids:
            return ResolveErrorsResult(
                status="rejected",
                error_code="validation_error",
                message="pattern_id or error_ids is required",
            )
        count = await _get_runtime().journal.resolve_errors(
            resolution=resolution,
            pattern_id=pattern_id,
            error_ids=error_ids,
            auto_fixed=auto_fixed,
        )
        ok = True
        return ResolveErrorsResult(resolved_count=count)
    finally:
        _observe("resolve_errors", start, ok)


# ---------------------------------------------------------------------------
# Tools: usage and self-anneal
# ---------------------------------------------------------------------------


@mcp.tool
async def check_budget(agent: str, estimated_tokens: int | None = None) -> BudgetResult:
    """Check an agent's remaining daily token budget."""
    start = perf_counter()
    ok = False
    try:
        budget = await _get_runtime().budget.check_budget(agent, estimated_tokens)
        ok = True
        return BudgetResult(budget=budget)
    finally:
        _observe("check_budget", start, ok)


@mcp.tool
async def get_usage_summary(
    period: str = "day", agent: str | None = None
) -> UsageSummaryResult:
    """Summarize token usage for the current day, or the last week/month."""
    start = perf_counter()
    ok = False
    try:
        if period not in _PERIOD_SECONDS:
            return UsageSummaryResult(
                status="rejected",
                error_code="validation_error",
                message=f"period must be one of {sorted(_PERIOD_SECONDS)}",
            )
        if period == "day":
            since = utc_day_start(time.time())
        else:
            since = time.time() - _PERIOD_SECONDS[period]
        usage = await _get_runtime().ledger.summary(since, agent=agent)
        ok = True
        return UsageSummaryResult(usage=usage)
    finally:
        _observe("get_usage_summary", start, ok)


@mcp.tool
async def run_self_anneal() -> SelfAnnealResult:
    """Run one self-anneal cycle now and report its findings."""
    start = perf_counter()
    ok = False
    try:
        report = await _get_runtime().cycle.run()
        ok = not report.failed
        return SelfAnnealResult(
            status="error" if report.failed else "ok",
            error_code="cycle_failed" if report.failed else None,
            patterns_found=len(report.patterns),
            resolved_count=report.resolved_count,
            learnings=[learning.text for learning in report.learnings],
            appended=report.appended,
            phase_errors=report.phase_errors,
        )
    finally:
        _observe("run_self_anneal", start, ok)


@mcp.tool
async def health() -> HealthResult:
    """Report backend reachability, scheduler state and tool latencies."""
    runtime = _get_runtime()
    try:
        redis_ok = bool(await runtime.redis.ping())
    except RedisError:
        redis_ok = False
    return HealthResult(
        status="ok" if redis_ok else "error",
        error_code=None if redis_ok else "redis_unreachable",
        redis=redis_ok,
        scheduler_running=runtime.scheduler.running,
        background_tasks=runtime.background.pending,
        latency=_latency.snapshot(),
    )
