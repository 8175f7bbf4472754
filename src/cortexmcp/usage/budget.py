"""Per-agent daily token budget checks."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from datetime import timezone

from cortexmcp.cache import TTLCache
from cortexmcp.config import BudgetConfig
from cortexmcp.journal import ErrorEntry
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorType
from cortexmcp.usage.ledger import UsageLedger
from cortexmcp.usage.schemas import BudgetCheckResult
from cortexmcp.usage.schemas import BudgetExceededError
from cortexmcp.usage.schemas import BudgetRecommendation

logger = logging.getLogger(__name__)


def utc_day_start(ts: float) -> float:
    """Epoch of 00:00 UTC on the day containing *ts*."""
    day = datetime.fromtimestamp(ts, tz=timezone.utc).date()
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp()


def recommend(
    used: int,
    budget: int,
    *,
    smaller_model_threshold: float = 0.90,
    alert_threshold: float = 0.95,
) -> BudgetRecommendation:
    """Map today's consumption to a recommendation, strictest first."""
    if budget - used <= 0:
        return BudgetRecommendation.defer
    ratio = used / budget
    if ratio >= alert_threshold:
        return BudgetRecommendation.alert_human
    if ratio >= smaller_model_threshold:
        return BudgetRecommendation.use_smaller_model
    return BudgetRecommendation.proceed


class BudgetGuard:
    """Checks an agent's spend for the current UTC day against its budget.

    Today's usage per agent is memoized in the injected ``TTLCache`` so a
    burst of calls reads the ledger once per TTL.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        journal: ErrorJournal,
        config: BudgetConfig | None = None,
        *,
        cache: TTLCache[tuple[str, float], int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._journal = journal
        self._config = config or BudgetConfig()
        self._cache = cache or TTLCache(self._config.cache_ttl_seconds)
        self._clock = clock

    async def check_budget(
        self, agent: str, estimated_tokens: int | None = None
    ) -> BudgetCheckResult:
        budget = self._config.budget_for(agent)
        day_start = utc_day_start(self._clock())
        used = await self._cache.get_or_load(
            (agent, day_start),
            lambda: self._ledger.tokens_used(agent, day_start),
        )
        remaining = budget - used
        return BudgetCheckResult(
            agent=agent,
            daily_budget=budget,
            used_today=used,
            remaining=max(0, remaining),
            percent_used=round(used / budget * 100, 1) if budget > 0 else 100.0,
            within_budget=remaining > (estimated_tokens or 0),
            recommendation=recommend(
                used,
                budget,
                smaller_model_threshold=self._config.smaller_model_threshold,
                alert_threshold=self._config.alert_threshold,
            ),
        )

    async def enforce(
        self,
        agent: str,
        operation: str,
        *,
        estimated_tokens: int | None = None,
    ) -> BudgetCheckResult | None:
        """Raise ``BudgetExceededError`` when *agent* is over budget.

        Over-budget calls are journaled as ``budget_exceeded``. A failing
        ledger read is logged and the call proceeds (``None`` returned).
        """
        try:
            result = await self.check_budget(agent, estimated_tokens)
        except OSError:
            logger.exception("Budget check failed for agent=%s; proceeding", agent)
            return None
        if result.within_budget:
            return result

        await self._journal.log_error(
            ErrorEntry(
                error_type=ErrorType.budget_exceeded,
                service="budget_guard",
                operation=operation,
                message=(
                    f"Agent {agent} used {result.used_today} of "
                    f"{result.daily_budget} daily tokens"
                ),
                context={
                    "agent": agent,
                    "used_today": result.used_today,
                    "daily_budget": result.daily_budget,
                    "estimated_tokens": estimated_tokens,
                },
                pattern_id="budget_exceeded",
            )
        )
        raise BudgetExceededError(result)
