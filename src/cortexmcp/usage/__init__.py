"""Usage domain: token ledger and per-agent budgets."""

from cortexmcp.usage.budget import BudgetGuard
from cortexmcp.usage.ledger import UsageLedger
from cortexmcp.usage.schemas import BudgetCheckResult
from cortexmcp.usage.schemas import BudgetExceededError
from cortexmcp.usage.schemas import BudgetRecommendation
from cortexmcp.usage.schemas import UsageEntry
from cortexmcp.usage.schemas import UsageSummary

__all__ = [
    "BudgetCheckResult",
    "BudgetExceededError",
    "BudgetGuard",
    "BudgetRecommendation",
    "UsageEntry",
    "UsageLedger",
    "UsageSummary",
]
