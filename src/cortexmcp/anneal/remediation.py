"""Auto-remediation: canned responses to recurring error patterns."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from cortexmcp.anneal.knowledge import Learning
from cortexmcp.config import JournalConfig
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorPattern
from cortexmcp.journal import ErrorType

logger = logging.getLogger(__name__)

_FLAG_MESSAGE_CHARS = 100


class RemediationAction(str, Enum):
    reduce_batch_size = "reduce_batch_size"
    raise_token_budget = "raise_token_budget"
    escalate_model = "escalate_model"
    flag_only = "flag_only"


@dataclass(frozen=True)
class Remediation:
    """What to do about one pattern."""

    action: RemediationAction
    learning: Learning
    resolution: str | None = None

    @property
    def resolves(self) -> bool:
        return self.resolution is not None


@dataclass
class RemediationOutcome:
    pattern: ErrorPattern
    remediation: Remediation
    resolved_count: int = 0


def choose_remediation(
    pattern: ErrorPattern,
    *,
    escalation_threshold: int = 5,
    rate_limit_marker: str = "rate_limit",
) -> Remediation | None:
    """Apply the decision table to *pattern*; first matching rule wins.

    Returns ``None`` when no rule applies.
    """
    where = f"{pattern.service}.{pattern.operation}"
    key = pattern.key

    if (
        pattern.error_type == ErrorType.external_dependency
        and rate_limit_marker in pattern.latest_message
    ):
        return Remediation(
            action=RemediationAction.reduce_batch_size,
            learning=Learning(
                text=(
                    f"Summarizer rate limit hit {pattern.count}x in {where}. "
                    "Consider reducing batch sizes or adding longer delays "
                    "between batches."
                ),
                pattern_key=f"{key}::{RemediationAction.reduce_batch_size.value}",
            ),
            resolution="Auto-detected rate limit pattern. Recommended batch size reduction.",
        )

    if pattern.error_type == ErrorType.budget_exceeded:
        return Remediation(
            action=RemediationAction.raise_token_budget,
            learning=Learning(
                text=(
                    f"Budget exceeded {pattern.count}x for {pattern.operation}. "
                    "Consider raising the daily token budget for the affected "
                    "agent(s) or optimizing prompt length."
                ),
                pattern_key=f"{key}::{RemediationAction.raise_token_budget.value}",
            ),
            resolution="Auto-detected budget pattern. Logged for review.",
        )

    if (
        pattern.error_type == ErrorType.quality_issue
        and pattern.count >= escalation_threshold
    ):
        return Remediation(
            action=RemediationAction.escalate_model,
            learning=Learning(
                text=(
                    f"Quality issues detected {pattern.count}x in {where}. "
                    "Consider falling back to a higher-capability model for "
                    "this operation."
                ),
                pattern_key=f"{key}::{RemediationAction.escalate_model.value}",
            ),
            resolution="Auto-detected quality pattern. Recommended model escalation.",
        )

    if pattern.count >= escalation_threshold:
        message = pattern.latest_message[:_FLAG_MESSAGE_CHARS]
        return Remediation(
            action=RemediationAction.flag_only,
            learning=Learning(
                text=(
                    f"Recurring {pattern.error_type.value} in {where} "
                    f"({pattern.count}x in window): {message}"
                ),
                pattern_key=f"{key}::{RemediationAction.flag_only.value}",
            ),
        )

    return None


class AutoRemediationEngine:
    """Runs the decision table over recurring patterns."""

    def __init__(
        self,
        journal: ErrorJournal,
        config: JournalConfig | None = None,
    ) -> None:
        self._journal = journal
        self._config = config or JournalConfig()

    async def apply(self, patterns: list[ErrorPattern]) -> list[RemediationOutcome]:
        """Remediate every recurring pattern in *patterns*.

        Patterns below the recurring threshold are ignored. A remediation
        that resolves marks exactly the pattern's member records, as
        auto-fixed; the journal skips records already resolved.
        """
        outcomes: list[RemediationOutcome] = []
        for pattern in patterns:
            if pattern.count < self._config.recurring_threshold:
                continue
            remediation = choose_remediation(
                pattern,
                escalation_threshold=self._config.escalation_threshold,
                rate_limit_marker=self._config.rate_limit_marker,
            )
            if remediation is None:
                continue

            outcome = RemediationOutcome(pattern=pattern, remediation=remediation)
            if remediation.resolves:
                outcome.resolved_count = await self._journal.resolve_errors(
                    error_ids=pattern.error_ids,
                    resolution=remediation.resolution or "",
                    auto_fixed=True,
                )
            else:
                logger.warning(
                    "flagged pattern %s: %s", pattern.key, remediation.learning.text
                )
            outcomes.append(outcome)
        return outcomes
