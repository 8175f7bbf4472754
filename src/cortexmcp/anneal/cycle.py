"""Self-anneal cycle: detect, remediate, audit, record.

Phases run strictly in sequence. A crashing phase is journaled and the
remaining phases still run; anything escaping the phase boundaries is
caught at the top and journaled as an operational error.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from typing import TypeVar

from cortexmcp.anneal.auditor import QualityAuditor
from cortexmcp.anneal.knowledge import KnowledgeSink
from cortexmcp.anneal.knowledge import Learning
from cortexmcp.anneal.remediation import AutoRemediationEngine
from cortexmcp.anneal.remediation import RemediationOutcome
from cortexmcp.config import AnnealConfig
from cortexmcp.journal import ErrorEntry
from cortexmcp.journal import ErrorJournal
from cortexmcp.journal import ErrorPattern
from cortexmcp.journal import ErrorType

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass
class CycleReport:
    """What one self-anneal cycle found and did."""

    started_at: float
    finished_at: float | None = None
    patterns: list[ErrorPattern] = field(default_factory=list)
    remediations: list[RemediationOutcome] = field(default_factory=list)
    learnings: list[Learning] = field(default_factory=list)
    appended: int = 0
    phase_errors: dict[str, str] = field(default_factory=dict)
    failed: bool = False

    @property
    def resolved_count(self) -> int:
        return sum(o.resolved_count for o in self.remediations)


class SelfAnnealCycle:
    """Orchestrates one pass of the self-annealing control loop."""

    def __init__(
        self,
        journal: ErrorJournal,
        remediation: AutoRemediationEngine,
        auditor: QualityAuditor,
        knowledge: KnowledgeSink,
        config: AnnealConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._journal = journal
        self._remediation = remediation
        self._auditor = auditor
        self._knowledge = knowledge
        self._config = config or AnnealConfig()
        self._clock = clock

    async def run(self) -> CycleReport:
        report = CycleReport(started_at=self._clock())
        try:
            await self._run_phases(report)
        except Exception as exc:
            report.failed = True
            logger.exception("Self-anneal cycle failed")
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.operational,
                    service="self_anneal",
                    operation="self_anneal_cycle",
                    message=str(exc),
                    stack_trace=traceback.format_exc(),
                )
            )
        report.finished_at = self._clock()
        logger.info(
            "self-anneal cycle patterns=%d resolved=%d learnings=%d appended=%d "
            "phase_errors=%d",
            len(report.patterns),
            report.resolved_count,
            len(report.learnings),
            report.appended,
            len(report.phase_errors),
        )
        return report

    async def _run_phases(self, report: CycleReport) -> None:
        report.patterns = await self._phase(
            report,
            "detect_patterns",
            lambda: self._journal.error_patterns(self._config.window_hours),
            default=[],
        )
        report.remediations = await self._phase(
            report,
            "auto_remediate",
            lambda: self._remediation.apply(report.patterns),
            default=[],
        )
        report.learnings.extend(o.remediation.learning for o in report.remediations)

        for name, sweep in (
            ("summary_quality", self._auditor.check_summary_quality),
            ("context_staleness", self._auditor.check_context_staleness),
            ("handoff_backlog", self._auditor.check_handoff_backlog),
        ):
            report.learnings.extend(await self._phase(report, name, sweep, default=[]))

        if report.learnings:
            report.appended = await self._phase(
                report,
                "record_learnings",
                lambda: self._knowledge.append_learnings(report.learnings),
                default=0,
            )

    async def _phase(
        self,
        report: CycleReport,
        name: str,
        func: Callable[[], Awaitable[_T]],
        *,
        default: _T,
    ) -> _T:
        try:
            return await func()
        except Exception as exc:
            report.phase_errors[name] = str(exc)
            logger.exception("Self-anneal phase %s failed", name)
            await self._journal.log_error(
                ErrorEntry(
                    error_type=ErrorType.operational,
                    service="self_anneal",
                    operation=name,
                    message=str(exc),
                    stack_trace=traceback.format_exc(),
                )
            )
            return default
