"""Async JSONL usage ledger."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from pathlib import Path

from pydantic import ValidationError

from cortexmcp.config import UsageConfig
from cortexmcp.usage.schemas import UsageBreakdown
from cortexmcp.usage.schemas import UsageEntry
from cortexmcp.usage.schemas import UsageSummary

logger = logging.getLogger(__name__)


def _add(bucket: UsageBreakdown, entry: UsageEntry) -> None:
    bucket.calls += 1
    bucket.input_tokens += entry.input_tokens
    bucket.output_tokens += entry.output_tokens
    bucket.cost_usd = round(bucket.cost_usd + entry.cost_usd, 6)


class UsageLedger:
    """Append-only JSONL token ledger with async I/O.

    Uses ``asyncio.to_thread`` for file operations to avoid blocking
    the event loop, guarded by an ``asyncio.Lock`` for serialization.
    """

    def __init__(self, config: UsageConfig | None = None) -> None:
        self.config = config or UsageConfig()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def record(self, entry: UsageEntry) -> bool:
        """Append *entry* as one JSON line.

        Best-effort: an I/O failure is logged and reported as ``False``
        so that billing hiccups never fail the operation that spent the
        tokens.
        """
        if not self.config.enabled:
            return False
        line = entry.model_dump_json() + "\n"
        try:
            async with self._lock:
                await asyncio.to_thread(
                    partial(self._append, self.config.file_path, line),
                )
        except OSError:
            logger.exception(
                "Failed to record usage agent=%s operation=%s",
                entry.agent,
                entry.operation,
            )
            return False
        return True

    @staticmethod
    def _append(path: str, line: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as fh:
            fh.write(line)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_entries(
        self,
        *,
        agent: str | None = None,
        since: float | None = None,
        until: float | None = None,
    ) -> list[UsageEntry]:
        """Read entries back from the ledger, optionally filtered."""
        path = Path(self.config.file_path)
        if not path.exists():
            return []

        async with self._lock:
            raw = await asyncio.to_thread(path.read_text)
        entries: list[UsageEntry] = []
        for line_no, line in enumerate(raw.strip().splitlines(), start=1):
            try:
                entry = UsageEntry.model_validate_json(line)
            except ValidationError:
                logger.warning(
                    "Skipping malformed usage line %d in %s",
                    line_no,
                    path,
                )
                continue
            if agent is not None and entry.agent != agent:
                continue
            if since is not None and entry.timestamp < since:
                continue
            if until is not None and entry.timestamp >= until:
                continue
            entries.append(entry)
        return entries

    async def tokens_used(self, agent: str, since: float) -> int:
        """Total input + output tokens *agent* spent since *since*."""
        entries = await self.read_entries(agent=agent, since=since)
        return sum(e.total_tokens for e in entries)

    async def summary(
        self,
        since: float,
        *,
        until: float | None = None,
        agent: str | None = None,
    ) -> UsageSummary:
        """Totals by agent and by model for entries in [since, until)."""
        result = UsageSummary(since=since, until=until)
        entries = await self.read_entries(agent=agent, since=since, until=until)
        for entry in entries:
            _add(result.total, entry)
            _add(result.by_agent.setdefault(entry.agent, UsageBreakdown()), entry)
            _add(result.by_model.setdefault(entry.model, UsageBreakdown()), entry)
        return result
