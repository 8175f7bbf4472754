"""Knowledge sink: dated learnings appended to a shared Markdown document.

Lines land under a single marker section::

    ## Learnings & Edge Cases

    - [2026-10-18] Budget exceeded 3x for refresh_context. ... <!-- learning:1f2e3d4c5b6a -->

The trailing HTML comment is an idempotency key (hash of the UTC date
and the learning's pattern key); with ``deduplicate`` on, a key already
present in the document is not appended again.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from functools import partial
from pathlib import Path

from cortexmcp.config import KnowledgeConfig

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"<!-- learning:([0-9a-f]+) -->")


@dataclass(frozen=True)
class Learning:
    """One finding worth recording, with the pattern it came from."""

    text: str
    pattern_key: str

    @classmethod
    def from_text(cls, text: str) -> Learning:
        return cls(text=text, pattern_key=text)


def learning_key(learning: Learning, day: str) -> str:
    """Idempotency key for *learning* recorded on *day* (YYYY-MM-DD)."""
    digest = hashlib.sha256(f"{day}|{learning.pattern_key}".encode())
    return digest.hexdigest()[:12]


def existing_keys(content: str) -> set[str]:
    return set(_KEY_RE.findall(content))


def insert_entries(content: str, entries: list[str], marker: str) -> str:
    """Place *entries* (already formatted lines) under *marker* in *content*.

    With the marker present, lines go in at the first blank-line boundary
    at or after the end of the marker line, else at the end of the
    document. A blank line directly under the marker therefore puts new
    entries right below the header. Without the marker, the section is
    created at the end.
    """
    block = "\n".join(entries)
    marker_at = content.find(marker)
    if marker_at == -1:
        if not content:
            return f"{marker}\n\n{block}\n"
        return f"{content}\n{marker}\n\n{block}\n"

    line_end = content.find("\n", marker_at)
    if line_end != -1:
        blank_at = content.find("\n\n", line_end)
        if blank_at != -1:
            return f"{content[:blank_at]}\n{block}{content[blank_at:]}"
    separator = "" if content.endswith("\n") else "\n"
    return f"{content}{separator}{block}\n"


class KnowledgeSink:
    """Appends learnings to the knowledge document.

    File I/O runs in ``asyncio.to_thread``, serialized by an
    ``asyncio.Lock``. The document is created on first write and never
    deleted here.
    """

    def __init__(
        self,
        config: KnowledgeConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or KnowledgeConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def append_learnings(self, learnings: Iterable[Learning | str]) -> int:
        """Append *learnings*; returns how many lines were written."""
        items = [
            item if isinstance(item, Learning) else Learning.from_text(item)
            for item in learnings
        ]
        if not items:
            return 0
        day = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime(
            "%Y-%m-%d"
        )
        async with self._lock:
            return await asyncio.to_thread(
                partial(self._append_sync, Path(self.config.file_path), items, day)
            )

    async def read(self) -> str:
        path = Path(self.config.file_path)
        if not path.exists():
            return ""
        async with self._lock:
            return await asyncio.to_thread(path.read_text)

    def _append_sync(self, path: Path, items: list[Learning], day: str) -> int:
        content = path.read_text() if path.exists() else ""
        seen = existing_keys(content) if self.config.deduplicate else set()

        entries: list[str] = []
        for learning in items:
            key = learning_key(learning, day)
            if key in seen:
                logger.debug("skipping duplicate learning key=%s", key)
                continue
            seen.add(key)
            entries.append(f"- [{day}] {learning.text} <!-- learning:{key} -->")
        if not entries:
            return 0

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(insert_entries(content, entries, self.config.marker))
        logger.info("appended %d learning(s) to %s", len(entries), path)
        return len(entries)
