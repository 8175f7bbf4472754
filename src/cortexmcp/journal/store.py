"""Redis-backed error journal.

Each record is a hash ``cortex:error:{id}``: field ``data`` holds the
immutable entry as JSON, the resolution fields (``resolution``,
``resolved_at``, ``auto_fixed``) are only present once resolved.
Sorted sets ``cortex:errors:recency`` and ``cortex:errors:unresolved``
index records by creation time (score = timestamp); sets
``cortex:errors:pattern:{tag}`` index records by pattern tag.

Resolution runs as a Lua script so that the "set exactly once" check
and the write happen atomically on the server.
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from collections.abc import Callable
from collections.abc import Iterable

from redis.asyncio import Redis  # type: ignore[import-untyped]

from cortexmcp.config import JournalConfig
from cortexmcp.journal.patterns import group_error_patterns
from cortexmcp.journal.patterns import recurring_patterns
from cortexmcp.journal.schemas import ErrorEntry
from cortexmcp.journal.schemas import ErrorPattern
from cortexmcp.journal.schemas import ErrorRecord
from cortexmcp.journal.schemas import ErrorSummary

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "cortex"
_ERROR_KEY = f"{_PREFIX}:error"
_RECENCY_KEY = f"{_PREFIX}:errors:recency"
_UNRESOLVED_KEY = f"{_PREFIX}:errors:unresolved"
_PATTERN_KEY = f"{_PREFIX}:errors:pattern"

# KEYS[1] = record hash, KEYS[2] = unresolved index
# ARGV = resolved_at, resolution, auto_fixed ("1"/"0"), record id
_RESOLVE_ONCE_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
if redis.call('HEXISTS', KEYS[1], 'resolved_at') == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'resolved_at', ARGV[1], 'resolution', ARGV[2], 'auto_fixed', ARGV[3])
redis.call('ZREM', KEYS[2], ARGV[4])
return 1
"""


def _decode(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode()
    return value


class ErrorJournal:
    """Append-mostly journal of operational errors."""

    def __init__(
        self,
        redis: Redis,
        config: JournalConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._config = config or JournalConfig()
        self._clock = clock
        self._resolve_once = redis.register_script(_RESOLVE_ONCE_LUA)

    @property
    def config(self) -> JournalConfig:
        return self._config

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def log_error(self, entry: ErrorEntry) -> str | None:
        """Journal *entry* and return the new record id.

        Best-effort: a failed write is logged locally and ``None`` is
        returned. This method never raises.
        """
        try:
            record = ErrorRecord(
                **entry.model_dump(include=set(ErrorEntry.model_fields)),
                created_at=self._clock(),
            )
            data = record.model_dump_json(
                exclude={"resolution", "resolved_at", "auto_fixed"}
            )
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(f"{_ERROR_KEY}:{record.id}", mapping={"data": data})
            pipe.zadd(_RECENCY_KEY, {record.id: record.created_at})
            pipe.zadd(_UNRESOLVED_KEY, {record.id: record.created_at})
            if record.pattern_id:
                pipe.sadd(f"{_PATTERN_KEY}:{record.pattern_id}", record.id)
            await pipe.execute()
        except Exception:
            logger.exception(
                "Failed to journal %s error from %s.%s: %s",
                entry.error_type.value,
                entry.service,
                entry.operation,
                entry.message,
            )
            return None
        logger.debug(
            "journaled %s error_id=%s %s.%s",
            record.error_type.value,
            record.id,
            record.service,
            record.operation,
        )
        return record.id

    async def resolve_errors(
        self,
        *,
        resolution: str,
        pattern_id: str | None = None,
        error_ids: Iterable[str] | None = None,
        auto_fixed: bool = False,
    ) -> int:
        """Resolve unresolved records by pattern tag or explicit ids.

        Only records whose resolution fields are still unset are
        touched, so repeating a call resolves nothing new. Returns the
        number of records resolved by this call; ``0`` when neither
        selector is given.
        """
        if error_ids is not None:
            ids = list(dict.fromkeys(error_ids))
        elif pattern_id is not None:
            members = await self._redis.smembers(f"{_PATTERN_KEY}:{pattern_id}")
            ids = sorted(_decode(m) for m in members)
        else:
            return 0

        resolved_at = str(self._clock())
        flag = "1" if auto_fixed else "0"
        resolved = 0
        for error_id in ids:
            resolved += int(
                await self._resolve_once(
                    keys=[f"{_ERROR_KEY}:{error_id}", _UNRESOLVED_KEY],
                    args=[resolved_at, resolution, flag, error_id],
                )
            )
        if resolved:
            logger.info(
                "resolved %d error(s) pattern_id=%s auto_fixed=%s",
                resolved,
                pattern_id,
                auto_fixed,
            )
        return resolved

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, error_id: str) -> ErrorRecord | None:
        records = await self._load([error_id])
        return records[0] if records else None

    async def recent_errors(
        self, hours: float | None = None, *, limit: int = 100
    ) -> list[ErrorRecord]:
        """Return records created in the last *hours*, newest first."""
        window = self._config.recent_window_hours if hours is None else hours
        since = self._clock() - window * 3600
        ids = await self._redis.zrevrangebyscore(
            _RECENCY_KEY, "+inf", since, start=0, num=limit
        )
        return await self._load([_decode(i) for i in ids])

    async def error_patterns(self, hours: float | None = None) -> list[ErrorPattern]:
        """Group unresolved records of the last *hours* into patterns."""
        window = self._config.default_window_hours if hours is None else hours
        since = self._clock() - window * 3600
        ids = await self._redis.zrangebyscore(_UNRESOLVED_KEY, since, "+inf")
        records = await self._load([_decode(i) for i in ids])
        return group_error_patterns(r for r in records if not r.is_resolved)

    async def error_summary(self, hours: float | None = None) -> ErrorSummary:
        """Summarize all records of the last *hours*."""
        window = self._config.default_window_hours if hours is None else hours
        since = self._clock() - window * 3600
        ids = await self._redis.zrangebyscore(_RECENCY_KEY, since, "+inf")
        records = await self._load([_decode(i) for i in ids])

        unresolved = [r for r in records if not r.is_resolved]
        patterns = group_error_patterns(unresolved)
        return ErrorSummary(
            window_hours=window,
            total=len(records),
            unresolved=len(unresolved),
            auto_fixed=sum(1 for r in records if r.auto_fixed),
            by_type=dict(Counter(r.error_type.value for r in records)),
            by_service=dict(Counter(r.service for r in records)),
            recurring_patterns=recurring_patterns(
                patterns, self._config.recurring_threshold
            ),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, ids: list[str]) -> list[ErrorRecord]:
        if not ids:
            return []
        pipe = self._redis.pipeline()
        for error_id in ids:
            pipe.hgetall(f"{_ERROR_KEY}:{error_id}")
        rows = await pipe.execute()

        records: list[ErrorRecord] = []
        for row in rows:
            if not row:
                continue
            fields = {_decode(k): _decode(v) for k, v in row.items()}
            payload = json.loads(fields["data"])
            if fields.get("resolved_at") is not None:
                payload["resolved_at"] = float(fields["resolved_at"])
                payload["resolution"] = fields.get("resolution")
                payload["auto_fixed"] = fields.get("auto_fixed") == "1"
            records.append(ErrorRecord.model_validate(payload))
        return records
