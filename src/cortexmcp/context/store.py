"""Redis-backed context record store.

Each record is one JSON string keyed by ``cortex:context:{contact_id}``,
so a write is an atomic whole-record replace and a contact can never
hold two records. The sorted set ``cortex:context:generated`` indexes
records by ``generated_at`` for cleanup sweeps.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis  # type: ignore[import-untyped]

from cortexmcp.context.schemas import ContextRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "cortex"
_CONTEXT_KEY = f"{_PREFIX}:context"
_GENERATED_KEY = f"{_PREFIX}:context:generated"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class ContextStore:
    """One cached briefing per contact, last writer wins."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get(self, contact_id: str) -> ContextRecord | None:
        data = await self._redis.get(f"{_CONTEXT_KEY}:{contact_id}")
        if data is None:
            return None
        return ContextRecord.model_validate_json(data)

    async def get_many(self, contact_ids: list[str]) -> dict[str, ContextRecord]:
        if not contact_ids:
            return {}
        rows = await self._redis.mget([f"{_CONTEXT_KEY}:{c}" for c in contact_ids])
        return {
            contact_id: ContextRecord.model_validate_json(row)
            for contact_id, row in zip(contact_ids, rows)
            if row is not None
        }

    async def put(self, record: ContextRecord) -> None:
        """Insert or replace the record for ``record.contact_id``."""
        pipe = self._redis.pipeline(transaction=True)
        pipe.set(f"{_CONTEXT_KEY}:{record.contact_id}", record.model_dump_json())
        pipe.zadd(_GENERATED_KEY, {record.contact_id: record.generated_at})
        await pipe.execute()

    async def delete(self, contact_id: str) -> bool:
        pipe = self._redis.pipeline(transaction=True)
        pipe.delete(f"{_CONTEXT_KEY}:{contact_id}")
        pipe.zrem(_GENERATED_KEY, contact_id)
        deleted, _ = await pipe.execute()
        return bool(deleted)

    async def generated_before(self, cutoff: float) -> list[str]:
        """Contact ids whose record was generated before *cutoff*."""
        ids = await self._redis.zrangebyscore(_GENERATED_KEY, "-inf", f"({cutoff}")
        return [_decode(i) for i in ids]

    async def count(self) -> int:
        return int(await self._redis.zcard(_GENERATED_KEY))
