"""Redis-backed contact store.

Contacts are stored as JSON strings keyed by ``cortex:contact:{id}``.
``cortex:contact_email:{email}`` maps the unique email to the id, and
the sorted set ``cortex:contacts:touch`` indexes contacts by last
touch (score = ``last_touch_at``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from redis.asyncio import Redis  # type: ignore[import-untyped]

from cortexmcp.crm.schemas import Contact
from cortexmcp.crm.schemas import ContactNotFoundError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "cortex"
_CONTACT_KEY = f"{_PREFIX}:contact"
_EMAIL_KEY = f"{_PREFIX}:contact_email"
_TOUCH_KEY = f"{_PREFIX}:contacts:touch"

# Fields callers may not overwrite through update()
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class ContactStore:
    """Contact entity store keyed by id with a unique email index."""

    def __init__(
        self, redis: Redis, *, clock: Callable[[], float] = time.time
    ) -> None:
        self._redis = redis
        self._clock = clock

    # -- read --

    async def get(self, contact_id: str) -> Contact | None:
        data = await self._redis.get(f"{_CONTACT_KEY}:{contact_id}")
        if data is None:
            return None
        return Contact.model_validate_json(data)

    async def require(self, contact_id: str) -> Contact:
        """Return the contact or raise ``ContactNotFoundError``."""
        contact = await self.get(contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)
        return contact

    async def get_many(self, contact_ids: list[str]) -> dict[str, Contact]:
        """Stored contacts keyed by id; unknown ids are left out."""
        return {c.id: c for c in await self._load(contact_ids)}

    async def get_by_email(self, email: str) -> Contact | None:
        contact_id = await self._redis.get(f"{_EMAIL_KEY}:{email.strip().lower()}")
        if contact_id is None:
            return None
        return await self.get(_decode(contact_id))

    async def list_active(self, since: float, *, limit: int = 50) -> list[Contact]:
        """Contacts touched at or after *since*, most recent touch first."""
        ids = await self._redis.zrevrangebyscore(
            _TOUCH_KEY, "+inf", since, start=0, num=limit
        )
        return await self._load([_decode(i) for i in ids])

    async def list_inactive(self, before: float) -> list[Contact]:
        """Contacts whose last touch is older than *before*."""
        ids = await self._redis.zrangebyscore(_TOUCH_KEY, "-inf", f"({before}")
        return await self._load([_decode(i) for i in ids])

    # -- write --

    async def upsert_by_email(self, email: str, **fields: Any) -> Contact:
        """Create the contact for *email*, or merge *fields* into it.

        ``None`` values never overwrite stored data on merge.
        """
        fields = {k: v for k, v in fields.items() if v is not None}
        existing = await self.get_by_email(email)
        if existing is None:
            now = self._clock()
            contact = Contact(email=email, created_at=now, updated_at=now, **fields)
            # The record lands before the email index is claimed, so a racing
            # create that loses the claim always finds the winner's record.
            contact_key = f"{_CONTACT_KEY}:{contact.id}"
            await self._redis.set(contact_key, contact.model_dump_json())
            claimed = await self._redis.set(
                f"{_EMAIL_KEY}:{contact.email}", contact.id, nx=True
            )
            if not claimed:
                await self._redis.delete(contact_key)
                winner = await self._redis.get(f"{_EMAIL_KEY}:{contact.email}")
                return await self.update(_decode(winner), **fields)
            await self._save(contact)
            logger.info("created contact id=%s", contact.id)
            return contact

        return await self.update(existing.id, **fields)

    async def update(self, contact_id: str, **fields: Any) -> Contact:
        """Apply *fields* to a stored contact and return the new snapshot."""
        contact = await self.require(contact_id)
        for name in fields:
            if name in _IMMUTABLE_FIELDS or name not in Contact.model_fields:
                raise ValueError(f"Field cannot be updated: {name}")
        if "email" in fields and fields["email"] != contact.email:
            raise ValueError("Contact email cannot be changed")
        updated = Contact.model_validate(
            {**contact.model_dump(), **fields, "updated_at": self._clock()}
        )
        await self._save(updated)
        return updated

    async def touch(self, contact_id: str, at: float | None = None) -> Contact:
        """Record an interaction at *at* (defaults to now)."""
        contact = await self.require(contact_id)
        ts = self._clock() if at is None else at
        fields: dict[str, Any] = {"last_touch_at": max(ts, contact.last_touch_at or ts)}
        if contact.first_touch_at is None:
            fields["first_touch_at"] = ts
        return await self.update(contact_id, **fields)

    # -- internals --

    async def _save(self, contact: Contact) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.set(f"{_CONTACT_KEY}:{contact.id}", contact.model_dump_json())
        pipe.set(f"{_EMAIL_KEY}:{contact.email}", contact.id)
        if contact.last_touch_at is not None:
            pipe.zadd(_TOUCH_KEY, {contact.id: contact.last_touch_at})
        await pipe.execute()

    async def _load(self, ids: list[str]) -> list[Contact]:
        if not ids:
            return []
        rows = await self._redis.mget([f"{_CONTACT_KEY}:{i}" for i in ids])
        return [Contact.model_validate_json(row) for row in rows if row is not None]
