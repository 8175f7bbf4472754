"""Contact, interaction, handoff and context store tests against Redis."""

from __future__ import annotations

import asyncio

import pytest

from cortexmcp.context import ContextRecord
from cortexmcp.context import ContextStore
from cortexmcp.crm.contacts import ContactStore
from cortexmcp.crm.handoffs import HandoffStore
from cortexmcp.crm.interactions import InteractionLog
from cortexmcp.crm.schemas import ContactNotFoundError
from cortexmcp.crm.schemas import Handoff
from cortexmcp.crm.schemas import HandoffNotFoundError
from cortexmcp.crm.schemas import HandoffStatus
from cortexmcp.crm.schemas import HandoffUrgency
from cortexmcp.crm.schemas import Interaction

NOW = 3_000_000.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _interaction(contact_id: str, created_at: float, **kwargs) -> Interaction:
    defaults: dict = {
        "contact_id": contact_id,
        "agent": "sales",
        "type": "email",
        "summary": "Talked about pricing",
        "created_at": created_at,
    }
    defaults.update(kwargs)
    return Interaction(**defaults)


def _handoff(**kwargs) -> Handoff:
    defaults: dict = {
        "contact_id": "con_1",
        "from_agent": "sales",
        "to_agent": "support",
        "reason": "escalation",
        "created_at": NOW,
    }
    defaults.update(kwargs)
    return Handoff(**defaults)


@pytest.fixture()
def contacts(clean_redis) -> ContactStore:
    return ContactStore(clean_redis, clock=lambda: NOW)


@pytest.fixture()
def log(clean_redis) -> InteractionLog:
    return InteractionLog(clean_redis)


@pytest.fixture()
def handoffs(clean_redis) -> HandoffStore:
    return HandoffStore(clean_redis, clock=lambda: NOW)


@pytest.fixture()
def contexts(clean_redis) -> ContextStore:
    return ContextStore(clean_redis)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class TestContactStore:
    async def test_upsert_creates_then_merges(self, contacts):
        created = await contacts.upsert_by_email("Jane@Acme.io", name="Jane")
        merged = await contacts.upsert_by_email(
            "jane@acme.io", company_name="Acme", name=None
        )

        assert merged.id == created.id
        assert merged.email == "jane@acme.io"
        assert merged.name == "Jane"
        assert merged.company_name == "Acme"

    async def test_concurrent_creates_keep_one_contact(self, contacts):
        results = await asyncio.gather(
            *(contacts.upsert_by_email("race@example.com", name=f"n{i}") for i in range(5))
        )
        assert len({c.id for c in results}) == 1

    async def test_require_unknown_raises(self, contacts):
        with pytest.raises(ContactNotFoundError):
            await contacts.require("con_missing")

    async def test_update_rejects_immutable_fields(self, contacts):
        contact = await contacts.upsert_by_email("a@example.com")
        with pytest.raises(ValueError, match="cannot be updated"):
            await contacts.update(contact.id, id="con_other")
        with pytest.raises(ValueError, match="email cannot be changed"):
            await contacts.update(contact.id, email="b@example.com")

    async def test_touch_and_activity_indexes(self, contacts):
        recent = await contacts.upsert_by_email("recent@example.com")
        old = await contacts.upsert_by_email("old@example.com")
        await contacts.touch(recent.id, NOW - 60)
        await contacts.touch(old.id, NOW - 40 * 86400)

        active = await contacts.list_active(NOW - 30 * 86400)
        inactive = await contacts.list_inactive(NOW - 30 * 86400)

        assert [c.id for c in active] == [recent.id]
        assert [c.id for c in inactive] == [old.id]
        touched = await contacts.get(recent.id)
        assert touched.first_touch_at == NOW - 60
        assert touched.last_touch_at == NOW - 60

    async def test_touch_never_moves_backwards(self, contacts):
        contact = await contacts.upsert_by_email("a@example.com")
        await contacts.touch(contact.id, NOW)
        updated = await contacts.touch(contact.id, NOW - 100)
        assert updated.last_touch_at == NOW
        assert updated.first_touch_at == NOW


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


class TestInteractionLog:
    async def test_count_and_newest_first(self, log):
        for i in range(12):
            await log.append(_interaction("con_1", NOW + i, summary=f"s{i}"))
        await log.append(_interaction("con_2", NOW))

        assert await log.count("con_1") == 12
        recent = await log.list_recent("con_1", 10)
        assert len(recent) == 10
        assert recent[0].summary == "s11"
        assert recent[-1].summary == "s2"

    async def test_filters(self, log):
        await log.append(_interaction("con_1", NOW, agent="sales", type="email"))
        await log.append(_interaction("con_1", NOW + 1, agent="support", type="call"))
        await log.append(_interaction("con_1", NOW + 2, agent="support", type="email"))

        assert len(await log.list_recent("con_1", agent="support")) == 2
        assert len(await log.list_recent("con_1", type="email")) == 2
        assert len(await log.list_recent("con_1", since=NOW + 1)) == 2

    async def test_limit_capped(self, log):
        for i in range(3):
            await log.append(_interaction("con_1", NOW + i))
        assert len(await log.list_recent("con_1", 1000)) == 3
        assert len(await log.list_recent("con_1", 0)) == 1

    async def test_summarized_index_only_holds_raw_content(self, log):
        await log.append(_interaction("con_1", NOW, raw_content="hello", summary="hi"))
        await log.append(_interaction("con_1", NOW + 1, raw_content=None))

        sample = await log.list_recent_summarized(10)

        assert [i.raw_content for i in sample] == ["hello"]


# ---------------------------------------------------------------------------
# Handoffs
# ---------------------------------------------------------------------------


class TestHandoffStore:
    async def test_pending_sorted_by_urgency_then_age(self, handoffs):
        low = await handoffs.create(_handoff(urgency=HandoffUrgency.low, created_at=NOW - 30))
        crit = await handoffs.create(_handoff(urgency=HandoffUrgency.critical, created_at=NOW))
        normal_old = await handoffs.create(_handoff(created_at=NOW - 20))
        normal_new = await handoffs.create(_handoff(created_at=NOW - 10))

        pending = await handoffs.list_pending()

        assert [h.id for h in pending] == [crit.id, normal_old.id, normal_new.id, low.id]

    async def test_filters(self, handoffs):
        await handoffs.create(_handoff(to_agent="support"))
        await handoffs.create(_handoff(to_agent=None, to_human_id="human_1"))

        assert len(await handoffs.list_pending(to_agent="support")) == 1
        assert len(await handoffs.list_pending(to_human_id="human_1")) == 1
        assert await handoffs.list_pending(urgency=HandoffUrgency.high) == []

    async def test_status_transition_leaves_pending_index(self, handoffs):
        handoff = await handoffs.create(_handoff())

        accepted = await handoffs.update_status(handoff.id, HandoffStatus.accepted)

        assert accepted.status == HandoffStatus.accepted
        assert accepted.accepted_at == NOW
        assert await handoffs.list_pending() == []
        assert (await handoffs.latest_for_contact("con_1")).id == handoff.id

    async def test_update_unknown_raises(self, handoffs):
        with pytest.raises(HandoffNotFoundError):
            await handoffs.update_status("hnd_missing", HandoffStatus.completed)

    async def test_older_than_cutoff(self, handoffs):
        old = await handoffs.create(_handoff(created_at=NOW - 5 * 3600))
        await handoffs.create(_handoff(created_at=NOW - 3600))

        overdue = await handoffs.list_pending_older_than(NOW - 4 * 3600)

        assert [h.id for h in overdue] == [old.id]


# ---------------------------------------------------------------------------
# Context records
# ---------------------------------------------------------------------------


class TestContextStore:
    async def test_one_record_per_contact(self, contexts):
        await contexts.put(ContextRecord(contact_id="con_1", summary="v1", generated_at=NOW))
        await contexts.put(ContextRecord(contact_id="con_1", summary="v2", generated_at=NOW + 1))

        assert await contexts.count() == 1
        assert (await contexts.get("con_1")).summary == "v2"

    async def test_concurrent_writes_last_writer_wins(self, contexts):
        await asyncio.gather(
            *(
                contexts.put(
                    ContextRecord(contact_id="con_1", summary=f"v{i}", generated_at=NOW + i)
                )
                for i in range(10)
            )
        )
        assert await contexts.count() == 1
        assert (await contexts.get("con_1")).summary.startswith("v")

    async def test_generated_before_and_delete(self, contexts):
        await contexts.put(ContextRecord(contact_id="old", summary="s", generated_at=NOW - 100))
        await contexts.put(ContextRecord(contact_id="new", summary="s", generated_at=NOW))

        assert await contexts.generated_before(NOW) == ["old"]
        assert await contexts.delete("old") is True
        assert await contexts.delete("old") is False
        assert await contexts.get("old") is None

    async def test_get_many_skips_missing(self, contexts):
        await contexts.put(ContextRecord(contact_id="a", summary="s", generated_at=NOW))
        records = await contexts.get_many(["a", "b"])
        assert list(records) == ["a"]


class TestContactLookup:
    async def test_get_many_skips_unknown(self, contacts):
        contact = await contacts.upsert_by_email("a@example.com")

        found = await contacts.get_many([contact.id, "con_missing"])

        assert list(found) == [contact.id]

    async def test_untouched_contact_not_in_touch_index(self, contacts):
        contact = await contacts.upsert_by_email("never@example.com")

        assert await contacts.list_inactive(NOW + 1) == []
        assert (await contacts.get_many([contact.id]))[contact.id].last_touch_at is None
