"""CRM domain data models: contacts, interactions and handoffs."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator


class ContactNotFoundError(LookupError):
    """Raised when a contact id does not resolve to a stored contact."""

    def __init__(self, contact_id: str) -> None:
        super().__init__(f"Contact not found: {contact_id}")
        self.contact_id = contact_id


class HandoffNotFoundError(LookupError):
    """Raised when a handoff id does not resolve to a stored handoff."""

    def __init__(self, handoff_id: str) -> None:
        super().__init__(f"Handoff not found: {handoff_id}")
        self.handoff_id = handoff_id


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class Contact(BaseModel):
    """A business contact shared by all agents."""

    id: str = Field(
        default_factory=lambda: f"con_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as con_{uuid4_hex}.",
    )
    email: str = Field(
        description="Unique, lower-cased email address.",
    )
    name: str | None = None
    company_name: str | None = None
    phone: str | None = None
    stage: str = Field(
        default="prospect",
        description="Lifecycle stage: prospect, lead, customer, churned...",
    )
    source: str | None = None
    owner_agent: str | None = Field(
        default=None,
        description="Agent currently owning the relationship.",
    )
    owner_human_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    first_touch_at: float | None = None
    last_touch_at: float | None = Field(
        default=None,
        description="Unix epoch of the latest logged interaction.",
    )
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


class Interaction(BaseModel):
    """One append-only entry of the interaction log."""

    id: str = Field(
        default_factory=lambda: f"int_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as int_{uuid4_hex}.",
    )
    contact_id: str
    agent: str = Field(
        description="Agent that handled the interaction.",
    )
    human_id: str | None = None
    type: str = Field(
        description="Interaction type, e.g. 'email', 'call', 'ticket_resolved'.",
    )
    direction: str | None = Field(
        default=None,
        description="'inbound' or 'outbound'.",
    )
    subject: str | None = None
    raw_content: str | None = None
    summary: str | None = None
    sentiment: str | None = None
    key_points: list[str] = Field(default_factory=list)
    intent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    token_count: int = 0
    created_at: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Handoffs
# ---------------------------------------------------------------------------


class HandoffStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    completed = "completed"
    rejected = "rejected"


class HandoffUrgency(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"
    critical = "critical"


_URGENCY_RANK = {
    HandoffUrgency.critical: 0,
    HandoffUrgency.high: 1,
    HandoffUrgency.normal: 2,
    HandoffUrgency.low: 3,
}


class Handoff(BaseModel):
    """A transfer of contact ownership between agents or to a human."""

    id: str = Field(
        default_factory=lambda: f"hnd_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as hnd_{uuid4_hex}.",
    )
    contact_id: str
    from_agent: str
    to_agent: str | None = None
    to_human_id: str | None = None
    reason: str
    reason_detail: str | None = None
    context_summary: str | None = None
    suggested_action: str | None = None
    urgency: HandoffUrgency = HandoffUrgency.normal
    status: HandoffStatus = HandoffStatus.pending
    accepted_at: float | None = None
    completed_at: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)

    @property
    def urgency_rank(self) -> int:
        return _URGENCY_RANK[self.urgency]
