"""Context cache data models."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field


class ContextRecord(BaseModel):
    """The cached briefing for one contact.

    Written whole by the regeneration pipeline; there is never more than
    one per contact.
    """

    contact_id: str
    summary: str
    key_facts: list[str] = Field(default_factory=list)
    current_status: str | None = None
    recommended_tone: str | None = None
    open_threads: list[str] = Field(default_factory=list)
    churn_risk_score: float | None = None
    upsell_potential_score: float | None = None
    risk_factors: list[str] = Field(default_factory=list)
    opportunity_factors: list[str] = Field(default_factory=list)
    interaction_count_at_generation: int | None = Field(
        default=None,
        description="Live interaction count observed when the record was generated.",
    )
    generated_at: float = Field(
        description="Unix epoch of generation.",
    )
    expires_at: float | None = None
    token_count: int = Field(
        default=0,
        description="Input + output tokens spent generating this record.",
    )
    model: str | None = None


# ---------------------------------------------------------------------------
# Briefing response
# ---------------------------------------------------------------------------


class ContactHeader(BaseModel):
    """Fixed-size projection of a contact, served at every level."""

    name: str | None = None
    company: str | None = None
    email: str
    stage: str
    last_touch: float | None = None
    last_touch_agent: str | None = None


class ContextSignals(BaseModel):
    churn_risk: float | None = None
    upsell_potential: float | None = None
    risk_factors: list[str] = Field(default_factory=list)
    opportunity_factors: list[str] = Field(default_factory=list)


class ContextBody(BaseModel):
    summary: str
    key_facts: list[str] = Field(default_factory=list)
    current_status: str | None = None
    recommended_tone: str | None = None
    open_threads: list[str] = Field(default_factory=list)
    signals: ContextSignals = Field(default_factory=ContextSignals)

    @classmethod
    def from_record(cls, record: ContextRecord) -> ContextBody:
        return cls(
            summary=record.summary,
            key_facts=record.key_facts,
            current_status=record.current_status,
            recommended_tone=record.recommended_tone,
            open_threads=record.open_threads,
            signals=ContextSignals(
                churn_risk=record.churn_risk_score,
                upsell_potential=record.upsell_potential_score,
                risk_factors=record.risk_factors,
                opportunity_factors=record.opportunity_factors,
            ),
        )


class RecentInteraction(BaseModel):
    id: str
    agent: str
    type: str
    summary: str | None = None
    sentiment: str | None = None
    date: float


class LastHandoff(BaseModel):
    id: str
    from_agent: str
    to_agent: str | None = None
    to_human_id: str | None = None
    reason: str
    urgency: str
    status: str
    date: float


class ContextResponse(BaseModel):
    """Briefing served by ``get_context``."""

    contact_id: str
    level: int
    header: ContactHeader
    context: ContextBody | None = None
    recent_interactions: list[RecentInteraction] | None = None
    last_handoff: LastHandoff | None = None
    token_count: int = 0
    generated_at: float | None = None
    is_stale: bool = False
    regenerated: bool = False


class RefreshResult(BaseModel):
    """Outcome of a forced regeneration."""

    contact_id: str
    regenerated: bool = True
    previous_generated_at: float | None = None
    new_generated_at: float
    token_count: int = 0
