"""Summarizer input/output models."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field


class Completion(BaseModel):
    """Raw text returned by an LLM adapter plus its token accounting."""

    model_config = {"frozen": True}

    text: str
    model: str = "unknown"
    input_tokens: int = 0
    output_tokens: int = 0


class TokenUsage(BaseModel):
    """Token counts and derived cost of one summarizer call."""

    model_config = {"frozen": True}

    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ContextSummary(BaseModel):
    """Structured briefing expected from a context generation call."""

    summary: str = Field(
        description="Two or three sentences on who the contact is and where things stand.",
    )
    key_facts: list[str] = Field(
        description="Facts an agent must know before talking to the contact.",
    )
    current_status: str = Field(
        description="One-line relationship status.",
    )
    recommended_tone: str = Field(
        description="Tone to use in the next communication.",
    )
    open_threads: list[str] = Field(default_factory=list)
    churn_risk_score: float | None = Field(default=None, ge=0.0, le=1.0)
    upsell_potential_score: float | None = Field(default=None, ge=0.0, le=1.0)
    risk_factors: list[str] = Field(default_factory=list)
    opportunity_factors: list[str] = Field(default_factory=list)


class InteractionSummary(BaseModel):
    """Structured digest expected from an interaction summarization call."""

    summary: str
    key_points: list[str]
    sentiment: str = "neutral"
    intent: str = "other"
