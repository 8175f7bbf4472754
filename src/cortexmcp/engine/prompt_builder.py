"""Prompt construction for summarizer calls.

Each builder returns a bounded text prompt that ends with the JSON shape
the caller will parse. Kept apart from the summarizer so wording can
evolve without touching parsing or accounting.
"""

from __future__ import annotations

from datetime import datetime
from datetime import timezone

from cortexmcp.crm.schemas import Contact
from cortexmcp.crm.schemas import Interaction

# Raw interaction text beyond this many characters is truncated
MAX_RAW_CONTENT_CHARS = 8000

_CONTEXT_SCHEMA = """{
  "summary": "...",
  "key_facts": ["...", "..."],
  "current_status": "...",
  "recommended_tone": "...",
  "open_threads": ["..."],
  "churn_risk_score": 0.0,
  "upsell_potential_score": 0.0,
  "risk_factors": ["..."],
  "opportunity_factors": ["..."]
}"""

_SUMMARY_SCHEMA = """{
  "summary": "...",
  "key_points": ["...", "..."],
  "sentiment": "positive|neutral|negative|escalation",
  "intent": "question|complaint|purchase_intent|churn_risk|info_request|other"
}"""


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "unknown"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _format_interaction(interaction: Interaction, *, with_agent: bool = True) -> str:
    summary = interaction.summary or "(no summary)"
    if with_agent:
        return (
            f"- [{_fmt_ts(interaction.created_at)}] {interaction.agent}: "
            f"{interaction.type}: {summary}"
        )
    return f"- [{_fmt_ts(interaction.created_at)}] {summary}"


def _format_contact(contact: Contact) -> list[str]:
    return [
        f"Contact: {contact.name or 'Unknown'} ({contact.email})",
        f"Company: {contact.company_name or 'Unknown'}",
        f"Stage: {contact.stage}",
        f"First contact: {_fmt_ts(contact.first_touch_at)}",
        f"Source: {contact.source or 'unknown'}",
    ]


def build_context_prompt(contact: Contact, interactions: list[Interaction]) -> str:
    """Prompt for a contact briefing from *interactions* (newest first)."""
    history = "\n".join(_format_interaction(i) for i in interactions) or "(none)"
    lines = [
        "You are preparing a working-context briefing for an AI agent that is "
        "about to interact with the contact below.",
        "",
        *_format_contact(contact),
        "",
        "Recent interactions (newest first):",
        history,
        "",
        "Write a concise briefing:",
        "1. summary: 2-3 sentences on who they are, key history and the "
        "current relationship",
        "2. key_facts: 4-6 specific facts the agent needs to know",
        "3. current_status: one line",
        "4. recommended_tone: how to communicate with them next",
        "Optionally add open_threads, risk/opportunity factors and 0-1 scores "
        "for churn risk and upsell potential.",
        "",
        "Respond with JSON only:",
        _CONTEXT_SCHEMA,
        "",
        "Keep the output under 300 tokens.",
    ]
    return "\n".join(lines)


def build_summary_prompt(
    interaction_type: str,
    subject: str | None,
    raw_content: str,
) -> str:
    """Prompt for a one-interaction digest."""
    lines = [
        f"Summarize this {interaction_type} in 1-2 sentences and extract its "
        "key points, any commitments or next steps, the sentiment and the "
        "sender's intent.",
        "",
    ]
    if subject:
        lines.append(f"Subject: {subject}")
    lines.extend(
        [
            "Content:",
            raw_content[:MAX_RAW_CONTENT_CHARS],
            "",
            "Respond with JSON only:",
            _SUMMARY_SCHEMA,
        ]
    )
    return "\n".join(lines)


def build_handoff_prompt(
    *,
    from_agent: str,
    to_agent: str | None,
    reason: str,
    reason_detail: str | None,
    contact: Contact,
    interactions: list[Interaction],
    existing_summary: str | None,
    existing_key_facts: list[str] | None,
) -> str:
    """Prompt for a free-text handoff briefing for the receiving party."""
    receiver = to_agent or "the receiving human"
    history = (
        "\n".join(_format_interaction(i, with_agent=False) for i in interactions)
        or "(none)"
    )
    if existing_summary:
        facts = "\n".join(f"- {f}" for f in existing_key_facts or [])
        context_text = f"Working context:\n{existing_summary}\n\nKey facts:\n{facts}"
    else:
        context_text = "(no existing context)"

    lines = [
        "You are writing a handoff briefing for a party that is taking over "
        "a contact from another agent.",
        "",
        f"FROM: {from_agent}",
        f"TO: {to_agent or 'human'}",
        f"REASON: {reason}",
    ]
    if reason_detail:
        lines.append(f"DETAIL: {reason_detail}")
    lines.extend(
        [
            "",
            f"Contact: {contact.name or 'Unknown'} at "
            f"{contact.company_name or 'Unknown'}",
            f"Current stage: {contact.stage}",
            "",
            "Recent interactions:",
            history,
            "",
            context_text,
            "",
            "In 150-200 tokens, explain why the handoff is happening, what "
            f"{receiver} needs to know, and the immediate next action.",
        ]
    )
    return "\n".join(lines)
