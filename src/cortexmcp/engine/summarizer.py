"""Summarizer: the external text-summarization collaborator.

Wraps an ``LLMAdapter`` with the three call sites the service needs
(interaction digests, contact briefings, handoff briefings), parses
structured output, and prices every call.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Protocol
from typing import runtime_checkable
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError

from cortexmcp.config import LLMConfig
from cortexmcp.crm.schemas import Contact
from cortexmcp.crm.schemas import Interaction
from cortexmcp.engine.prompt_builder import build_context_prompt
from cortexmcp.engine.prompt_builder import build_handoff_prompt
from cortexmcp.engine.prompt_builder import build_summary_prompt
from cortexmcp.engine.schemas import Completion
from cortexmcp.engine.schemas import ContextSummary
from cortexmcp.engine.schemas import InteractionSummary
from cortexmcp.engine.schemas import TokenUsage

logger = logging.getLogger(__name__)

RATE_LIMIT_CODE = "rate_limit"
RATE_LIMIT_MARKER = "rate_limit"

# ---------------------------------------------------------------------------
# LLM abstraction
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMAdapter(Protocol):
    """Protocol for LLM provider adapters.

    Concrete implementations live in ``cortexmcp.engine.llm_adapters``.
    Tests use small scripted adapters.
    """

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout_seconds: float = 30.0,
    ) -> Completion: ...


class LLMError(Exception):
    """Raised by LLM adapters when a call fails.

    ``code`` is a structured classification (``"rate_limit"``,
    ``"http_error"``, ``"network_error"``...) when the adapter knows it.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class SummarizerError(Exception):
    """A summarizer call failed or returned non-conforming output."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code

    @property
    def rate_limited(self) -> bool:
        return is_rate_limited(self)


def is_rate_limited(exc: BaseException, marker: str = RATE_LIMIT_MARKER) -> bool:
    """Classify *exc* as a provider rate limit.

    The structured ``code`` wins; the message marker is the fallback
    for errors raised without one.
    """
    if getattr(exc, "code", None) == RATE_LIMIT_CODE:
        return True
    return marker in str(exc)


# ---------------------------------------------------------------------------
# Summarizer
# ---------------------------------------------------------------------------

# Regex to strip Markdown code fences wrapping JSON output
_CODE_FENCE_RE = re.compile(
    r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$",
    re.DOTALL,
)

_SUMMARY_MAX_TOKENS = 300
_CONTEXT_MAX_TOKENS = 400
_HANDOFF_MAX_TOKENS = 300

_M = TypeVar("_M", bound=BaseModel)


class Summarizer:
    """Stateless request/response summarization over an ``LLMAdapter``."""

    def __init__(self, llm: LLMAdapter, llm_config: LLMConfig | None = None) -> None:
        self._llm = llm
        self._config = llm_config or LLMConfig()

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """USD cost of a call at the configured per-million prices."""
        return (
            input_tokens / 1_000_000 * self._config.input_cost_per_million
            + output_tokens / 1_000_000 * self._config.output_cost_per_million
        )

    async def summarize_interaction(
        self,
        interaction_type: str,
        subject: str | None,
        raw_content: str,
    ) -> tuple[InteractionSummary, TokenUsage]:
        prompt = build_summary_prompt(interaction_type, subject, raw_content)
        completion = await self._call(prompt, max_tokens=_SUMMARY_MAX_TOKENS)
        return self._parse(completion.text, InteractionSummary), self._usage(
            completion
        )

    async def generate_working_context(
        self,
        contact: Contact,
        interactions: list[Interaction],
    ) -> tuple[ContextSummary, TokenUsage]:
        """Produce a contact briefing from *interactions* (newest first)."""
        prompt = build_context_prompt(contact, interactions)
        completion = await self._call(prompt, max_tokens=_CONTEXT_MAX_TOKENS)
        return self._parse(completion.text, ContextSummary), self._usage(completion)

    async def generate_handoff_context(
        self,
        *,
        from_agent: str,
        to_agent: str | None,
        reason: str,
        reason_detail: str | None,
        contact: Contact,
        interactions: list[Interaction],
        existing_summary: str | None = None,
        existing_key_facts: list[str] | None = None,
    ) -> tuple[str, TokenUsage]:
        """Produce a free-text handoff briefing."""
        prompt = build_handoff_prompt(
            from_agent=from_agent,
            to_agent=to_agent,
            reason=reason,
            reason_detail=reason_detail,
            contact=contact,
            interactions=interactions,
            existing_summary=existing_summary,
            existing_key_facts=existing_key_facts,
        )
        completion = await self._call(prompt, max_tokens=_HANDOFF_MAX_TOKENS)
        return completion.text.strip(), self._usage(completion)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, prompt: str, *, max_tokens: int) -> Completion:
        try:
            return await self._llm.complete(
                prompt,
                temperature=self._config.temperature,
                max_tokens=min(max_tokens, self._config.max_tokens),
                timeout_seconds=self._config.timeout_seconds,
            )
        except LLMError as exc:
            raise SummarizerError(f"LLM call failed: {exc}", code=exc.code) from exc

    def _usage(self, completion: Completion) -> TokenUsage:
        return TokenUsage(
            model=completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_usd=self.calculate_cost(
                completion.input_tokens, completion.output_tokens
            ),
        )

    @staticmethod
    def _parse(raw: str, model: type[_M]) -> _M:
        """Parse raw LLM output into *model*.

        Handles code fences; anything else that is not valid JSON of the
        expected shape is a hard failure.
        """
        text = raw.strip()

        # Strip code fences (```json ... ```)
        match = _CODE_FENCE_RE.match(text)
        if match:
            text = match.group(1).strip()

        try:
            data = json.loads(text)
        except (json.JSONDecodeError, ValueError) as exc:
            raise SummarizerError(
                f"Invalid JSON from LLM: {exc}", code="invalid_output"
            ) from exc

        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise SummarizerError(
                f"Schema validation failed: {exc.error_count()} error(s)",
                code="invalid_output",
            ) from exc
