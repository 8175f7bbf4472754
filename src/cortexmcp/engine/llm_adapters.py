"""Concrete LLM adapters and factory helpers."""

from __future__ import annotations

import asyncio
import json
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from cortexmcp.config import LLMConfig
from cortexmcp.engine.schemas import Completion
from cortexmcp.engine.summarizer import LLMAdapter
from cortexmcp.engine.summarizer import LLMError
from cortexmcp.engine.summarizer import RATE_LIMIT_CODE
from cortexmcp.engine.summarizer import RATE_LIMIT_MARKER

_ANTHROPIC_VERSION = "2023-06-01"


class NoopLLMAdapter(LLMAdapter):
    """Deterministic adapter whose payload satisfies every summarizer shape."""

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        del prompt, temperature, max_tokens, timeout_seconds
        return Completion(
            text=(
                '{"summary":"No summary available from the noop summarizer.",'
                '"key_facts":[],"key_points":[],"current_status":"unknown",'
                '"recommended_tone":"neutral","sentiment":"neutral",'
                '"intent":"other"}'
            ),
            model="noop",
        )


def _post_json(
    url: str,
    payload: dict,
    headers: dict[str, str],
    timeout_seconds: float,
) -> dict:
    """POST *payload* and return the decoded JSON body, or raise ``LLMError``."""
    request = Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        if exc.code == 429 or "rate_limit" in detail:
            raise LLMError(
                f"{RATE_LIMIT_MARKER}: provider HTTP {exc.code}: {detail[:200]}",
                code=RATE_LIMIT_CODE,
            ) from exc
        raise LLMError(
            f"provider HTTP {exc.code}: {detail[:200]}", code="http_error"
        ) from exc
    except URLError as exc:
        raise LLMError(
            f"provider network error: {exc.reason}", code="network_error"
        ) from exc
    except OSError as exc:
        raise LLMError(f"provider IO error: {exc}", code="network_error") from exc

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise LLMError("provider response is not JSON", code="bad_response") from exc
    if not isinstance(data, dict):
        raise LLMError("provider response must be a JSON object", code="bad_response")
    return data


class OpenAICompatibleLLMAdapter(LLMAdapter):
    """OpenAI-compatible chat-completions adapter."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        return await asyncio.to_thread(
            self._complete_sync,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )

    def _complete_sync(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> Completion:
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        data = _post_json(
            f"{self._base_url}/chat/completions",
            payload,
            {"Authorization": f"Bearer {self._api_key}"},
            timeout_seconds,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError(
                "provider response missing choices[0].message.content",
                code="bad_response",
            ) from exc
        if not isinstance(content, str):
            raise LLMError(
                "provider response content must be a string", code="bad_response"
            )

        usage = data.get("usage") or {}
        return Completion(
            text=content,
            model=str(data.get("model") or self._model),
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        )


class AnthropicLLMAdapter(LLMAdapter):
    """Anthropic Messages API adapter."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.anthropic.com/v1",
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        return await asyncio.to_thread(
            self._complete_sync,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )

    def _complete_sync(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> Completion:
        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = _post_json(
            f"{self._base_url}/messages",
            payload,
            {"x-api-key": self._api_key, "anthropic-version": _ANTHROPIC_VERSION},
            timeout_seconds,
        )
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise LLMError("provider response missing content", code="bad_response")
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )

        usage = data.get("usage") or {}
        return Completion(
            text=text,
            model=str(data.get("model") or self._model),
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create a concrete adapter from ``LLMConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    if provider == "anthropic":
        if not config.api_key:
            raise ValueError(
                "llm_config.api_key is required when provider='anthropic'"
            )
        base_url = config.base_url
        if "openai.com" in base_url:
            base_url = "https://api.anthropic.com/v1"
        return AnthropicLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=base_url,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, anthropic, noop."
    )
