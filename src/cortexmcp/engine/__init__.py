"""Engine domain: summarizer seam, LLM adapters and prompts."""

from cortexmcp.engine.llm_adapters import AnthropicLLMAdapter
from cortexmcp.engine.llm_adapters import build_llm_adapter
from cortexmcp.engine.llm_adapters import NoopLLMAdapter
from cortexmcp.engine.llm_adapters import OpenAICompatibleLLMAdapter
from cortexmcp.engine.schemas import Completion
from cortexmcp.engine.schemas import ContextSummary
from cortexmcp.engine.schemas import InteractionSummary
from cortexmcp.engine.schemas import TokenUsage
from cortexmcp.engine.summarizer import is_rate_limited
from cortexmcp.engine.summarizer import LLMAdapter
from cortexmcp.engine.summarizer import LLMError
from cortexmcp.engine.summarizer import Summarizer
from cortexmcp.engine.summarizer import SummarizerError

__all__ = [
    "AnthropicLLMAdapter",
    "Completion",
    "ContextSummary",
    "InteractionSummary",
    "LLMAdapter",
    "LLMError",
    "NoopLLMAdapter",
    "OpenAICompatibleLLMAdapter",
    "Summarizer",
    "SummarizerError",
    "TokenUsage",
    "build_llm_adapter",
    "is_rate_limited",
]
