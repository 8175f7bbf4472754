"""Context domain: per-contact briefing cache and its regeneration."""

from cortexmcp.context.manager import ContextCacheManager
from cortexmcp.context.regeneration import RegenerationError
from cortexmcp.context.regeneration import RegenerationPipeline
from cortexmcp.context.schemas import ContextRecord
from cortexmcp.context.schemas import ContextResponse
from cortexmcp.context.schemas import RefreshResult
from cortexmcp.context.staleness import is_context_stale
from cortexmcp.context.store import ContextStore

__all__ = [
    "ContextCacheManager",
    "ContextRecord",
    "ContextResponse",
    "ContextStore",
    "RefreshResult",
    "RegenerationError",
    "RegenerationPipeline",
    "is_context_stale",
]
