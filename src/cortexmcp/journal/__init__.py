"""Error journal: durable operational errors and recurring-pattern detection."""

from cortexmcp.journal.patterns import group_error_patterns
from cortexmcp.journal.patterns import recurring_patterns
from cortexmcp.journal.schemas import ErrorEntry
from cortexmcp.journal.schemas import ErrorPattern
from cortexmcp.journal.schemas import ErrorRecord
from cortexmcp.journal.schemas import ErrorSummary
from cortexmcp.journal.schemas import ErrorType
from cortexmcp.journal.store import ErrorJournal

__all__ = [
    "ErrorEntry",
    "ErrorJournal",
    "ErrorPattern",
    "ErrorRecord",
    "ErrorSummary",
    "ErrorType",
    "group_error_patterns",
    "recurring_patterns",
]
