"""
Request ID context shared by the HTTP middleware and the JSONL formatter.
"""

from contextvars import ContextVar
from typing import Optional

# Context variable to store request ID across async operations
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_current_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_context.get()
