"""
Request Context and Correlation IDs

Request-scoped context kept in a ContextVar. Every telemetry event picks up
the request id and user id of the request that caused it; archival tasks
spawned from a request inherit a copy of that context.
"""

import uuid
from contextvars import ContextVar
from typing import Any

_request_context: ContextVar[dict[str, Any]] = ContextVar("request_context", default={})


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def set_request_context(request_id: str, user_id: str | None = None, **kwargs: Any) -> None:
    """Set the request context for the current async context."""
    _request_context.set(
        {
            "request_id": request_id,
            "user_id": user_id or "anonymous",
            **kwargs,
        }
    )


def update_request_context(**kwargs: Any) -> None:
    """Add properties to the current context (e.g. the user id once auth has run)."""
    _request_context.set({**_request_context.get(), **kwargs})


def get_request_context() -> dict[str, Any]:
    """Get the current request context."""
    return _request_context.get()


def clear_request_context() -> None:
    """Clear the request context for the current async context."""
    _request_context.set({})
