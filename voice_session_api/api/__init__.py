"""API endpoints for the voice session service."""

from .archive import router as archive_router
from .health import router as health_router
from .sessions import router as sessions_router

__all__ = [
    "archive_router",
    "health_router",
    "sessions_router",
]
