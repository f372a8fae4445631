"""Response models for API endpoints."""

from pydantic import BaseModel

from .conversation import ArchiveStatus
from .session import SessionSnapshot


class SessionResponse(BaseModel):
    """Response for session operations."""

    session: SessionSnapshot
    message: str | None = None


class ArchiveStatusResponse(BaseModel):
    """Response for archival status queries."""

    archive: ArchiveStatus
    message: str | None = None


class SignedUrlResponse(BaseModel):
    """Signed websocket URL for a client-side conversation."""

    signed_url: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    uptime: str
    database_connected: bool
    active_sessions: int = 0


class VersionResponse(BaseModel):
    """Version information response."""

    service_version: str
