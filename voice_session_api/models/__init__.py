"""Data models for the voice session service."""

from .conversation import ArchiveStatus, ConversationSummary, DownloadedAudio, SessionRecord
from .requests import MessageRequest, SessionStartRequest
from .responses import (
    ArchiveStatusResponse,
    HealthResponse,
    SessionResponse,
    SignedUrlResponse,
    VersionResponse,
)
from .session import (
    AgentState,
    ChatMessage,
    ConnectionState,
    ConversationMode,
    MessageRole,
    SessionEvent,
    SessionEventKind,
    SessionSnapshot,
)

__all__ = [
    # Session models
    "AgentState",
    "ChatMessage",
    "ConnectionState",
    "ConversationMode",
    "MessageRole",
    "SessionEvent",
    "SessionEventKind",
    "SessionSnapshot",
    # Conversation models
    "ArchiveStatus",
    "ConversationSummary",
    "DownloadedAudio",
    "SessionRecord",
    # Request models
    "SessionStartRequest",
    "MessageRequest",
    # Response models
    "SessionResponse",
    "ArchiveStatusResponse",
    "SignedUrlResponse",
    "HealthResponse",
    "VersionResponse",
]
