"""Core session and archival logic."""

from .archival import (
    ArchivalReconciler,
    ArchiveLedger,
    download_with_retry,
    select_conversation_summary,
)
from .errors import (
    ArchivalError,
    AudioNotFoundError,
    NoActiveSessionError,
    PermissionDeniedError,
    ProviderError,
    RecordStoreError,
    SendError,
    SessionConnectionError,
    SessionServiceError,
)
from .registry import SessionRegistry, get_session_registry, set_session_registry
from .session_controller import SessionController

__all__ = [
    "SessionController",
    "SessionRegistry",
    "get_session_registry",
    "set_session_registry",
    "ArchivalReconciler",
    "ArchiveLedger",
    "download_with_retry",
    "select_conversation_summary",
    "SessionServiceError",
    "PermissionDeniedError",
    "SessionConnectionError",
    "NoActiveSessionError",
    "SendError",
    "ProviderError",
    "AudioNotFoundError",
    "RecordStoreError",
    "ArchivalError",
]
