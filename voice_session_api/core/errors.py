"""Error taxonomy for live sessions and archival."""


class SessionServiceError(Exception):
    """Base class for errors raised by the session controller and its collaborators."""


class PermissionDeniedError(SessionServiceError):
    """Microphone access was denied; the session never started."""


class SessionConnectionError(SessionServiceError):
    """The remote session could not be started or torn down."""


class NoActiveSessionError(SessionServiceError):
    """An operation needs a live session but none is active."""


class SendError(SessionServiceError):
    """A message could not be delivered to the live session."""


class ProviderError(SessionServiceError):
    """The conversation summary provider returned an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AudioNotFoundError(ProviderError):
    """The conversation audio is not available yet (the provider is still processing it)."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Audio for conversation {conversation_id} is not available yet", 404)
        self.conversation_id = conversation_id


class RecordStoreError(SessionServiceError):
    """The record store failed to read, write or upload."""


class ArchivalError(SessionServiceError):
    """An archival run failed; wraps the underlying cause."""
