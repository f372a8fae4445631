"""Remote conversational agent providers."""

from .elevenlabs import (
    ElevenLabsClient,
    get_elevenlabs_client,
    parse_conversation_summary,
    set_elevenlabs_client,
)
from .live_session import ElevenLabsLiveSession, ElevenLabsSessionService

__all__ = [
    "ElevenLabsClient",
    "ElevenLabsLiveSession",
    "ElevenLabsSessionService",
    "get_elevenlabs_client",
    "parse_conversation_summary",
    "set_elevenlabs_client",
]
