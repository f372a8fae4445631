"""Live session data models."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Connection state of the live session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class AgentState(str, Enum):
    """What the remote agent is doing. Only meaningful while the session is active."""

    LISTENING = "listening"
    SPEAKING = "speaking"
    THINKING = "thinking"
    OTHER = "other"


class ConversationMode(str, Enum):
    """Conversation mode: voice (talk) or text-only (chat)."""

    TALK = "talk"
    CHAT = "chat"


class MessageRole(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    AGENT = "agent"


class ChatMessage(BaseModel):
    """One transcript-like message of the live session."""

    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SessionEventKind(str, Enum):
    """Kinds of events streamed by a remote live session."""

    CONNECTION_STATE = "connection_state"
    AGENT_STATE = "agent_state"
    MESSAGE = "message"
    MUTE_STATE = "mute_state"


class SessionEvent(BaseModel):
    """One event from a remote live session's ordered event stream.

    Exactly one payload field is set, matching ``kind``.
    """

    kind: SessionEventKind
    connection_state: ConnectionState | None = None
    agent_state: AgentState | None = None
    message: ChatMessage | None = None
    muted: bool | None = None

    @classmethod
    def connection(cls, state: ConnectionState) -> "SessionEvent":
        return cls(kind=SessionEventKind.CONNECTION_STATE, connection_state=state)

    @classmethod
    def agent(cls, state: AgentState) -> "SessionEvent":
        return cls(kind=SessionEventKind.AGENT_STATE, agent_state=state)

    @classmethod
    def chat(cls, role: MessageRole, content: str) -> "SessionEvent":
        return cls(kind=SessionEventKind.MESSAGE, message=ChatMessage(role=role, content=content))

    @classmethod
    def mute(cls, muted: bool) -> "SessionEvent":
        return cls(kind=SessionEventKind.MUTE_STATE, muted=muted)


class SessionSnapshot(BaseModel):
    """Observable state of a user's session controller at one point in time."""

    connection_state: ConnectionState = ConnectionState.IDLE
    agent_state: AgentState = AgentState.LISTENING
    is_connected: bool = False
    is_interactive: bool = False
    is_speaking: bool = False
    audio_level: float = 0.0
    is_muted: bool = False
    is_speaker_muted: bool = False
    microphone_denied: bool = False
    error_message: str | None = None
    mode: ConversationMode = ConversationMode.TALK
    agent_id: str | None = None
    started_at: datetime | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    is_archiving: bool = False
    last_archive_error: str | None = None
