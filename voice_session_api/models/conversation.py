"""Conversation summary, audio and archival record models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConversationSummary(BaseModel):
    """Provider-side metadata for a completed conversation.

    ``sort_date`` is the provider's ordering key. ``created_at`` may be absent.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str | None = None
    created_at: datetime | None = None
    sort_date: datetime


class DownloadedAudio(BaseModel):
    """Audio bytes of a completed conversation, as returned by the provider."""

    data: bytes
    mime_type: str | None = None


class SessionRecord(BaseModel):
    """Durable link between a remote conversation and an internal session id."""

    id: UUID
    user_id: str
    conversation_id: str
    agent_id: str | None = None
    audio_path: str | None = None
    created_at: datetime | None = None


class ArchiveStatus(BaseModel):
    """Observable state of the archival reconciler."""

    is_archiving: bool = False
    last_archive_error: str | None = None
    last_started_at: datetime | None = None
    archived_conversation_ids: list[str] = Field(default_factory=list)
