"""Session records in PostgreSQL with audio in blob storage."""

import logging
from uuid import UUID

import asyncpg

from ..core.errors import RecordStoreError
from ..models import SessionRecord
from .audio_storage import AudioStorage, audio_object_path
from .database import Database

logger = logging.getLogger(__name__)


class DatabaseRecordStore:
    """RecordStore backed by the service database and an audio storage backend."""

    def __init__(self, db: Database, audio_storage: AudioStorage):
        self.db = db
        self.audio_storage = audio_storage

    async def find_record(self, conversation_id: str) -> SessionRecord | None:
        try:
            return await self.db.find_session_record(conversation_id)
        except (asyncpg.PostgresError, RuntimeError) as e:
            raise RecordStoreError(f"Could not look up session record: {e}") from e

    async def insert_record(
        self,
        session_id: UUID,
        user_id: str,
        conversation_id: str,
        agent_id: str | None,
    ) -> SessionRecord:
        try:
            return await self.db.insert_session_record(
                session_id, user_id, conversation_id, agent_id
            )
        except (asyncpg.PostgresError, RuntimeError) as e:
            raise RecordStoreError(f"Could not insert session record: {e}") from e

    async def upload_audio(
        self,
        data: bytes,
        user_id: str,
        session_id: UUID,
        extension: str,
        mime_type: str,
    ) -> str:
        path = await self.audio_storage.upload(
            audio_object_path(user_id, session_id, extension), data, mime_type
        )
        try:
            await self.db.set_session_audio(session_id, path, mime_type)
        except (asyncpg.PostgresError, RuntimeError) as e:
            raise RecordStoreError(f"Could not record audio path: {e}") from e

        logger.info(f"Stored audio for session {session_id} at {path}")
        return path

    async def load_profile_variables(self, user_id: str) -> dict[str, str]:
        """Profile-derived dynamic variables; an unreadable profile yields none."""
        try:
            return await self.db.get_agent_variables(user_id)
        except (asyncpg.PostgresError, RuntimeError) as e:
            logger.warning(f"Could not load profile for {user_id}: {e}")
            return {}
