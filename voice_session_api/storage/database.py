"""Database management with PostgreSQL via asyncpg."""

import logging
from typing import Any
from uuid import UUID

import asyncpg

from ..config import settings
from ..models import SessionRecord

logger = logging.getLogger(__name__)

# user_profiles column -> dynamic variable name expected by agents
PROFILE_VARIABLES = {
    "first_name": "firstname",
    "primary_goal": "primary_goal",
    "coaching_style": "coaching_style",
}


def _record_from_row(row: Any) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        conversation_id=row["conversation_id"],
        agent_id=row["agent_id"],
        audio_path=row["audio_path"],
        created_at=row["created_at"],
    )


class Database:
    """Async PostgreSQL database manager using asyncpg."""

    def __init__(self, db_url: str):
        """Initialize database with connection URL."""
        self.db_url = db_url
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Establish database connection pool and initialize schema."""
        if self._pool is not None:
            return

        self._pool = await asyncpg.create_pool(
            self.db_url,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
            command_timeout=60,
        )

        from .schema import INIT_SCHEMA

        async with self._pool.acquire() as conn:
            await conn.execute(INIT_SCHEMA)

        logger.info(f"Database connected: {self.db_url.split('@')[-1]}")  # Don't log password

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database disconnected")

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise RuntimeError("Database not connected")
        return self._pool

    # Session record operations
    async def find_session_record(self, conversation_id: str) -> SessionRecord | None:
        """Get the session record for a remote conversation, if any."""
        pool = self._require_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM session_records WHERE conversation_id = $1", conversation_id
            )

        return _record_from_row(row) if row else None

    async def insert_session_record(
        self,
        session_id: UUID,
        user_id: str,
        conversation_id: str,
        agent_id: str | None = None,
    ) -> SessionRecord:
        """Insert a session record.

        When a record for the conversation already exists (a concurrent insert
        won the race) the existing row is returned unchanged.
        """
        pool = self._require_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO session_records (id, user_id, conversation_id, agent_id)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (conversation_id)
                    DO UPDATE SET conversation_id = EXCLUDED.conversation_id
                RETURNING *
                """,
                session_id,
                user_id,
                conversation_id,
                agent_id,
            )

        record = _record_from_row(row)
        if record.id != session_id:
            logger.info(f"Session record for {conversation_id} already existed: {record.id}")
        else:
            logger.debug(f"Created session record: {session_id}")
        return record

    async def set_session_audio(self, session_id: UUID, audio_path: str, mime_type: str) -> None:
        """Attach an uploaded audio reference to a session record."""
        pool = self._require_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE session_records
                SET audio_path = $1, audio_mime_type = $2
                WHERE id = $3
                """,
                audio_path,
                mime_type,
                session_id,
            )

        logger.debug(f"Stored audio reference for session: {session_id}")

    async def list_session_records(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[SessionRecord]:
        """List a user's session records, newest first."""
        pool = self._require_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM session_records
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                offset,
            )

        return [_record_from_row(row) for row in rows]

    async def count_session_records(self) -> int:
        """Count all session records (used by the health check)."""
        pool = self._require_pool()

        async with pool.acquire() as conn:
            count = await conn.fetchval("SELECT COUNT(*) FROM session_records")

        return count or 0

    # User profile operations
    async def get_user_profile(self, user_id: str) -> dict[str, Any] | None:
        """Get a user's profile."""
        pool = self._require_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM user_profiles WHERE user_id = $1", user_id)

        if row:
            return {
                "user_id": row["user_id"],
                "first_name": row["first_name"],
                "primary_goal": row["primary_goal"],
                "coaching_style": row["coaching_style"],
            }
        return None

    async def get_agent_variables(self, user_id: str) -> dict[str, str]:
        """Dynamic variables for agents, taken from the user's profile."""
        profile = await self.get_user_profile(user_id)
        if not profile:
            return {}
        return {
            variable: profile[column]
            for column, variable in PROFILE_VARIABLES.items()
            if profile.get(column)
        }


# Global database instance
_db: Database | None = None


async def init_database() -> Database:
    """Initialize and return global database instance."""
    global _db
    if _db is None:
        db_url = settings.get_database_url()
        _db = Database(db_url)
        await _db.connect()

    return _db


async def get_db() -> Database:
    """Get database instance (dependency injection)."""
    global _db
    if _db is None:
        _db = await init_database()
    return _db
