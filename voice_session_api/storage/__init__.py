"""Storage layer for session records and archived audio."""

from .audio_storage import (
    AudioStorage,
    LocalAudioStorage,
    SupabaseAudioStorage,
    audio_object_path,
    create_audio_storage,
)
from .database import Database, get_db, init_database
from .record_store import DatabaseRecordStore

__all__ = [
    "AudioStorage",
    "Database",
    "DatabaseRecordStore",
    "LocalAudioStorage",
    "SupabaseAudioStorage",
    "audio_object_path",
    "create_audio_storage",
    "get_db",
    "init_database",
]
