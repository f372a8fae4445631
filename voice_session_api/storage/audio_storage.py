"""Blob storage for archived conversation audio."""

import asyncio
import logging
from pathlib import Path
from typing import Protocol
from uuid import UUID

import httpx

from ..config import Settings
from ..core.errors import RecordStoreError

logger = logging.getLogger(__name__)


def audio_object_path(user_id: str, session_id: UUID, extension: str) -> str:
    """Object key for a session's audio: ``<user_id>/<session_id>.<extension>``."""
    return f"{user_id}/{session_id}.{extension}"


class AudioStorage(Protocol):
    async def upload(self, path: str, data: bytes, mime_type: str) -> str: ...

    async def aclose(self) -> None: ...


class LocalAudioStorage:
    """Writes audio files under a local directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    async def upload(self, path: str, data: bytes, mime_type: str) -> str:
        target = self.root / path
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise RecordStoreError(f"Could not write audio file {target}: {e}") from e

        logger.debug(f"Wrote {len(data)} bytes of {mime_type} audio to {target}")
        return path

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def aclose(self) -> None:
        return None


class SupabaseAudioStorage:
    """Uploads audio to a Supabase storage bucket, overwriting existing objects."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.bucket = bucket
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {service_key}", "apikey": service_key},
            timeout=timeout,
        )

    async def upload(self, path: str, data: bytes, mime_type: str) -> str:
        try:
            response = await self._client.post(
                f"/storage/v1/object/{self.bucket}/{path}",
                content=data,
                headers={"Content-Type": mime_type, "x-upsert": "true"},
            )
        except httpx.HTTPError as e:
            raise RecordStoreError(f"Audio upload failed: {e}") from e

        if not response.is_success:
            raise RecordStoreError(
                f"Audio upload failed with status {response.status_code}: {response.text[:200]}"
            )

        logger.debug(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return path

    async def aclose(self) -> None:
        await self._client.aclose()


def create_audio_storage(settings: Settings) -> AudioStorage:
    """Build the audio backend selected by ``audio_storage_backend``."""
    backend = settings.audio_storage_backend.lower()

    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("supabase_url and supabase_service_key are required for supabase storage")
        return SupabaseAudioStorage(
            settings.supabase_url,
            settings.supabase_service_key,
            settings.supabase_audio_bucket,
        )

    if backend == "local":
        return LocalAudioStorage(settings.audio_storage_path)

    raise ValueError(f"Unknown audio storage backend: {settings.audio_storage_backend}")
