"""Collaborator contracts the session controller and archival reconciler depend on.

Concrete adapters live in ``voice_session_api.providers`` and
``voice_session_api.storage``; tests substitute in-memory fakes.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import ConversationSummary, DownloadedAudio, SessionEvent, SessionRecord


class SessionConfig(BaseModel):
    """Options sent to the remote service when a live session starts."""

    dynamic_variables: dict[str, str] = Field(default_factory=dict)
    text_only: bool = False


class LiveSessionHandle(Protocol):
    """A started remote session.

    ``conversation_id`` and ``agent_output_format`` are filled in once the
    remote service reports them, usually when the session becomes active.
    """

    conversation_id: str | None
    agent_output_format: str | None

    def events(self) -> AsyncIterator[SessionEvent]:
        """Ordered event stream; ends when the session ends."""
        ...

    def attach_audio(self, audio: "AudioIO") -> None:
        """Route agent audio to ``audio`` and stream its input chunks to the agent."""
        ...

    async def send_message(self, text: str) -> None: ...

    async def toggle_mute(self) -> None: ...

    async def end(self) -> None: ...


class RemoteSessionService(Protocol):
    """Establishes live sessions with a remote conversational agent."""

    async def start(self, agent_id: str, config: SessionConfig) -> LiveSessionHandle: ...


class ConversationSummaryProvider(Protocol):
    """Lists completed conversations and serves their recordings."""

    async def list_summaries(self) -> list[ConversationSummary]: ...

    async def download_audio(self, conversation_id: str) -> DownloadedAudio: ...


class RecordStore(Protocol):
    """Durable session records and audio blobs."""

    async def find_record(self, conversation_id: str) -> SessionRecord | None: ...

    async def insert_record(
        self,
        session_id: UUID,
        user_id: str,
        conversation_id: str,
        agent_id: str | None,
    ) -> SessionRecord: ...

    async def upload_audio(
        self,
        data: bytes,
        user_id: str,
        session_id: UUID,
        extension: str,
        mime_type: str,
    ) -> str: ...


class PermissionGate(Protocol):
    """Asks the local user for microphone access."""

    async def request_microphone(self) -> bool: ...


class AudioIO(Protocol):
    """Local audio input/output attached to a live session."""

    def start(self) -> None: ...

    def input_chunks(self) -> AsyncIterator[bytes]: ...

    def play(self, chunk: bytes) -> None: ...

    def set_output_volume(self, volume: float) -> None: ...

    def stop(self) -> None: ...


class StaticPermissionGate:
    """Permission gate answering with a fixed decision made by the client device."""

    def __init__(self, granted: bool = True):
        self.granted = granted

    async def request_microphone(self) -> bool:
        return self.granted


class BufferedAudioIO:
    """Audio I/O bridged to a client over the session audio socket.

    The client's microphone chunks arrive through ``push_input`` and are
    forwarded to the agent by the live session. Agent audio handed to
    ``play`` is queued for ``output_chunks``, which the audio socket relays
    back to the client. The oldest chunk is dropped when the queue is full and
    nothing is queued while the output volume is zero.
    """

    def __init__(self, max_buffered_chunks: int = 256):
        self.output_volume = 1.0
        self.running = False
        self._input: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._output: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_buffered_chunks)

    def start(self) -> None:
        self.running = True
        self._input = asyncio.Queue()
        self._clear_output()

    def push_input(self, chunk: bytes) -> None:
        if self.running:
            self._input.put_nowait(chunk)

    async def input_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._input.get()
            if chunk is None:
                return
            yield chunk

    def play(self, chunk: bytes) -> None:
        if not self.running or self.output_volume == 0.0:
            return
        if self._output.full():
            self._output.get_nowait()
        self._output.put_nowait(chunk)

    async def output_chunks(self) -> AsyncIterator[bytes]:
        """Agent audio in playback order. Survives stop() and start()."""
        while True:
            yield await self._output.get()

    def set_output_volume(self, volume: float) -> None:
        self.output_volume = max(0.0, min(1.0, volume))

    def stop(self) -> None:
        if self.running:
            self.running = False
            self._input.put_nowait(None)
        self._clear_output()

    def _clear_output(self) -> None:
        while not self._output.empty():
            self._output.get_nowait()
