"""Live ElevenLabs conversations over the Conversational AI websocket."""

import asyncio
import base64
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Any
from urllib.parse import urlencode

import websockets

from ..core.errors import SessionConnectionError
from ..core.services import AudioIO, SessionConfig
from ..models import AgentState, ConnectionState, MessageRole, SessionEvent
from .elevenlabs import ElevenLabsClient

logger = logging.getLogger(__name__)

# Agent is considered done speaking after this long without an audio chunk
SPEAKING_IDLE_SECONDS = 1.5


class ElevenLabsLiveSession:
    """One open conversation websocket.

    A reader task turns incoming socket messages into SessionEvents queued in
    arrival order. ``events()`` drains that queue until the socket closes.
    The conversation id and output audio format arrive with the initiation
    metadata and are read by the controller for archival.
    """

    def __init__(self, websocket: Any, text_only: bool = False):
        self._ws = websocket
        self.text_only = text_only
        self.conversation_id: str | None = None
        self.agent_output_format: str | None = None
        self._events: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._muted = False
        self._agent_state: AgentState | None = None
        self._last_audio_at = 0.0
        self._audio: AudioIO | None = None
        self._reader: asyncio.Task | None = None
        self._mic_task: asyncio.Task | None = None

    def start_reader(self) -> None:
        self._emit(SessionEvent.connection(ConnectionState.CONNECTING))
        self._reader = asyncio.create_task(self._read_loop(), name="elevenlabs-reader")

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def attach_audio(self, audio: AudioIO) -> None:
        self._audio = audio
        if not self.text_only and self._mic_task is None:
            self._mic_task = asyncio.create_task(self._forward_microphone(audio))

    async def send_message(self, text: str) -> None:
        await self._send({"type": "user_message", "text": text})
        self._emit(SessionEvent.chat(MessageRole.USER, text))

    async def toggle_mute(self) -> None:
        self._muted = not self._muted
        self._emit(SessionEvent.mute(self._muted))

    async def end(self) -> None:
        if self._mic_task is not None:
            self._mic_task.cancel()
        await self._ws.close()
        tasks = [task for task in (self._mic_task, self._reader) if task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _send(self, payload: dict[str, Any]) -> None:
        await self._ws.send(json.dumps(payload))

    def _emit(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    def _set_agent_state(self, state: AgentState) -> None:
        if state != self._agent_state:
            self._agent_state = state
            self._emit(SessionEvent.agent(state))

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.debug("Ignoring non-JSON websocket frame")
                    continue
                await self._handle(message)
        except websockets.ConnectionClosed as e:
            logger.info(f"Conversation websocket closed: {e}")
        except Exception as e:
            logger.warning(f"Conversation websocket failed: {e}")
        finally:
            self._emit(SessionEvent.connection(ConnectionState.DISCONNECTED))
            self._events.put_nowait(None)

    async def _handle(self, message: dict[str, Any]) -> None:
        kind = message.get("type")

        if kind == "conversation_initiation_metadata":
            metadata = message.get("conversation_initiation_metadata_event", {})
            self.conversation_id = metadata.get("conversation_id")
            self.agent_output_format = metadata.get("agent_output_audio_format")
            self._emit(SessionEvent.connection(ConnectionState.ACTIVE))
            self._set_agent_state(AgentState.LISTENING)

        elif kind == "ping":
            event_id = message.get("ping_event", {}).get("event_id")
            await self._send({"type": "pong", "event_id": event_id})
            if (
                self._agent_state == AgentState.SPEAKING
                and time.monotonic() - self._last_audio_at > SPEAKING_IDLE_SECONDS
            ):
                self._set_agent_state(AgentState.LISTENING)

        elif kind == "audio":
            chunk = message.get("audio_event", {}).get("audio_base_64")
            if chunk and self._audio is not None:
                self._audio.play(base64.b64decode(chunk))
            self._last_audio_at = time.monotonic()
            self._set_agent_state(AgentState.SPEAKING)

        elif kind == "agent_response":
            text = message.get("agent_response_event", {}).get("agent_response")
            if isinstance(text, str):
                self._emit(SessionEvent.chat(MessageRole.AGENT, text))
            self._set_agent_state(AgentState.SPEAKING)

        elif kind == "user_transcript":
            text = message.get("user_transcription_event", {}).get("user_transcript")
            if isinstance(text, str) and text.strip():
                self._emit(SessionEvent.chat(MessageRole.USER, text))
            self._set_agent_state(AgentState.THINKING)

        elif kind == "interruption":
            self._set_agent_state(AgentState.LISTENING)

        else:
            logger.debug(f"Unhandled conversation event: {kind}")

    async def _forward_microphone(self, audio: AudioIO) -> None:
        try:
            async for chunk in audio.input_chunks():
                if self._muted:
                    continue
                await self._send({"user_audio_chunk": base64.b64encode(chunk).decode("ascii")})
        except websockets.ConnectionClosed:
            pass


class ElevenLabsSessionService:
    """Opens live conversations with ElevenLabs agents.

    Private agents need a signed URL, which requires the REST client to hold
    an API key; public agents are reached directly by agent id.
    """

    def __init__(
        self,
        ws_base_url: str = "wss://api.elevenlabs.io",
        rest_client: ElevenLabsClient | None = None,
        use_signed_urls: bool = False,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.ws_base_url = ws_base_url.rstrip("/")
        self.rest_client = rest_client
        self.use_signed_urls = use_signed_urls and rest_client is not None
        self._connect = connect

    async def _session_url(self, agent_id: str) -> str:
        if self.use_signed_urls:
            return await self.rest_client.get_signed_url(agent_id)
        return f"{self.ws_base_url}/v1/convai/conversation?{urlencode({'agent_id': agent_id})}"

    async def start(self, agent_id: str, config: SessionConfig) -> ElevenLabsLiveSession:
        try:
            url = await self._session_url(agent_id)
            websocket = await self._connect(url)
        except Exception as e:
            raise SessionConnectionError(f"Could not connect to agent {agent_id}: {e}") from e

        initiation: dict[str, Any] = {
            "type": "conversation_initiation_client_data",
            "dynamic_variables": config.dynamic_variables,
        }
        if config.text_only:
            initiation["conversation_config_override"] = {"conversation": {"text_only": True}}

        session = ElevenLabsLiveSession(websocket, text_only=config.text_only)
        try:
            await session._send(initiation)
        except Exception as e:
            await websocket.close()
            raise SessionConnectionError(f"Could not initiate conversation: {e}") from e

        session.start_reader()
        logger.info(f"Opened conversation websocket for agent {agent_id}")
        return session
