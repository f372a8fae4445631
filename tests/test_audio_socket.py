"""Tests for the session audio websocket."""

import asyncio
import time

import httpx
import jwt
import pytest
from httpx import AsyncClient

from voice_session_api.api.sessions import stream_session_audio
from voice_session_api.config import settings
from voice_session_api.telemetry import TelemetryEvents, get_dev_logs


class FakeClientSocket:
    """Server side of a client's audio websocket, driven by the test."""

    def __init__(self, headers: dict | None = None, query_params: dict | None = None):
        self.headers = headers or {}
        self.query_params = query_params or {}
        self.url = httpx.URL("ws://testserver/sessions/audio")
        self.accepted = False
        self.close_code: int | None = None
        self.sent: list[bytes] = []
        self._incoming: asyncio.Queue[dict] = asyncio.Queue()

    def send_from_client(self, data: bytes) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self) -> None:
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> dict:
        return await self._incoming.get()

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code


@pytest.mark.asyncio
class TestAudioSocket:
    async def test_relays_microphone_and_agent_audio(self, client: AsyncClient, wait_until):
        audio = client.registry.get(settings.dev_user_id).audio
        audio.start()
        socket = FakeClientSocket()
        handler = asyncio.create_task(stream_session_audio(socket))
        await wait_until(lambda: socket.accepted)

        socket.send_from_client(b"mic")
        assert await asyncio.wait_for(anext(audio.input_chunks()), timeout=1.0) == b"mic"

        audio.play(b"agent")
        await wait_until(lambda: socket.sent == [b"agent"])

        socket.disconnect()
        await asyncio.wait_for(handler, timeout=1.0)
        audio.stop()

    async def test_muted_speaker_sends_no_agent_audio(self, client: AsyncClient, wait_until):
        controller = client.registry.get(settings.dev_user_id)
        controller.audio.start()
        controller.toggle_speaker_output()
        socket = FakeClientSocket()
        handler = asyncio.create_task(stream_session_audio(socket))
        await wait_until(lambda: socket.accepted)

        controller.audio.play(b"agent")
        await asyncio.sleep(0.01)

        assert socket.sent == []
        socket.disconnect()
        await asyncio.wait_for(handler, timeout=1.0)
        controller.audio.stop()

    async def test_rejected_without_token(self, client: AsyncClient, enable_auth):
        socket = FakeClientSocket()

        with enable_auth:
            await stream_session_audio(socket)

        assert socket.accepted is False
        assert socket.close_code == 1008
        assert get_dev_logs(TelemetryEvents.AUTHENTICATION_ERROR)

    async def test_token_query_parameter_selects_user(
        self, client: AsyncClient, enable_auth, wait_until
    ):
        token = jwt.encode(
            {"sub": "user-9", "exp": int(time.time()) + 3600},
            settings.secret_key,
            algorithm="HS256",
        )
        socket = FakeClientSocket(query_params={"token": token})

        with enable_auth:
            handler = asyncio.create_task(stream_session_audio(socket))
            await wait_until(lambda: socket.accepted)

        socket.disconnect()
        await asyncio.wait_for(handler, timeout=1.0)
        assert "user-9" in client.registry._controllers
