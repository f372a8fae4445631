"""Tests for the session, archive and health endpoints."""

from datetime import UTC, datetime

import httpx
import pytest
from fakes import summary
from httpx import AsyncClient

from voice_session_api.models import ConnectionState


async def start_session(client: AsyncClient, wait_until, **body) -> dict:
    response = await client.post("/sessions/start", json={"agent_id": "agent-1", **body})
    assert response.status_code == 200
    controller = client.registry.get("dev-user")
    await wait_until(lambda: controller.is_connected)
    return response.json()


@pytest.mark.asyncio
class TestHealthEndpoints:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True
        assert data["active_sessions"] == 0
        assert data["uptime"].startswith("Days: ")

    async def test_health_degraded_without_database(self, client: AsyncClient, mock_db):
        mock_db.count_session_records.side_effect = RuntimeError("Database not connected")

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    async def test_version(self, client: AsyncClient):
        from voice_session_api import __version__

        response = await client.get("/version")

        assert response.json() == {"service_version": __version__}

    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/version", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
class TestSessionEndpoints:
    async def test_current_without_session(self, client: AsyncClient):
        response = await client.get("/sessions/current")

        assert response.status_code == 200
        session = response.json()["session"]
        assert session["connection_state"] == "idle"
        assert session["is_connected"] is False

    async def test_start_and_stop(self, client: AsyncClient, remote, wait_until):
        data = await start_session(client, wait_until, dynamic_variables={"firstname": "Sam"})

        assert data["message"] == "Session started"
        assert remote.last.config.dynamic_variables == {"firstname": "Sam"}

        current = (await client.get("/sessions/current")).json()["session"]
        assert current["connection_state"] == "active"
        assert current["agent_state"] == "listening"

        response = await client.post("/sessions/stop")
        assert response.status_code == 200
        assert response.json()["session"]["connection_state"] == "idle"
        assert remote.last.ended is True

    async def test_start_requires_agent_id(self, client: AsyncClient):
        response = await client.post("/sessions/start", json={})

        assert response.status_code == 400
        assert "agent_id" in response.json()["detail"]

    async def test_microphone_denied(self, client: AsyncClient, remote):
        response = await client.post(
            "/sessions/start", json={"agent_id": "agent-1", "microphone_granted": False}
        )

        assert response.status_code == 403
        assert "Microphone" in response.json()["detail"]
        assert remote.sessions == []

    async def test_connection_failure(self, client: AsyncClient, remote):
        remote.fail_with = ConnectionError("agent offline")

        response = await client.post("/sessions/start", json={"agent_id": "agent-1"})

        assert response.status_code == 502
        current = (await client.get("/sessions/current")).json()["session"]
        assert current["connection_state"] == "idle"
        assert "agent offline" in current["error_message"]

    async def test_blank_dynamic_variable_rejected(self, client: AsyncClient):
        response = await client.post(
            "/sessions/start", json={"agent_id": "agent-1", "dynamic_variables": {" ": "x"}}
        )

        assert response.status_code == 422

    async def test_toggle(self, client: AsyncClient, wait_until):
        response = await client.post("/sessions/toggle", json={"agent_id": "agent-1"})
        assert response.json()["message"] == "Session started"
        controller = client.registry.get("dev-user")
        await wait_until(lambda: controller.is_connected)

        response = await client.post("/sessions/toggle", json={"agent_id": "agent-1"})

        assert response.json()["message"] == "Session stopped"
        assert response.json()["session"]["connection_state"] == "idle"

    async def test_send_message_without_session(self, client: AsyncClient):
        response = await client.post("/sessions/messages", json={"message": "hello"})

        assert response.status_code == 409

    async def test_send_empty_message_rejected(self, client: AsyncClient):
        response = await client.post("/sessions/messages", json={"message": ""})

        assert response.status_code == 422

    async def test_send_message(self, client: AsyncClient, remote, wait_until):
        await start_session(client, wait_until)

        response = await client.post("/sessions/messages", json={"message": "hello"})

        assert response.status_code == 200
        assert remote.last.sent == ["hello"]

    async def test_send_failure(self, client: AsyncClient, remote, wait_until):
        await start_session(client, wait_until)
        remote.last.send_error = RuntimeError("socket closed")

        response = await client.post("/sessions/messages", json={"message": "hello"})

        assert response.status_code == 502

    async def test_speaker_and_mute(self, client: AsyncClient, wait_until):
        await start_session(client, wait_until)
        controller = client.registry.get("dev-user")

        response = await client.post("/sessions/speaker")
        assert response.json()["session"]["is_speaker_muted"] is True

        await client.post("/sessions/mute")
        await wait_until(lambda: controller.is_muted)

    async def test_clear_error(self, client: AsyncClient):
        await client.post("/sessions/messages", json={"message": "hello"})

        response = await client.post("/sessions/error/clear")

        assert response.json()["session"]["error_message"] is None

    async def test_signed_url(self, client: AsyncClient):
        response = await client.get("/sessions/signed-url", params={"agent_id": "agent-1"})

        assert response.status_code == 200
        assert response.json()["signed_url"].startswith("wss://")

    async def test_signed_url_provider_error(self, client: AsyncClient, elevenlabs_handler):
        elevenlabs_handler.routes["/v1/convai/conversation/get-signed-url"] = httpx.Response(
            401, json={"detail": "invalid api key"}
        )

        response = await client.get("/sessions/signed-url", params={"agent_id": "agent-1"})

        assert response.status_code == 502


@pytest.mark.asyncio
class TestArchiveEndpoints:
    async def test_stop_archives_in_background(
        self, client: AsyncClient, provider, store, wait_until
    ):
        await start_session(client, wait_until)
        provider.summaries = [summary("conv-1", datetime.now(UTC))]

        await client.post("/sessions/stop")
        controller = client.registry.get("dev-user")
        await controller.reconciler.drain(timeout=1.0)

        response = await client.get("/archive/status")
        archive = response.json()["archive"]
        assert archive["archived_conversation_ids"] == ["conv-1"]
        assert archive["is_archiving"] is False
        assert archive["last_archive_error"] is None
        assert len(store.uploads) == 1

    async def test_archival_error_reported(self, client: AsyncClient, provider, wait_until):
        from voice_session_api.core import ProviderError

        provider.list_error = ProviderError("ElevenLabs unavailable", status_code=503)
        await start_session(client, wait_until)

        await client.post("/sessions/stop")
        await client.registry.get("dev-user").reconciler.drain(timeout=1.0)

        archive = (await client.get("/archive/status")).json()["archive"]
        assert "ElevenLabs unavailable" in archive["last_archive_error"]
        current = (await client.get("/sessions/current")).json()["session"]
        assert "ElevenLabs unavailable" in current["last_archive_error"]

    async def test_retry(self, client: AsyncClient, provider):
        response = await client.post("/archive/retry")
        assert response.json()["message"] == "Nothing to archive"

        provider.summaries = [summary("conv-9", datetime.now(UTC))]
        response = await client.post("/archive/retry")

        assert response.json()["message"] == "Archived conversation conv-9"
        assert response.json()["archive"]["archived_conversation_ids"] == ["conv-9"]

    async def test_records(self, client: AsyncClient, mock_db):
        response = await client.get("/archive/records", params={"limit": 10})

        assert response.status_code == 200
        assert response.json() == []
        mock_db.list_session_records.assert_awaited_once_with("dev-user", limit=10, offset=0)


@pytest.mark.asyncio
class TestRegistry:
    async def test_one_controller_per_user(self, client: AsyncClient):
        registry = client.registry

        assert registry.get("user-a") is registry.get("user-a")
        assert registry.get("user-a") is not registry.get("user-b")
        assert registry.get("user-a").reconciler.ledger is registry.get("user-b").reconciler.ledger

    async def test_shutdown_stops_live_sessions(self, client: AsyncClient, remote, wait_until):
        await start_session(client, wait_until)
        assert client.registry.active_session_count == 1

        await client.registry.shutdown()

        assert client.registry.active_session_count == 0
        assert remote.last.ended is True
        assert client.registry.get("dev-user").connection_state == ConnectionState.IDLE
