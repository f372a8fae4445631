"""Pytest configuration and fixtures."""

import asyncio
import os
from unittest.mock import AsyncMock

# Set test environment variables BEFORE importing anything that loads settings
# This ensures tests run with auth disabled by default and use HS256 for JWTs
os.environ["AUTH_REQUIRED"] = "false"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["ELEVENLABS_AGENT_ID"] = ""
os.environ["TELEMETRY_ENABLED"] = "false"

import httpx
import pytest
import pytest_asyncio
from fakes import FakeRemoteService, FakeSummaryProvider, InMemoryRecordStore, RecordingSleep
from httpx import ASGITransport, AsyncClient

# Force reload of settings with test environment
import voice_session_api.config as config_module

config_module.settings = config_module.Settings()

# Verify settings are correct for tests
assert config_module.settings.auth_required is False, (
    "Test setup failed: auth_required should be False"
)
assert config_module.settings.jwt_algorithm == "HS256", (
    "Test setup failed: jwt_algorithm should be HS256"
)


@pytest.fixture
def anyio_backend():
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def enable_auth():
    """Context manager to enable authentication for a test.

    Usage:
        with enable_auth:
            response = await client.get("/sessions/current")
    """
    from voice_session_api.config import settings

    class AuthEnabler:
        def __enter__(self):
            object.__setattr__(settings, "auth_required", True)
            return self

        def __exit__(self, *args):
            object.__setattr__(settings, "auth_required", False)

    return AuthEnabler()


@pytest.fixture(autouse=True)
def clean_dev_logs():
    """Start every test with an empty telemetry buffer."""
    from voice_session_api.telemetry import clear_dev_logs

    clear_dev_logs()
    yield
    clear_dev_logs()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds, letting background tasks run in between."""

    async def _wait(predicate, timeout: float = 1.0) -> None:
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait


@pytest.fixture
def remote():
    return FakeRemoteService()


@pytest.fixture
def provider():
    return FakeSummaryProvider()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def reconciler(provider, store, no_sleep):
    from voice_session_api.core import ArchivalReconciler

    return ArchivalReconciler("user-1", provider, store, sleep=no_sleep)


@pytest_asyncio.fixture
async def controller(remote, reconciler):
    from voice_session_api.core import SessionController

    controller = SessionController("user-1", remote, reconciler)
    yield controller
    await controller.stop()
    await reconciler.drain(timeout=1.0)


@pytest.fixture
def elevenlabs_handler():
    """Mock ElevenLabs REST handler; tests may replace ``routes`` entries."""

    routes: dict[str, httpx.Response] = {
        "/v1/convai/conversation/get-signed-url": httpx.Response(
            200, json={"signed_url": "wss://api.elevenlabs.io/v1/convai/conversation?token=abc"}
        ),
        "/v1/convai/conversations": httpx.Response(
            200, json={"conversations": [], "has_more": False}
        ),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        response = routes.get(request.url.path)
        if response is None:
            return httpx.Response(404, json={"detail": "not found"})
        return response

    handler.routes = routes
    return handler


@pytest.fixture
def mock_db():
    """Database double for endpoints that read records directly."""
    db = AsyncMock()
    db.count_session_records.return_value = 0
    db.list_session_records.return_value = []
    return db


@pytest_asyncio.fixture(scope="function")
async def client(remote, provider, store, mock_db, elevenlabs_handler):
    """Create test client with the session registry backed by fakes."""
    from fastapi import FastAPI

    from voice_session_api.api import archive_router, health_router, sessions_router
    from voice_session_api.config import settings
    from voice_session_api.core import SessionRegistry, set_session_registry
    from voice_session_api.middleware import AuthMiddleware
    from voice_session_api.providers import ElevenLabsClient, set_elevenlabs_client
    from voice_session_api.storage import get_db
    from voice_session_api.telemetry import TelemetryMiddleware

    remote.auto_activate = True

    test_app = FastAPI(title="Test App")
    test_app.add_middleware(TelemetryMiddleware)
    test_app.add_middleware(AuthMiddleware)
    test_app.include_router(health_router)
    test_app.include_router(sessions_router)
    test_app.include_router(archive_router)
    test_app.dependency_overrides[get_db] = lambda: mock_db

    registry = SessionRegistry(remote, provider, store, config=settings)
    set_session_registry(registry)

    rest_client = ElevenLabsClient(
        api_key="test-key",
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(elevenlabs_handler),
            base_url="https://api.elevenlabs.io",
        ),
    )
    set_elevenlabs_client(rest_client)

    # Auth is disabled by default (auth_required=False in settings)
    try:
        async with AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://test",
            timeout=5.0,
        ) as test_client:
            test_client.registry = registry
            yield test_client
    finally:
        await registry.shutdown()
        set_session_registry(None)
        set_elevenlabs_client(None)
        await rest_client.aclose()
        test_app.dependency_overrides.clear()
