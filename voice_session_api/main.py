"""Main FastAPI application for the voice session service."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from . import __version__
from .api import archive_router, health_router, sessions_router
from .config import settings
from .core import SessionRegistry, set_session_registry
from .middleware import AuthMiddleware
from .providers import ElevenLabsClient, ElevenLabsSessionService, set_elevenlabs_client
from .storage import DatabaseRecordStore, create_audio_storage, init_database
from .telemetry import TelemetryMiddleware, flush_telemetry, initialize_telemetry, set_debug

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup and shutdown."""
    # Startup
    logger.info("Starting voice session service...")
    logger.info(f"Service version: {app.version}")
    logger.info(f"Host: {settings.service_host}:{settings.service_port}")

    # Initialize telemetry
    initialize_telemetry()
    # Echo telemetry events to the log when running with DEBUG logging
    set_debug(settings.log_level.upper() == "DEBUG")
    logger.info("Telemetry initialized")

    # Initialize database
    db = await init_database()
    logger.info("Database initialized")

    client = ElevenLabsClient.from_settings(settings)
    set_elevenlabs_client(client)
    remote = ElevenLabsSessionService(
        ws_base_url=settings.elevenlabs_ws_base_url,
        rest_client=client,
        use_signed_urls=bool(settings.elevenlabs_api_key),
    )

    audio_storage = create_audio_storage(settings)
    record_store = DatabaseRecordStore(db, audio_storage)
    registry = SessionRegistry(
        remote,
        client,
        record_store,
        config=settings,
        profile_loader=record_store.load_profile_variables,
    )
    set_session_registry(registry)
    logger.info(f"Audio archival using {settings.audio_storage_backend} storage")

    logger.info("Voice session service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down voice session service...")

    # End live sessions and let pending archival runs finish
    await registry.shutdown()
    set_session_registry(None)

    # Flush telemetry before shutdown
    flush_telemetry()
    logger.info("Telemetry flushed")

    set_elevenlabs_client(None)
    await client.aclose()
    await audio_storage.aclose()
    await db.disconnect()
    logger.info("Voice session service stopped")


# Create FastAPI application
app = FastAPI(
    title="Voice Session API",
    description="""
Live conversations with ElevenLabs voice agents, with the recording of every
finished conversation archived in the background.

## Sessions
- `POST /sessions/toggle` - Start a conversation, or stop the running one
- `POST /sessions/start` / `POST /sessions/stop`
- `POST /sessions/messages` - Send a text message to the agent
- `POST /sessions/mute` - Toggle the microphone
- `POST /sessions/speaker` - Toggle local playback
- `GET /sessions/current` - Current session state
- `GET /sessions/events` - Session state as Server-Sent Events
- `GET /sessions/signed-url` - Signed websocket URL for private agents

## Archival
- `GET /archive/status` - Archival state and last archival error
- `POST /archive/retry` - Run archival again
- `GET /archive/records` - Archived session records
""",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Telemetry middleware (first, to capture all requests)
app.add_middleware(TelemetryMiddleware)

# Authentication middleware (before CORS, to reject unauthorized requests early)
app.add_middleware(AuthMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Trusted host middleware (security)
if settings.service_host != "0.0.0.0":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=[settings.service_host, "localhost", "127.0.0.1"],
    )

# Register routers
app.include_router(health_router)
app.include_router(sessions_router)
app.include_router(archive_router)


def main() -> None:
    """Main entry point for running the service."""
    import uvicorn

    uvicorn.run(
        "voice_session_api.main:app",
        host=settings.service_host,
        port=settings.service_port,
        workers=settings.service_workers,
        log_level=settings.log_level,
        reload=False,  # Set to True for development
    )


if __name__ == "__main__":
    main()
