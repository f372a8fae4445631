"""Live session API endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, status
from fastapi.responses import StreamingResponse

from ..config import settings
from ..core import (
    NoActiveSessionError,
    PermissionDeniedError,
    ProviderError,
    SendError,
    SessionConnectionError,
    SessionController,
    SessionRegistry,
    get_session_registry,
)
from ..core.services import BufferedAudioIO, StaticPermissionGate
from ..middleware import authenticate_websocket
from ..models import (
    ConnectionState,
    MessageRequest,
    SessionResponse,
    SessionSnapshot,
    SessionStartRequest,
    SignedUrlResponse,
)
from ..providers import ElevenLabsClient, get_elevenlabs_client
from ..telemetry import TelemetryEvents, track_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

# Seconds between SSE keep-alive comments when nothing changes
KEEPALIVE_SECONDS = 15.0


async def get_registry() -> SessionRegistry:
    """Dependency to get the session registry."""
    try:
        return await get_session_registry()
    except RuntimeError as e:
        logger.error(f"Session registry unavailable: {e}")
        raise HTTPException(status_code=503, detail="Session service unavailable")


async def get_controller(
    request: Request, registry: SessionRegistry = Depends(get_registry)
) -> SessionController:
    """Dependency to get the calling user's session controller."""
    user_id = getattr(request.state, "user_id", None) or settings.dev_user_id
    return registry.get(user_id)


def _resolve_agent_id(agent_id: str | None) -> str:
    resolved = agent_id or settings.elevenlabs_agent_id
    if not resolved:
        raise HTTPException(
            status_code=400,
            detail="agent_id is required (no ELEVENLABS_AGENT_ID configured)",
        )
    return resolved


async def _start(
    controller: SessionController, session_request: SessionStartRequest, toggle: bool
) -> SessionSnapshot:
    agent_id = _resolve_agent_id(session_request.agent_id)
    gate = StaticPermissionGate(session_request.microphone_granted)
    operation = controller.toggle if toggle else controller.start

    try:
        return await operation(
            agent_id,
            session_request.dynamic_variables,
            mode=session_request.mode,
            permission_gate=gate,
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except SessionConnectionError as e:
        logger.warning(f"Session start failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/signed-url", response_model=SignedUrlResponse)
async def get_signed_url(
    agent_id: str | None = Query(default=None, description="Agent to connect to"),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
) -> SignedUrlResponse:
    """Get a signed websocket URL so a client can talk to a private agent directly."""
    try:
        signed_url = await client.get_signed_url(_resolve_agent_id(agent_id))
    except ProviderError as e:
        logger.error(f"Failed to get signed URL: {e}")
        raise HTTPException(status_code=502, detail="Failed to get signed URL")
    return SignedUrlResponse(signed_url=signed_url)


@router.get("/current", response_model=SessionResponse)
async def get_current_session(
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Get the state of the caller's live session."""
    return SessionResponse(session=controller.snapshot())


@router.post("/start", response_model=SessionResponse)
async def start_session(
    session_request: SessionStartRequest,
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Start a live conversation. A no-op while a session is already running."""
    snapshot = await _start(controller, session_request, toggle=False)
    return SessionResponse(session=snapshot, message="Session started")


@router.post("/toggle", response_model=SessionResponse)
async def toggle_session(
    session_request: SessionStartRequest,
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Stop the live conversation when connected, start one otherwise."""
    was_connected = controller.connection_state in (
        ConnectionState.ACTIVE,
        ConnectionState.RECONNECTING,
    )
    snapshot = await _start(controller, session_request, toggle=True)
    return SessionResponse(
        session=snapshot,
        message="Session stopped" if was_connected else "Session started",
    )


@router.post("/stop", response_model=SessionResponse)
async def stop_session(
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """End the live conversation. Archival of its recording runs in the background."""
    snapshot = await controller.stop()
    return SessionResponse(session=snapshot, message="Session stopped")


@router.post("/messages", response_model=SessionResponse)
async def send_message(
    message_request: MessageRequest,
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Send a text message to the agent."""
    try:
        await controller.send_message(message_request.message)
    except NoActiveSessionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SendError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return SessionResponse(session=controller.snapshot(), message="Message sent")


@router.post("/mute", response_model=SessionResponse)
async def toggle_mute(
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Toggle the microphone of the live conversation."""
    return SessionResponse(session=await controller.toggle_mute())


@router.post("/speaker", response_model=SessionResponse)
async def toggle_speaker(
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Toggle local playback of the agent's voice."""
    return SessionResponse(session=controller.toggle_speaker_output())


@router.post("/error/clear", response_model=SessionResponse)
async def clear_error(
    controller: SessionController = Depends(get_controller),
) -> SessionResponse:
    """Dismiss the current error message."""
    return SessionResponse(session=controller.clear_error())


@router.get("/events")
async def stream_session_events(
    request: Request,
    controller: SessionController = Depends(get_controller),
) -> StreamingResponse:
    """Stream session snapshots using Server-Sent Events (SSE)."""
    queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue()
    remove_listener = controller.add_listener(queue.put_nowait)

    async def event_generator():
        try:
            yield f"data: {controller.snapshot().model_dump_json()}\n\n"

            while not await request.is_disconnected():
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {snapshot.model_dump_json()}\n\n"
        finally:
            remove_listener()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


async def _relay_agent_audio(websocket: WebSocket, audio: BufferedAudioIO) -> None:
    async for chunk in audio.output_chunks():
        await websocket.send_bytes(chunk)


@router.websocket("/audio")
async def stream_session_audio(websocket: WebSocket) -> None:
    """Carry the caller's live session audio.

    Binary frames from the client are microphone chunks, forwarded to the
    agent while a talk-mode session is running and the microphone is not
    muted. Binary frames sent back are the agent's voice. The socket may stay
    open across sessions.
    """
    try:
        user_id = authenticate_websocket(websocket)
    except HTTPException as e:
        track_event(
            TelemetryEvents.AUTHENTICATION_ERROR,
            {"endpoint": websocket.url.path, "detail": e.detail},
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e.detail))
        return

    try:
        registry = await get_session_registry()
    except RuntimeError as e:
        logger.error(f"Session registry unavailable: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    audio = registry.get(user_id).audio
    if not isinstance(audio, BufferedAudioIO):
        logger.error(f"Session audio for user {user_id} cannot be streamed")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    logger.info(f"Audio socket opened for user {user_id}")
    relay = asyncio.create_task(_relay_agent_audio(websocket, audio))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes"):
                audio.push_input(message["bytes"])
    finally:
        relay.cancel()
        await asyncio.gather(relay, return_exceptions=True)
        logger.info(f"Audio socket closed for user {user_id}")
