"""Live conversation session controller."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..models import (
    AgentState,
    ChatMessage,
    ConnectionState,
    ConversationMode,
    SessionEvent,
    SessionEventKind,
    SessionSnapshot,
)
from ..telemetry import TelemetryEvents, track_event, track_exception
from .archival import ArchivalReconciler
from .errors import (
    NoActiveSessionError,
    PermissionDeniedError,
    SendError,
    SessionConnectionError,
)
from .services import (
    AudioIO,
    BufferedAudioIO,
    LiveSessionHandle,
    PermissionGate,
    RemoteSessionService,
    SessionConfig,
    StaticPermissionGate,
)

logger = logging.getLogger(__name__)

# Legal connection state changes. stop() may additionally reset any state to idle.
TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.IDLE: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {
        ConnectionState.ACTIVE,
        ConnectionState.DISCONNECTED,
        ConnectionState.IDLE,
    },
    ConnectionState.ACTIVE: {
        ConnectionState.RECONNECTING,
        ConnectionState.DISCONNECTED,
        ConnectionState.IDLE,
    },
    ConnectionState.RECONNECTING: {
        ConnectionState.ACTIVE,
        ConnectionState.DISCONNECTED,
        ConnectionState.IDLE,
    },
    ConnectionState.DISCONNECTED: {ConnectionState.IDLE},
}

AUDIO_LEVELS: dict[AgentState, float] = {
    AgentState.LISTENING: 0.1,
    AgentState.SPEAKING: 0.7,
    AgentState.THINKING: 0.5,
}

MICROPHONE_REQUIRED_MESSAGE = "Microphone access is required to talk to your agent."

ProfileLoader = Callable[[str], Awaitable[dict[str, str]]]
SnapshotListener = Callable[[SessionSnapshot], None]


@dataclass
class LiveSession:
    """The one live session owned by a controller."""

    handle: LiveSessionHandle
    started_at: datetime
    generation: int
    consumer: asyncio.Task | None = field(default=None, repr=False)


class SessionController:
    """Drives one user's live session end-to-end and exposes its state.

    Remote events are consumed by a single task per live session and applied
    in arrival order. Events from a session that has since been stopped or
    replaced are dropped. Ending a session hands off to the archival
    reconciler without waiting for it.
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteSessionService,
        reconciler: ArchivalReconciler,
        *,
        permission_gate: PermissionGate | None = None,
        audio: AudioIO | None = None,
        profile_loader: ProfileLoader | None = None,
    ):
        self.user_id = user_id
        self.remote = remote
        self.reconciler = reconciler
        self.permission_gate = permission_gate or StaticPermissionGate(True)
        self.audio = audio or BufferedAudioIO()
        self.profile_loader = profile_loader

        self.connection_state = ConnectionState.IDLE
        self.agent_state = AgentState.LISTENING
        self.is_interactive = False
        self.is_speaking = False
        self.audio_level = 0.0
        self.is_muted = False
        self.is_speaker_muted = False
        self.microphone_denied = False
        self.error_message: str | None = None
        self.mode = ConversationMode.TALK
        self.agent_id: str | None = None
        self.messages: list[ChatMessage] = []

        self._session: LiveSession | None = None
        self._generation = 0
        # Bumped by start() and stop(); a start() that sees it change was superseded.
        self._attempt = 0
        self._listeners: list[SnapshotListener] = []

        self.reconciler.on_change = self._publish

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.ACTIVE

    @property
    def has_session(self) -> bool:
        return self._session is not None

    @property
    def started_at(self) -> datetime | None:
        return self._session.started_at if self._session else None

    def snapshot(self) -> SessionSnapshot:
        """Current observable state."""
        return SessionSnapshot(
            connection_state=self.connection_state,
            agent_state=self.agent_state,
            is_connected=self.is_connected,
            is_interactive=self.is_interactive,
            is_speaking=self.is_speaking,
            audio_level=self.audio_level,
            is_muted=self.is_muted,
            is_speaker_muted=self.is_speaker_muted,
            microphone_denied=self.microphone_denied,
            error_message=self.error_message,
            mode=self.mode,
            agent_id=self.agent_id,
            started_at=self.started_at,
            messages=list(self.messages),
            is_archiving=self.reconciler.is_archiving,
            last_archive_error=self.reconciler.last_archive_error,
        )

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def toggle(
        self,
        agent_id: str,
        dynamic_variables: dict[str, str] | None = None,
        *,
        mode: ConversationMode = ConversationMode.TALK,
        permission_gate: PermissionGate | None = None,
    ) -> SessionSnapshot:
        """Stop the session when connected, start one otherwise."""
        if self.connection_state in (ConnectionState.ACTIVE, ConnectionState.RECONNECTING):
            return await self.stop()
        return await self.start(
            agent_id, dynamic_variables, mode=mode, permission_gate=permission_gate
        )

    async def start(
        self,
        agent_id: str,
        dynamic_variables: dict[str, str] | None = None,
        *,
        mode: ConversationMode = ConversationMode.TALK,
        permission_gate: PermissionGate | None = None,
    ) -> SessionSnapshot:
        """Start a live session with ``agent_id``.

        Raises:
            PermissionDeniedError: microphone access was refused
            SessionConnectionError: the remote session could not be opened
        """
        if self.connection_state in (
            ConnectionState.CONNECTING,
            ConnectionState.ACTIVE,
            ConnectionState.RECONNECTING,
        ):
            logger.warning(
                f"Ignoring start for user {self.user_id}: session is {self.connection_state.value}"
            )
            return self.snapshot()

        if self._session is not None:
            # The remote side ended the previous session; finish it locally first.
            await self.stop()

        self._attempt += 1
        attempt = self._attempt
        self._transition(ConnectionState.CONNECTING)
        self.error_message = None
        self.microphone_denied = False
        self.is_muted = False
        self.mode = mode
        self.agent_id = agent_id
        self.reconciler.last_archive_error = None
        self._publish()

        gate = permission_gate or self.permission_gate
        granted = await gate.request_microphone()
        if self._superseded(attempt):
            return self.snapshot()
        if not granted:
            self.microphone_denied = True
            self.error_message = MICROPHONE_REQUIRED_MESSAGE
            self._transition(ConnectionState.IDLE)
            self._publish()
            track_event(TelemetryEvents.SESSION_START_FAILED, {"reason": "microphone_denied"})
            raise PermissionDeniedError(MICROPHONE_REQUIRED_MESSAGE)

        config = SessionConfig(
            dynamic_variables=await self._resolve_dynamic_variables(dynamic_variables),
            text_only=mode == ConversationMode.CHAT,
        )
        if self._superseded(attempt):
            return self.snapshot()
        for name, value in config.dynamic_variables.items():
            logger.debug(f"Passing dynamic variable to agent: {name} = {value}")

        try:
            handle = await self.remote.start(agent_id, config)
        except Exception as e:
            if self._superseded(attempt):
                logger.info(f"Ignoring failed start for user {self.user_id}: {e}")
                return self.snapshot()
            logger.error(f"Error starting conversation: {e}")
            self.error_message = str(e) or "Failed to start conversation"
            self._transition(ConnectionState.IDLE)
            self._publish()
            track_exception(e, {"agent_id": agent_id})
            track_event(TelemetryEvents.SESSION_START_FAILED, {"reason": "connection"})
            raise SessionConnectionError(f"Failed to start conversation: {e}") from e

        if self._superseded(attempt):
            await self._end_handle(handle)
            return self.snapshot()

        self._generation += 1
        session = LiveSession(
            handle=handle,
            started_at=datetime.now(UTC),
            generation=self._generation,
        )
        self._session = session
        self.reconciler.mark_session_started(session.started_at)
        self.is_interactive = True

        self.audio.start()
        self.audio.set_output_volume(0.0 if self.is_speaker_muted else 1.0)
        handle.attach_audio(self.audio)

        session.consumer = asyncio.create_task(
            self._consume_events(session), name=f"session-events-{self.user_id}"
        )

        logger.info(f"Started conversation with agent {agent_id} for user {self.user_id}")
        track_event(
            TelemetryEvents.SESSION_STARTED, {"agent_id": agent_id, "mode": mode.value}
        )
        self._publish()
        return self.snapshot()

    async def stop(self) -> SessionSnapshot:
        """End the live session and schedule archival of its recording.

        Always succeeds locally; a failed remote teardown is only logged.
        """
        self._attempt += 1
        session = self._session
        self._session = None

        if session is not None:
            if session.consumer is not None:
                session.consumer.cancel()
                await asyncio.gather(session.consumer, return_exceptions=True)
            self._note_conversation(session.handle)
            await self._end_handle(session.handle)

        self.audio.stop()
        self.connection_state = ConnectionState.IDLE
        self.agent_state = AgentState.LISTENING
        self.is_interactive = False
        self.is_speaking = False
        self.audio_level = 0.0
        self.messages.clear()

        if session is not None:
            duration = (datetime.now(UTC) - session.started_at).total_seconds()
            logger.info(f"Ended conversation for user {self.user_id} after {duration:.1f}s")
            track_event(TelemetryEvents.SESSION_STOPPED, {"duration_seconds": duration})

        self.reconciler.schedule()
        self._publish()
        return self.snapshot()

    async def send_message(self, text: str) -> None:
        """Send a text message to the agent.

        Raises:
            NoActiveSessionError: no session is active
            SendError: the remote session rejected the message
        """
        session = self._session
        if session is None or self.connection_state != ConnectionState.ACTIVE:
            self.error_message = "No active session"
            self._publish()
            raise NoActiveSessionError("No active session")

        try:
            await session.handle.send_message(text)
        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            self.error_message = "Failed to send message"
            self._publish()
            raise SendError(f"Failed to send message: {e}") from e

        track_event(TelemetryEvents.SESSION_MESSAGE_SENT, {"length": len(text)})

    async def toggle_mute(self) -> SessionSnapshot:
        """Toggle the microphone on the remote session. No-op without a session."""
        if self._session is None:
            return self.snapshot()
        try:
            await self._session.handle.toggle_mute()
        except Exception as e:
            logger.warning(f"Failed to toggle mute: {e}")
        return self.snapshot()

    def toggle_speaker_output(self) -> SessionSnapshot:
        """Toggle local playback volume. Never forwarded to the remote service."""
        self.is_speaker_muted = not self.is_speaker_muted
        self.audio.set_output_volume(0.0 if self.is_speaker_muted else 1.0)
        self._publish()
        return self.snapshot()

    def clear_error(self) -> SessionSnapshot:
        self.error_message = None
        self._publish()
        return self.snapshot()

    def _superseded(self, attempt: int) -> bool:
        if attempt == self._attempt:
            return False
        logger.info(f"Start for user {self.user_id} was superseded by stop()")
        return True

    async def _end_handle(self, handle: LiveSessionHandle) -> None:
        try:
            await handle.end()
        except Exception as e:
            logger.warning(f"Failed to end remote session cleanly: {e}")

    def _note_conversation(self, handle: LiveSessionHandle) -> None:
        if handle.conversation_id:
            self.reconciler.note_conversation(
                handle.conversation_id,
                agent_id=self.agent_id,
                agent_format=handle.agent_output_format,
            )

    async def _resolve_dynamic_variables(
        self, explicit: dict[str, str] | None
    ) -> dict[str, str]:
        variables: dict[str, str] = {}
        if self.profile_loader is not None:
            try:
                variables.update(await self.profile_loader(self.user_id))
            except Exception as e:
                logger.warning(f"Failed to load user profile for {self.user_id}: {e}")
        variables.update(explicit or {})
        return variables

    async def _consume_events(self, session: LiveSession) -> None:
        try:
            async for event in session.handle.events():
                if not self._apply(event, session.generation):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session event stream failed: {e}")
        # The stream ended without stop(): the remote side terminated the session.
        self._apply(SessionEvent.connection(ConnectionState.DISCONNECTED), session.generation)

    def _apply(self, event: SessionEvent, generation: int) -> bool:
        """Project one remote event onto controller state.

        Returns False when the event belongs to a session that is no longer current.
        """
        if self._session is None or self._session.generation != generation:
            logger.debug(f"Dropping {event.kind.value} event from stale session {generation}")
            return False

        if event.kind == SessionEventKind.CONNECTION_STATE and event.connection_state:
            state = event.connection_state
            if state == ConnectionState.IDLE:
                state = ConnectionState.DISCONNECTED
            if not self._transition(state):
                return True
            if state == ConnectionState.ACTIVE:
                self._note_conversation(self._session.handle)
            if state == ConnectionState.DISCONNECTED:
                self.audio.stop()
                self.is_speaking = False
                self.audio_level = 0.0

        elif event.kind == SessionEventKind.AGENT_STATE and event.agent_state:
            self.agent_state = event.agent_state
            if event.agent_state in AUDIO_LEVELS:
                self.is_speaking = event.agent_state != AgentState.LISTENING
                self.audio_level = AUDIO_LEVELS[event.agent_state]

        elif event.kind == SessionEventKind.MESSAGE and event.message:
            self.messages.append(event.message)

        elif event.kind == SessionEventKind.MUTE_STATE and event.muted is not None:
            self.is_muted = event.muted

        self._publish()
        return True

    def _transition(self, new_state: ConnectionState) -> bool:
        current = self.connection_state
        if new_state == current:
            return True
        if new_state not in TRANSITIONS[current]:
            logger.warning(
                f"Ignoring connection state change {current.value} -> {new_state.value}"
            )
            return False
        logger.debug(f"Connection state {current.value} -> {new_state.value}")
        self.connection_state = new_state
        return True

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Session listener failed: {e}")
