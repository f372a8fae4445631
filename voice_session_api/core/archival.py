"""Asynchronous archival of completed conversation audio.

After a live session ends, the provider produces the recording out-of-band.
The reconciler archives the conversation id the live session reported, or,
when none was reported, matches the ended session to a provider conversation
by time window. It then downloads the recording once it is available and
uploads it to the record store.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from ..config import Settings
from ..models import ArchiveStatus, ConversationSummary, DownloadedAudio
from ..telemetry import TelemetryEvents, track_event, track_exception, track_metric
from .audio_format import resolve_audio_format
from .errors import ArchivalError, AudioNotFoundError
from .services import ConversationSummaryProvider, RecordStore

logger = logging.getLogger(__name__)


def select_conversation_summary(
    summaries: list[ConversationSummary],
    started_at: datetime | None,
    now: datetime | None = None,
    lookback: timedelta = timedelta(minutes=5),
    lookahead: timedelta = timedelta(minutes=10),
) -> ConversationSummary | None:
    """Pick the conversation that most likely belongs to a session started at ``started_at``.

    Summaries are considered newest first by ``sort_date``. Without a start
    time the newest summary wins. Otherwise the first summary created inside
    ``[started_at - lookback, now + lookahead]`` wins; a summary without a
    creation time always matches.
    """
    if not summaries:
        return None

    ordered = sorted(summaries, key=lambda s: s.sort_date, reverse=True)

    if started_at is None:
        return ordered[0]

    now = now or datetime.now(UTC)
    window_start = started_at - lookback
    window_end = now + lookahead

    for summary in ordered:
        if summary.created_at is None:
            return summary
        if window_start <= summary.created_at <= window_end:
            return summary
    return None


async def download_with_retry(
    provider: ConversationSummaryProvider,
    conversation_id: str,
    attempts: int = 3,
    delay_seconds: float = 3.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DownloadedAudio:
    """Download conversation audio, waiting while the provider is still processing it.

    Only ``AudioNotFoundError`` is retried. Any other error, or not-found on
    the last attempt, propagates.
    """
    attempt = 1
    while True:
        try:
            return await provider.download_audio(conversation_id)
        except AudioNotFoundError:
            if attempt >= attempts:
                raise
            logger.info(
                f"Audio for {conversation_id} not ready (attempt {attempt}/{attempts}), "
                f"retrying in {delay_seconds}s"
            )
            track_event(
                TelemetryEvents.AUDIO_DOWNLOAD_RETRIED,
                {"conversation_id": conversation_id, "attempt": attempt},
            )
        await sleep(delay_seconds)
        attempt += 1


class ArchiveLedger:
    """Process-wide record of archived and in-flight conversation ids.

    Shared by every reconciler in the process. Callers hold ``lock`` while
    reading or changing the sets so selection and claiming happen atomically.
    ``owners`` maps conversation ids seen on a live session to the user who
    held that session; the provider lists conversations account-wide.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.archived: set[str] = set()
        self.in_flight: set[str] = set()
        self.owners: dict[str, str] = {}

    def is_claimed(self, conversation_id: str, user_id: str | None = None) -> bool:
        """True when the conversation is archived, being archived, or owned by another user."""
        if conversation_id in self.archived or conversation_id in self.in_flight:
            return True
        owner = self.owners.get(conversation_id)
        return owner is not None and owner != user_id


class ArchivalReconciler:
    """Archives the recording of a user's most recently ended session.

    Runs are started with ``schedule()`` as detached tasks. Their outcome is
    observable only through ``status()`` and the ``on_change`` callback.
    """

    def __init__(
        self,
        user_id: str,
        summary_provider: ConversationSummaryProvider,
        record_store: RecordStore,
        ledger: ArchiveLedger | None = None,
        *,
        lookback_seconds: float = 300.0,
        lookahead_seconds: float = 600.0,
        download_attempts: int = 3,
        retry_delay_seconds: float = 3.0,
        agent_format: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ):
        self.user_id = user_id
        self.summary_provider = summary_provider
        self.record_store = record_store
        self.ledger = ledger or ArchiveLedger()
        self.lookback = timedelta(seconds=lookback_seconds)
        self.lookahead = timedelta(seconds=lookahead_seconds)
        self.download_attempts = download_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.agent_format = agent_format
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(UTC))

        self.last_started_at: datetime | None = None
        self.pending_conversation_id: str | None = None
        self.pending_agent_id: str | None = None
        self.last_archive_error: str | None = None
        self.on_change: Callable[[], None] | None = None
        self._running = 0
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        user_id: str,
        summary_provider: ConversationSummaryProvider,
        record_store: RecordStore,
        ledger: ArchiveLedger | None = None,
    ) -> "ArchivalReconciler":
        return cls(
            user_id,
            summary_provider,
            record_store,
            ledger,
            lookback_seconds=settings.archival_lookback_seconds,
            lookahead_seconds=settings.archival_lookahead_seconds,
            download_attempts=settings.audio_download_attempts,
            retry_delay_seconds=settings.audio_download_retry_delay_seconds,
        )

    @property
    def is_archiving(self) -> bool:
        return self._running > 0

    def status(self) -> ArchiveStatus:
        return ArchiveStatus(
            is_archiving=self.is_archiving,
            last_archive_error=self.last_archive_error,
            last_started_at=self.last_started_at,
            archived_conversation_ids=sorted(self.ledger.archived),
        )

    def mark_session_started(self, started_at: datetime) -> None:
        """Remember when the current live session started, for matching after it ends."""
        self.last_started_at = started_at
        self.pending_conversation_id = None
        self.pending_agent_id = None
        self.last_archive_error = None

    def note_conversation(
        self,
        conversation_id: str,
        agent_id: str | None = None,
        agent_format: str | None = None,
    ) -> None:
        """Record the provider conversation id reported by the live session.

        The next run archives this conversation directly instead of matching
        by time window, and other users' reconcilers leave it alone.
        """
        self.ledger.owners[conversation_id] = self.user_id
        self.pending_conversation_id = conversation_id
        self.pending_agent_id = agent_id
        if agent_format:
            self.agent_format = agent_format

    def schedule(self) -> asyncio.Task:
        """Start one archival run in the background and return without waiting for it."""
        task = asyncio.create_task(
            self.archive_most_recent_conversation(
                self.last_started_at,
                conversation_id=self.pending_conversation_id,
                agent_id=self.pending_agent_id,
            ),
            name=f"archive-{self.user_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for scheduled runs; cancel whatever is still running after ``timeout``."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            logger.warning(f"Cancelling unfinished archival run for user {self.user_id}")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def archive_most_recent_conversation(
        self,
        started_at: datetime | None,
        conversation_id: str | None = None,
        agent_id: str | None = None,
    ) -> str | None:
        """Run the archival pipeline once.

        When the live session reported its ``conversation_id`` that
        conversation is archived directly; otherwise the provider's listing is
        matched against ``started_at``.

        Returns the archived conversation id, or None when nothing was archived.
        Never raises; failures are kept in ``last_archive_error``.
        """
        self._running += 1
        self.last_archive_error = None
        self._notify()
        track_event(TelemetryEvents.ARCHIVE_STARTED, {"user_id": self.user_id})

        try:
            summaries: list[ConversationSummary] = []
            if conversation_id is None:
                summaries = await self.summary_provider.list_summaries()
                if not summaries:
                    logger.info("No conversations available to archive")
                    return None

            async with self.ledger.lock:
                if conversation_id is not None:
                    summary = ConversationSummary(
                        id=conversation_id, agent_id=agent_id, sort_date=self._clock()
                    )
                else:
                    summary = select_conversation_summary(
                        summaries,
                        started_at,
                        now=self._clock(),
                        lookback=self.lookback,
                        lookahead=self.lookahead,
                    )
                if summary is None:
                    logger.warning("No matching conversation found to archive")
                    track_event(TelemetryEvents.ARCHIVE_SKIPPED, {"reason": "no_match"})
                    return None
                if self.ledger.is_claimed(summary.id, self.user_id):
                    logger.info(f"Conversation {summary.id} already archived or claimed")
                    track_event(
                        TelemetryEvents.ARCHIVE_SKIPPED,
                        {"reason": "already_claimed", "conversation_id": summary.id},
                    )
                    return None
                self.ledger.in_flight.add(summary.id)

            archived = False
            try:
                archived = await self._archive_conversation(summary)
            finally:
                async with self.ledger.lock:
                    self.ledger.in_flight.discard(summary.id)
                    if archived:
                        self.ledger.archived.add(summary.id)
                        self.ledger.owners.pop(summary.id, None)
                        if self.last_started_at == started_at:
                            self.last_started_at = None
                        if self.pending_conversation_id == summary.id:
                            self.pending_conversation_id = None

            if not archived:
                return None

            track_event(TelemetryEvents.ARCHIVE_COMPLETED, {"conversation_id": summary.id})
            return summary.id

        except Exception as e:
            self.last_archive_error = str(e)
            logger.warning(f"Failed to archive conversation audio: {e}", exc_info=True)
            track_exception(e, {"user_id": self.user_id}, level="WARNING")
            track_event(TelemetryEvents.ARCHIVE_FAILED, {"error_message": str(e)})
            return None

        finally:
            self._running -= 1
            self._notify()

    async def _archive_conversation(self, summary: ConversationSummary) -> bool:
        """Archive one claimed conversation. Returns False if it belongs to another user."""
        conversation_id = summary.id

        try:
            record = await self.record_store.find_record(conversation_id)
            if record is None:
                record = await self.record_store.insert_record(
                    session_id=uuid4(),
                    user_id=self.user_id,
                    conversation_id=conversation_id,
                    agent_id=summary.agent_id,
                )
        except Exception as e:
            raise ArchivalError(f"Could not resolve session record: {e}") from e

        if record.user_id != self.user_id:
            logger.warning(
                f"Conversation {conversation_id} belongs to another user; not archiving it "
                f"for {self.user_id}"
            )
            self.ledger.owners.setdefault(conversation_id, record.user_id)
            track_event(
                TelemetryEvents.ARCHIVE_SKIPPED,
                {"reason": "owned_by_other_user", "conversation_id": conversation_id},
            )
            return False

        try:
            audio = await download_with_retry(
                self.summary_provider,
                conversation_id,
                attempts=self.download_attempts,
                delay_seconds=self.retry_delay_seconds,
                sleep=self._sleep,
            )
        except Exception as e:
            raise ArchivalError(f"Could not download conversation audio: {e}") from e

        extension, mime_type = resolve_audio_format(audio.mime_type, self.agent_format)

        try:
            path = await self.record_store.upload_audio(
                data=audio.data,
                user_id=self.user_id,
                session_id=record.id,
                extension=extension,
                mime_type=mime_type,
            )
        except Exception as e:
            raise ArchivalError(f"Could not upload conversation audio: {e}") from e

        track_metric("archived_audio_bytes", float(len(audio.data)), {"extension": extension})
        logger.info(f"Archived conversation {conversation_id} as {path}")
        return True

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()
