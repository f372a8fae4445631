"""ElevenLabs Conversational AI REST client."""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from ..config import Settings
from ..core.errors import AudioNotFoundError, ProviderError
from ..models import ConversationSummary, DownloadedAudio

logger = logging.getLogger(__name__)

# Sort key for conversations the provider reports without a start time
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_conversation_summary(item: dict[str, Any]) -> ConversationSummary:
    """Build a ConversationSummary from one entry of the conversations listing."""
    started = item.get("start_time_unix_secs")
    created_at = datetime.fromtimestamp(started, tz=UTC) if started is not None else None
    return ConversationSummary(
        id=item["conversation_id"],
        agent_id=item.get("agent_id"),
        created_at=created_at,
        sort_date=created_at or EPOCH,
    )


class ElevenLabsClient:
    """Lists completed conversations, downloads their audio and issues signed URLs."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 30.0,
        page_size: int = 30,
        max_pages: int = 1,
        agent_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.page_size = page_size
        self.max_pages = max_pages
        self.agent_id = agent_id
        headers = {"xi-api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElevenLabsClient":
        return cls(
            api_key=settings.elevenlabs_api_key,
            base_url=settings.elevenlabs_api_base_url,
            timeout=settings.elevenlabs_request_timeout_seconds,
            page_size=settings.elevenlabs_summary_page_size,
            max_pages=settings.elevenlabs_summary_max_pages,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, **params: Any) -> httpx.Response:
        query = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._client.get(path, params=query)
        except httpx.HTTPError as e:
            raise ProviderError(f"ElevenLabs request failed: {e}") from e
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        if response.is_success:
            return
        detail = response.text[:200]
        raise ProviderError(
            f"ElevenLabs {what} failed with status {response.status_code}: {detail}",
            status_code=response.status_code,
        )

    async def list_summaries(self) -> list[ConversationSummary]:
        """List recently completed conversations, newest first as reported by the provider."""
        summaries: list[ConversationSummary] = []
        cursor: str | None = None

        for _ in range(self.max_pages):
            response = await self._get(
                "/v1/convai/conversations",
                agent_id=self.agent_id,
                page_size=self.page_size,
                cursor=cursor,
            )
            self._raise_for_status(response, "conversation listing")
            payload = response.json()

            for item in payload.get("conversations", []):
                try:
                    summaries.append(parse_conversation_summary(item))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed conversation summary: {e}")

            cursor = payload.get("next_cursor")
            if not payload.get("has_more") or not cursor:
                break

        logger.debug(f"Fetched {len(summaries)} conversation summaries")
        return summaries

    async def download_audio(self, conversation_id: str) -> DownloadedAudio:
        """Download the recording of a completed conversation.

        Raises:
            AudioNotFoundError: the recording is not available yet (404)
            ProviderError: any other failure
        """
        response = await self._get(f"/v1/convai/conversations/{conversation_id}/audio")
        if response.status_code == 404:
            raise AudioNotFoundError(conversation_id)
        self._raise_for_status(response, "audio download")

        return DownloadedAudio(
            data=response.content,
            mime_type=response.headers.get("content-type") or None,
        )

    async def get_signed_url(self, agent_id: str) -> str:
        """Get a short-lived websocket URL for a private agent."""
        response = await self._get("/v1/convai/conversation/get-signed-url", agent_id=agent_id)
        self._raise_for_status(response, "signed URL request")
        signed_url = response.json().get("signed_url")
        if not signed_url:
            raise ProviderError("ElevenLabs signed URL response had no signed_url")
        return signed_url


# Global client instance
_client: ElevenLabsClient | None = None


def set_elevenlabs_client(client: ElevenLabsClient | None) -> None:
    """Install the process-wide REST client (done once at startup, or by tests)."""
    global _client
    _client = client


async def get_elevenlabs_client() -> ElevenLabsClient:
    """Get the REST client (dependency injection)."""
    if _client is None:
        raise RuntimeError("ElevenLabs client not initialized")
    return _client
