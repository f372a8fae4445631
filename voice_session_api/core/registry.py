"""Per-user session controllers sharing one archival ledger."""

import asyncio
import logging

from ..config import Settings, settings
from .archival import ArchivalReconciler, ArchiveLedger
from .services import ConversationSummaryProvider, RecordStore, RemoteSessionService
from .session_controller import ProfileLoader, SessionController

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Holds one SessionController per user for the lifetime of the process."""

    def __init__(
        self,
        remote: RemoteSessionService,
        summary_provider: ConversationSummaryProvider,
        record_store: RecordStore,
        config: Settings | None = None,
        profile_loader: ProfileLoader | None = None,
        ledger: ArchiveLedger | None = None,
    ):
        self.remote = remote
        self.summary_provider = summary_provider
        self.record_store = record_store
        self.config = config or settings
        self.profile_loader = profile_loader
        self.ledger = ledger or ArchiveLedger()
        self._controllers: dict[str, SessionController] = {}

    def get(self, user_id: str) -> SessionController:
        """Get the user's controller, creating it on first use."""
        controller = self._controllers.get(user_id)
        if controller is None:
            reconciler = ArchivalReconciler.from_settings(
                self.config,
                user_id,
                self.summary_provider,
                self.record_store,
                self.ledger,
            )
            controller = SessionController(
                user_id,
                self.remote,
                reconciler,
                profile_loader=self.profile_loader,
            )
            self._controllers[user_id] = controller
            logger.info(f"Created session controller for user: {user_id}")
        return controller

    @property
    def active_session_count(self) -> int:
        return sum(1 for c in self._controllers.values() if c.has_session)

    async def shutdown(self) -> None:
        """End live sessions, then give archival runs a grace period before cancelling them."""
        for controller in self._controllers.values():
            if controller.has_session:
                await controller.stop()

        await asyncio.gather(
            *(
                c.reconciler.drain(timeout=self.config.archival_shutdown_grace_seconds)
                for c in self._controllers.values()
            )
        )
        logger.info("Session registry shut down")


# Global registry instance
_registry: SessionRegistry | None = None


def set_session_registry(registry: SessionRegistry | None) -> None:
    """Install the process-wide registry (done once at startup, or by tests)."""
    global _registry
    _registry = registry


async def get_session_registry() -> SessionRegistry:
    """Get the registry (dependency injection)."""
    if _registry is None:
        raise RuntimeError("Session registry not initialized")
    return _registry
