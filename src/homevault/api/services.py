# HomeVault - API Service Layer
#
# Holds the engine components the routes talk to. Routes call through this
# object instead of building their own, so tests can swap in temp-dir
# instances.

import logging
from typing import Optional

from ..accounts import AccountService, Session, SessionStore
from ..config import VaultSettings
from ..health import PasswordHealthAnalyzer
from ..storage import StorageBackend, create_backend
from ..vault import AttachmentVault, VaultItems

logger = logging.getLogger(__name__)


class VaultServices:
    """Engine components plus the single active session."""

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self.settings: Optional[VaultSettings] = None
        self.backend: Optional[StorageBackend] = None
        self.vault: Optional[AttachmentVault] = None
        self.accounts: Optional[AccountService] = None
        self.items: Optional[VaultItems] = None
        self.health: Optional[PasswordHealthAnalyzer] = None
        self.session: Optional[Session] = None

    @property
    def is_started(self) -> bool:
        return self.backend is not None

    async def start(self, settings: VaultSettings) -> None:
        """Open the configured backend and restore a persisted session."""
        backend = create_backend(settings)
        await backend.open()

        self.settings = settings
        self.backend = backend
        self.vault = AttachmentVault(settings.data_dir)
        self.accounts = AccountService(
            backend,
            self.vault,
            SessionStore(settings.session_path),
            kdf_iterations=settings.kdf_iterations,
        )
        self.items = VaultItems(backend, self.vault)
        self.health = PasswordHealthAnalyzer(backend)
        self.session = await self.accounts.restore_session()
        if self.session is not None:
            logger.info(f"Restored session for {self.session.email}")

    async def stop(self) -> None:
        if self.backend is not None:
            await self.backend.close()
        self._reset()


services = VaultServices()
