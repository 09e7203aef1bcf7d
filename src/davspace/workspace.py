"""DavWorkspace - wires Settings into store, overlay and tree engine."""

from __future__ import annotations

import structlog

from davspace.clients.store import ProtocolFactory, RemoteStoreClient
from davspace.config import Settings, get_settings
from davspace.errors import DavspaceError, ValidationError
from davspace.managers.clipboard import Clipboard
from davspace.managers.overlay import DocumentOverlay
from davspace.managers.tree import TreeTransactionEngine
from davspace.utils.paths import normalize, relative_to

logger = structlog.get_logger()


class DavWorkspace:
    """One remote workspace: a session plus its documents and clipboard."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        protocol_factory: ProtocolFactory | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = RemoteStoreClient(
            protocol_factory=protocol_factory,
            timeouts=self.settings.timeouts,
        )
        self.overlay = DocumentOverlay(
            self.store,
            cache_dir=self.settings.cache.directory,
            sync_on_save=self.settings.sync_on_save,
        )
        self.clipboard = Clipboard(expiry_seconds=self.settings.clipboard_expiry_seconds)
        self.engine = TreeTransactionEngine(
            self.store,
            self.overlay,
            clipboard=self.clipboard,
            local_sync_path=self.settings.resolved_local_sync_path(),
        )
        self._log = logger.bind(component="workspace")

    async def __aenter__(self) -> "DavWorkspace":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def connect(self) -> bool:
        """Connect with the configured credentials."""
        missing = self.settings.missing_fields()
        if missing:
            raise ValidationError(
                f"Missing configuration: {', '.join(missing)}", missing=missing
            )
        return await self.store.connect(
            self.settings.effective_server_url(),
            self.settings.username,
            self.settings.password.get_secret_value(),
            self.settings.base_path,
        )

    async def auto_connect(self) -> bool:
        """Connect at startup when auto-sync is on and the config is complete."""
        if not self.settings.auto_sync:
            return False
        missing = self.settings.missing_fields()
        if missing:
            self._log.info("workspace.auto_connect.skipped", missing=missing)
            return False
        try:
            return await self.connect()
        except DavspaceError as e:
            self._log.warning("workspace.auto_connect.failed", code=e.code, error=e.message)
            return False

    async def aclose(self) -> None:
        """Close every document (cache only, no remote push) and disconnect."""
        await self.overlay.close_all()
        self.clipboard.clear()
        await self.store.disconnect()

    def absolute_path(self, relative: str) -> str:
        return normalize(relative, self.store.base_path)

    def relative_path(self, absolute: str) -> str:
        return relative_to(
            absolute,
            self.store.base_path,
            on_mismatch=lambda a, b: self._log.warning("paths.base_mismatch", path=a, base_path=b),
        )
