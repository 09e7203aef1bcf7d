"""Clipboard - the single pending cut/copy.

States: empty, holding(entry). A new cut/copy replaces whatever is held.
Entries older than the expiry window read as empty.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from davspace.errors import ClipboardEmptyError, ClipboardExpiredError
from davspace.models.clipboard import ClipboardEntry, ClipboardOperation
from davspace.models.entry import RemoteEntry

logger = structlog.get_logger()

DEFAULT_EXPIRY_SECONDS = 600.0


class Clipboard:
    """Clipboard state machine with an injectable clock."""

    def __init__(
        self,
        *,
        expiry_seconds: float = DEFAULT_EXPIRY_SECONDS,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self._expiry = expiry_seconds
        self._now = now
        self._entry: ClipboardEntry | None = None
        self._log = logger.bind(manager="clipboard")

    @property
    def expiry_seconds(self) -> float:
        return self._expiry

    def hold(self, item: RemoteEntry, operation: ClipboardOperation) -> ClipboardEntry:
        self._entry = ClipboardEntry(
            item=item,
            operation=operation,
            source_path=item.path,
            taken_at=self._now(),
        )
        self._log.info("clipboard.hold", operation=operation.value, path=item.path)
        return self._entry

    def clear(self) -> None:
        if self._entry is not None:
            self._log.debug("clipboard.clear", path=self._entry.source_path)
        self._entry = None

    def is_expired(self, entry: ClipboardEntry) -> bool:
        return self._now() - entry.taken_at > self._expiry

    def peek(self) -> ClipboardEntry | None:
        """Held entry, or None. An expired entry is cleared and reads as None."""
        entry = self._entry
        if entry is not None and self.is_expired(entry):
            self._log.info("clipboard.expired", path=entry.source_path)
            self._entry = None
            return None
        return entry

    def take(self) -> ClipboardEntry:
        """Held entry for a paste; raises when empty or expired (clearing it)."""
        entry = self._entry
        if entry is None:
            raise ClipboardEmptyError("Clipboard is empty")
        if self.is_expired(entry):
            self._entry = None
            self._log.info("clipboard.expired", path=entry.source_path)
            raise ClipboardExpiredError(
                "Clipboard entry has expired",
                path=entry.source_path,
                age=self._now() - entry.taken_at,
            )
        return entry

    def status(self) -> str | None:
        """``"Cut: name"`` / ``"Copy: name"``, or None when empty."""
        entry = self.peek()
        if entry is None:
            return None
        label = "Cut" if entry.operation == ClipboardOperation.CUT else "Copy"
        return f"{label}: {entry.item.name}"
