"""Virtual document model.

A VirtualDocument is the in-memory buffer of one remote file that is open
for editing. Only the DocumentOverlay mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DocumentEventType(str, Enum):
    """Change notifications published by the overlay."""

    CHANGED = "changed"  # local edit
    SAVED = "saved"  # pushed to remote, now clean
    CLOSED = "closed"
    MOVED = "moved"  # remote path changed by a tree transaction
    DELETED = "deleted"  # remote file removed by a tree transaction


@dataclass
class VirtualDocument:
    """An open remote file."""

    handle: str
    remote_path: str
    display_name: str
    content: bytes = b""
    dirty: bool = False
    created_at: float = 0.0
    modified_at: float = 0.0

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class DocumentEvent:
    """One notification delivered to overlay subscribers."""

    type: DocumentEventType
    handle: str
    remote_path: str
    previous_handle: str | None = None


@dataclass
class SaveSummary:
    """Aggregate result of saving every dirty document."""

    success: int = 0
    fail: int = 0
    failed_handles: list[str] = field(default_factory=list)
