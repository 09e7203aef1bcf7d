"""Clipboard model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from davspace.models.entry import RemoteEntry


class ClipboardOperation(str, Enum):
    COPY = "copy"
    CUT = "cut"


@dataclass(frozen=True, slots=True)
class ClipboardEntry:
    """The single pending cut/copy waiting for a paste target."""

    item: RemoteEntry
    operation: ClipboardOperation
    source_path: str
    taken_at: float  # clock seconds, see Clipboard(now=...)
