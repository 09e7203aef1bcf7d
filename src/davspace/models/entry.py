"""Remote entry model.

A RemoteEntry is a snapshot produced by a listing or stat call. It is never
mutated: after a tree mutation callers list again and get fresh entries.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class EntryKind(str, Enum):
    """Kind of a remote entry."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True, slots=True)
class RemoteEntry:
    """A file or directory on the remote store."""

    path: str  # absolute, normalized
    kind: EntryKind
    size: int = 0
    modified_at: datetime = datetime.fromtimestamp(0, tz=timezone.utc)

    @property
    def name(self) -> str:
        return posixpath.basename(self.path) or "/"

    @property
    def is_dir(self) -> bool:
        return self.kind == EntryKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind == EntryKind.FILE
