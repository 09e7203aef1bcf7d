"""Protocol collaborator interface.

StoreProtocol is the raw wire-level surface the RemoteStoreClient builds on.
Implementations do no classification, no retries and no timeouts: they
report failures as ProtocolError with an HTTP-like status (or an errno-style
code for transport failures) and let the client decide.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal

ContentFormat = Literal["text", "binary"]

# Raw entry shape returned by list_directory/stat:
#   {"filename": "/abs/path", "basename": "path", "type": "file"|"directory",
#    "size": int, "lastmod": str}
RawEntry = dict[str, Any]


class ProtocolError(Exception):
    """Failure reported by a StoreProtocol implementation."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        self.status = status
        self.code = code
        super().__init__(message)


class StoreProtocol(ABC):
    """Abstract remote store protocol."""

    @abstractmethod
    async def list_directory(self, path: str) -> Any:
        """List a directory (one level).

        May return a list of raw entries or an object wrapping one
        (``{"data": [...]}``); the client normalizes either shape.
        """
        ...

    @abstractmethod
    async def stat(self, path: str) -> RawEntry:
        """Describe a single path."""
        ...

    @abstractmethod
    async def get_content(self, path: str, *, format: ContentFormat = "text") -> str | bytes:
        """Fetch file content as text (UTF-8) or raw bytes."""
        ...

    @abstractmethod
    async def put_content(self, path: str, data: str | bytes, *, overwrite: bool = True) -> None:
        """Store file content. With ``overwrite=False`` an existing file is a conflict."""
        ...

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete a single file."""
        ...

    @abstractmethod
    async def delete_directory_shallow(self, path: str) -> None:
        """Delete an empty directory."""
        ...

    @abstractmethod
    async def create_directory(self, path: str, *, recursive: bool = False) -> None:
        """Create a directory, optionally with missing ancestors."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
