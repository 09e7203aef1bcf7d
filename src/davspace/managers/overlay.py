"""DocumentOverlay - remote files open for editing.

Per document: absent -> open(clean) -> open(dirty) -> open(clean) ... -> closed.

The overlay is the only owner of VirtualDocument content. It mirrors every
tracked document to a disk cache keyed by a hash of its handle; the cache is
a crash-resilience copy, never the source of truth.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

import structlog

from davspace.errors import ConflictError, DavspaceError, NotFoundError
from davspace.models.document import (
    DocumentEvent,
    DocumentEventType,
    SaveSummary,
    VirtualDocument,
)
from davspace.utils.paths import ROOT, basename, clean, is_within

if TYPE_CHECKING:
    from davspace.clients.store import RemoteStoreClient

logger = structlog.get_logger()

HANDLE_SCHEME = "davspace"

Listener = Callable[[DocumentEvent], None]


def document_handle(remote_path: str, display_name: str) -> str:
    """Deterministic handle for ``(remote_path, display_name)``."""
    return (
        f"{HANDLE_SCHEME}://{quote(clean(remote_path), safe='')}"
        f"/{quote(display_name, safe='')}"
    )


def parse_handle(handle: str) -> tuple[str, str]:
    """Inverse of document_handle."""
    prefix = f"{HANDLE_SCHEME}://"
    if not handle.startswith(prefix):
        raise ValueError(f"Not a {HANDLE_SCHEME} handle: {handle}")
    encoded_path, _, encoded_name = handle[len(prefix):].partition("/")
    return unquote(encoded_path), unquote(encoded_name)


def _as_bytes(content: str | bytes) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else bytes(content)


class DocumentOverlay:
    """Tracks open documents and reconciles them with the remote store."""

    def __init__(
        self,
        store: "RemoteStoreClient",
        *,
        cache_dir: Path | str,
        sync_on_save: bool = True,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cache_dir = Path(cache_dir)
        self._sync_on_save = sync_on_save
        self._now = now
        self._documents: dict[str, VirtualDocument] = {}
        self._listeners: list[Listener] = []
        self._log = logger.bind(manager="overlay")

    # Cache

    def cache_path(self, handle: str) -> Path:
        digest = hashlib.sha256(handle.encode("utf-8")).hexdigest()[:16]
        return self._cache_dir / f"cache_{digest}.tmp"

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def _persist(self, doc: VirtualDocument) -> None:
        """Mirror ``doc`` to the disk cache; failures are logged only."""
        path = self.cache_path(doc.handle)
        try:
            await asyncio.to_thread(self._write_file, path, doc.content)
        except OSError as e:
            self._log.warning("overlay.cache.write_failed", handle=doc.handle, error=str(e))

    async def _drop_cache(self, handle: str) -> None:
        path = self.cache_path(handle)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            self._log.warning("overlay.cache.remove_failed", handle=handle, error=str(e))

    # Observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(
        self,
        type: DocumentEventType,
        doc: VirtualDocument,
        *,
        previous_handle: str | None = None,
    ) -> None:
        event = DocumentEvent(
            type=type,
            handle=doc.handle,
            remote_path=doc.remote_path,
            previous_handle=previous_handle,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self._log.exception("overlay.listener_failed", event_type=type.value)

    # Queries

    def get(self, handle: str) -> VirtualDocument | None:
        return self._documents.get(handle)

    def get_open_documents(self) -> list[VirtualDocument]:
        return list(self._documents.values())

    def is_open(self, handle: str) -> bool:
        return handle in self._documents

    def _require(self, handle: str) -> VirtualDocument:
        doc = self._documents.get(handle)
        if doc is None:
            raise NotFoundError(f"Document is not open: {handle}", handle=handle)
        return doc

    async def read(self, handle: str) -> bytes:
        """Current content; the disk cache answers for closed documents."""
        doc = self._documents.get(handle)
        if doc is not None:
            return doc.content
        path = self.cache_path(handle)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise NotFoundError(f"No content for {handle}", handle=handle) from e

    # Lifecycle

    async def open(self, remote_path: str, display_name: str | None = None) -> str:
        """Open a remote file and return its handle.

        Already-open documents are returned as-is without touching the remote
        store. A missing remote file opens as an empty new document.
        """
        path = clean(remote_path)
        name = display_name or basename(path)
        handle = document_handle(path, name)
        if handle in self._documents:
            return handle

        try:
            content = _as_bytes(await self._store.read(path, "binary"))
        except NotFoundError:
            self._log.info("overlay.open.new_file", path=path)
            content = b""

        # Opened meanwhile by a concurrent caller.
        if handle in self._documents:
            return handle

        now = self._now()
        doc = VirtualDocument(
            handle=handle,
            remote_path=path,
            display_name=name,
            content=content,
            created_at=now,
            modified_at=now,
        )
        self._documents[handle] = doc
        await self._persist(doc)
        self._log.info("overlay.open", path=path, size=doc.size)
        return handle

    async def write(self, handle: str, content: str | bytes) -> None:
        """Replace the in-memory content and mark the document dirty."""
        doc = self._require(handle)
        doc.content = _as_bytes(content)
        doc.dirty = True
        doc.modified_at = self._now()
        await self._persist(doc)
        self._emit(DocumentEventType.CHANGED, doc)

    async def save(self, handle: str) -> None:
        """Push content to the remote file. On failure the document stays dirty."""
        doc = self._require(handle)
        content = doc.content
        try:
            await self._store.write(doc.remote_path, content, overwrite=True)
        except DavspaceError as e:
            self._log.warning("overlay.save.failed", path=doc.remote_path, code=e.code)
            raise
        # Edits made while the write was in flight keep the document dirty.
        if doc.content is content:
            doc.dirty = False
        doc.modified_at = self._now()
        self._log.info("overlay.save", path=doc.remote_path, size=len(content))
        self._emit(DocumentEventType.SAVED, doc)

    async def commit(self, handle: str, content: str | bytes) -> None:
        """Editor save: take ``content``, then push it when sync-on-save is on."""
        await self.write(handle, content)
        if self._sync_on_save:
            await self.save(handle)

    async def save_all(self) -> SaveSummary:
        """Save every dirty document independently."""
        summary = SaveSummary()
        for doc in list(self._documents.values()):
            if not doc.dirty:
                continue
            try:
                await self.save(doc.handle)
            except DavspaceError:
                summary.fail += 1
                summary.failed_handles.append(doc.handle)
            else:
                summary.success += 1
        self._log.info("overlay.save_all", success=summary.success, fail=summary.fail)
        return summary

    async def close(self, handle: str) -> None:
        """Stop tracking ``handle``. Unsaved edits stay in the disk cache only."""
        doc = self._documents.pop(handle, None)
        if doc is None:
            return
        await self._persist(doc)
        self._emit(DocumentEventType.CLOSED, doc)

    async def close_all(self) -> None:
        """Flush every document to the disk cache and clear the tracked set."""
        documents = list(self._documents.values())
        self._documents.clear()
        for doc in documents:
            await self._persist(doc)
            self._emit(DocumentEventType.CLOSED, doc)
        self._log.info("overlay.close_all", count=len(documents))

    # Tree hooks

    def documents_under(self, path: str) -> list[VirtualDocument]:
        return [doc for doc in self._documents.values() if is_within(doc.remote_path, path)]

    def has_dirty_under(self, path: str) -> bool:
        return any(doc.dirty for doc in self.documents_under(path))

    async def relocate(self, old_path: str, new_path: str) -> dict[str, str]:
        """Re-key documents under ``old_path`` after it moved to ``new_path``.

        A clean document already tracked under one of the new handles is
        replaced. A dirty one raises ConflictError before anything is re-keyed.
        Returns a mapping of previous handle to new handle.
        """
        old = clean(old_path)
        new = clean(new_path)
        sources = self.documents_under(old)
        moving = {doc.handle for doc in sources}
        plan: list[tuple[VirtualDocument, VirtualDocument]] = []
        for doc in sources:
            suffix = doc.remote_path[len(old):] if old != ROOT else doc.remote_path
            remote_path = clean(new + suffix)
            name = doc.display_name
            if doc.remote_path == old and name == basename(old):
                name = basename(new)
            relocated = dataclasses.replace(
                doc,
                handle=document_handle(remote_path, name),
                remote_path=remote_path,
                display_name=name,
            )
            occupant = self._documents.get(relocated.handle)
            if occupant is not None and occupant.handle not in moving and occupant.dirty:
                raise ConflictError(
                    f'"{occupant.display_name}" is open with unsaved changes',
                    path=occupant.remote_path,
                    handle=occupant.handle,
                )
            plan.append((doc, relocated))

        moved: dict[str, str] = {}
        for doc, relocated in plan:
            occupant = self._documents.get(relocated.handle)
            if occupant is not None and occupant.handle not in moving:
                del self._documents[occupant.handle]
                self._log.info("overlay.relocate.replaced", handle=occupant.handle)
                self._emit(DocumentEventType.CLOSED, occupant)
            del self._documents[doc.handle]
            self._documents[relocated.handle] = relocated
            await self._drop_cache(doc.handle)
            await self._persist(relocated)
            moved[doc.handle] = relocated.handle
            self._emit(DocumentEventType.MOVED, relocated, previous_handle=doc.handle)
        if moved:
            self._log.info("overlay.relocate", old_path=old, new_path=new, count=len(moved))
        return moved

    async def discard_under(self, path: str) -> int:
        """Drop documents whose remote file was deleted."""
        documents = self.documents_under(path)
        for doc in documents:
            del self._documents[doc.handle]
            await self._drop_cache(doc.handle)
            self._emit(DocumentEventType.DELETED, doc)
        if documents:
            self._log.info("overlay.discard", path=clean(path), count=len(documents))
        return len(documents)
