"""TreeTransactionEngine - create, delete, rename, cut/copy/paste, upload, download.

Every operation validates its target before the first remote mutation and
keeps the DocumentOverlay in step with paths it moves or deletes. Nothing is
locked: callers serialize user-triggered transactions themselves.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Union

import structlog

from davspace.concurrency import CancelToken
from davspace.errors import (
    ConflictError,
    DavspaceError,
    NotConnectedError,
    NotFoundError,
    SelfReferenceRejectedError,
    SourceMissingError,
    ValidationError,
)
from davspace.managers.clipboard import Clipboard
from davspace.managers.transfer import copy_tree, download_entry, move_tree, upload_files
from davspace.models.clipboard import ClipboardEntry, ClipboardOperation
from davspace.models.entry import RemoteEntry
from davspace.models.results import BatchSummary, TransactionResult
from davspace.utils.paths import ROOT, clean, is_within, join, parent_of

if TYPE_CHECKING:
    from davspace.clients.store import RemoteStoreClient
    from davspace.managers.overlay import DocumentOverlay

logger = structlog.get_logger()

# Asked before destructive steps; True means go ahead.
Confirm = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class TargetPath:
    """Target given as a plain absolute remote path."""

    path: str


@dataclass(frozen=True, slots=True)
class TargetNode:
    """Target given as a tree node."""

    entry: RemoteEntry


class _Unspecified(Enum):
    UNSPECIFIED = "unspecified"


UNSPECIFIED = _Unspecified.UNSPECIFIED

Target = Union[TargetPath, TargetNode, _Unspecified]


def as_target(value: "Target | RemoteEntry | str | None") -> Target:
    """Wrap a loose caller argument into a Target."""
    if isinstance(value, (TargetPath, TargetNode, _Unspecified)):
        return value
    if isinstance(value, RemoteEntry):
        return TargetNode(value)
    if isinstance(value, str) and value.strip():
        return TargetPath(value)
    return UNSPECIFIED


def resolve_parent(target: Target, base_path: str) -> str:
    """Directory a create/upload/paste lands in.

    A directory node is its own parent, a file node yields its parent
    directory, anything else yields the base path. The remote root is
    replaced by the base path when the base path is deeper.
    """
    base = clean(base_path)
    if isinstance(target, TargetNode):
        entry = target.entry
        parent = clean(entry.path) if entry.is_dir else parent_of(entry.path)
    elif isinstance(target, TargetPath):
        parent = clean(target.path)
    else:
        parent = base
    if parent == ROOT and base != ROOT:
        parent = base
    return parent


def validate_name(name: str | None, *, kind: str = "Name") -> str:
    """Reject empty names, path separators and parent-directory references."""
    value = (name or "").strip()
    if not value:
        raise ValidationError(f"{kind} cannot be empty")
    if "/" in value or "\\" in value:
        raise ValidationError(f"{kind} cannot contain path separators", name=value)
    if ".." in value:
        raise ValidationError(f"{kind} cannot contain '..'", name=value)
    return value


class TreeTransactionEngine:
    """Directory-tree transactions over a RemoteStoreClient."""

    def __init__(
        self,
        store: "RemoteStoreClient",
        overlay: "DocumentOverlay",
        *,
        clipboard: Clipboard | None = None,
        local_sync_path: Path | str | None = None,
    ) -> None:
        self._store = store
        self._overlay = overlay
        self._clipboard = clipboard or Clipboard()
        self._local_sync_path = Path(local_sync_path) if local_sync_path else None
        self._log = logger.bind(manager="tree")

    @property
    def base_path(self) -> str:
        return self._store.base_path

    @property
    def clipboard(self) -> Clipboard:
        return self._clipboard

    def _require_connected(self) -> None:
        if not self._store.is_connected:
            raise NotConnectedError("Not connected to a remote store")

    async def _nearest_directory(self, path: str) -> str:
        """Walk up from ``path`` past entries that are files.

        A missing path is returned as-is; writes create missing parents.
        """
        current = clean(path)
        while current != ROOT:
            entry = await self._store.exists(current)
            if entry is None or entry.is_dir:
                return current
            self._log.debug("tree.parent_is_file", path=current)
            current = parent_of(current)
        return current

    async def _ensure_absent(self, path: str, name: str) -> None:
        if await self._store.exists(path) is not None:
            raise ConflictError(f'"{name}" already exists', path=path)

    def _refuse_unsaved(self, path: str, name: str) -> None:
        # Open drafts may exist for paths that are missing on the remote.
        if self._overlay.has_dirty_under(path):
            raise ConflictError(f'"{name}" has open documents with unsaved changes', path=path)

    # Create

    async def create_file(
        self,
        name: str,
        target: "Target | RemoteEntry | str | None" = UNSPECIFIED,
        *,
        content: str | bytes = b"",
    ) -> TransactionResult:
        self._require_connected()
        name = validate_name(name, kind="File name")
        parent = await self._nearest_directory(resolve_parent(as_target(target), self.base_path))
        path = join(parent, name)
        await self._ensure_absent(path, name)
        await self._store.write(path, content, overwrite=False)
        self._log.info("tree.create_file", path=path)
        return TransactionResult("create_file", f"Created file {name}", destination=path)

    async def create_folder(
        self,
        name: str,
        target: "Target | RemoteEntry | str | None" = UNSPECIFIED,
    ) -> TransactionResult:
        self._require_connected()
        name = validate_name(name, kind="Folder name")
        parent = await self._nearest_directory(resolve_parent(as_target(target), self.base_path))
        path = join(parent, name)
        # Raises PathKindMismatchError when an ancestor is a file.
        await self._store.ensure_directory(parent)
        await self._ensure_absent(path, name)
        await self._store.mkdir(path)
        self._log.info("tree.create_folder", path=path)
        return TransactionResult("create_folder", f"Created folder {name}", destination=path)

    # Delete / rename

    async def delete(self, item: RemoteEntry, *, confirm: Confirm) -> TransactionResult:
        """Delete a file or (recursively) a directory after confirmation."""
        self._require_connected()
        if not await confirm(f'Delete "{item.name}"? This cannot be undone.'):
            return TransactionResult(
                "delete", "Delete cancelled", source=item.path, completed=False
            )
        await self._store.delete(item)
        await self._overlay.discard_under(item.path)
        self._log.info("tree.delete", path=item.path, kind=item.kind.value)
        return TransactionResult("delete", f"Deleted {item.name}", source=item.path)

    async def rename(
        self,
        item: RemoteEntry,
        new_name: str,
        *,
        cancel: CancelToken | None = None,
    ) -> TransactionResult:
        """Move ``item`` to a sibling path named ``new_name`` (copy, then delete)."""
        self._require_connected()
        name = validate_name(new_name)
        if name == item.name:
            raise ValidationError("New name must differ from the current name", name=name)
        if item.is_file:
            old_suffix = PurePosixPath(item.name).suffix
            if old_suffix and not PurePosixPath(name).suffix:
                raise ValidationError(f"Keep the file extension {old_suffix}", name=name)

        new_path = join(parent_of(item.path), name)
        self._refuse_unsaved(new_path, name)
        await self._ensure_absent(new_path, name)
        source = await self._store.stat(item.path)
        stats = await move_tree(self._store, source, new_path, cancel=cancel)
        await self._overlay.relocate(source.path, new_path)
        self._log.info(
            "tree.rename",
            source=source.path,
            destination=new_path,
            files=stats.files,
            directories=stats.directories,
        )
        return TransactionResult(
            "rename", f'Renamed to "{name}"', source=source.path, destination=new_path
        )

    # Clipboard

    async def _take(self, item: RemoteEntry, operation: ClipboardOperation) -> ClipboardEntry:
        self._require_connected()
        try:
            entry = await self._store.stat(item.path)
        except NotFoundError:
            self._clipboard.clear()
            raise
        return self._clipboard.hold(entry, operation)

    async def cut(self, item: RemoteEntry) -> ClipboardEntry:
        """Mark ``item`` for moving. Nothing is deleted until a paste succeeds."""
        return await self._take(item, ClipboardOperation.CUT)

    async def copy(self, item: RemoteEntry) -> ClipboardEntry:
        return await self._take(item, ClipboardOperation.COPY)

    def clipboard_status(self) -> str | None:
        return self._clipboard.status()

    def clear_clipboard(self) -> None:
        self._clipboard.clear()

    def _reject(self, message: str, source: str, destination: str) -> SelfReferenceRejectedError:
        self._log.warning("tree.paste.rejected", source=source, destination=destination)
        return SelfReferenceRejectedError(message, source=source, destination=destination)

    async def paste(
        self,
        target: "Target | RemoteEntry | str | None" = UNSPECIFIED,
        *,
        confirm_overwrite: Confirm | None = None,
        cancel: CancelToken | None = None,
    ) -> TransactionResult:
        """Copy or move the clipboard item into the resolved target directory.

        An existing destination is replaced only when ``confirm_overwrite``
        agrees; without a callback it is a ConflictError.
        """
        self._require_connected()
        held = self._clipboard.take()
        cut = held.operation == ClipboardOperation.CUT

        source = await self._store.exists(held.source_path)
        if source is None:
            self._clipboard.clear()
            raise SourceMissingError(
                f'"{held.item.name}" no longer exists, it may have been deleted',
                path=held.source_path,
            )

        parent = resolve_parent(as_target(target), self.base_path)
        destination = join(parent, source.name)
        if destination == source.path:
            raise self._reject("Cannot paste an item onto itself", source.path, destination)
        if source.is_dir and is_within(destination, source.path):
            raise self._reject(
                "Cannot paste a directory into its own subtree", source.path, destination
            )
        if is_within(source.path, destination):
            raise self._reject(
                "Cannot replace a directory that contains the source", source.path, destination
            )

        self._refuse_unsaved(destination, source.name)
        existing = await self._store.exists(destination)
        if existing is not None:
            if confirm_overwrite is None:
                raise ConflictError(f'"{source.name}" already exists', path=destination)
            if not await confirm_overwrite(
                f'"{source.name}" already exists in {parent}. Overwrite?'
            ):
                return TransactionResult(
                    "paste",
                    "Paste cancelled",
                    source=source.path,
                    destination=destination,
                    completed=False,
                )

        self._log.info(
            "tree.paste",
            operation=held.operation.value,
            source=source.path,
            destination=destination,
            overwrite=existing is not None,
        )
        try:
            if existing is not None:
                await self._store.delete(existing)
                await self._overlay.discard_under(destination)
            if cut:
                stats = await move_tree(self._store, source, destination, cancel=cancel)
            else:
                stats = await copy_tree(self._store, source, destination, cancel=cancel)
        except DavspaceError as e:
            if cut:
                self._clipboard.clear()
            self._log.warning(
                "tree.paste.failed",
                source=source.path,
                destination=destination,
                code=e.code,
            )
            raise

        if cut:
            self._clipboard.clear()
            await self._overlay.relocate(source.path, destination)
        verb = "Moved" if cut else "Copied"
        self._log.info("tree.paste.done", files=stats.files, directories=stats.directories)
        return TransactionResult(
            "paste",
            f'{verb} "{source.name}" to {parent}',
            source=source.path,
            destination=destination,
        )

    async def paste_to_root(
        self,
        *,
        confirm_overwrite: Confirm | None = None,
        cancel: CancelToken | None = None,
    ) -> TransactionResult:
        """Paste into the base path."""
        return await self.paste(UNSPECIFIED, confirm_overwrite=confirm_overwrite, cancel=cancel)

    # Transfer

    async def upload(
        self,
        local_paths: Iterable[Path | str],
        target: "Target | RemoteEntry | str | None" = UNSPECIFIED,
        *,
        cancel: CancelToken | None = None,
    ) -> BatchSummary:
        self._require_connected()
        parent = await self._nearest_directory(resolve_parent(as_target(target), self.base_path))
        summary = await upload_files(self._store, list(local_paths), parent, cancel=cancel)
        self._log.info(
            "tree.upload",
            parent=parent,
            success=summary.success,
            fail=summary.fail,
            cancelled=summary.cancelled,
        )
        return summary

    async def download(
        self,
        item: RemoteEntry,
        *,
        local_root: Path | str | None = None,
        cancel: CancelToken | None = None,
    ) -> BatchSummary:
        """Mirror ``item`` into the local sync folder."""
        self._require_connected()
        root = Path(local_root) if local_root else self._local_sync_path
        if root is None:
            raise ValidationError("No local sync path configured")
        entry = await self._store.stat(item.path)
        summary = await download_entry(self._store, entry, root, self.base_path, cancel=cancel)
        self._log.info(
            "tree.download",
            path=entry.path,
            local_root=str(root),
            success=summary.success,
            fail=summary.fail,
        )
        return summary
