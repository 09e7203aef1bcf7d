"""Content transfer primitives.

copy_tree and move_tree work remote-to-remote; upload_files and
download_entry move content between the remote tree and the local disk.
None of these validate targets; the tree engine does that before calling.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from davspace.concurrency import CancelToken
from davspace.errors import DavspaceError, NotFoundError
from davspace.models.entry import RemoteEntry
from davspace.models.results import BatchSummary
from davspace.utils.paths import create_safe_directory, join, relative_to, safe_local_path

if TYPE_CHECKING:
    from davspace.clients.store import RemoteStoreClient

logger = structlog.get_logger()


@dataclass
class TreeStats:
    """Counts produced by a tree copy."""

    files: int = 0
    directories: int = 0


async def copy_file(
    store: "RemoteStoreClient",
    source: str,
    destination: str,
    *,
    overwrite: bool = True,
) -> None:
    """Copy one file, writing in the same mode (text/binary) it was read in."""
    content, mode = await store.read_with_mode(source)
    await store.write(destination, content, overwrite=overwrite)
    logger.debug("transfer.copy_file", source=source, destination=destination, mode=mode)


async def copy_tree(
    store: "RemoteStoreClient",
    source: RemoteEntry,
    destination: str,
    *,
    cancel: CancelToken | None = None,
    stats: TreeStats | None = None,
) -> TreeStats:
    """Recursively copy ``source`` to ``destination``. The source is untouched.

    A failing child aborts the rest of its directory; the partial copy is left
    in place.
    """
    stats = stats if stats is not None else TreeStats()
    if not source.is_dir:
        await copy_file(store, source.path, destination)
        stats.files += 1
        return stats

    await store.ensure_directory(destination)
    stats.directories += 1
    for child in await store.list(source.path, include_hidden=True):
        if cancel is not None:
            cancel.raise_if_cancelled("copy")
        await copy_tree(
            store, child, join(destination, child.name), cancel=cancel, stats=stats
        )
    return stats


async def move_tree(
    store: "RemoteStoreClient",
    source: RemoteEntry,
    destination: str,
    *,
    cancel: CancelToken | None = None,
) -> TreeStats:
    """copy_tree, then delete the source.

    The source is removed only once the whole copy succeeded. A source that is
    already gone at delete time counts as moved.
    """
    stats = await copy_tree(store, source, destination, cancel=cancel)
    try:
        await store.delete(source)
    except NotFoundError:
        logger.debug("transfer.move.source_gone", source=source.path)
    return stats


async def upload_files(
    store: "RemoteStoreClient",
    local_paths: Iterable[Path | str],
    parent: str,
    *,
    cancel: CancelToken | None = None,
) -> BatchSummary:
    """Upload local files into the remote directory ``parent``, overwriting.

    Each file is attempted independently.
    """
    summary = BatchSummary()
    for local_path in local_paths:
        if cancel is not None and cancel.cancelled:
            summary.cancelled = True
            break
        local = Path(local_path)
        remote = join(parent, local.name)
        try:
            data = await asyncio.to_thread(local.read_bytes)
            await store.write(remote, data, overwrite=True)
        except (OSError, DavspaceError) as e:
            summary.fail += 1
            summary.errors[str(local)] = str(e)
            logger.warning("transfer.upload.failed", local=str(local), remote=remote, error=str(e))
        else:
            summary.success += 1
            logger.info("transfer.upload", local=str(local), remote=remote, size=len(data))
    return summary


def _write_local(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def download_entry(
    store: "RemoteStoreClient",
    entry: RemoteEntry,
    local_root: Path | str,
    base_path: str,
    *,
    cancel: CancelToken | None = None,
) -> BatchSummary:
    """Mirror a remote file or directory under ``local_root``.

    The local location is the entry's path relative to ``base_path``. Files
    never replace a local directory of the same name (see safe_local_path)
    and missing local directories are created.
    """
    summary = BatchSummary()
    relative = relative_to(
        entry.path,
        base_path,
        on_mismatch=lambda a, b: logger.warning("paths.base_mismatch", path=a, base_path=b),
    )
    await _download(store, entry, Path(local_root), relative, summary, cancel)
    return summary


async def _download(
    store: "RemoteStoreClient",
    entry: RemoteEntry,
    local_root: Path,
    relative: str,
    summary: BatchSummary,
    cancel: CancelToken | None,
) -> None:
    if entry.is_dir:
        target = local_root.joinpath(*[s for s in relative.split("/") if s])
        local_dir = await asyncio.to_thread(create_safe_directory, target)
        for child in await store.list(entry.path, include_hidden=True):
            if cancel is not None and cancel.cancelled:
                summary.cancelled = True
                return
            await _download(store, child, local_dir, child.name, summary, cancel)
        return

    local = safe_local_path(local_root, relative)
    try:
        content = await store.read(entry.path, "binary")
        await asyncio.to_thread(_write_local, local, content)
    except (OSError, DavspaceError) as e:
        summary.fail += 1
        summary.errors[entry.path] = str(e)
        logger.warning("transfer.download.failed", remote=entry.path, local=str(local), error=str(e))
    else:
        summary.success += 1
        summary.paths.append(local)
        logger.info("transfer.download", remote=entry.path, local=str(local))
