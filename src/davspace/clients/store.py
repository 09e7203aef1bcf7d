"""Remote store client.

Session object wrapping a StoreProtocol: one connection at a time, a timeout
on every remote call, and every failure classified into a DavspaceError.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog

from davspace.clients.protocol.base import ContentFormat, RawEntry, StoreProtocol
from davspace.clients.protocol.webdav import WebDAVProtocol
from davspace.concurrency import SingleFlight
from davspace.config import TimeoutConfig
from davspace.errors import (
    AuthenticationFailedError,
    ConflictError,
    DavspaceError,
    NetworkUnreachableError,
    NotConnectedError,
    NotFoundError,
    PathKindMismatchError,
    RequestTimeoutError,
    ValidationError,
    classify,
    user_message,
)
from davspace.models.entry import EntryKind, RemoteEntry
from davspace.models.session import ConnectionCheck, ConnectionSession, Credentials
from davspace.utils.datetime import parse_timestamp, utcnow
from davspace.utils.paths import ROOT, basename, clean, join, parent_of, sort_entries

logger = structlog.get_logger()

T = TypeVar("T")

# (server_url, username, password) -> protocol
ProtocolFactory = Callable[[str, str, str], StoreProtocol]

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

# Listing wrappers some servers put around the entry array.
_LISTING_KEYS = ("data", "items", "files")

# Failures that say nothing about the content encoding; no binary retry.
_NO_BINARY_FALLBACK = (
    NotFoundError,
    AuthenticationFailedError,
    RequestTimeoutError,
    NetworkUnreachableError,
    NotConnectedError,
)


def _flatten_listing(raw: Any) -> list[RawEntry]:
    """Accept a bare array or an object wrapping one."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [item for item in raw if isinstance(item, dict)]
    if isinstance(raw, dict):
        for key in _LISTING_KEYS:
            value = raw.get(key)
            if isinstance(value, (list, tuple)):
                return [item for item in value if isinstance(item, dict)]
        return [item for item in raw.values() if isinstance(item, dict)]
    return []


def _entry_from_raw(raw: RawEntry, path: str) -> RemoteEntry:
    kind = EntryKind.DIRECTORY if raw.get("type") == "directory" else EntryKind.FILE
    try:
        size = max(int(raw.get("size") or 0), 0)
    except (TypeError, ValueError):
        size = 0
    if kind == EntryKind.DIRECTORY:
        size = 0
    modified_at = parse_timestamp(raw.get("lastmod")) or _EPOCH
    return RemoteEntry(path=path, kind=kind, size=size, modified_at=modified_at)


def _raw_name(raw: RawEntry) -> str:
    return raw.get("basename") or basename(raw.get("filename") or "")


class RemoteStoreClient:
    """Single point of truth for the connection and the remote tree.

    All paths are absolute remote paths. Callers map UI-relative paths with
    ``davspace.utils.paths.normalize`` first.
    """

    def __init__(
        self,
        *,
        protocol_factory: ProtocolFactory | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self._protocol_factory = protocol_factory
        self._timeouts = timeouts or TimeoutConfig()
        self._protocol: StoreProtocol | None = None
        self._session: ConnectionSession | None = None
        self._connect_flight: SingleFlight[bool] = SingleFlight()
        self.last_error: DavspaceError | None = None
        self._log = logger.bind(client="store")

    # Session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._protocol is not None

    @property
    def session(self) -> ConnectionSession | None:
        return self._session

    @property
    def base_path(self) -> str:
        return self._session.base_path if self._session else ROOT

    @property
    def server_url(self) -> str | None:
        return self._session.server_url if self._session else None

    @property
    def connecting(self) -> bool:
        return self._connect_flight.in_flight

    def _build_protocol(self, server_url: str, username: str, password: str) -> StoreProtocol:
        if self._protocol_factory is not None:
            return self._protocol_factory(server_url, username, password)
        return WebDAVProtocol(server_url, username, password, timeout=self._timeouts.connect)

    async def connect(
        self,
        server_url: str,
        username: str,
        password: str,
        base_path: str = ROOT,
    ) -> bool:
        """Connect and probe ``base_path``.

        A call made while another connect is pending gets that call's result.
        Invalid arguments raise ValidationError; remote failures return False
        and are kept in ``last_error``.
        """
        return await self._connect_flight.run(
            lambda: self._connect(server_url, username, password, base_path)
        )

    async def _connect(self, server_url: str, username: str, password: str, base_path: str) -> bool:
        url = (server_url or "").strip().rstrip("/")
        if not url:
            raise ValidationError("Server URL is required")
        if not url.startswith(("http://", "https://")):
            raise ValidationError("Server URL must start with http:// or https://", server_url=url)
        if not username or not password:
            raise ValidationError("Username and password are required")
        base = clean(base_path or ROOT)

        self._log.info("store.connect", server_url=url, base_path=base)
        started = time.monotonic()
        protocol = self._build_protocol(url, username, password)
        try:
            await self._probe(protocol, base)
        except DavspaceError as e:
            self.last_error = e
            self._log.warning(
                "store.connect.failed",
                server_url=url,
                base_path=base,
                code=e.code,
                error=e.message,
            )
            await protocol.aclose()
            await self.disconnect()
            return False

        previous = self._protocol
        self._protocol = protocol
        self._session = ConnectionSession(
            server_url=url,
            base_path=base,
            credentials=Credentials(username=username, password=password),
            connected_at=utcnow(),
        )
        self.last_error = None
        if previous is not None and previous is not protocol:
            await previous.aclose()
        self._log.info(
            "store.connected",
            server_url=url,
            base_path=base,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return True

    async def _probe(self, protocol: StoreProtocol, base: str) -> None:
        timeout = self._timeouts.connect
        try:
            await self._guard("connect", base, protocol.list_directory(base), timeout)
        except NotFoundError:
            self._log.info("store.connect.create_base", base_path=base)
            await self._guard(
                "connect", base, protocol.create_directory(base, recursive=True), timeout
            )

    async def disconnect(self) -> None:
        protocol, self._protocol, self._session = self._protocol, None, None
        if protocol is not None:
            await protocol.aclose()
            self._log.info("store.disconnected")

    async def check_connection(self) -> ConnectionCheck:
        """Diagnostic stat of the remote root. Never raises."""
        if not self.is_connected:
            return ConnectionCheck(success=False, message="Not connected")
        started = time.monotonic()
        details: dict[str, Any] = {"server_url": self.server_url, "base_path": self.base_path}
        try:
            await self.stat(ROOT)
        except DavspaceError as e:
            details["code"] = e.code
            return ConnectionCheck(
                success=False,
                message=user_message(e, "Connection check"),
                details=details,
            )
        details["elapsed_ms"] = int((time.monotonic() - started) * 1000)
        return ConnectionCheck(success=True, message="Connection OK", details=details)

    # Call plumbing

    def _require_protocol(self) -> StoreProtocol:
        if self._protocol is None or self._session is None:
            raise NotConnectedError("Not connected to a remote store")
        return self._protocol

    async def _guard(self, operation: str, path: str, call: Awaitable[T], timeout: float) -> T:
        """Await ``call`` under ``timeout``, classifying any failure."""
        try:
            async with asyncio.timeout(timeout):
                return await call
        except TimeoutError as e:
            self._log.warning(f"store.{operation}.timeout", path=path, timeout=timeout)
            raise RequestTimeoutError(
                f"{operation} {path} timed out after {timeout:g}s", path=path, timeout=timeout
            ) from e
        except DavspaceError:
            raise
        except Exception as e:
            error = classify(e, path=path)
            if isinstance(error, NotFoundError):
                self._log.debug(f"store.{operation}.not_found", path=path)
            else:
                self._log.warning(
                    f"store.{operation}.failed", path=path, code=error.code, error=error.message
                )
            raise error from e

    async def _call(
        self,
        operation: str,
        path: str,
        call: Callable[[StoreProtocol], Awaitable[T]],
        timeout: float,
    ) -> T:
        protocol = self._require_protocol()
        return await self._guard(operation, path, call(protocol), timeout)

    # Tree queries

    async def list(self, path: str, *, include_hidden: bool = False) -> list[RemoteEntry]:
        """One level of ``path``: directories first, then case-insensitive names."""
        target = clean(path)
        raw = await self._call(
            "list", target, lambda p: p.list_directory(target), self._timeouts.metadata
        )
        entries = []
        for item in _flatten_listing(raw):
            name = _raw_name(item)
            if not name or (not include_hidden and name.startswith(".")):
                continue
            entries.append(_entry_from_raw(item, join(target, name)))
        return sort_entries(entries)

    async def stat(self, path: str) -> RemoteEntry:
        target = clean(path)
        raw = await self._call("stat", target, lambda p: p.stat(target), self._timeouts.metadata)
        return _entry_from_raw(raw, target)

    async def exists(self, path: str) -> RemoteEntry | None:
        """stat, with NotFound mapped to None."""
        try:
            return await self.stat(path)
        except NotFoundError:
            return None

    # Content

    async def _get(self, target: str, format: ContentFormat) -> str | bytes:
        content = await self._call(
            "read",
            target,
            lambda p: p.get_content(target, format=format),
            self._timeouts.read,
        )
        if format == "binary":
            return content.encode("utf-8") if isinstance(content, str) else bytes(content)
        if isinstance(content, (bytes, bytearray)):
            try:
                return bytes(content).decode("utf-8")
            except UnicodeDecodeError as e:
                raise classify(e, path=target) from e
        return content

    async def read_with_mode(
        self, path: str, format: ContentFormat | None = None
    ) -> tuple[str | bytes, ContentFormat]:
        """Read content and report which mode succeeded.

        Without an explicit ``format`` text is tried first and binary is the
        fallback.
        """
        target = clean(path)
        if format is not None:
            return await self._get(target, format), format
        try:
            return await self._get(target, "text"), "text"
        except _NO_BINARY_FALLBACK:
            raise
        except DavspaceError as e:
            self._log.debug("store.read.binary_fallback", path=target, code=e.code)
            return await self._get(target, "binary"), "binary"

    async def read(self, path: str, format: ContentFormat | None = None) -> str | bytes:
        content, _ = await self.read_with_mode(path, format)
        return content

    async def _put(self, target: str, content: str | bytes, overwrite: bool) -> None:
        await self._call(
            "write",
            target,
            lambda p: p.put_content(target, content, overwrite=overwrite),
            self._timeouts.write,
        )

    async def write(self, path: str, content: str | bytes, *, overwrite: bool = True) -> None:
        """Write a file, creating missing parent directories first.

        A 404/409 from the server (parent vanished in between) is retried
        once after re-creating the parent.
        """
        target = clean(path)
        if target == ROOT:
            raise ValidationError("Cannot write content to the root directory", path=target)
        await self.ensure_directory(parent_of(target))
        try:
            await self._put(target, content, overwrite)
        except (NotFoundError, ConflictError) as e:
            if e.details.get("status") not in (404, 409):
                raise
            self._log.info("store.write.retry", path=target, status=e.details.get("status"))
            await self.ensure_directory(parent_of(target))
            await self._put(target, content, overwrite)

    # Tree mutation

    async def mkdir(self, path: str, *, recursive: bool = False) -> None:
        """Create a directory. Not idempotent: stat first for create-if-missing."""
        target = clean(path)
        await self._call(
            "mkdir",
            target,
            lambda p: p.create_directory(target, recursive=recursive),
            self._timeouts.metadata,
        )

    async def ensure_directory(self, path: str) -> None:
        """Create ``path`` and any missing ancestors.

        Raises PathKindMismatchError when an ancestor exists as a file.
        """
        missing = []
        current = clean(path)
        while current != ROOT:
            entry = await self.exists(current)
            if entry is not None:
                if not entry.is_dir:
                    raise PathKindMismatchError(
                        f"{current} is a file, not a directory", path=current
                    )
                break
            missing.append(current)
            current = parent_of(current)

        for directory in reversed(missing):
            try:
                await self.mkdir(directory)
            except ConflictError:
                # Someone else created it meanwhile.
                entry = await self.exists(directory)
                if entry is None or not entry.is_dir:
                    raise
            self._log.debug("store.mkdir.parent", path=directory)

    async def delete_file(self, path: str) -> None:
        target = clean(path)
        await self._call("delete", target, lambda p: p.delete_file(target), self._timeouts.metadata)

    async def delete_tree(self, path: str) -> None:
        """Empty ``path`` depth-first, then remove it.

        A failure stops the walk; whatever was already deleted stays deleted.
        """
        target = clean(path)
        if target == ROOT:
            raise ValidationError("Refusing to delete the remote root", path=target)
        for child in await self.list(target, include_hidden=True):
            if child.is_dir:
                await self.delete_tree(child.path)
            else:
                await self.delete_file(child.path)
        await self._call(
            "delete",
            target,
            lambda p: p.delete_directory_shallow(target),
            self._timeouts.metadata,
        )

    async def delete(self, entry: RemoteEntry) -> None:
        """Dispatch to delete_file or delete_tree by kind."""
        if entry.is_dir:
            await self.delete_tree(entry.path)
        else:
            await self.delete_file(entry.path)
