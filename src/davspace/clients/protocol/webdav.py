"""WebDAV implementation of StoreProtocol.

Pure HTTP client over httpx: PROPFIND for listings and stat, GET/PUT for
content, DELETE and MKCOL for tree changes. Paths passed in are absolute
remote paths; they are resolved against the server URL's own path prefix.
"""

from __future__ import annotations

import posixpath
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote, unquote, urlparse
from xml.etree import ElementTree

import httpx
import structlog

from davspace.clients.protocol.base import ContentFormat, ProtocolError, RawEntry, StoreProtocol

logger = structlog.get_logger()

_DAV_NS = "{DAV:}"

_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/><d:getlastmodified/><d:getcontenttype/>"
    "</d:prop></d:propfind>"
)


def _clean(path: str) -> str:
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    return "/" + "/".join(parts)


class WebDAVProtocol(StoreProtocol):
    """StoreProtocol speaking WebDAV to ``server_url``."""

    def __init__(
        self,
        server_url: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        max_content_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._root = urlparse(self._server_url).path.rstrip("/")
        self._max_content_bytes = max_content_bytes
        self._client = httpx.AsyncClient(
            base_url=self._server_url,
            auth=(username, password),
            timeout=timeout,
            transport=transport,
        )
        self._log = logger.bind(client="webdav", server_url=self._server_url)

    def _url(self, path: str, *, collection: bool = False) -> str:
        url = quote(_clean(path), safe="/")
        if collection and not url.endswith("/"):
            url += "/"
        return url

    async def _request(
        self,
        method: str,
        path: str,
        *,
        collection: bool = False,
        headers: dict[str, str] | None = None,
        content: bytes | str | None = None,
        ok: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Send one request; map failures to ProtocolError."""
        url = self._url(path, collection=collection)
        try:
            response = await self._client.request(method, url, headers=headers, content=content)
        except httpx.TimeoutException as e:
            self._log.warning("webdav.timeout", method=method, path=path)
            raise ProtocolError(f"{method} {path} timed out", code="ETIMEDOUT") from e
        except httpx.ConnectError as e:
            text = str(e).lower()
            code = "ENOTFOUND" if ("name" in text or "resolve" in text) else "ECONNREFUSED"
            self._log.warning("webdav.connect_error", method=method, path=path, error=str(e))
            raise ProtocolError(f"Cannot connect to {self._server_url}: {e}", code=code) from e
        except httpx.RequestError as e:
            self._log.warning("webdav.request_error", method=method, path=path, error=str(e))
            raise ProtocolError(f"{method} {path} failed: {e}", code="ENETWORK") from e

        if response.status_code >= 400 and response.status_code not in ok:
            self._log.debug(
                "webdav.request_failed",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise ProtocolError(
                f"{method} {path} failed: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )
        return response

    def _href_to_path(self, href: str) -> str:
        path = urlparse(href).path if "://" in href else href
        path = unquote(path)
        if self._root and (path == self._root or path.startswith(self._root + "/")):
            path = path[len(self._root):]
        return _clean(path)

    def _parse_response(self, node: ElementTree.Element) -> RawEntry | None:
        href = node.findtext(f"{_DAV_NS}href")
        if href is None:
            return None

        props: dict[str, Any] = {}
        for propstat in node.findall(f"{_DAV_NS}propstat"):
            status = propstat.findtext(f"{_DAV_NS}status") or ""
            if " 200" not in status:
                continue
            prop = propstat.find(f"{_DAV_NS}prop")
            if prop is None:
                continue
            for child in prop:
                props[child.tag] = child

        resourcetype = props.get(f"{_DAV_NS}resourcetype")
        is_dir = resourcetype is not None and resourcetype.find(f"{_DAV_NS}collection") is not None

        size_node = props.get(f"{_DAV_NS}getcontentlength")
        try:
            size = int(size_node.text) if size_node is not None and size_node.text else 0
        except ValueError:
            size = 0

        lastmod = ""
        lastmod_node = props.get(f"{_DAV_NS}getlastmodified")
        if lastmod_node is not None and lastmod_node.text:
            try:
                lastmod = parsedate_to_datetime(lastmod_node.text).isoformat()
            except (TypeError, ValueError):
                lastmod = lastmod_node.text

        mime_node = props.get(f"{_DAV_NS}getcontenttype")
        filename = self._href_to_path(href)
        return {
            "filename": filename,
            "basename": posixpath.basename(filename),
            "type": "directory" if is_dir else "file",
            "size": 0 if is_dir else size,
            "lastmod": lastmod,
            "mime": mime_node.text if mime_node is not None else None,
        }

    async def _propfind(self, path: str, depth: str) -> list[RawEntry]:
        response = await self._request(
            "PROPFIND",
            path,
            headers={"Depth": depth, "Content-Type": "application/xml; charset=utf-8"},
            content=_PROPFIND_BODY,
        )
        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as e:
            raise ProtocolError(f"Malformed PROPFIND response for {path}: {e}", status=502) from e

        entries = []
        for node in root.findall(f"{_DAV_NS}response"):
            entry = self._parse_response(node)
            if entry is not None:
                entries.append(entry)
        return entries

    # StoreProtocol implementation

    async def list_directory(self, path: str) -> list[RawEntry]:
        """PROPFIND Depth 1, minus the directory's own entry."""
        target = _clean(path)
        entries = await self._propfind(target, "1")
        return [e for e in entries if e["filename"] != target]

    async def stat(self, path: str) -> RawEntry:
        target = _clean(path)
        entries = await self._propfind(target, "0")
        for entry in entries:
            if entry["filename"] == target:
                return entry
        if entries:
            return entries[0]
        raise ProtocolError(f"No PROPFIND entry for {target}", status=404)

    async def get_content(self, path: str, *, format: ContentFormat = "text") -> str | bytes:
        response = await self._request("GET", path)
        data = response.content
        if len(data) > self._max_content_bytes:
            raise ProtocolError(
                f"{path} exceeds {self._max_content_bytes} bytes", status=413
            )
        if format == "binary":
            return data
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"{path} is not valid UTF-8 text", code="EDECODE") from e

    async def put_content(self, path: str, data: str | bytes, *, overwrite: bool = True) -> None:
        body = data.encode("utf-8") if isinstance(data, str) else data
        headers = {"Content-Type": "application/octet-stream"}
        if not overwrite:
            headers["If-None-Match"] = "*"
        await self._request("PUT", path, headers=headers, content=body)

    async def delete_file(self, path: str) -> None:
        await self._request("DELETE", path)

    async def delete_directory_shallow(self, path: str) -> None:
        await self._request("DELETE", path, collection=True)

    async def create_directory(self, path: str, *, recursive: bool = False) -> None:
        target = _clean(path)
        if recursive:
            parts = [p for p in target.split("/") if p]
            for i in range(1, len(parts)):
                # 405: already exists
                await self._request("MKCOL", "/" + "/".join(parts[:i]), collection=True, ok=(405,))
            await self._request("MKCOL", target, collection=True, ok=(405,))
            return
        await self._request("MKCOL", target, collection=True)

    async def aclose(self) -> None:
        await self._client.aclose()
