"""Remote store protocol implementations."""

from davspace.clients.protocol.base import ProtocolError, StoreProtocol
from davspace.clients.protocol.webdav import WebDAVProtocol

__all__ = ["ProtocolError", "StoreProtocol", "WebDAVProtocol"]
