"""Clients for the remote document store."""

from davspace.clients.store import RemoteStoreClient

__all__ = ["RemoteStoreClient"]
