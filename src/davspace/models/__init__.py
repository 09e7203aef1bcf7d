"""Data models."""

from davspace.models.clipboard import ClipboardEntry, ClipboardOperation
from davspace.models.document import (
    DocumentEvent,
    DocumentEventType,
    SaveSummary,
    VirtualDocument,
)
from davspace.models.entry import EntryKind, RemoteEntry
from davspace.models.results import BatchSummary, TransactionResult
from davspace.models.session import ConnectionCheck, ConnectionSession, Credentials

__all__ = [
    "BatchSummary",
    "ClipboardEntry",
    "ClipboardOperation",
    "ConnectionCheck",
    "ConnectionSession",
    "Credentials",
    "DocumentEvent",
    "DocumentEventType",
    "EntryKind",
    "RemoteEntry",
    "SaveSummary",
    "TransactionResult",
    "VirtualDocument",
]
