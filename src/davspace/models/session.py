"""Connection session model.

One session exists per connected RemoteStoreClient. Replacing it requires a
disconnect (or a new successful connect, which swaps it atomically).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class ConnectionSession:
    """An established connection to the remote store."""

    server_url: str
    base_path: str
    credentials: Credentials
    connected_at: datetime


@dataclass(frozen=True, slots=True)
class ConnectionCheck:
    """Result of a connection diagnostic probe."""

    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
