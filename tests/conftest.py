"""Test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from davspace.clients.store import RemoteStoreClient
from davspace.config import Settings, TimeoutConfig
from davspace.managers.clipboard import Clipboard
from davspace.managers.overlay import DocumentOverlay
from davspace.managers.tree import TreeTransactionEngine
from tests.fakes import SERVER_URL, FakeClock, InMemoryStore


@pytest.fixture
def fake_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def base_path() -> str:
    return "/"


@pytest.fixture
async def store(fake_store: InMemoryStore, base_path: str) -> RemoteStoreClient:
    """RemoteStoreClient connected to the in-memory store."""
    fake_store.add_dir(base_path)
    client = RemoteStoreClient(
        protocol_factory=lambda url, user, password: fake_store,
        timeouts=TimeoutConfig(metadata=1.0, read=1.0, write=1.0, connect=1.0),
    )
    assert await client.connect(SERVER_URL, "alice", "secret", base_path)
    fake_store.calls.clear()
    return client


@pytest.fixture
def overlay(store: RemoteStoreClient, tmp_path: Path, clock: FakeClock) -> DocumentOverlay:
    return DocumentOverlay(store, cache_dir=tmp_path / "cache", now=clock)


@pytest.fixture
def engine(
    store: RemoteStoreClient,
    overlay: DocumentOverlay,
    clock: FakeClock,
    tmp_path: Path,
) -> TreeTransactionEngine:
    return TreeTransactionEngine(
        store,
        overlay,
        clipboard=Clipboard(expiry_seconds=600, now=clock),
        local_sync_path=tmp_path / "mirror",
    )


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        server_url=SERVER_URL,
        username="alice",
        password="secret",
        base_path="/notes",
        local_sync_path=str(tmp_path / "mirror"),
        cache={"directory": str(tmp_path / "cache")},
    )
