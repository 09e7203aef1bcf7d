"""Unit tests for DavWorkspace wiring, end to end against the in-memory store."""

from __future__ import annotations

from pathlib import Path

import pytest

from davspace.config import Settings
from davspace.errors import ValidationError
from davspace.workspace import DavWorkspace
from tests.fakes import InMemoryStore


@pytest.fixture
def workspace(test_settings: Settings, fake_store: InMemoryStore) -> DavWorkspace:
    return DavWorkspace(test_settings, protocol_factory=lambda *args: fake_store)


class TestWorkspace:
    async def test_edit_save_reopen_and_move(
        self, workspace: DavWorkspace, fake_store: InMemoryStore
    ):
        assert await workspace.connect()
        assert workspace.store.base_path == "/notes"
        assert fake_store.is_dir("/notes")

        created = await workspace.engine.create_file("todo.md")
        assert created.destination == "/notes/todo.md"

        first = await workspace.overlay.open(workspace.absolute_path("todo.md"))
        await workspace.overlay.write(first, "- buy milk")
        await workspace.overlay.save(first)
        assert fake_store.content("/notes/todo.md") == b"- buy milk"

        second = await workspace.overlay.open("/notes/todo.md", "todo (remote).md")
        assert second != first
        assert await workspace.overlay.read(second) == await workspace.overlay.read(first)

        await workspace.engine.create_folder("archive")
        await workspace.engine.cut(await workspace.store.stat("/notes/todo.md"))
        result = await workspace.engine.paste("/notes/archive")

        assert result.message == 'Moved "todo.md" to /notes/archive'
        assert not fake_store.exists("/notes/todo.md")
        assert fake_store.content("/notes/archive/todo.md") == b"- buy milk"
        paths = {doc.remote_path for doc in workspace.overlay.get_open_documents()}
        assert paths == {"/notes/archive/todo.md"}
        names = {doc.display_name for doc in workspace.overlay.get_open_documents()}
        assert names == {"todo.md", "todo (remote).md"}
        assert workspace.relative_path("/notes/archive/todo.md") == "/archive/todo.md"

    async def test_connect_requires_complete_config(
        self, fake_store: InMemoryStore, tmp_path: Path
    ):
        settings = Settings(
            server_url="https://dav.example.com",
            username="alice",
            password="",
            cache={"directory": str(tmp_path / "cache")},
        )
        workspace = DavWorkspace(settings, protocol_factory=lambda *args: fake_store)

        with pytest.raises(ValidationError) as exc_info:
            await workspace.connect()
        assert exc_info.value.details["missing"] == ["password"]
        assert await workspace.auto_connect() is False
        assert fake_store.calls == []

    async def test_auto_connect(self, test_settings: Settings, fake_store: InMemoryStore):
        workspace = DavWorkspace(test_settings, protocol_factory=lambda *args: fake_store)
        assert await workspace.auto_connect()
        assert workspace.store.is_connected

        disabled = DavWorkspace(
            test_settings.model_copy(update={"auto_sync": False}),
            protocol_factory=lambda *args: fake_store,
        )
        assert await disabled.auto_connect() is False
        assert not disabled.store.is_connected

    async def test_auto_connect_failure_is_reported_not_raised(
        self, workspace: DavWorkspace, fake_store: InMemoryStore
    ):
        fake_store.fail("list", "/notes", status=401)
        assert await workspace.auto_connect() is False
        assert workspace.store.last_error.code == "authentication_failed"

    async def test_close_keeps_unsaved_edits_local(
        self, test_settings: Settings, fake_store: InMemoryStore
    ):
        async with DavWorkspace(
            test_settings, protocol_factory=lambda *args: fake_store
        ) as workspace:
            assert await workspace.connect()
            fake_store.add_file("/notes/a.md", "remote")
            handle = await workspace.overlay.open("/notes/a.md")
            await workspace.overlay.write(handle, "local draft")
            await workspace.engine.copy(await workspace.store.stat("/notes/a.md"))
            fake_store.calls.clear()

        assert fake_store.mutations == []
        assert fake_store.content("/notes/a.md") == b"remote"
        assert fake_store.closed
        assert workspace.engine.clipboard_status() is None
        assert workspace.overlay.get_open_documents() == []
        assert await workspace.overlay.read(handle) == b"local draft"

    def test_local_sync_path_from_settings(self, workspace: DavWorkspace, tmp_path: Path):
        assert workspace.settings.resolved_local_sync_path() == tmp_path / "mirror"
