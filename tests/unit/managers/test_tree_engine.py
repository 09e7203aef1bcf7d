"""Unit tests for TreeTransactionEngine."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from davspace.clients.store import RemoteStoreClient
from davspace.errors import (
    ClipboardEmptyError,
    ClipboardExpiredError,
    ConflictError,
    NotConnectedError,
    NotFoundError,
    PathKindMismatchError,
    RemoteStoreError,
    SelfReferenceRejectedError,
    SourceMissingError,
    ValidationError,
)
from davspace.managers.overlay import DocumentOverlay
from davspace.managers.tree import (
    UNSPECIFIED,
    TargetNode,
    TargetPath,
    TreeTransactionEngine,
    as_target,
    resolve_parent,
    validate_name,
)
from davspace.models.entry import EntryKind, RemoteEntry
from tests.fakes import FakeClock, InMemoryStore, make_confirm


def file_entry(path: str) -> RemoteEntry:
    return RemoteEntry(path=path, kind=EntryKind.FILE)


def dir_entry(path: str) -> RemoteEntry:
    return RemoteEntry(path=path, kind=EntryKind.DIRECTORY)


class TestTargets:
    @pytest.mark.parametrize(
        ("target", "base", "expected"),
        [
            (TargetNode(dir_entry("/a/b")), "/", "/a/b"),
            (TargetNode(file_entry("/a/b.txt")), "/", "/a"),
            (TargetPath("/x//y/"), "/", "/x/y"),
            (UNSPECIFIED, "/notes", "/notes"),
            (UNSPECIFIED, "/", "/"),
            (TargetNode(file_entry("/top.txt")), "/notes", "/notes"),
            (TargetPath("/"), "/notes", "/notes"),
        ],
    )
    def test_resolve_parent(self, target, base: str, expected: str):
        assert resolve_parent(target, base) == expected

    def test_as_target(self):
        entry = file_entry("/a.txt")
        assert as_target(None) is UNSPECIFIED
        assert as_target("  ") is UNSPECIFIED
        assert as_target("/d") == TargetPath("/d")
        assert as_target(entry) == TargetNode(entry)
        assert as_target(UNSPECIFIED) is UNSPECIFIED

    @pytest.mark.parametrize("name", ["", "   ", "a/b", "a\\b", "..", "x..y"])
    def test_invalid_names(self, name: str):
        with pytest.raises(ValidationError):
            validate_name(name)

    def test_name_is_trimmed(self):
        assert validate_name("  todo.md ") == "todo.md"


class TestCreate:
    async def test_create_file(self, engine: TreeTransactionEngine, fake_store: InMemoryStore):
        result = await engine.create_file("todo.md")
        assert result.destination == "/todo.md"
        assert fake_store.content("/todo.md") == b""

    async def test_create_next_to_selected_file(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/d/selected.md", "x")
        result = await engine.create_file("new.md", TargetNode(file_entry("/d/selected.md")))
        assert result.destination == "/d/new.md"

    async def test_create_under_file_path_walks_up(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/d/selected.md", "x")
        result = await engine.create_file("new.md", TargetPath("/d/selected.md"))
        assert result.destination == "/d/new.md"

    async def test_existing_file_conflicts(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/todo.md", "keep")
        fake_store.calls.clear()
        with pytest.raises(ConflictError):
            await engine.create_file("todo.md")
        assert fake_store.mutations == []
        assert fake_store.content("/todo.md") == b"keep"

    async def test_invalid_name_makes_no_calls(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        with pytest.raises(ValidationError):
            await engine.create_file("../escape.md")
        assert fake_store.calls == []

    async def test_create_folder(self, engine: TreeTransactionEngine, fake_store: InMemoryStore):
        fake_store.add_dir("/d")
        result = await engine.create_folder("archive", "/d")
        assert result.destination == "/d/archive"
        assert fake_store.is_dir("/d/archive")

    async def test_existing_folder_conflicts(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_dir("/archive")
        with pytest.raises(ConflictError):
            await engine.create_folder("archive")

    async def test_folder_under_file_ancestor(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/f.txt", "x")
        fake_store.calls.clear()
        with pytest.raises(PathKindMismatchError):
            await engine.create_folder("new", TargetPath("/f.txt/sub"))
        assert fake_store.mutations == []

    async def test_requires_connection(
        self, engine: TreeTransactionEngine, store: RemoteStoreClient
    ):
        await store.disconnect()
        with pytest.raises(NotConnectedError):
            await engine.create_file("a.md")


class TestDelete:
    async def test_confirmation_is_awaited(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        confirm = AsyncMock(return_value=True)

        result = await engine.delete(file_entry("/a.txt"), confirm=confirm)

        confirm.assert_awaited_once()
        assert result.completed
        assert not fake_store.exists("/a.txt")

    async def test_declined(self, engine: TreeTransactionEngine, fake_store: InMemoryStore):
        fake_store.add_file("/a.txt", "a")
        confirm = make_confirm(False)

        result = await engine.delete(file_entry("/a.txt"), confirm=confirm)

        assert not result.completed
        assert fake_store.exists("/a.txt")
        assert confirm.prompts == ['Delete "a.txt"? This cannot be undone.']

    async def test_deletes_tree_and_open_documents(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/d/a.txt", "a")
        fake_store.add_file("/d/sub/b.txt", "b")
        handle = await overlay.open("/d/sub/b.txt")

        result = await engine.delete(dir_entry("/d"), confirm=make_confirm(True))

        assert result.completed
        assert not fake_store.exists("/d")
        assert not overlay.is_open(handle)


class TestRename:
    async def test_rename_file_moves_open_document(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/d/a.md", "content")
        handle = await overlay.open("/d/a.md")

        result = await engine.rename(file_entry("/d/a.md"), "b.md")

        assert result.destination == "/d/b.md"
        assert not fake_store.exists("/d/a.md")
        assert fake_store.content("/d/b.md") == b"content"
        assert not overlay.is_open(handle)
        (doc,) = overlay.get_open_documents()
        assert doc.remote_path == "/d/b.md"
        assert doc.display_name == "b.md"

    async def test_rename_directory(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/old/x.md", "x")
        handle = await overlay.open("/old/x.md")
        await overlay.write(handle, "unsaved")

        await engine.rename(dir_entry("/old"), "new")

        assert fake_store.content("/new/x.md") == b"x"
        (doc,) = overlay.get_open_documents()
        assert doc.remote_path == "/new/x.md"
        assert doc.dirty
        assert doc.content == b"unsaved"

    @pytest.mark.parametrize("name", ["a.md", "a", "", "x/y.md"])
    async def test_invalid_new_names(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore, name: str
    ):
        fake_store.add_file("/a.md", "a")
        with pytest.raises(ValidationError):
            await engine.rename(file_entry("/a.md"), name)
        assert fake_store.mutations == []

    async def test_extension_may_change(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.md", "a")
        await engine.rename(file_entry("/a.md"), "a.txt")
        assert fake_store.exists("/a.txt")

    async def test_existing_name_conflicts(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.md", "a")
        fake_store.add_file("/b.md", "b")
        fake_store.calls.clear()
        with pytest.raises(ConflictError):
            await engine.rename(file_entry("/a.md"), "b.md")
        assert fake_store.mutations == []

    async def test_unsaved_draft_at_new_name_is_kept(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/d/a.md", "a")
        draft = await overlay.open("/d/b.md")
        await overlay.write(draft, "my unsaved draft")
        fake_store.calls.clear()

        with pytest.raises(ConflictError):
            await engine.rename(file_entry("/d/a.md"), "b.md")

        assert fake_store.mutations == []
        assert fake_store.content("/d/a.md") == b"a"
        assert overlay.get(draft).content == b"my unsaved draft"
        assert overlay.cache_path(draft).read_bytes() == b"my unsaved draft"


class TestClipboardOps:
    async def test_copy_paste(self, engine: TreeTransactionEngine, fake_store: InMemoryStore):
        fake_store.add_file("/a.txt", "a")
        fake_store.add_dir("/d")

        await engine.copy(file_entry("/a.txt"))
        assert engine.clipboard_status() == "Copy: a.txt"
        result = await engine.paste(TargetNode(dir_entry("/d")))

        assert result.message == 'Copied "a.txt" to /d'
        assert fake_store.content("/d/a.txt") == b"a"
        assert fake_store.exists("/a.txt")
        # A copy can be pasted again.
        assert engine.clipboard_status() == "Copy: a.txt"

    async def test_cut_paste_moves_and_clears(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/d/n.md", "n")
        fake_store.add_dir("/archive")
        handle = await overlay.open("/d/n.md")

        await engine.cut(dir_entry("/d"))
        result = await engine.paste("/archive")

        assert result.message == 'Moved "d" to /archive'
        assert not fake_store.exists("/d")
        assert fake_store.content("/archive/d/n.md") == b"n"
        assert engine.clipboard_status() is None
        assert not overlay.is_open(handle)
        assert overlay.get_open_documents()[0].remote_path == "/archive/d/n.md"

    async def test_cut_does_not_touch_remote(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        await engine.cut(file_entry("/a.txt"))
        assert fake_store.mutations == []
        assert fake_store.exists("/a.txt")

    async def test_paste_into_own_subtree_is_rejected(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/d/sub/x.txt", "x")
        await engine.cut(dir_entry("/d"))
        fake_store.calls.clear()

        with pytest.raises(SelfReferenceRejectedError):
            await engine.paste(TargetNode(dir_entry("/d")))
        with pytest.raises(SelfReferenceRejectedError):
            await engine.paste(TargetNode(dir_entry("/d/sub")))

        assert fake_store.mutations == []
        assert fake_store.content("/d/sub/x.txt") == b"x"

    async def test_paste_onto_itself_is_rejected(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        await engine.copy(file_entry("/a.txt"))
        fake_store.calls.clear()
        with pytest.raises(SelfReferenceRejectedError):
            await engine.paste_to_root(confirm_overwrite=make_confirm(True))
        assert fake_store.mutations == []

    async def test_paste_over_ancestor_is_rejected(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/x/x", "inner")
        await engine.cut(file_entry("/x/x"))
        fake_store.calls.clear()
        with pytest.raises(SelfReferenceRejectedError):
            await engine.paste_to_root(confirm_overwrite=make_confirm(True))
        assert fake_store.mutations == []
        assert fake_store.content("/x/x") == b"inner"

    async def test_source_missing(self, engine: TreeTransactionEngine, fake_store: InMemoryStore):
        fake_store.add_file("/a.txt", "a")
        fake_store.add_dir("/d")
        await engine.copy(file_entry("/a.txt"))
        del fake_store.nodes["/a.txt"]

        with pytest.raises(SourceMissingError):
            await engine.paste("/d")
        assert engine.clipboard_status() is None
        assert not fake_store.exists("/d/a.txt")

    async def test_cut_of_missing_item(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        await engine.copy(file_entry("/a.txt"))
        with pytest.raises(NotFoundError):
            await engine.cut(file_entry("/gone.txt"))
        assert engine.clipboard_status() is None

    async def test_empty_and_expired_clipboard(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore, clock: FakeClock
    ):
        with pytest.raises(ClipboardEmptyError):
            await engine.paste("/")

        fake_store.add_file("/d/a.txt", "a")
        await engine.copy(file_entry("/d/a.txt"))
        clock.advance(601)
        with pytest.raises(ClipboardExpiredError):
            await engine.paste("/")
        assert not fake_store.exists("/a.txt")

    async def test_overwrite_requires_confirmation(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "new")
        fake_store.add_file("/d/a.txt", "old")
        await engine.copy(file_entry("/a.txt"))

        with pytest.raises(ConflictError):
            await engine.paste("/d")

        declined = make_confirm(False)
        result = await engine.paste("/d", confirm_overwrite=declined)
        assert not result.completed
        assert len(declined.prompts) == 1
        assert fake_store.content("/d/a.txt") == b"old"

        result = await engine.paste("/d", confirm_overwrite=make_confirm(True))
        assert result.completed
        assert fake_store.content("/d/a.txt") == b"new"

    async def test_overwrite_replaces_directory(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/src/d/new.txt", "new")
        fake_store.add_file("/dst/d/stale.txt", "stale")
        await engine.copy(dir_entry("/src/d"))

        await engine.paste("/dst", confirm_overwrite=make_confirm(True))

        assert fake_store.children("/dst/d") == ["/dst/d/new.txt"]

    async def test_overwrite_refused_with_unsaved_documents(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_file("/a.txt", "new")
        fake_store.add_file("/d/a.txt", "old")
        handle = await overlay.open("/d/a.txt")
        await overlay.write(handle, "editing")
        await engine.copy(file_entry("/a.txt"))
        confirm = make_confirm(True)

        with pytest.raises(ConflictError):
            await engine.paste("/d", confirm_overwrite=confirm)
        assert confirm.prompts == []
        assert fake_store.content("/d/a.txt") == b"old"

    async def test_paste_keeps_unsaved_draft_missing_on_remote(
        self,
        engine: TreeTransactionEngine,
        overlay: DocumentOverlay,
        fake_store: InMemoryStore,
    ):
        fake_store.add_dir("/archive")
        fake_store.add_file("/d/b.md", "remote")
        draft = await overlay.open("/archive/b.md")
        await overlay.write(draft, "my unsaved draft")
        await overlay.open("/d/b.md")
        await engine.cut(file_entry("/d/b.md"))
        fake_store.calls.clear()

        with pytest.raises(ConflictError):
            await engine.paste("/archive", confirm_overwrite=make_confirm(True))

        assert fake_store.mutations == []
        assert not fake_store.exists("/archive/b.md")
        assert fake_store.content("/d/b.md") == b"remote"
        assert engine.clipboard_status() == "Cut: b.md"
        assert overlay.get(draft).content == b"my unsaved draft"
        assert overlay.cache_path(draft).read_bytes() == b"my unsaved draft"

    async def test_failed_cut_paste_clears_clipboard(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        fake_store.add_dir("/d")
        await engine.cut(file_entry("/a.txt"))
        fake_store.fail("put", "/d/a.txt", status=500)

        with pytest.raises(RemoteStoreError):
            await engine.paste("/d")

        assert engine.clipboard_status() is None
        assert fake_store.content("/a.txt") == b"a"

    async def test_failed_copy_paste_keeps_clipboard(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        fake_store.add_dir("/d")
        await engine.copy(file_entry("/a.txt"))
        fake_store.fail("put", "/d/a.txt", status=500, times=1)

        with pytest.raises(RemoteStoreError):
            await engine.paste("/d")
        assert engine.clipboard_status() == "Copy: a.txt"
        await engine.paste("/d")
        assert fake_store.content("/d/a.txt") == b"a"


class TestUnderBasePath:
    @pytest.fixture
    def base_path(self) -> str:
        return "/notes"

    async def test_paste_to_root_uses_base_path(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        fake_store.add_file("/notes/sub/a.txt", "a")
        await engine.copy(file_entry("/notes/sub/a.txt"))
        result = await engine.paste_to_root()
        assert result.destination == "/notes/a.txt"

    async def test_root_target_is_replaced_by_base(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore
    ):
        result = await engine.create_file("x.md", TargetPath("/"))
        assert result.destination == "/notes/x.md"
        assert fake_store.exists("/notes/x.md")


class TestTransfer:
    async def test_upload_next_to_selected_file(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore, tmp_path: Path
    ):
        fake_store.add_file("/d/selected.md", "x")
        local = tmp_path / "photo.jpg"
        local.write_bytes(b"\xff\xd8")

        summary = await engine.upload([local], TargetPath("/d/selected.md"))

        assert summary.success == 1
        assert fake_store.content("/d/photo.jpg") == b"\xff\xd8"

    async def test_download_into_local_sync_path(
        self, engine: TreeTransactionEngine, fake_store: InMemoryStore, tmp_path: Path
    ):
        fake_store.add_file("/d/a.txt", "a")
        summary = await engine.download(dir_entry("/d"))
        assert summary.success == 1
        assert (tmp_path / "mirror" / "d" / "a.txt").read_bytes() == b"a"

    async def test_download_needs_local_root(
        self, store: RemoteStoreClient, overlay: DocumentOverlay, fake_store: InMemoryStore
    ):
        fake_store.add_file("/a.txt", "a")
        engine = TreeTransactionEngine(store, overlay)
        with pytest.raises(ValidationError):
            await engine.download(file_entry("/a.txt"))
