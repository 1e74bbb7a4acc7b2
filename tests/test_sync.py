"""
Tests for reconciling the embedding store with the bookmark tree.
"""

import pytest
import pytest_asyncio

from perch.config import DEFAULT_EXCLUDED_ROOTS
from perch.content import ContentCollector
from perch.embedding import BatchEmbedder
from perch.errors import EmbeddingProviderFailure, PreconditionViolation
from perch.limiter import ConcurrencyLimiter
from perch.paths import FolderPathBuilder
from perch.sync import SyncEngine, group_embeddings
from perch.tree import BookmarkTree
from perch.types import EmbeddingKind, PendingText

from conftest import MockEmbeddingModel, ScriptedContentSource, bookmark, folder

TITLE = EmbeddingKind.CONTAINER_TITLE
PATH = EmbeddingKind.CONTAINER_PATH
PAGE = EmbeddingKind.LEAF_CONTENT


@pytest_asyncio.fixture
async def build_engine(store):
    """Factory for a SyncEngine over an in-memory tree."""
    limiters = []

    def factory(items, pages=None, model=None, concurrency=3):
        tree = BookmarkTree.from_items(items)
        model = model or MockEmbeddingModel()
        source = ScriptedContentSource(pages or {})
        limiter = ConcurrencyLimiter(concurrency)
        limiters.append(limiter)
        engine = SyncEngine(
            tree,
            store,
            BatchEmbedder(model),
            ContentCollector(source, limiter),
            FolderPathBuilder(tree, DEFAULT_EXCLUDED_ROOTS),
        )
        return engine, tree, model, source

    yield factory

    for limiter in limiters:
        await limiter.close()


class TestGroupEmbeddings:

    def test_regroups_by_item_and_kind(self):
        pending = [
            PendingText("f1", "Work", TITLE),
            PendingText("f1", "Work", PATH),
            PendingText("b1", "page", PAGE),
        ]
        records = group_embeddings(pending, [[1.0], [2.0], None])
        assert records == {
            "f1": {TITLE: [1.0], PATH: [2.0]},
            "b1": {PAGE: None},
        }

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            group_embeddings([PendingText("a", "x", PAGE)], [])


class TestReconcile:

    @pytest.mark.asyncio
    async def test_short_page_and_root_level_folder(self, build_engine, store):
        engine, tree, model, _ = build_engine(
            [bookmark("A", "Greeting", "https://a.example"), folder("B", "Work")],
            pages={"https://a.example": "hi"},
        )

        result = await engine.reconcile()

        assert set(await store.list_ids()) == {"A", "B"}
        assert await store.get("A") == {PAGE: None}
        record_b = await store.get("B")
        assert record_b[TITLE] == model.embed("Work")
        # Root-level folder: the path is just its own title
        assert record_b[PATH] == record_b[TITLE]
        assert model.calls == [["Work", "Work"]]
        assert result.missing_containers == 1
        assert result.missing_leaves == 1
        assert result.embedded_texts == 2
        assert result.null_embeddings == 1
        assert result.saved == 2

    @pytest.mark.asyncio
    async def test_nested_folder_path(self, build_engine, store):
        engine, _, model, _ = build_engine([
            folder("toolbar_____", "Bookmarks Toolbar"),
            folder("w", "Work", "toolbar_____"),
            folder("p", "Programming", "w"),
        ])

        await engine.reconcile()

        assert "Work Programming" in model.embedded_texts
        record = await store.get("p")
        assert record[PATH] == model.embed("Work Programming")
        assert record[TITLE] == model.embed("Programming")

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, build_engine, store):
        engine, _, model, source = build_engine(
            [folder("f", "Recipes"), bookmark("b", "Pasta", "https://pasta.example", "f")],
            pages={"https://pasta.example": "How to cook pasta"},
        )
        await engine.reconcile()
        writes = store.write_count
        calls = len(model.calls)
        fetched = len(source.requested)

        result = await engine.reconcile()

        assert result.orphaned == []
        assert result.missing == 0
        assert result.saved == 0
        assert not result.changed
        assert store.write_count == writes
        assert len(model.calls) == calls
        assert len(source.requested) == fetched

    @pytest.mark.asyncio
    async def test_null_records_count_as_present(self, build_engine, store):
        engine, _, model, _ = build_engine([
            folder("blank", ""),
            bookmark("b", "Nothing", "https://nothing.example"),
        ])

        first = await engine.reconcile()
        second = await engine.reconcile()

        assert first.saved == 2
        assert first.embedded_texts == 0
        assert model.calls == []
        assert second.missing == 0

    @pytest.mark.asyncio
    async def test_orphans_removed(self, build_engine, store):
        engine, _, _, _ = build_engine([folder("f", "Travel")])
        await store.save_all({
            "ghost": {PAGE: None},
            "f": {TITLE: None, PATH: None},
        })

        result = await engine.reconcile()

        assert result.orphaned == ["ghost"]
        assert result.missing == 0
        assert await store.list_ids() == ["f"]

    @pytest.mark.asyncio
    async def test_only_missing_items_embedded(self, build_engine, store):
        engine, _, model, source = build_engine(
            [
                folder("f", "Travel"),
                bookmark("b1", "Rome", "https://rome.example", "f"),
                bookmark("b2", "Paris", "https://paris.example", "f"),
            ],
            pages={"https://rome.example": "Rome guide", "https://paris.example": "Paris guide"},
        )
        await store.save_all({"f": {TITLE: None, PATH: None}, "b1": {PAGE: None}})

        result = await engine.reconcile()

        assert result.missing_containers == 0
        assert result.missing_leaves == 1
        assert source.requested == ["https://paris.example"]
        assert model.calls == [["Paris guide"]]

    @pytest.mark.asyncio
    async def test_progress_folders_then_leaves(self, build_engine):
        engine, _, _, _ = build_engine(
            [
                folder("f1", "News"),
                folder("f2", "Sport"),
                bookmark("b1", "One", "https://1.example", "f1"),
                bookmark("b2", "Two", "https://2.example", "f1"),
                bookmark("b3", "Three", "https://3.example", "f2"),
            ],
            pages={"https://1.example": "first page", "https://2.example": "second page"},
        )
        calls = []

        await engine.reconcile(lambda current, total: calls.append((current, total)))

        assert calls[:2] == [(1, 5), (2, 5)]
        assert sorted(c for c, _ in calls[2:]) == [3, 4, 5]
        assert all(total == 5 for _, total in calls)

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, build_engine, store):
        engine, _, _, _ = build_engine(
            [
                folder("f1", "News"),
                bookmark("b1", "One", "https://1.example", "f1"),
            ],
            pages={"https://1.example": "first page"},
        )

        def broken(current, total):
            raise RuntimeError("display gone")

        result = await engine.reconcile(broken)

        assert result.saved == 2
        assert sorted(await store.list_ids()) == ["b1", "f1"]

    @pytest.mark.asyncio
    async def test_content_failure_is_isolated(self, build_engine, store):
        engine, _, model, source = build_engine(
            [
                bookmark("ok", "Fine", "https://ok.example"),
                bookmark("bad", "Broken", "https://bad.example"),
            ],
            pages={"https://ok.example": "a working page", "https://bad.example": "unused"},
        )
        source.failures["https://bad.example"] = RuntimeError("tab crashed")

        result = await engine.reconcile()

        assert await store.get("ok") == {PAGE: model.embed("a working page")}
        assert await store.get("bad") == {PAGE: None}
        assert result.saved == 2

    @pytest.mark.asyncio
    async def test_model_failure_saves_nothing(self, build_engine, store):
        model = MockEmbeddingModel()
        model.fail = RuntimeError("model crashed")
        engine, _, _, _ = build_engine([folder("f", "Music")], model=model)
        await store.save("orphan", {PAGE: None})

        with pytest.raises(EmbeddingProviderFailure):
            await engine.reconcile()

        assert await store.list_ids() == []

    @pytest.mark.asyncio
    async def test_one_embed_call_for_everything(self, build_engine):
        engine, _, model, _ = build_engine(
            [
                folder("f", "Garden"),
                bookmark("b1", "Roses", "https://roses.example", "f"),
                bookmark("b2", "Tulips", "https://tulips.example", "f"),
            ],
            pages={"https://roses.example": "all about roses", "https://tulips.example": "all about tulips"},
        )

        await engine.reconcile()

        assert len(model.calls) == 1
        assert model.calls[0] == ["Garden", "Garden", "all about roses", "all about tulips"]


class TestSingleItem:

    @pytest.mark.asyncio
    async def test_refresh_container_replaces_record(self, build_engine, store):
        engine, tree, model, _ = build_engine([folder("f", "Old name")])
        await engine.reconcile()

        await tree.update_item("f", title="New name")
        record = await engine.refresh_item(await tree.get_item("f"))

        assert record[TITLE] == model.embed("New name")
        assert await store.get("f") == record

    @pytest.mark.asyncio
    async def test_refresh_rejects_kind_mismatch(self, build_engine, store, monkeypatch):
        engine, tree, _, _ = build_engine([folder("f", "Work")])

        async def leaf_record(item):
            return {PAGE: [1.0, 0.0]}

        monkeypatch.setattr(engine, "embed_item", leaf_record)

        with pytest.raises(PreconditionViolation, match="bookmarkPage"):
            await engine.refresh_item(await tree.get_item("f"))
        assert await store.get("f") == {}

    @pytest.mark.asyncio
    async def test_embed_leaf_without_content(self, build_engine):
        engine, tree, model, _ = build_engine([bookmark("b", "Dead link", "https://dead.example")])

        record = await engine.embed_leaf(await tree.get_item("b"))

        assert record == {PAGE: None}
        assert model.calls == []
