"""
Shared pytest fixtures for perch tests.

Provides mock providers to avoid loading ML models or touching the network
during testing.
"""

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

from perch.api import Organizer
from perch.config import StoreConfig
from perch.embedding_store import EmbeddingStore
from perch.errors import ContentUnavailable
from perch.tree import BookmarkTree
from perch.types import Item, ItemKind


class MockEmbeddingModel:
    """
    Deterministic mock embedding model for testing.

    Texts listed in ``vectors`` get exactly that vector; anything else gets
    a vector derived from the text hash - no ML model loading.
    """

    model_name = "mock-model"

    def __init__(self, dimension: int = 8, vectors: Optional[dict[str, list[float]]] = None):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.calls: list[list[str]] = []
        self.fail: Optional[Exception] = None
        self.released = False

    def embed(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        h = hashlib.md5(text.encode()).digest()
        return [(h[i % len(h)] + 1) / 256.0 for i in range(self.dimension)]

    def encode(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail is not None:
            raise self.fail
        return [self.embed(t) for t in texts]

    def release(self) -> None:
        self.released = True

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]


class ScriptedContentSource:
    """
    Content source serving page text from a dict keyed by URL.

    URLs in ``failures`` raise the given exception; URLs missing from
    ``pages`` raise ContentUnavailable. Tracks in-flight acquisitions.
    """

    def __init__(self, pages: Optional[dict[str, str]] = None, delay: float = 0.0):
        self.pages = dict(pages or {})
        self.failures: dict[str, Exception] = {}
        self.delay = delay
        self.requested: list[str] = []
        self.in_flight = 0
        self.peak = 0

    async def acquire(self, item: Item) -> Optional[str]:
        self.requested.append(item.url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if item.url in self.failures:
                raise self.failures[item.url]
            if item.url not in self.pages:
                raise ContentUnavailable(f"No page for {item.url}")
            return self.pages[item.url]
        finally:
            self.in_flight -= 1


def folder(id: str, title: str, parent_id: Optional[str] = None) -> Item:
    """Create a test folder Item."""
    return Item(id=id, kind=ItemKind.CONTAINER, title=title, parent_id=parent_id)


def bookmark(id: str, title: str, url: str, parent_id: Optional[str] = None) -> Item:
    """Create a test bookmark Item."""
    return Item(id=id, kind=ItemKind.LEAF, title=title, url=url, parent_id=parent_id)


FIREFOX_BACKUP = {
    "guid": "root________",
    "title": "",
    "typeCode": 2,
    "type": "text/x-moz-place-container",
    "root": "placesRoot",
    "children": [
        {
            "guid": "menu________",
            "title": "menu",
            "typeCode": 2,
            "type": "text/x-moz-place-container",
            "root": "bookmarksMenuFolder",
            "children": [
                {
                    "guid": "workFolder01",
                    "title": "Work",
                    "typeCode": 2,
                    "type": "text/x-moz-place-container",
                    "children": [
                        {
                            "guid": "pythonDocs01",
                            "title": "Python docs",
                            "typeCode": 1,
                            "type": "text/x-moz-place",
                            "uri": "https://docs.python.org/3/",
                        },
                        {
                            "guid": "separator001",
                            "typeCode": 3,
                            "type": "text/x-moz-place-separator",
                        },
                        {
                            "guid": "progFolder01",
                            "title": "Programming",
                            "typeCode": 2,
                            "type": "text/x-moz-place-container",
                            "children": [],
                        },
                    ],
                },
            ],
        },
        {
            "guid": "unfiled_____",
            "title": "unfiled",
            "typeCode": 2,
            "type": "text/x-moz-place-container",
            "root": "unfiledBookmarksFolder",
            "children": [
                {
                    "guid": "recipes00001",
                    "title": "Pasta recipes",
                    "typeCode": 1,
                    "type": "text/x-moz-place",
                    "uri": "https://example.com/pasta",
                },
            ],
        },
    ],
}


@pytest.fixture
def mock_model():
    """Create a fresh MockEmbeddingModel instance."""
    return MockEmbeddingModel()


@pytest.fixture
def content_source():
    """Create an empty ScriptedContentSource; tests fill in pages."""
    return ScriptedContentSource()


@pytest.fixture
def store(tmp_path):
    """EmbeddingStore in a temporary directory."""
    s = EmbeddingStore(tmp_path / "embeddings.db")
    yield s
    s.close()


@pytest.fixture
def backup_file(tmp_path):
    """A Firefox bookmark backup written to disk."""
    path = tmp_path / "bookmarks.json"
    path.write_text(json.dumps(FIREFOX_BACKUP), encoding="utf-8")
    return path


@pytest_asyncio.fixture
async def make_organizer(tmp_path, store, content_source):
    """
    Factory for Organizers over an in-memory tree.

    Usage:
        org = make_organizer([folder("f1", "Work")], model=MockEmbeddingModel())
    """
    created: list[Organizer] = []

    def factory(items, model=None, concurrency: int = 3) -> Organizer:
        config = StoreConfig(path=tmp_path / "store", concurrency=concurrency)
        tree = items if isinstance(items, BookmarkTree) else BookmarkTree.from_items(items)
        org = Organizer(
            config=config,
            tree=tree,
            store=store,
            model=model if model is not None else MockEmbeddingModel(),
            content_source=content_source,
        )
        created.append(org)
        return org

    yield factory

    # close() is idempotent; tests that already closed their organizer are fine
    for org in created:
        await org.close()


@pytest_asyncio.fixture
async def limiter():
    """ConcurrencyLimiter with the default bound, closed after the test."""
    from perch.limiter import ConcurrencyLimiter

    lim = ConcurrencyLimiter(3)
    yield lim
    await lim.close()


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Keep error logs and default stores inside the test directory."""
    monkeypatch.setenv("PERCH_STORE_PATH", str(tmp_path / "env-store"))
    monkeypatch.delenv("PERCH_VERBOSE", raising=False)
