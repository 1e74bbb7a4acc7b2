"""
Synchronization of the embedding store with the live bookmark tree.

reconcile():
1. List the live tree once and the stored ids once
2. Delete records whose item no longer exists (one batch)
3. Partition live items without a record into folders and bookmarks
4. Folders: title + full path texts, computed inline
5. Bookmarks: page content through the ContentCollector (bounded concurrency)
6. One embed_batch call over all texts
7. Regroup vectors per item and kind, save one record per item id

The engine assumes it is the only writer during a pass; callers that
also react to tree events should serialize them against reconcile().
"""

import logging
from typing import Callable, Optional

from .content import ContentCollector
from .embedding import BatchEmbedder
from .embedding_store import EmbeddingStore
from .errors import PreconditionViolation
from .paths import FolderPathBuilder
from .providers.base import ItemTree
from .types import EmbeddingKind, EmbeddingRecord, Item, PendingText, SyncResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def group_embeddings(
    pending: list[PendingText],
    vectors: list,
) -> dict[str, EmbeddingRecord]:
    """Regroup positional embed_batch results into one record per item id."""
    if len(pending) != len(vectors):
        raise ValueError(f"{len(vectors)} vectors for {len(pending)} texts")
    records: dict[str, EmbeddingRecord] = {}
    for entry, vector in zip(pending, vectors):
        records.setdefault(entry.item_id, {})[entry.kind] = vector
    return records


class SyncEngine:
    """
    Keeps the embedding store consistent with the item tree.

    Also provides the single-item embedding path used by event handlers.
    """

    def __init__(
        self,
        tree: ItemTree,
        store: EmbeddingStore,
        embedder: BatchEmbedder,
        collector: ContentCollector,
        paths: FolderPathBuilder,
    ):
        self._tree = tree
        self._store = store
        self._embedder = embedder
        self._collector = collector
        self._paths = paths

    # -------------------------------------------------------------------------
    # Single-item embedding
    # -------------------------------------------------------------------------

    async def container_texts(self, folder: Item) -> list[PendingText]:
        """Title and full-path texts of a folder."""
        title, full_path = await self._paths.texts(folder)
        return [
            PendingText(folder.id, title, EmbeddingKind.CONTAINER_TITLE),
            PendingText(folder.id, full_path, EmbeddingKind.CONTAINER_PATH),
        ]

    async def embed_container(self, folder: Item) -> EmbeddingRecord:
        """Embeddings for a folder's title and full path (either may be None)."""
        pending = await self.container_texts(folder)
        vectors = await self._embedder.embed_batch([p.text for p in pending])
        record = group_embeddings(pending, vectors).get(folder.id, {})
        logger.info(
            "Folder embeddings calculated for %s - title: %s, path: %s",
            folder.id,
            "yes" if record.get(EmbeddingKind.CONTAINER_TITLE) else "no",
            "yes" if record.get(EmbeddingKind.CONTAINER_PATH) else "no",
        )
        return record

    async def embed_leaf(self, leaf: Item) -> EmbeddingRecord:
        """Embedding of a bookmark's page content (None if it had too little)."""
        content = await self._collector.acquire(leaf)
        vector = await self._embedder.embed_one(content)
        if vector is None:
            logger.warning("Content of bookmark %s could not be embedded", leaf.id)
        return {EmbeddingKind.LEAF_CONTENT: vector}

    async def embed_item(self, item: Item) -> EmbeddingRecord:
        if item.is_container:
            return await self.embed_container(item)
        return await self.embed_leaf(item)

    async def refresh_item(self, item: Item) -> EmbeddingRecord:
        """
        Embed one item and replace its stored record.

        Raises:
            PreconditionViolation: If the record holds a kind its item may not
        """
        record = await self.embed_item(item)
        allowed = EmbeddingKind.for_item_kind(item.kind)
        stray = [kind.value for kind in record if kind not in allowed]
        if stray:
            raise PreconditionViolation(f"{item.id} is a {item.kind.value} and cannot hold {', '.join(stray)}")
        await self._store.save(item.id, record)
        return record

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def remove_orphans(self, live_ids: set[str], stored_ids: list[str]) -> list[str]:
        """Delete records of items that are no longer in the tree."""
        orphaned = [item_id for item_id in stored_ids if item_id not in live_ids]
        logger.info("Found %d orphaned embeddings", len(orphaned))
        if orphaned:
            await self._store.delete(orphaned)
        return orphaned

    async def add_missing(
        self,
        items: list[Item],
        stored_ids: list[str],
        on_progress: Optional[ProgressCallback] = None,
        result: Optional[SyncResult] = None,
    ) -> SyncResult:
        """Embed and save every live item that has no stored record."""
        result = result if result is not None else SyncResult()
        stored = set(stored_ids)
        missing = [item for item in items if item.id not in stored]
        logger.info("Found %d nodes without embeddings", len(missing))
        if not missing:
            return result

        folders = [item for item in missing if item.is_container]
        leaves = [item for item in missing if item.is_leaf]
        result.missing_containers = len(folders)
        result.missing_leaves = len(leaves)
        total = len(missing)
        logger.info("Processing %d folders and %d bookmarks", len(folders), len(leaves))

        def report(done: int) -> None:
            if on_progress is None:
                return
            try:
                on_progress(done, total)
            except Exception as e:
                logger.warning("Progress callback failed: %s", e)

        pending: list[PendingText] = []
        processed = 0

        # Folders are fast, report each one as it is done
        for folder in folders:
            pending.extend(await self.container_texts(folder))
            processed += 1
            report(processed)

        # Bookmarks load pages; progress continues from the folder count
        folder_count = processed
        pending.extend(await self._collector.collect(
            leaves, lambda current, _total: report(folder_count + current),
        ))

        logger.info("Total destination contents to embed: %d", len(pending))
        vectors = await self._embedder.embed_batch([p.text for p in pending])
        records = group_embeddings(pending, vectors)

        result.embedded_texts = sum(1 for v in vectors if v is not None)
        result.null_embeddings = len(vectors) - result.embedded_texts
        result.saved = await self._store.save_all(records)
        logger.info("Saved embeddings for %d nodes", result.saved)
        return result

    async def reconcile(self, on_progress: Optional[ProgressCallback] = None) -> SyncResult:
        """
        Align the store with the live tree: remove orphans, add missing.

        Raises:
            EmbeddingProviderFailure: If the batch inference fails. Orphan
                removal has happened; no new records were saved.
        """
        logger.info("Starting sync of destination embeddings...")

        items = await self._tree.list_all_items()
        live_ids = {item.id for item in items}
        logger.info("Found %d bookmark/folder nodes", len(live_ids))

        stored_ids = await self._store.list_ids()
        logger.info("Found %d embedding entries in storage", len(stored_ids))

        result = SyncResult(live=len(live_ids), stored=len(stored_ids))
        result.orphaned = await self.remove_orphans(live_ids, stored_ids)
        await self.add_missing(items, stored_ids, on_progress, result)

        logger.info("Sync of destination embeddings completed: %s", result.to_dict())
        return result
