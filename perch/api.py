"""
Core API for organizing bookmarks by content.

- reconcile(): align the embedding store with the bookmark tree
- on_item_*(): keep it aligned as the tree changes
- on_item_created(): embed a new bookmark and move it to the best folder
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .content import ContentCollector
from .embedding import BatchEmbedder
from .embedding_store import EmbeddingStore
from .errors import ItemNotFound, PerchError
from .limiter import ConcurrencyLimiter
from .paths import FolderPathBuilder, children_index, collect_descendants
from .placement import PlacementEngine
from .providers.base import ContentSource, EmbeddingModel, ItemTree, get_registry
from .sync import SyncEngine
from .types import CreationMode, EmbeddingKind, Item, Placement, SyncResult, SyncStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class Organizer:
    """
    Keeps a vector index of a bookmark tree and files new bookmarks.

    Reconciliation and the event handlers are serialized with one lock, so
    an incremental update never interleaves with a sync pass.

    Example:
        async with Organizer(tree=BookmarkTree.load(path)) as org:
            await org.reconcile()
            await org.on_item_created(await tree.get_item(new_id))
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        tree: Optional[ItemTree] = None,
        store: Optional[EmbeddingStore] = None,
        model: Optional[EmbeddingModel] = None,
        content_source: Optional[ContentSource] = None,
    ) -> None:
        """
        Initialize or open an existing perch store.

        Args:
            store_path: Store directory. Uses PERCH_STORE_PATH or ~/.perch if not given.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            tree: Injected item tree (defaults to the configured bookmark file).
            store: Injected embedding store.
            model: Injected embedding model (shared, lazily loaded).
            content_source: Injected leaf content source.
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser().resolve() if store_path else get_default_store_path()
            self._config = load_or_create_config(path)
        self._store_path = self._config.path

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Collaborators (injected or created from config) ---
        registry = get_registry()
        if tree is None:
            tree = self._load_tree()
        self._tree = tree
        self._model = model if model is not None else registry.create_embedding(
            self._config.embedding.name, self._config.embedding.params,
        )
        self._content_source = content_source if content_source is not None else registry.create_content(
            self._config.content.name, self._config.content.params,
        )
        self._store = store if store is not None else EmbeddingStore(self._config.database_path)

        # --- Engines ---
        self._limiter = ConcurrencyLimiter(self._config.concurrency)
        self._embedder = BatchEmbedder(self._model, min_chars=self._config.min_content_chars)
        self._collector = ContentCollector(self._content_source, self._limiter)
        self._paths = FolderPathBuilder(self._tree, self._config.excluded_roots)
        self._sync = SyncEngine(self._tree, self._store, self._embedder, self._collector, self._paths)
        self._placement = PlacementEngine(self._tree, self._store)

        self._lock = asyncio.Lock()
        # Last-known children per container, for removals whose subtree is gone
        self._children: dict[str, list[str]] = {}
        self._snapshot_taken = False

    def _load_tree(self) -> ItemTree:
        from .tree import BookmarkTree

        if self._config.tree_path is None:
            raise PerchError(
                "No bookmark file configured.\n"
                f"Set [tree] path in {self._config.config_path} or pass --bookmarks."
            )
        return BookmarkTree.load(self._config.tree_path)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def tree(self) -> ItemTree:
        return self._tree

    @property
    def store(self) -> EmbeddingStore:
        return self._store

    @property
    def embedder(self) -> BatchEmbedder:
        return self._embedder

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    async def _refresh_snapshot(self) -> list[Item]:
        items = await self._tree.list_all_items()
        self._children = children_index(items)
        self._snapshot_taken = True
        return items

    async def _removed_descendants(self, item_id: str) -> list[str]:
        """
        Descendants of an item the tree has already forgotten.

        Without a snapshot from before the removal (a fresh process), every
        stored id missing from the live tree is taken to be part of the
        removed subtree.
        """
        if self._snapshot_taken:
            return collect_descendants(item_id, self._children)
        live = {item.id for item in await self._tree.list_all_items()}
        stale = [i for i in await self._store.list_ids() if i not in live and i != item_id]
        logger.info("No tree snapshot yet, treating %d unlisted records as descendants of %s", len(stale), item_id)
        return stale

    # -------------------------------------------------------------------------
    # Bulk operations
    # -------------------------------------------------------------------------

    async def reconcile(self, on_progress: Optional[ProgressCallback] = None) -> SyncResult:
        """Remove orphaned embeddings and embed every item that has none."""
        async with self._lock:
            result = await self._sync.reconcile(on_progress)
            await self._refresh_snapshot()
            return result

    async def status(self) -> SyncStatus:
        """How many live items have a stored record."""
        items = await self._tree.list_all_items()
        stored = set(await self._store.list_ids())
        return SyncStatus(
            total_items=len(items),
            synced_items=sum(1 for item in items if item.id in stored),
        )

    async def clear_all(self) -> int:
        """Delete every stored embedding. Returns the number of records removed."""
        async with self._lock:
            return await self._store.clear()

    async def reset(self, on_progress: Optional[ProgressCallback] = None) -> SyncResult:
        """Rebuild the index from scratch."""
        cleared = await self.clear_all()
        logger.info("Cleared %d records, re-syncing", cleared)
        return await self.reconcile(on_progress)

    async def place(self, item_id: str) -> Optional[Placement]:
        """
        File an existing bookmark into its best folder.

        Uses the stored embedding, embedding the bookmark first if it has
        no record yet.

        Raises:
            ItemNotFound: If the id does not resolve
            PerchError: If the item is a folder
        """
        async with self._lock:
            item = await self._tree.get_item(item_id)
            if not item.is_leaf:
                raise PerchError(f"Only bookmarks can be placed, {item_id} is a folder")
            record = await self._store.get(item_id)
            if EmbeddingKind.LEAF_CONTENT not in record:
                record = await self._sync.refresh_item(item)
            placement = await self._placement.place_leaf(record.get(EmbeddingKind.LEAF_CONTENT), item_id)
            await self._refresh_snapshot()
            return placement

    # -------------------------------------------------------------------------
    # Tree events
    # -------------------------------------------------------------------------

    async def on_item_created(
        self,
        item: Item,
        mode: CreationMode = CreationMode.INTERACTIVE,
    ) -> Optional[Placement]:
        """
        Embed a new item; a new bookmark is then moved to its best folder.

        Nothing is embedded or moved in SEEDING mode. Failures are logged,
        not raised.
        """
        if mode is CreationMode.SEEDING:
            logger.info("Skipping smart bookmark relocation of %s: seeding", item.id)
            return None

        async with self._lock:
            try:
                if item.is_container:
                    logger.info("New folder created: %s, %s", item.id, item.title)
                    await self._sync.refresh_item(item)
                    return None

                logger.info("New bookmark created: %s, %s", item.id, item.title)
                record = await self._sync.refresh_item(item)
                return await self._placement.place_leaf(record.get(EmbeddingKind.LEAF_CONTENT), item.id)
            except Exception as e:
                logger.error("Failed to save embeddings and relocate %s, skipping: %s", item.id, e)
                return None
            finally:
                await self._refresh_snapshot()

    async def on_item_changed(self, item_id: str, changed_fields: dict) -> bool:
        """
        Re-embed after a folder title or bookmark URL change.

        Returns:
            True if the item was re-embedded
        """
        async with self._lock:
            if not self._snapshot_taken:
                await self._refresh_snapshot()
            try:
                item = await self._tree.get_item(item_id)
            except ItemNotFound:
                logger.error("Bookmark/folder with id %s not found, skipping", item_id)
                return False

            try:
                if item.is_container and "title" in changed_fields:
                    logger.info("Folder name changed: re-embedding folder with new title %r", item.title)
                    await self._sync.refresh_item(item)
                    return True
                if item.is_leaf and "url" in changed_fields:
                    logger.info("Bookmark URL changed: re-embedding bookmark with new URL %r", item.url)
                    await self._sync.refresh_item(item)
                    return True
            except Exception as e:
                logger.error("Failed to handle changed embeddings for %s, skipping: %s", item_id, e)
            return False

    async def on_item_moved(self, item_id: str) -> bool:
        """
        Re-embed a moved folder (its path changed). Bookmark moves are ignored.

        Returns:
            True if the item was re-embedded
        """
        async with self._lock:
            try:
                item = await self._tree.get_item(item_id)
                if not item.is_container:
                    return False
                logger.info("Folder moved: re-embedding folder %r", item.title)
                await self._sync.refresh_item(item)
                return True
            except ItemNotFound:
                logger.error("Moved item %s not found, skipping", item_id)
                return False
            except Exception as e:
                logger.error("Failed to handle moved embeddings for %s, skipping: %s", item_id, e)
                return False
            finally:
                await self._refresh_snapshot()

    async def on_item_removed(self, item_id: str, descendant_ids: Optional[list[str]] = None) -> int:
        """
        Delete the records of a removed item and all of its descendants.

        Args:
            item_id: The removed item
            descendant_ids: Its descendants; computed from the last-known
                tree snapshot when not given

        Returns:
            Number of records deleted
        """
        async with self._lock:
            if descendant_ids is None:
                descendant_ids = await self._removed_descendants(item_id)
            ids = [item_id, *descendant_ids]
            deleted = await self._store.delete(ids)
            logger.info("Removed embeddings of %s and %d descendants", item_id, len(descendant_ids))
            await self._refresh_snapshot()
            return deleted

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """
        Release resources: limiter workers, store connection, loaded model.
        """
        await self._limiter.close()
        self._store.close()
        release = getattr(self._model, "release", None)
        if release is not None:
            release()

        # Remove ops log handler to avoid handler accumulation
        if self._ops_log_handler is not None:
            logging.getLogger("perch").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    async def __aenter__(self) -> "Organizer":
        await self._refresh_snapshot()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
