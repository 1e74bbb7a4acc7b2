"""
Collaborator interfaces for perch.

These define the interfaces of the collaborators perch depends on but does
not own: the item tree, the leaf content source and the embedding model.
They are typing Protocols, so any class with matching methods qualifies.
"""

from typing import Optional, Protocol, runtime_checkable

from ..types import Item


# -----------------------------------------------------------------------------
# Item Tree
# -----------------------------------------------------------------------------

@runtime_checkable
class ItemTree(Protocol):
    """
    The host bookmark tree.

    Ids are opaque strings, stable across moves. Only ``move_item`` changes
    anything; perch never creates or deletes items except when seeding.
    """

    async def list_all_items(self) -> list[Item]:
        """Every folder and bookmark currently in the tree, the root node excluded."""
        ...

    async def get_item(self, item_id: str) -> Item:
        """
        Look up one item.

        Raises:
            ItemNotFound: If the id does not resolve
        """
        ...

    async def move_item(self, item_id: str, new_parent_id: str) -> None:
        """
        Re-parent an item.

        Moving an item to its current parent is a no-op, not an error.
        """
        ...

    async def create_item(
        self,
        title: str,
        *,
        url: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> Item:
        """Create a folder (no url) or a bookmark. Used for seeding."""
        ...


# -----------------------------------------------------------------------------
# Leaf Content
# -----------------------------------------------------------------------------

@runtime_checkable
class ContentSource(Protocol):
    """
    Acquires readable text for a bookmark.

    Example implementation:
        class StaticContent:
            async def acquire(self, item: Item) -> str:
                return PAGES[item.url]
    """

    async def acquire(self, item: Item) -> Optional[str]:
        """
        Return the text behind a bookmark.

        Implementations enforce their own load deadline and return partial
        text rather than failing when it expires.

        Raises:
            ContentUnavailable: If nothing could be acquired
        """
        ...


# -----------------------------------------------------------------------------
# Embedding Model
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingModel(Protocol):
    """
    Raw text-to-vector inference.

    Called once per batch, with texts that already passed the
    minimum-content screen. Must return exactly one vector per text.

    Example implementation:
        class SentenceTransformerModel:
            def __init__(self, model: str = "all-MiniLM-L6-v2"):
                from sentence_transformers import SentenceTransformer
                self._model = SentenceTransformer(model)

            @property
            def dimension(self) -> int:
                return self._model.get_sentence_embedding_dimension()

            def encode(self, texts: list[str]) -> list[list[float]]:
                return self._model.encode(texts).tolist()
    """

    @property
    def dimension(self) -> int:
        """Dimensionality of every vector this model produces."""
        ...

    def encode(self, texts: list[str]) -> list[list[float]]:
        """Embed a non-empty batch of texts."""
        ...


# -----------------------------------------------------------------------------
# Provider lookup
# -----------------------------------------------------------------------------

EMBEDDING = "embedding"
CONTENT = "content"


class ProviderRegistry:
    """
    Maps the provider names used in perch.toml to implementation classes.

    ``[embedding] name = "sentence-transformers"`` resolves here; the rest of
    the section is passed to the class as keyword arguments. Implementation
    modules import heavy libraries, so they are only imported on first lookup.
    """

    def __init__(self):
        self._classes: dict[str, dict[str, type]] = {EMBEDDING: {}, CONTENT: {}}
        self._imported = False

    def _import_builtin_providers(self) -> None:
        if self._imported:
            return
        self._imported = True
        # Each module registers its classes at import time
        from . import documents  # noqa: F401
        from . import embeddings  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        self._classes[EMBEDDING][name] = provider_class

    def register_content(self, name: str, provider_class: type) -> None:
        self._classes[CONTENT][name] = provider_class

    def _build(self, kind: str, name: str, params: dict | None):
        self._import_builtin_providers()
        classes = self._classes[kind]
        cls = classes.get(name)
        if cls is None:
            known = ", ".join(sorted(classes)) or "none"
            raise ValueError(f"No {kind} provider named '{name}' (known: {known})")
        try:
            return cls(**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"{kind} provider '{name}' is missing a dependency: {e}"
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingModel:
        return self._build(EMBEDDING, name, params)

    def create_content(self, name: str, params: dict | None = None) -> ContentSource:
        return self._build(CONTENT, name, params)

    def list_content_providers(self) -> list[str]:
        self._import_builtin_providers()
        return sorted(self._classes[CONTENT])


_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """The process-wide registry that provider modules add themselves to."""
    return _registry
