"""
Data types for the bookmark embedding index.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


Vector = list[float]


class ItemKind(str, Enum):
    """Kind of node in the item tree."""
    CONTAINER = "container"
    LEAF = "leaf"


class EmbeddingKind(str, Enum):
    """Which textual facet of an item a vector represents.

    Values are the keys used in persisted records.
    """
    CONTAINER_TITLE = "folderTitle"
    CONTAINER_PATH = "folderPath"
    LEAF_CONTENT = "bookmarkPage"

    @classmethod
    def for_item_kind(cls, kind: ItemKind) -> tuple["EmbeddingKind", ...]:
        """Embedding kinds an item of the given kind may hold."""
        if kind is ItemKind.CONTAINER:
            return (cls.CONTAINER_TITLE, cls.CONTAINER_PATH)
        return (cls.LEAF_CONTENT,)


# A stored record: one vector (or None) per embedding kind of an item
EmbeddingRecord = dict[EmbeddingKind, Optional[Vector]]

# Canonical ordering of kinds within a record (used for stable ranking)
KIND_ORDER = (
    EmbeddingKind.CONTAINER_TITLE,
    EmbeddingKind.CONTAINER_PATH,
    EmbeddingKind.LEAF_CONTENT,
)


class CreationMode(str, Enum):
    """How a newly created item should be handled.

    SEEDING suppresses embedding and relocation for bulk inserts made by
    the tool itself.
    """
    INTERACTIVE = "interactive"
    SEEDING = "seeding"


@dataclass
class Item:
    """
    A node of the external item tree.

    Attributes:
        id: Opaque identifier, stable across moves
        kind: Container (folder) or leaf (bookmark)
        title: Display title
        url: Resource locator (leaves only)
        parent_id: Parent container id, None for the root
        children: Child ids (containers only)
    """
    id: str
    kind: ItemKind
    title: str = ""
    url: Optional[str] = None
    parent_id: Optional[str] = None
    children: list[str] = field(default_factory=list)

    @property
    def is_container(self) -> bool:
        return self.kind is ItemKind.CONTAINER

    @property
    def is_leaf(self) -> bool:
        return self.kind is ItemKind.LEAF

    @property
    def placement_target_id(self) -> Optional[str]:
        """The container a leaf would be moved into when matching this item."""
        return self.id if self.is_container else self.parent_id


@dataclass(frozen=True)
class PendingText:
    """Text waiting to be embedded for one facet of one item."""
    item_id: str
    text: Optional[str]
    kind: EmbeddingKind


@dataclass
class Destination:
    """
    Read-model row: a stored vector joined with current item metadata.

    Recomputed on every placement query, never persisted.
    """
    item_id: str
    title: str
    target_id: Optional[str]
    kind: EmbeddingKind
    vector: Optional[Vector]
    similarity: Optional[float] = None


@dataclass
class Placement:
    """Outcome of placing a leaf: the chosen container and why."""
    leaf_id: str
    target_id: str
    best: Destination
    # False when the leaf already sat in the target folder
    moved: bool = True

    @property
    def similarity(self) -> float:
        return self.best.similarity or 0.0


@dataclass
class SyncResult:
    """Summary of one reconciliation pass."""
    live: int = 0
    stored: int = 0
    orphaned: list[str] = field(default_factory=list)
    missing_containers: int = 0
    missing_leaves: int = 0
    embedded_texts: int = 0
    null_embeddings: int = 0
    saved: int = 0

    @property
    def missing(self) -> int:
        return self.missing_containers + self.missing_leaves

    @property
    def changed(self) -> bool:
        return bool(self.orphaned or self.saved)

    def to_dict(self) -> dict:
        return {
            "live": self.live,
            "stored": self.stored,
            "orphaned": len(self.orphaned),
            "missing_containers": self.missing_containers,
            "missing_leaves": self.missing_leaves,
            "embedded_texts": self.embedded_texts,
            "null_embeddings": self.null_embeddings,
            "saved": self.saved,
        }


@dataclass
class SyncStatus:
    """How much of the live tree currently has stored embeddings."""
    total_items: int
    synced_items: int

    @property
    def is_synced(self) -> bool:
        return self.synced_items >= self.total_items

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "synced_items": self.synced_items,
            "is_synced": self.is_synced,
        }
