"""
Similarity ranking and placement of new bookmarks.

Ties between equal similarity scores keep destination order: items in the
order the tree lists them, kinds in canonical order within an item. The
first destination seen wins.
"""

import logging
import math
from typing import Optional

from .embedding import validate_vector
from .embedding_store import EmbeddingStore
from .providers.base import ItemTree
from .types import Destination, Placement, Vector

logger = logging.getLogger(__name__)

# Number of ranked candidates written to the debug log
LOG_TOP_N = 30


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    dot(a, b) / (|a| * |b|).

    Returns NaN when either vector has zero magnitude or the lengths differ.
    """
    if len(a) != len(b):
        return math.nan
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return math.nan
    # Clamp float error so self-similarity never exceeds 1
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def rank_destinations(query: Vector, destinations: list[Destination]) -> list[Destination]:
    """
    Score destinations against ``query``, best first.

    Destinations without a usable vector, and those whose similarity is
    not a number, are dropped. The sort is stable.
    """
    scored = []
    for destination in destinations:
        vector = destination.vector
        if not vector:
            continue
        similarity = cosine_similarity(query, vector)
        if math.isnan(similarity):
            continue
        destination.similarity = similarity
        scored.append(destination)
    return sorted(scored, key=lambda d: d.similarity, reverse=True)


class PlacementEngine:
    """Chooses the best folder for a bookmark and moves it there."""

    def __init__(self, tree: ItemTree, store: EmbeddingStore):
        self._tree = tree
        self._store = store

    async def load_destinations(self, exclude_id: Optional[str] = None) -> list[Destination]:
        """
        Every stored vector joined with current item metadata.

        Several rows are possible per item (one per embedding kind), so the
        result is flattened. Items that have no record are skipped.
        """
        items = [item for item in await self._tree.list_all_items() if item.id != exclude_id]
        records = await self._store.get_many([item.id for item in items])

        destinations = []
        for item in items:
            record = records.get(item.id)
            if not record:
                continue
            for kind, vector in record.items():
                destinations.append(Destination(
                    item_id=item.id,
                    title=item.title,
                    target_id=item.placement_target_id,
                    kind=kind,
                    vector=vector,
                ))
        return destinations

    async def rank(self, query: Vector, leaf_id: str) -> list[Destination]:
        """Ranked destinations for a bookmark, its own record excluded."""
        destinations = await self.load_destinations(exclude_id=leaf_id)
        return [d for d in rank_destinations(query, destinations) if d.target_id]

    async def place_leaf(self, query: Optional[Vector], leaf_id: str) -> Optional[Placement]:
        """
        Move a bookmark into the folder of its most similar destination.

        Returns:
            The Placement made, or None when there was nothing to compare
            against (a normal state before anything is indexed).

        Raises:
            PreconditionViolation: If ``query`` is present but malformed
        """
        if not query:
            logger.warning("Bookmark %s has no embedding, skipping relocation", leaf_id)
            return None
        query = validate_vector(query)

        ranked = await self.rank(query, leaf_id)
        if not ranked:
            logger.info("No destinations with embeddings found, skipping relocation of %s", leaf_id)
            return None

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Top %d most similar destinations for %s:", min(LOG_TOP_N, len(ranked)), leaf_id)
            for i, d in enumerate(ranked[:LOG_TOP_N], 1):
                logger.debug(
                    "%d. %s (type: %s, similarity: %.4f, title: %s)",
                    i, d.item_id, d.kind.value, d.similarity, d.title,
                )

        best = ranked[0]
        logger.info(
            "Relocating bookmark %s to folder %s (similarity: %.4f)",
            leaf_id, best.target_id, best.similarity,
        )
        current = await self._tree.get_item(leaf_id)
        moved = current.parent_id != best.target_id
        await self._tree.move_item(leaf_id, best.target_id)
        return Placement(leaf_id=leaf_id, target_id=best.target_id, best=best, moved=moved)
