"""
Provider interfaces for perch collaborators.

Each provider type defines a protocol that concrete implementations must follow:
- Item tree (the host bookmark hierarchy)
- Content source (page text for a bookmark)
- Embedding model (text to vector inference)

Concrete providers register themselves when their module is imported.
"""

from .base import (
    ContentSource,
    EmbeddingModel,
    ItemTree,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "ContentSource",
    "EmbeddingModel",
    "ItemTree",
    "ProviderRegistry",
    "get_registry",
]
