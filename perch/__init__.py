"""
perch - file new bookmarks into the folder they belong in.

Keeps a vector index of every folder (title and full path) and bookmark
(page text), reconciled against the live bookmark tree, and moves each
new bookmark into the folder of its most similar indexed neighbour.

Quick Start:
    from perch import Organizer, BookmarkTree

    tree = BookmarkTree.load("bookmarks.json")
    async with Organizer(tree=tree) as org:
        await org.reconcile()

CLI Usage:
    perch sync --bookmarks bookmarks.json
    perch status
    perch place <guid>

Environment Variables:
    PERCH_STORE_PATH  - Override default store location (~/.perch)
    PERCH_VERBOSE     - Keep library progress output enabled
"""

# Sets library env defaults; must precede any model library import
from . import logging_config  # noqa: F401

from .api import Organizer
from .errors import (
    ContentUnavailable,
    EmbeddingProviderFailure,
    ItemNotFound,
    PerchError,
    PreconditionViolation,
)
from .tree import BookmarkTree
from .types import CreationMode, EmbeddingKind, Item, ItemKind

__version__ = "0.1.0"
__all__ = [
    "Organizer",
    "BookmarkTree",
    "Item",
    "ItemKind",
    "EmbeddingKind",
    "CreationMode",
    "PerchError",
    "ContentUnavailable",
    "EmbeddingProviderFailure",
    "ItemNotFound",
    "PreconditionViolation",
]
