"""
Folder path text and tree traversal helpers.

Both walks are iterative so arbitrarily deep trees cannot exhaust the
Python call stack.
"""

import logging
from collections import deque
from typing import Iterable, Mapping, Optional

from .errors import ItemNotFound
from .providers.base import ItemTree
from .types import Item

logger = logging.getLogger(__name__)


def _has_title(title: Optional[str]) -> bool:
    return bool(title and title.strip())


class FolderPathBuilder:
    """
    Builds the texts embedded for a folder: its title and its full path.

    Root folders and special system folders are excluded from paths, e.g.
    ``Bookmarks Menu > Work > Programming > Python`` becomes
    ``"Work Programming Python"``.
    """

    def __init__(self, tree: ItemTree, excluded_ids: Iterable[str] = ()):
        self._tree = tree
        self.excluded_ids = frozenset(excluded_ids)

    async def full_path(self, folder: Item) -> str:
        """
        Ancestor titles (oldest first) followed by the folder's own title.

        A failed parent lookup truncates the path at that point.
        """
        parts: list[str] = []
        seen = {folder.id}
        current = folder
        while current.parent_id:
            parent_id = current.parent_id
            if parent_id in seen:
                logger.warning("Cycle in item tree at %s, truncating path", parent_id)
                break
            try:
                parent = await self._tree.get_item(parent_id)
            except ItemNotFound:
                logger.warning("Parent %s of %s not found, truncating path", parent_id, current.id)
                break
            except Exception as e:
                logger.error("Error getting parent node for %s: %s", parent_id, e)
                break
            if _has_title(parent.title) and parent.id not in self.excluded_ids:
                parts.append(parent.title)
            seen.add(parent.id)
            current = parent

        parts.reverse()
        if _has_title(folder.title):
            parts.append(folder.title)
        return " ".join(parts)

    async def texts(self, folder: Item) -> tuple[str, str]:
        """(title, full path) of a folder."""
        return folder.title, await self.full_path(folder)


def collect_descendants(root_id: str, children_of: Mapping[str, Iterable[str]]) -> list[str]:
    """
    Ids of every descendant of ``root_id`` in breadth-first order.

    Args:
        root_id: Item whose subtree to walk (not included in the result)
        children_of: Mapping of container id to child ids

    Returns:
        Descendant ids, each listed once
    """
    result: list[str] = []
    seen = {root_id}
    queue = deque(children_of.get(root_id, ()))
    while queue:
        item_id = queue.popleft()
        if item_id in seen:
            continue
        seen.add(item_id)
        result.append(item_id)
        queue.extend(children_of.get(item_id, ()))
    return result


def children_index(items: Iterable[Item]) -> dict[str, list[str]]:
    """Map each container id to its child ids, from children lists or parent links."""
    index: dict[str, list[str]] = {}
    for item in items:
        if item.children:
            index.setdefault(item.id, [])
            for child_id in item.children:
                if child_id not in index[item.id]:
                    index[item.id].append(child_id)
        if item.parent_id is not None:
            siblings = index.setdefault(item.parent_id, [])
            if item.id not in siblings:
                siblings.append(item.id)
    return index
