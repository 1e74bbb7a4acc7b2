"""
Bookmark tree backed by a Firefox bookmark backup (JSON) file.

Firefox writes backups as one nested JSON object: containers carry
``typeCode`` 2 and a ``children`` list, bookmarks ``typeCode`` 1 and a
``uri``, separators ``typeCode`` 3. Ids are the node ``guid``s, which are
stable across moves. Separators are kept in place on save but are not
items.

The tree is held in memory; ``save()`` writes it back atomically.
"""

import base64
import json
import logging
import os
import secrets
import tempfile
import time
from pathlib import Path
from typing import Any, Iterable, Optional

from .errors import ItemNotFound, PreconditionViolation
from .types import Item, ItemKind

logger = logging.getLogger(__name__)

ROOT_GUID = "root________"

TYPE_BOOKMARK = 1
TYPE_CONTAINER = 2
TYPE_SEPARATOR = 3

_MOZ_TYPES = {
    TYPE_BOOKMARK: "text/x-moz-place",
    TYPE_CONTAINER: "text/x-moz-place-container",
    TYPE_SEPARATOR: "text/x-moz-place-separator",
}


def new_guid() -> str:
    """A random 12-character guid in Firefox's url-safe base64 alphabet."""
    return base64.urlsafe_b64encode(secrets.token_bytes(9)).decode("ascii")


def _now_us() -> int:
    return int(time.time() * 1_000_000)


class BookmarkTree:
    """
    In-memory bookmark tree implementing the ItemTree protocol.

    Example:
        tree = BookmarkTree.load(Path("bookmarks.json"))
        items = await tree.list_all_items()
        await tree.move_item(bookmark_id, folder_id)
        tree.save()
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._nodes: dict[str, dict[str, Any]] = {}
        self._parent: dict[str, Optional[str]] = {}
        self._children: dict[str, list[str]] = {}
        self._root: Optional[str] = None
        self.dirty = False

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "BookmarkTree":
        """Read a Firefox JSON bookmark backup."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        tree = cls(path)
        tree._load_backup(data)
        logger.info("Loaded %d bookmark nodes from %s", len(tree._nodes), path)
        return tree

    @classmethod
    def from_backup(cls, data: dict) -> "BookmarkTree":
        tree = cls()
        tree._load_backup(data)
        return tree

    @classmethod
    def from_items(cls, items: Iterable[Item], root_id: str = ROOT_GUID) -> "BookmarkTree":
        """
        Build a tree from flat items linked by ``parent_id``.

        Items without a parent are attached to a synthetic, untitled root.
        """
        tree = cls()
        tree._add_node({"guid": root_id, "title": "", "typeCode": TYPE_CONTAINER}, None)
        tree._root = root_id
        pending = [item for item in items if item.id != root_id]
        known = {root_id}
        # Parents may be listed after their children
        while pending:
            remaining = []
            for item in pending:
                parent = item.parent_id or root_id
                if parent not in known:
                    remaining.append(item)
                    continue
                node = {
                    "guid": item.id,
                    "title": item.title,
                    "typeCode": TYPE_CONTAINER if item.is_container else TYPE_BOOKMARK,
                }
                if item.url:
                    node["uri"] = item.url
                tree._add_node(node, parent)
                known.add(item.id)
            if len(remaining) == len(pending):
                missing = sorted({i.parent_id for i in remaining})
                raise PreconditionViolation(f"Unknown parent ids: {missing}")
            pending = remaining
        return tree

    def _add_node(self, raw: dict, parent: Optional[str]) -> None:
        guid = raw["guid"]
        if guid in self._nodes:
            raise PreconditionViolation(f"Duplicate guid in bookmark tree: {guid}")
        self._nodes[guid] = raw
        self._parent[guid] = parent
        if raw.get("typeCode") == TYPE_CONTAINER:
            self._children.setdefault(guid, [])
        if parent is not None:
            self._children.setdefault(parent, []).append(guid)

    def _load_backup(self, data: dict) -> None:
        if not isinstance(data, dict) or "guid" not in data:
            raise PreconditionViolation("Not a Firefox bookmark backup: missing root guid")
        self._root = data["guid"]
        stack: list[tuple[dict, Optional[str]]] = [(data, None)]
        while stack:
            node, parent = stack.pop()
            raw = {k: v for k, v in node.items() if k != "children"}
            self._add_node(raw, parent)
            # Reverse so children are visited (and appended) in document order
            for child in reversed(node.get("children", [])):
                stack.append((child, raw["guid"]))

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_backup(self) -> dict:
        """Nested Firefox backup structure of the current tree."""
        if self._root is None:
            return {}

        def build(guid: str) -> dict:
            return dict(self._nodes[guid])

        root = build(self._root)
        stack = [(self._root, root)]
        while stack:
            guid, out = stack.pop()
            if self._nodes[guid].get("typeCode") != TYPE_CONTAINER:
                continue
            out["children"] = []
            for index, child_guid in enumerate(self._children.get(guid, [])):
                child = build(child_guid)
                child["index"] = index
                out["children"].append(child)
                stack.append((child_guid, child))
        return root

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the tree as a Firefox backup, replacing the file atomically."""
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No path to save bookmark tree to")
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".bookmarks-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_backup(), f, ensure_ascii=False)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self.dirty = False
        logger.info("Saved bookmark tree to %s", target)
        return target

    # -------------------------------------------------------------------------
    # Item access
    # -------------------------------------------------------------------------

    def _is_item(self, guid: str) -> bool:
        return self._nodes[guid].get("typeCode") in (TYPE_BOOKMARK, TYPE_CONTAINER)

    def _to_item(self, guid: str) -> Item:
        raw = self._nodes[guid]
        is_container = raw.get("typeCode") == TYPE_CONTAINER
        return Item(
            id=guid,
            kind=ItemKind.CONTAINER if is_container else ItemKind.LEAF,
            title=raw.get("title", "") or "",
            url=None if is_container else raw.get("uri"),
            parent_id=self._parent.get(guid),
            children=[c for c in self._children.get(guid, []) if self._is_item(c)] if is_container else [],
        )

    def _walk(self) -> list[str]:
        """Item guids in pre-order (document order)."""
        if self._root is None:
            return []
        order = []
        stack = [self._root]
        while stack:
            guid = stack.pop()
            if self._is_item(guid):
                order.append(guid)
            stack.extend(reversed(self._children.get(guid, [])))
        return order

    def items(self) -> list[Item]:
        """Snapshot of every item in document order, the root itself excluded."""
        return [self._to_item(guid) for guid in self._walk() if guid != self._root]

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._nodes and self._is_item(item_id)

    def __len__(self) -> int:
        return len(self.items())

    # ItemTree protocol

    async def list_all_items(self) -> list[Item]:
        return self.items()

    async def get_item(self, item_id: str) -> Item:
        if item_id not in self:
            raise ItemNotFound(item_id)
        return self._to_item(item_id)

    async def move_item(self, item_id: str, new_parent_id: str) -> None:
        if item_id not in self:
            raise ItemNotFound(item_id)
        if new_parent_id not in self:
            raise ItemNotFound(new_parent_id)
        if self._nodes[new_parent_id].get("typeCode") != TYPE_CONTAINER:
            raise PreconditionViolation(f"Cannot move into non-folder {new_parent_id}")
        old_parent = self._parent.get(item_id)
        if old_parent == new_parent_id:
            return
        # Refuse to move a folder into its own subtree
        ancestor: Optional[str] = new_parent_id
        while ancestor is not None:
            if ancestor == item_id:
                raise PreconditionViolation(f"Cannot move {item_id} into its own descendant")
            ancestor = self._parent.get(ancestor)

        if old_parent is not None:
            self._children[old_parent].remove(item_id)
        self._children[new_parent_id].append(item_id)
        self._parent[item_id] = new_parent_id
        self._nodes[item_id]["lastModified"] = _now_us()
        self.dirty = True
        logger.debug("Moved %s from %s to %s", item_id, old_parent, new_parent_id)

    async def create_item(
        self,
        title: str,
        *,
        url: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> Item:
        parent_id = parent_id or self.default_parent_id()
        if parent_id not in self:
            raise ItemNotFound(parent_id)
        now = _now_us()
        raw = {
            "guid": new_guid(),
            "title": title,
            "typeCode": TYPE_BOOKMARK if url else TYPE_CONTAINER,
            "type": _MOZ_TYPES[TYPE_BOOKMARK if url else TYPE_CONTAINER],
            "dateAdded": now,
            "lastModified": now,
        }
        if url:
            raw["uri"] = url
        self._add_node(raw, parent_id)
        self.dirty = True
        return self._to_item(raw["guid"])

    async def update_item(self, item_id: str, *, title: Optional[str] = None, url: Optional[str] = None) -> Item:
        """Change a title or bookmark URL. Returns the updated item."""
        if item_id not in self:
            raise ItemNotFound(item_id)
        raw = self._nodes[item_id]
        if title is not None:
            raw["title"] = title
        if url is not None:
            if raw.get("typeCode") != TYPE_BOOKMARK:
                raise PreconditionViolation(f"Only bookmarks have URLs: {item_id}")
            raw["uri"] = url
        raw["lastModified"] = _now_us()
        self.dirty = True
        return self._to_item(item_id)

    async def remove_item(self, item_id: str) -> list[str]:
        """
        Remove an item and its whole subtree.

        Returns:
            Ids of the removed descendants (the item itself excluded)
        """
        if item_id not in self:
            raise ItemNotFound(item_id)
        if item_id == self._root:
            raise PreconditionViolation("Cannot remove the root folder")
        removed = []
        stack = list(self._children.get(item_id, []))
        while stack:
            guid = stack.pop()
            stack.extend(self._children.pop(guid, []))
            if self._is_item(guid):
                removed.append(guid)
            del self._nodes[guid]
            del self._parent[guid]
        parent = self._parent.pop(item_id)
        if parent is not None:
            self._children[parent].remove(item_id)
        self._children.pop(item_id, None)
        del self._nodes[item_id]
        self.dirty = True
        return removed

    def default_parent_id(self) -> str:
        """Where new items go when no parent is given: Other Bookmarks, else the root."""
        if "unfiled_____" in self._nodes:
            return "unfiled_____"
        if self._root is None:
            raise PreconditionViolation("Bookmark tree is empty")
        return self._root
