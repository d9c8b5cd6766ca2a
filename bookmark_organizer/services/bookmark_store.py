import itertools
import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..errors import StoreError
from ..models.bookmark import BookmarkNode

logger = logging.getLogger(__name__)

MAX_TREE_DEPTH = 64


class BookmarkStore:
    """In-memory bookmark tree, optionally backed by a JSON file.

    The file holds one root node: {"id", "title", "children": [...]}, where a
    child with a "url" is a bookmark and any other child is a folder.
    """

    def __init__(self, root: Optional[BookmarkNode] = None):
        self.root = root or BookmarkNode(id='0', title='')
        self._nodes: Dict[str, BookmarkNode] = {}
        for node, _ in iter_tree(self.root):
            if node.id in self._nodes:
                raise StoreError(f"Duplicate node id: {node.id}")
            self._nodes[node.id] = node
        numeric = [int(node_id) for node_id in self._nodes if node_id.isdigit()]
        self._ids = itertools.count(max(numeric, default=0) + 1)

    @classmethod
    def from_dict(cls, data: dict) -> 'BookmarkStore':
        return cls(_build_tree(data))

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'BookmarkStore':
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to load bookmarks from {path}: {e}") from e
        store = cls.from_dict(data)
        logger.info(f"Loaded {len(store._nodes)} nodes from {path}")
        return store

    def save(self, path: Union[str, Path]):
        path = Path(path)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.root.to_dict(), f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise StoreError(f"Failed to save bookmarks to {path}: {e}") from e

    def get_tree(self) -> BookmarkNode:
        return self.root

    def get_node(self, node_id: str) -> BookmarkNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise StoreError(f"No such node: {node_id}") from None

    def get_children(self, parent_id: str) -> List[BookmarkNode]:
        return list(self.get_node(parent_id).children)

    def create(self, parent_id: str, title: str, url: Optional[str] = None,
               index: Optional[int] = None) -> BookmarkNode:
        parent = self._folder(parent_id)
        node = BookmarkNode(id=str(next(self._ids)), title=title, url=url, parent_id=parent_id)
        _insert(parent.children, node, index)
        self._nodes[node.id] = node
        return node

    def move(self, node_id: str, parent_id: str, index: Optional[int] = None) -> BookmarkNode:
        node = self.get_node(node_id)
        parent = self._folder(parent_id)
        if node is self.root:
            raise StoreError("Cannot move the root folder")
        if any(ancestor.id == node_id for ancestor in self._ancestors(parent)):
            raise StoreError(f"Cannot move folder {node_id} into its own subtree")
        old_parent = self.get_node(node.parent_id)
        old_parent.children.remove(node)
        node.parent_id = parent_id
        _insert(parent.children, node, index)
        return node

    def remove(self, node_id: str):
        node = self.get_node(node_id)
        if node.children:
            raise StoreError(f"Folder {node_id} is not empty")
        self.remove_tree(node_id)

    def remove_tree(self, node_id: str):
        node = self.get_node(node_id)
        if node is self.root:
            raise StoreError("Cannot remove the root folder")
        self.get_node(node.parent_id).children.remove(node)
        for descendant, _ in iter_tree(node):
            self._nodes.pop(descendant.id, None)

    def iter_bookmarks(self, folder_id: Optional[str] = None) -> Iterator[BookmarkNode]:
        """All bookmarks below folder_id (default: whole tree), in tree order."""
        start = self.get_node(folder_id) if folder_id else self.root
        for node, _ in iter_tree(start):
            if not node.is_folder:
                yield node

    def iter_folders(self, folder_id: Optional[str] = None) -> Iterator[BookmarkNode]:
        start = self.get_node(folder_id) if folder_id else self.root
        for node, _ in iter_tree(start):
            if node.is_folder and node is not start:
                yield node

    def _folder(self, node_id: str) -> BookmarkNode:
        node = self.get_node(node_id)
        if not node.is_folder:
            raise StoreError(f"Node {node_id} is not a folder")
        return node

    def _ancestors(self, node: BookmarkNode) -> Iterator[BookmarkNode]:
        depth = 0
        while node is not None and depth <= MAX_TREE_DEPTH:
            yield node
            node = self._nodes.get(node.parent_id) if node.parent_id else None
            depth += 1


def iter_tree(root: BookmarkNode, max_depth: int = MAX_TREE_DEPTH):
    """Pre-order walk yielding (node, depth); stops at max_depth and never revisits a node."""
    stack = [(root, 0)]
    seen = set()
    while stack:
        node, depth = stack.pop()
        if id(node) in seen:
            logger.warning(f"Cycle detected at node {node.id}, skipping")
            continue
        seen.add(id(node))
        yield node, depth
        if depth >= max_depth:
            if node.children:
                logger.warning(f"Tree deeper than {max_depth} levels below {node.id}, truncating")
            continue
        for child in reversed(node.children):
            stack.append((child, depth + 1))


def _build_tree(data: dict) -> BookmarkNode:
    root = _build_node(data, parent_id=None)
    stack = [(root, data, 0)]
    while stack:
        node, raw, depth = stack.pop()
        if node.url is not None:
            continue
        if depth >= MAX_TREE_DEPTH and raw.get('children'):
            raise StoreError(f"Bookmark tree deeper than {MAX_TREE_DEPTH} levels")
        for raw_child in raw.get('children') or []:
            child = _build_node(raw_child, parent_id=node.id)
            node.children.append(child)
            stack.append((child, raw_child, depth + 1))
    return root


def _build_node(data: dict, parent_id: Optional[str]) -> BookmarkNode:
    if not isinstance(data, dict) or 'id' not in data:
        raise StoreError(f"Malformed bookmark node: {data!r}")
    return BookmarkNode(
        id=str(data['id']),
        title=data.get('title') or '',
        url=data.get('url'),
        parent_id=parent_id,
    )


def _insert(children: List[BookmarkNode], node: BookmarkNode, index: Optional[int]):
    if index is None or index >= len(children):
        children.append(node)
    else:
        children.insert(max(index, 0), node)
