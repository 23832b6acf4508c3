"""
FolderVault Tree Materializer — flat folder/file rows → nested FolderNode tree.

Three linear passes, no recursion, no I/O, no error channel:

    1. folder id → FolderNode
    2. each file → its owner's ``files`` (dangling owner: dropped)
    3. each node → its parent's ``children`` (dangling parent: promoted to root)

Ordering is stable: roots, children and files keep input scan order.
Folders whose parent chain loops back on itself (only possible with
externally corrupted rows) are promoted to roots so every folder appears
exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Tuple

from foldervault.documents.models import File, Folder, FolderNode

logger = logging.getLogger("foldervault.documents.tree")


@dataclass
class TreeStats:
    folders: int = 0
    files_placed: int = 0
    dangling_files: int = 0
    dangling_parents: int = 0
    cycle_breaks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "folders": self.folders,
            "files_placed": self.files_placed,
            "dangling_files": self.dangling_files,
            "dangling_parents": self.dangling_parents,
            "cycle_breaks": self.cycle_breaks,
        }


def materialize_tree(folders: Iterable[Folder], files: Iterable[File]) -> List[FolderNode]:
    """Build the nested tree and return its roots."""
    roots, _ = materialize_tree_with_stats(folders, files)
    return roots


def materialize_tree_with_stats(
    folders: Iterable[Folder],
    files: Iterable[File],
) -> Tuple[List[FolderNode], TreeStats]:
    """Build the nested tree; also report what was dropped or promoted."""
    stats = TreeStats()

    # Pass 1: one node per folder. A repeated id keeps its first row.
    nodes: Dict[str, FolderNode] = {}
    for folder in folders:
        if folder.id in nodes:
            logger.warning(f"Duplicate folder id {folder.id!r} in listing; keeping first row")
            continue
        nodes[folder.id] = FolderNode.from_folder(folder)
    stats.folders = len(nodes)

    # Pass 2: attach files to their owners
    for file in files:
        owner = nodes.get(file.folder_id)
        if owner is None:
            stats.dangling_files += 1
            logger.debug(f"Dropping file {file.id} with dangling folder_id {file.folder_id!r}")
            continue
        owner.files.append(file)
        stats.files_placed += 1

    # Pass 3: link children to parents
    roots: List[FolderNode] = []
    for node in nodes.values():
        parent_id = node.parent_id
        if parent_id is None:
            roots.append(node)
            continue
        parent = nodes.get(parent_id)
        if parent is None:
            stats.dangling_parents += 1
            logger.debug(f"Promoting folder {node.id} with dangling parent {parent_id!r} to root")
            roots.append(node)
            continue
        parent.children.append(node)

    # Nodes inside a parent cycle are unreachable from any root
    if _count_reachable(roots) < len(nodes):
        stats.cycle_breaks = _break_cycles(nodes, roots)

    return roots, stats


def _count_reachable(roots: List[FolderNode]) -> int:
    return sum(1 for _ in _iter_forest(roots))


def _break_cycles(nodes: Dict[str, FolderNode], roots: List[FolderNode]) -> int:
    """
    Promote one node per parent cycle to root, in input order, detaching it
    from its parent. Returns the number of promoted nodes.
    """
    reachable = {n.id for n in _iter_forest(roots)}
    promoted = 0
    for start in nodes.values():
        if start.id in reachable:
            continue
        # Walk up until an id repeats; that node sits on the cycle itself
        seen = set()
        node = start
        while node.id not in seen:
            seen.add(node.id)
            node = nodes[node.parent_id]
        parent = nodes[node.parent_id]
        parent.children = [c for c in parent.children if c.id != node.id]
        roots.append(node)
        promoted += 1
        logger.warning(f"Folder {node.id} is part of a parent cycle; promoted to root")
        for n in iter_subtree(node):
            reachable.add(n.id)
    return promoted


def _iter_forest(roots: List[FolderNode]) -> Iterator[FolderNode]:
    for root in roots:
        yield from iter_subtree(root)


def iter_subtree(node: FolderNode) -> Iterator[FolderNode]:
    """Yield ``node`` and all its descendants, pre-order, iteratively."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def iter_subtree_post_order(node: FolderNode) -> Iterator[FolderNode]:
    """Yield descendants before their parent (deepest first), iteratively."""
    stack: List[Tuple[FolderNode, bool]] = [(node, False)]
    while stack:
        current, expanded = stack.pop()
        if expanded:
            yield current
            continue
        stack.append((current, True))
        for child in reversed(current.children):
            stack.append((child, False))


def find_node(roots: List[FolderNode], folder_id: str) -> FolderNode | None:
    """Locate a folder's node anywhere in a materialized forest."""
    for node in _iter_forest(roots):
        if node.id == folder_id:
            return node
    return None
